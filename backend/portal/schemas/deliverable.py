from __future__ import annotations
import enum
from datetime import datetime
from typing import List, Optional

from pydantic import Field

from portal.schemas.base import DocumentModel
from portal.schemas.feedback import Feedback
from portal.schemas.revision import Revision


class DeliverableStatus(str, enum.Enum):
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    DELIVERED = "Delivered"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    IN_REVIEW = "In Review"


class ApprovalStatus(str, enum.Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    CHANGES_REQUESTED = "Changes Requested"


def derive_approval_status(status: DeliverableStatus) -> ApprovalStatus:
    """approvalStatus is the client-facing view of ``status``; never set independently."""
    if status == DeliverableStatus.APPROVED:
        return ApprovalStatus.APPROVED
    if status in (DeliverableStatus.IN_REVIEW, DeliverableStatus.REJECTED):
        return ApprovalStatus.CHANGES_REQUESTED
    return ApprovalStatus.PENDING


class Deliverable(DocumentModel):
    id: str
    project_id: str
    name: str
    due_date: Optional[str] = None
    notes: Optional[str] = None
    status: DeliverableStatus = DeliverableStatus.NOT_STARTED
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    last_updated: Optional[datetime] = None
    updated_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    reopened_at: Optional[datetime] = None
    reopened_by: Optional[str] = None
    feedback: List[Feedback] = Field(default_factory=list)
    revisions: List[Revision] = Field(default_factory=list)
