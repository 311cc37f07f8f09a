from __future__ import annotations
import enum
from datetime import datetime
from typing import List, Optional

from pydantic import Field

from portal.schemas.base import DocumentModel


class FeedbackStatus(str, enum.Enum):
    INFO = "info"
    APPROVED = "approved"
    CHANGE_REQUESTED = "change-requested"


# statuses that carry a client verdict on the deliverable
VERDICT_STATUSES = {FeedbackStatus.APPROVED, FeedbackStatus.CHANGE_REQUESTED}


class FeedbackRole(str, enum.Enum):
    ADMIN = "admin"
    CLIENT = "client"


class Feedback(DocumentModel):
    id: str
    deliverable_id: str
    content: str
    author: str
    author_id: str
    status: FeedbackStatus = FeedbackStatus.INFO
    tags: List[str] = Field(default_factory=list)
    resolved: bool = False
    role: FeedbackRole
    type: str = "comment"
    created_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolved_by_id: Optional[str] = None
    resolved_at: Optional[datetime] = None
    updated_by: Optional[str] = None
    updated_by_id: Optional[str] = None
    updated_at: Optional[datetime] = None
    override: Optional[bool] = None
