from __future__ import annotations
import enum
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from portal.schemas.base import DocumentModel


class RevisionStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    FINAL = "final"


class RevisionFile(BaseModel):
    name: str = Field(min_length=1)
    url: str
    size: int = Field(default=0, ge=0)
    type: Optional[str] = None


class Revision(DocumentModel):
    id: str
    deliverable_id: str
    version: str
    status: RevisionStatus = RevisionStatus.PENDING
    changes: str
    files: List[RevisionFile] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    marked_final_at: Optional[datetime] = None
    marked_final_by: Optional[str] = None


class RevisionComment(DocumentModel):
    id: str
    revision_id: str
    author_id: str
    author: str
    content: str
    mentioned_users: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
