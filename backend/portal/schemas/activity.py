from __future__ import annotations
import enum
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import Field

from portal.schemas.base import DocumentModel


class ActionType(str, enum.Enum):
    FEEDBACK = "feedback"
    APPROVAL = "approval"
    REVISION = "revision"


class ActivityLogEntry(DocumentModel):
    id: str
    action_type: ActionType
    actor_id: str
    actor_name: str
    actor_role: str
    project_id: Optional[str] = None
    deliverable_id: str
    message: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[datetime] = None
