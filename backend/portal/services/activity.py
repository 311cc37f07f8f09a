from __future__ import annotations
from typing import Any, Callable, Dict, Iterable, List, Optional

import structlog
from pydantic import BaseModel, Field

from portal.metrics import activity_log_failures_total
from portal.schemas.activity import ActionType, ActivityLogEntry
from portal.schemas.actor import Actor
from portal.services.store import DocumentStore, server_now
from portal.utils.activity_sink import write_event

logger = structlog.get_logger(__name__)

ACTIVITY_COLLECTION = "activityLogs"
MESSAGE_LIMIT = 100


def summarize(text: Optional[str], limit: int = MESSAGE_LIMIT) -> str:
    """Cut free text to ``limit`` characters, marking the cut with '...'."""
    text = text or ""
    if len(text) > limit:
        return text[:limit] + "..."
    return text


class WorkflowEvent(BaseModel):
    """What a committed workflow mutation tells its post-commit hooks."""

    action_type: ActionType
    actor: Actor
    project_id: Optional[str] = None
    deliverable_id: str
    message: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


Hook = Callable[[WorkflowEvent], None]


def dispatch(hooks: Iterable[Hook], event: WorkflowEvent) -> None:
    """Run post-commit hooks; a failing hook never reaches the caller."""
    for hook in hooks:
        try:
            hook(event)
        except Exception:
            logger.warning("post_commit_hook_failed", hook=repr(hook),
                           action_type=event.action_type.value, exc_info=True)


class ActivityRecorder:
    """Appends one immutable activity entry per workflow event.

    Best-effort: a failed append is counted and logged, never raised, and
    never undoes the mutation that triggered it.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    def __call__(self, event: WorkflowEvent) -> None:
        self.record(event.actor, event.action_type, event.project_id,
                    event.deliverable_id, event.message, event.metadata)

    def record(
        self,
        actor: Actor,
        action_type: ActionType,
        project_id: Optional[str],
        deliverable_id: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        entry = {
            "actionType": ActionType(action_type).value,
            "actorId": actor.id,
            "actorName": actor.name,
            "actorRole": actor.log_role,
            "projectId": project_id,
            "deliverableId": deliverable_id,
            "message": message,
            "metadata": dict(metadata or {}),
            "timestamp": server_now(),
        }
        try:
            entry_id = self.store.append_child(ACTIVITY_COLLECTION, entry)
        except Exception:
            activity_log_failures_total.inc()
            logger.warning("activity_log_append_failed", deliverable_id=deliverable_id,
                           action_type=entry["actionType"], exc_info=True)
            return None

        # mirror to filesystem as JSONL
        try:
            write_event({"id": entry_id, **entry})
        except OSError:
            logger.warning("activity_mirror_failed", entry_id=entry_id, exc_info=True)
        return entry_id


def list_activity(
    store: DocumentStore,
    project_id: Optional[str] = None,
    deliverable_id: Optional[str] = None,
    limit: Optional[int] = 50,
) -> List[ActivityLogEntry]:
    """Newest first."""
    where: Dict[str, str] = {}
    if project_id:
        where["projectId"] = project_id
    if deliverable_id:
        where["deliverableId"] = deliverable_id
    docs = store.list_children(ACTIVITY_COLLECTION, where=where, descending=True, limit=limit)
    return [ActivityLogEntry.from_document(d) for d in docs]


def subscribe_activity(store: DocumentStore, on_change: Callable[[List[ActivityLogEntry]], None]):
    return store.subscribe_collection(
        ACTIVITY_COLLECTION,
        lambda docs: on_change([ActivityLogEntry.from_document(d) for d in docs]),
        descending=True,
    )
