# portal/crud/feedback.py
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import structlog

from portal.core.errors import InvalidState, NotFound
from portal.core.permissions import (
    can_resolve_feedback,
    can_submit_verdict,
    can_update_feedback_status,
    require,
    require_actor,
)
from portal.crud.approval import ApprovalStateMachine, current_status
from portal.crud.deliverable import feedback_collection, load_deliverable
from portal.metrics import feedback_submitted_total
from portal.schemas.activity import ActionType
from portal.schemas.actor import Actor
from portal.schemas.deliverable import DeliverableStatus
from portal.schemas.feedback import VERDICT_STATUSES, Feedback, FeedbackStatus
from portal.services.activity import WorkflowEvent, summarize
from portal.services.optimistic import OptimisticDocument
from portal.services.store import SERVER_TIMESTAMP, WriteBatch

logger = structlog.get_logger(__name__)

# verdict carried by a feedback entry -> deliverable status it drives
VERDICT_TARGETS = {
    FeedbackStatus.APPROVED: DeliverableStatus.APPROVED,
    FeedbackStatus.CHANGE_REQUESTED: DeliverableStatus.IN_REVIEW,
}


def _parse_status(status: Union[str, FeedbackStatus, None]) -> FeedbackStatus:
    try:
        return FeedbackStatus(status or FeedbackStatus.INFO)
    except ValueError:
        raise InvalidState(f"Unknown feedback status '{status}'")

def _clean_tags(tags: Optional[Iterable[str]]) -> List[str]:
    out: List[str] = []
    for t in tags or []:
        t = (t or "").strip()
        if t and t not in out:
            out.append(t)
    return out


class FeedbackEngine:
    """Feedback threads on a deliverable.

    Verdict feedback (approved / change-requested) and the deliverable status
    change it drives are written in one batch. The activity entry follows the
    commit and cannot undo it.
    """

    def __init__(self, approvals: ApprovalStateMachine):
        self.approvals = approvals
        self.store = approvals.store

    def _feedback_path(self, deliverable_id: str, feedback_id: str) -> str:
        return f"{feedback_collection(deliverable_id)}/{feedback_id}"

    def _load_feedback(self, deliverable_id: str, feedback_id: str) -> Dict[str, Any]:
        doc = self.store.get(self._feedback_path(deliverable_id, feedback_id))
        if not doc:
            raise NotFound(f"Feedback {feedback_id} not found on deliverable {deliverable_id}")
        return doc

    def _plan_verdict(self, deliverable: Dict[str, Any], status: FeedbackStatus, actor: Actor):
        if status not in VERDICT_STATUSES:
            return None
        # a repeated change request on an In Review deliverable is accepted without a status write
        return self.approvals.plan(deliverable, VERDICT_TARGETS[status], actor, allow_repeat=True)

    def submit_feedback(
        self,
        actor: Optional[Actor],
        deliverable_id: str,
        content: str,
        status: Union[str, FeedbackStatus] = FeedbackStatus.INFO,
        tags: Optional[Iterable[str]] = None,
        local: Optional[OptimisticDocument] = None,
    ) -> str:
        actor = require_actor(actor, "submit feedback")
        status = _parse_status(status)
        text = (content or "").strip()
        if not text:
            raise InvalidState("Feedback cannot be empty")
        verdict = status in VERDICT_STATUSES
        if verdict:
            require(can_submit_verdict(actor), "submit_feedback",
                    "Only clients can approve deliverables or request changes through feedback")

        deliverable = load_deliverable(self.store, deliverable_id)
        source = current_status(deliverable)
        patch = self._plan_verdict(deliverable, status, actor)
        if patch is None:
            patch = {"lastUpdated": SERVER_TIMESTAMP}

        doc = {
            "deliverableId": deliverable_id,
            "content": text,
            "author": actor.name,
            "authorId": actor.id,
            "createdAt": SERVER_TIMESTAMP,
            "status": status.value,
            "tags": _clean_tags(tags),
            "resolved": False,
            "role": actor.mode_role,
            "type": "comment",
        }

        def write(batch: WriteBatch) -> str:
            return batch.append_child(feedback_collection(deliverable_id), doc)

        feedback_id = self.approvals.commit(deliverable_id, patch, extra=write, local=local)
        feedback_submitted_total.labels(status=status.value).inc()
        logger.info("feedback_submitted", deliverable_id=deliverable_id,
                    feedback_id=feedback_id, status=status.value, actor_id=actor.id)

        metadata: Dict[str, Any] = {
            "feedbackId": feedback_id,
            "status": status.value,
            "role": actor.mode_role,
            "tags": doc["tags"],
        }
        if verdict:
            target = DeliverableStatus(patch.get("status", source.value))
            if "status" in patch:
                self.approvals.record_transition(deliverable_id, source, target, actor)
            metadata.update(previousStatus=source.value, newStatus=target.value)
            label = "Approved deliverable" if status == FeedbackStatus.APPROVED else "Requested changes"
            message = f"{label}: {summarize(text)}"
        else:
            message = f"Added feedback: {summarize(text)}"

        self.approvals.emit(WorkflowEvent(
            action_type=ActionType.APPROVAL if verdict else ActionType.FEEDBACK,
            actor=actor,
            project_id=deliverable.get("projectId"),
            deliverable_id=deliverable_id,
            message=message,
            metadata=metadata,
        ))
        return feedback_id

    def update_feedback_status(
        self,
        actor: Optional[Actor],
        deliverable_id: str,
        feedback_id: str,
        status: Union[str, FeedbackStatus],
        override: bool = False,
        local: Optional[OptimisticDocument] = None,
    ) -> str:
        """Change the verdict on an existing entry.

        Clients may always do this; staff only with ``override`` and the admin
        role claim. The entry is always rewritten. A verdict status moves the
        deliverable when the move is a verdict edge (``plan_reverdict``) and
        leaves it where it is otherwise.
        """
        actor = require_actor(actor, "update feedback")
        status = _parse_status(status)
        require(can_update_feedback_status(actor, override), "update_feedback_status",
                "Only clients can change feedback status; admins must use override")

        deliverable = load_deliverable(self.store, deliverable_id)
        feedback = self._load_feedback(deliverable_id, feedback_id)
        if feedback.get("resolved"):
            raise InvalidState("Resolved feedback cannot change status")

        source = current_status(deliverable)
        verdict = status in VERDICT_STATUSES
        patch = None
        if verdict:
            patch = self.approvals.plan_reverdict(deliverable, VERDICT_TARGETS[status], actor)
        fb_patch = {
            "status": status.value,
            "updatedAt": SERVER_TIMESTAMP,
            "updatedBy": actor.name,
            "updatedById": actor.id,
            "override": bool(override),
        }

        def write(batch: WriteBatch) -> None:
            batch.set(self._feedback_path(deliverable_id, feedback_id), fb_patch, merge=True)

        self.approvals.commit(deliverable_id, patch, extra=write, local=local)

        metadata: Dict[str, Any] = {
            "feedbackId": feedback_id,
            "previousFeedbackStatus": feedback.get("status"),
            "status": status.value,
            "override": bool(override),
        }
        if verdict:
            target = DeliverableStatus(patch["status"]) if patch else source
            if patch:
                self.approvals.record_transition(deliverable_id, source, target, actor)
            metadata.update(previousStatus=source.value, newStatus=target.value)

        message = f"Changed feedback status to {status.value}"
        if override:
            message += " (override)"
        self.approvals.emit(WorkflowEvent(
            action_type=ActionType.APPROVAL if verdict else ActionType.FEEDBACK,
            actor=actor,
            project_id=deliverable.get("projectId"),
            deliverable_id=deliverable_id,
            message=message,
            metadata=metadata,
        ))
        return feedback_id

    def resolve_feedback(self, actor: Optional[Actor], deliverable_id: str, feedback_id: str) -> str:
        actor = require_actor(actor, "resolve feedback")
        require(can_resolve_feedback(actor), "resolve_feedback", "Only admins can resolve feedback")

        deliverable = load_deliverable(self.store, deliverable_id)
        feedback = self._load_feedback(deliverable_id, feedback_id)
        if feedback.get("resolved"):
            raise InvalidState("Feedback has already been resolved")

        self.store.set(self._feedback_path(deliverable_id, feedback_id), {
            "resolved": True,
            "resolvedAt": SERVER_TIMESTAMP,
            "resolvedBy": actor.name,
            "resolvedById": actor.id,
        }, merge=True)
        logger.info("feedback_resolved", deliverable_id=deliverable_id,
                    feedback_id=feedback_id, actor_id=actor.id)

        self.approvals.emit(WorkflowEvent(
            action_type=ActionType.FEEDBACK,
            actor=actor,
            project_id=deliverable.get("projectId"),
            deliverable_id=deliverable_id,
            message=f"Resolved feedback: {summarize(feedback.get('content'))}",
            metadata={"feedbackId": feedback_id, "resolved": True},
        ))
        return feedback_id

    def list_feedback(self, deliverable_id: str) -> List[Feedback]:
        load_deliverable(self.store, deliverable_id)
        return [Feedback.from_document(d) for d in self.store.list_children(feedback_collection(deliverable_id))]

    def subscribe_feedback(self, deliverable_id: str,
                           on_change: Callable[[List[Feedback]], None]) -> Callable[[], None]:
        return self.store.subscribe_collection(
            feedback_collection(deliverable_id),
            lambda docs: on_change([Feedback.from_document(d) for d in docs]),
        )
