# portal/crud/approval.py
from typing import Any, Callable, Dict, Iterable, Optional, Set, TypeVar

import structlog

from portal.core.errors import AlreadyApproved, InvalidState, StoreUnavailable
from portal.core.permissions import can_manage_work, can_sign_off, require, require_actor
from portal.crud.deliverable import deliverable_path, feedback_collection, load_deliverable
from portal.metrics import deliverable_transitions_total
from portal.schemas.activity import ActionType
from portal.schemas.actor import Actor
from portal.schemas.deliverable import DeliverableStatus, derive_approval_status
from portal.schemas.feedback import FeedbackStatus
from portal.services.activity import ActivityRecorder, Hook, WorkflowEvent, dispatch, summarize
from portal.services.optimistic import OptimisticDocument
from portal.services.store import SERVER_TIMESTAMP, DocumentStore, WriteBatch

logger = structlog.get_logger(__name__)

T = TypeVar("T")

S = DeliverableStatus

# The only back-edges are the admin reopen actions into In Progress
TRANSITIONS: Dict[DeliverableStatus, Set[DeliverableStatus]] = {
    S.NOT_STARTED: {S.IN_PROGRESS},
    S.IN_PROGRESS: {S.DELIVERED},
    S.DELIVERED: {S.APPROVED, S.REJECTED, S.IN_REVIEW},
    S.IN_REVIEW: {S.IN_PROGRESS},
    S.REJECTED: {S.IN_PROGRESS},
    S.APPROVED: {S.IN_PROGRESS},
}

REOPENABLE = {S.IN_REVIEW, S.REJECTED, S.APPROVED}

# a client changing the verdict on existing feedback may flip between the
# two reviewed outcomes without reopening the work
REVERDICT: Dict[DeliverableStatus, Set[DeliverableStatus]] = {
    S.IN_REVIEW: {S.APPROVED},
    S.REJECTED: {S.APPROVED, S.IN_REVIEW},
    S.APPROVED: {S.IN_REVIEW},
}


def current_status(deliverable: Dict[str, Any]) -> DeliverableStatus:
    try:
        return DeliverableStatus(deliverable.get("status") or S.NOT_STARTED.value)
    except ValueError:
        raise InvalidState(f"Deliverable has unknown status '{deliverable.get('status')}'")


class ApprovalStateMachine:
    """Owns ``status`` / ``approvalStatus`` on deliverables.

    Planning (``plan``) is pure and raises before anything is written;
    ``commit`` writes the status patch together with any extra documents in a
    single store batch, then the caller dispatches one event to the
    post-commit hooks.
    """

    def __init__(self, store: DocumentStore, hooks: Optional[Iterable[Hook]] = None):
        self.store = store
        self.hooks = list(hooks) if hooks is not None else [ActivityRecorder(store)]

    # -------------------------- planning --------------------------

    def plan(
        self,
        deliverable: Dict[str, Any],
        target: DeliverableStatus,
        actor: Actor,
        reason: Optional[str] = None,
        allow_repeat: bool = False,
    ) -> Optional[Dict[str, Any]]:
        """Return the patch moving ``deliverable`` to ``target``.

        ``None`` means the deliverable is already in ``target`` and
        ``allow_repeat`` was given, so there is nothing to write.
        """
        source = current_status(deliverable)
        target = DeliverableStatus(target)

        if target == S.APPROVED and source == S.APPROVED:
            raise AlreadyApproved(f"Deliverable '{deliverable.get('name', deliverable.get('id'))}' is already approved")
        if allow_repeat and source == target:
            return None
        if target not in TRANSITIONS[source]:
            raise InvalidState(
                f"Cannot move deliverable from '{source.value}' to '{target.value}'",
                current=source.value, target=target.value,
            )
        return self.build_patch(source, target, actor, reason)

    def plan_reverdict(
        self,
        deliverable: Dict[str, Any],
        target: DeliverableStatus,
        actor: Actor,
    ) -> Optional[Dict[str, Any]]:
        """Patch for a verdict changed on existing feedback, or None to keep the status.

        Never raises: the feedback entry is updated either way, and the
        deliverable only follows when the move is a verdict edge.
        """
        source = current_status(deliverable)
        target = DeliverableStatus(target)
        if source == target:
            return None
        if target in TRANSITIONS[source] or target in REVERDICT.get(source, set()):
            return self.build_patch(source, target, actor)
        return None

    def build_patch(
        self,
        source: DeliverableStatus,
        target: DeliverableStatus,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        patch: Dict[str, Any] = {
            "status": target.value,
            "approvalStatus": derive_approval_status(target).value,
            "lastUpdated": SERVER_TIMESTAMP,
            "updatedBy": actor.id,
        }
        if target == S.APPROVED:
            patch.update(approvedAt=SERVER_TIMESTAMP, approvedBy=actor.name)
        elif target == S.REJECTED:
            patch.update(rejectedAt=SERVER_TIMESTAMP, rejectedBy=actor.name, rejectionReason=reason)
        elif target == S.IN_PROGRESS and source in REOPENABLE:
            patch.update(
                reopenedAt=SERVER_TIMESTAMP, reopenedBy=actor.name,
                approvedAt=None, approvedBy=None,
                rejectedAt=None, rejectedBy=None, rejectionReason=None,
            )
        elif target == S.IN_REVIEW and source == S.APPROVED:
            patch.update(approvedAt=None, approvedBy=None)
        return patch

    # -------------------------- writing --------------------------

    def commit(
        self,
        deliverable_id: str,
        patch: Optional[Dict[str, Any]],
        extra: Optional[Callable[[WriteBatch], T]] = None,
        local: Optional[OptimisticDocument] = None,
    ) -> Optional[T]:
        """Write ``patch`` and ``extra`` atomically; undo the local copy on failure."""
        if local is not None and patch:
            local.apply_local(patch)
        result = None
        try:
            with self.store.batch() as batch:
                if extra is not None:
                    result = extra(batch)
                if patch:
                    batch.set(deliverable_path(deliverable_id), patch, merge=True)
        except StoreUnavailable:
            if local is not None and patch:
                local.rollback()
            raise
        return result

    def record_transition(self, deliverable_id: str, source: DeliverableStatus,
                          target: DeliverableStatus, actor: Actor) -> None:
        deliverable_transitions_total.labels(target=target.value).inc()
        logger.info("deliverable_transition", deliverable_id=deliverable_id,
                    source=source.value, target=target.value, actor_id=actor.id)

    def emit(self, event: WorkflowEvent) -> None:
        dispatch(self.hooks, event)

    # -------------------------- actions --------------------------

    def _run(
        self,
        actor: Optional[Actor],
        deliverable_id: str,
        target: DeliverableStatus,
        operation: str,
        allowed: Callable[[Actor], bool],
        denied_message: str,
        sources: Optional[Set[DeliverableStatus]] = None,
        reason: Optional[str] = None,
        comment: Optional[str] = None,
        extra: Optional[Callable[[WriteBatch], Any]] = None,
        local: Optional[OptimisticDocument] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        actor = require_actor(actor, "change deliverable status")
        require(allowed(actor), operation, denied_message)

        deliverable = load_deliverable(self.store, deliverable_id)
        source = current_status(deliverable)
        if sources is not None and source not in sources and not (target == S.APPROVED and source == S.APPROVED):
            raise InvalidState(
                f"Cannot {operation.replace('_', ' ')} a deliverable that is '{source.value}'",
                current=source.value, target=target.value,
            )
        patch = self.plan(deliverable, target, actor, reason=reason)

        self.commit(deliverable_id, patch, extra=extra, local=local)
        self.record_transition(deliverable_id, source, target, actor)

        note = reason or comment
        message = f"Changed approval status to {target.value}"
        if note:
            message += f": {summarize(note)}"
        meta = {
            "previousStatus": source.value,
            "newStatus": target.value,
            "approvalStatus": patch["approvalStatus"],
        }
        if comment:
            meta["comment"] = comment
        if reason:
            meta["reason"] = reason
        meta.update(metadata or {})
        self.emit(WorkflowEvent(
            action_type=ActionType.APPROVAL,
            actor=actor,
            project_id=deliverable.get("projectId"),
            deliverable_id=deliverable_id,
            message=message,
            metadata=meta,
        ))
        return deliverable_id

    def start_work(self, actor: Optional[Actor], deliverable_id: str,
                   local: Optional[OptimisticDocument] = None) -> str:
        return self._run(actor, deliverable_id, S.IN_PROGRESS, "start_work", can_manage_work,
                         "Only team members can start work on a deliverable",
                         sources={S.NOT_STARTED}, local=local)

    def mark_delivered(self, actor: Optional[Actor], deliverable_id: str,
                       local: Optional[OptimisticDocument] = None) -> str:
        return self._run(actor, deliverable_id, S.DELIVERED, "mark_delivered", can_manage_work,
                         "Only team members can mark a deliverable as delivered",
                         sources={S.IN_PROGRESS}, local=local)

    def approve_deliverable(self, actor: Optional[Actor], deliverable_id: str,
                            comment: Optional[str] = None,
                            local: Optional[OptimisticDocument] = None) -> str:
        """Internal sign-off. Clients approve through feedback instead."""
        comment = (comment or "").strip() or None
        extra = None
        if comment:
            def extra(batch: WriteBatch) -> str:
                return batch.append_child(feedback_collection(deliverable_id), {
                    "deliverableId": deliverable_id,
                    "content": comment,
                    "author": actor.name,
                    "authorId": actor.id,
                    "createdAt": SERVER_TIMESTAMP,
                    "status": FeedbackStatus.APPROVED.value,
                    "tags": [],
                    "resolved": True,
                    "role": actor.mode_role,
                    "type": "approval",
                })
        return self._run(actor, deliverable_id, S.APPROVED, "approve_deliverable", can_sign_off,
                         "Only administrators can approve deliverables",
                         sources={S.DELIVERED}, comment=comment, extra=extra, local=local)

    def reject_deliverable(self, actor: Optional[Actor], deliverable_id: str, reason: str,
                           local: Optional[OptimisticDocument] = None) -> str:
        require_actor(actor, "reject deliverables")
        require(can_sign_off(actor), "reject_deliverable", "Only administrators can reject deliverables")
        reason = (reason or "").strip()
        if not reason:
            raise InvalidState("Please provide a reason for rejection")
        return self._run(actor, deliverable_id, S.REJECTED, "reject_deliverable", can_sign_off,
                         "Only administrators can reject deliverables",
                         sources={S.DELIVERED}, reason=reason, local=local)

    def request_changes(self, actor: Optional[Actor], deliverable_id: str,
                        comment: Optional[str] = None,
                        local: Optional[OptimisticDocument] = None) -> str:
        return self._run(actor, deliverable_id, S.IN_REVIEW, "request_changes", can_sign_off,
                         "Only administrators can request changes directly; clients use feedback",
                         sources={S.DELIVERED}, comment=(comment or "").strip() or None, local=local)

    def reopen_deliverable(self, actor: Optional[Actor], deliverable_id: str,
                           reason: Optional[str] = None,
                           local: Optional[OptimisticDocument] = None) -> str:
        actor = require_actor(actor, "reopen deliverables")
        require(can_sign_off(actor), "reopen_deliverable", "Only administrators can reopen deliverables")
        source = current_status(load_deliverable(self.store, deliverable_id))
        meta = {"override": True} if source == S.APPROVED else None
        return self._run(actor, deliverable_id, S.IN_PROGRESS, "reopen_deliverable", can_sign_off,
                         "Only administrators can reopen deliverables",
                         sources=REOPENABLE, reason=(reason or "").strip() or None,
                         local=local, metadata=meta)
