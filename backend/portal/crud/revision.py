# portal/crud/revision.py
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Union

import structlog
from pydantic import ValidationError

from portal.core.errors import InvalidState, NotFound
from portal.core.permissions import can_manage_work, can_review_revision, require, require_actor
from portal.crud.deliverable import comments_collection, load_deliverable, revisions_collection
from portal.metrics import revision_transitions_total
from portal.schemas.activity import ActionType
from portal.schemas.actor import Actor
from portal.schemas.revision import Revision, RevisionComment, RevisionFile, RevisionStatus
from portal.services.activity import ActivityRecorder, Hook, WorkflowEvent, dispatch, summarize
from portal.services.store import SERVER_TIMESTAMP, DocumentStore

logger = structlog.get_logger(__name__)

R = RevisionStatus

# rejected and final are terminal
REVISION_TRANSITIONS: Dict[RevisionStatus, Set[RevisionStatus]] = {
    R.PENDING: {R.APPROVED, R.REJECTED},
    R.APPROVED: {R.FINAL},
    R.REJECTED: set(),
    R.FINAL: set(),
}

# an @ glued to a preceding word is an email address, not a mention
MENTION_RE = re.compile(r"(?<!\w)@(\w+)")

FileLike = Union[RevisionFile, Dict[str, Any]]


def extract_mentions(text: str) -> List[str]:
    out: List[str] = []
    for name in MENTION_RE.findall(text or ""):
        if name not in out:
            out.append(name)
    return out


def _validate_files(files: Optional[Iterable[FileLike]]) -> List[Dict[str, Any]]:
    try:
        parsed = [RevisionFile.model_validate(f) for f in files or []]
    except ValidationError as e:
        raise InvalidState(f"Invalid revision file: {e.errors()[0]['msg']}")
    if not parsed:
        raise InvalidState("Please attach at least one file to the revision")
    return [f.model_dump() for f in parsed]


class RevisionLedger:
    """Versioned revisions of a deliverable and their comment threads."""

    def __init__(self, store: DocumentStore, hooks: Optional[Iterable[Hook]] = None):
        self.store = store
        self.hooks = list(hooks) if hooks is not None else [ActivityRecorder(store)]

    def _revision_path(self, deliverable_id: str, revision_id: str) -> str:
        return f"{revisions_collection(deliverable_id)}/{revision_id}"

    def _load_revision(self, deliverable_id: str, revision_id: str) -> Dict[str, Any]:
        doc = self.store.get(self._revision_path(deliverable_id, revision_id))
        if not doc:
            raise NotFound(f"Revision {revision_id} not found on deliverable {deliverable_id}")
        return doc

    def _emit(self, actor: Actor, deliverable: Dict[str, Any], message: str, metadata: Dict[str, Any]) -> None:
        dispatch(self.hooks, WorkflowEvent(
            action_type=ActionType.REVISION,
            actor=actor,
            project_id=deliverable.get("projectId"),
            deliverable_id=deliverable["id"],
            message=message,
            metadata=metadata,
        ))

    def add_revision(
        self,
        actor: Optional[Actor],
        deliverable_id: str,
        changes: str,
        files: Iterable[FileLike],
        version: Optional[str] = None,
    ) -> str:
        actor = require_actor(actor, "submit revisions")
        require(can_manage_work(actor), "add_revision", "Only team members can submit revisions")
        changes = (changes or "").strip()
        if not changes:
            raise InvalidState("Please describe the changes in this revision")
        file_docs = _validate_files(files)

        deliverable = load_deliverable(self.store, deliverable_id)
        version = (version or "").strip()
        if not version:
            existing = self.store.list_children(revisions_collection(deliverable_id))
            version = f"v{len(existing) + 1}"

        revision_id = self.store.append_child(revisions_collection(deliverable_id), {
            "deliverableId": deliverable_id,
            "version": version,
            "status": R.PENDING.value,
            "changes": changes,
            "files": file_docs,
            "createdAt": SERVER_TIMESTAMP,
            "createdBy": actor.name,
            "createdById": actor.id,
        })
        revision_transitions_total.labels(status=R.PENDING.value).inc()
        logger.info("revision_added", deliverable_id=deliverable_id,
                    revision_id=revision_id, version=version, actor_id=actor.id)

        self._emit(actor, deliverable, f"Added revision {version}: {summarize(changes)}", {
            "revisionId": revision_id,
            "version": version,
            "status": R.PENDING.value,
            "fileCount": len(file_docs),
        })
        return revision_id

    def update_revision(
        self,
        actor: Optional[Actor],
        deliverable_id: str,
        revision_id: str,
        *,
        status: Union[str, RevisionStatus, None] = None,
        changes: Optional[str] = None,
        files: Optional[Iterable[FileLike]] = None,
        rejection_reason: Optional[str] = None,
    ) -> str:
        """Edit a pending revision and/or move it along pending -> approved -> final."""
        actor = require_actor(actor, "update revisions")
        require(can_review_revision(actor), "update_revision",
                "Only team members or clients can review revisions")

        editing = changes is not None or files is not None
        if editing:
            require(can_manage_work(actor), "update_revision", "Only team members can edit revision content")
        target = None
        if status is not None:
            try:
                target = RevisionStatus(status)
            except ValueError:
                raise InvalidState(f"Unknown revision status '{status}'")
        if target is None and not editing:
            raise InvalidState("Nothing to update")

        deliverable = load_deliverable(self.store, deliverable_id)
        revision = self._load_revision(deliverable_id, revision_id)
        current = RevisionStatus(revision.get("status") or R.PENDING.value)
        version = revision.get("version", revision_id)

        patch: Dict[str, Any] = {"updatedAt": SERVER_TIMESTAMP, "updatedBy": actor.name}
        if editing:
            if current != R.PENDING:
                raise InvalidState(f"Only pending revisions can be edited; {version} is {current.value}")
            if changes is not None:
                changes = changes.strip()
                if not changes:
                    raise InvalidState("Please describe the changes in this revision")
                patch["changes"] = changes
            if files is not None:
                patch["files"] = _validate_files(files)

        reason = None
        if target is not None:
            if target == current:
                raise InvalidState(f"Revision {version} is already {current.value}")
            if target not in REVISION_TRANSITIONS[current]:
                if target == R.FINAL:
                    raise InvalidState(f"Only approved revisions can be marked final; {version} is {current.value}")
                raise InvalidState(f"Cannot move revision {version} from '{current.value}' to '{target.value}'")
            if target == R.APPROVED:
                patch.update(status=target.value, approvedAt=SERVER_TIMESTAMP, approvedBy=actor.name)
            elif target == R.REJECTED:
                reason = (rejection_reason or "").strip()
                if not reason:
                    raise InvalidState("Please provide a reason for rejection")
                patch.update(status=target.value, rejectedAt=SERVER_TIMESTAMP,
                             rejectedBy=actor.name, rejectionReason=reason)
            else:
                patch.update(status=target.value, markedFinalAt=SERVER_TIMESTAMP, markedFinalBy=actor.name)

        self.store.set(self._revision_path(deliverable_id, revision_id), patch, merge=True)

        metadata: Dict[str, Any] = {"revisionId": revision_id, "version": version}
        if target is not None:
            revision_transitions_total.labels(status=target.value).inc()
            logger.info("revision_transition", deliverable_id=deliverable_id, revision_id=revision_id,
                        source=current.value, target=target.value, actor_id=actor.id)
            metadata.update(previousStatus=current.value, status=target.value)
            if target == R.APPROVED:
                message = f"Approved revision {version}"
            elif target == R.REJECTED:
                message = f"Rejected revision {version}: {summarize(reason)}"
                metadata["reason"] = reason
            else:
                message = f"Marked revision {version} as final"
        else:
            message = f"Updated revision {version}"
            if changes:
                message += f": {summarize(changes)}"
        if editing:
            metadata["edited"] = sorted(k for k in ("changes", "files") if k in patch)

        self._emit(actor, deliverable, message, metadata)
        return revision_id

    def approve_revision(self, actor: Optional[Actor], deliverable_id: str, revision_id: str) -> str:
        return self.update_revision(actor, deliverable_id, revision_id, status=R.APPROVED)

    def reject_revision(self, actor: Optional[Actor], deliverable_id: str, revision_id: str, reason: str) -> str:
        return self.update_revision(actor, deliverable_id, revision_id, status=R.REJECTED, rejection_reason=reason)

    def mark_final(self, actor: Optional[Actor], deliverable_id: str, revision_id: str) -> str:
        return self.update_revision(actor, deliverable_id, revision_id, status=R.FINAL)

    def add_comment(self, actor: Optional[Actor], deliverable_id: str, revision_id: str, content: str) -> str:
        actor = require_actor(actor, "comment on revisions")
        text = (content or "").strip()
        if not text:
            raise InvalidState("Comment cannot be empty")

        deliverable = load_deliverable(self.store, deliverable_id)
        revision = self._load_revision(deliverable_id, revision_id)
        mentions = extract_mentions(text)

        comment_id = self.store.append_child(comments_collection(deliverable_id, revision_id), {
            "revisionId": revision_id,
            "authorId": actor.id,
            "author": actor.name,
            "content": text,
            "mentionedUsers": mentions,
            "createdAt": SERVER_TIMESTAMP,
        })
        version = revision.get("version", revision_id)
        self._emit(actor, deliverable, f"Commented on revision {version}: {summarize(text)}", {
            "revisionId": revision_id,
            "commentId": comment_id,
            "mentionedUsers": mentions,
        })
        return comment_id

    def list_revisions(self, deliverable_id: str) -> List[Revision]:
        """Newest first."""
        load_deliverable(self.store, deliverable_id)
        docs = self.store.list_children(revisions_collection(deliverable_id), descending=True)
        return [Revision.from_document(d) for d in docs]

    def list_comments(self, deliverable_id: str, revision_id: str) -> List[RevisionComment]:
        self._load_revision(deliverable_id, revision_id)
        docs = self.store.list_children(comments_collection(deliverable_id, revision_id))
        return [RevisionComment.from_document(d) for d in docs]

    def subscribe_revisions(self, deliverable_id: str,
                            on_change: Callable[[List[Revision]], None]) -> Callable[[], None]:
        return self.store.subscribe_collection(
            revisions_collection(deliverable_id),
            lambda docs: on_change([Revision.from_document(d) for d in docs]),
            descending=True,
        )
