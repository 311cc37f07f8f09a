# portal/crud/deliverable.py
from typing import Any, Dict, List, Optional

from portal.core.errors import InvalidState, NotFound
from portal.core.permissions import can_manage_work, require, require_actor
from portal.schemas.actor import Actor
from portal.schemas.deliverable import ApprovalStatus, Deliverable, DeliverableStatus
from portal.schemas.feedback import Feedback
from portal.schemas.revision import Revision
from portal.services.store import SERVER_TIMESTAMP, DocumentStore

DELIVERABLES = "deliverables"


def deliverable_path(deliverable_id: str) -> str:
    return f"{DELIVERABLES}/{deliverable_id}"

def feedback_collection(deliverable_id: str) -> str:
    return f"{deliverable_path(deliverable_id)}/feedback"

def revisions_collection(deliverable_id: str) -> str:
    return f"{deliverable_path(deliverable_id)}/revisions"

def comments_collection(deliverable_id: str, revision_id: str) -> str:
    return f"{revisions_collection(deliverable_id)}/{revision_id}/comments"


def load_deliverable(store: DocumentStore, deliverable_id: str) -> Dict[str, Any]:
    doc = store.get(deliverable_path(deliverable_id))
    if not doc:
        raise NotFound(f"Deliverable {deliverable_id} not found")
    return doc


def create_deliverable(
    store: DocumentStore,
    actor: Optional[Actor],
    project_id: str,
    name: str,
    due_date: Optional[str] = None,
    notes: Optional[str] = None,
) -> str:
    """Create a deliverable in ``Not Started``; returns its id."""
    actor = require_actor(actor, "create deliverables")
    require(can_manage_work(actor), "create_deliverable", "Only team members can create deliverables")

    name = (name or "").strip()
    project_id = (project_id or "").strip()
    if not name:
        raise InvalidState("Deliverable name is required")
    if not project_id:
        raise InvalidState("Project ID is required")

    return store.append_child(DELIVERABLES, {
        "projectId": project_id,
        "name": name,
        "dueDate": due_date,
        "notes": notes,
        "status": DeliverableStatus.NOT_STARTED.value,
        "approvalStatus": ApprovalStatus.PENDING.value,
        "createdAt": SERVER_TIMESTAMP,
        "createdBy": actor.name,
        "lastUpdated": SERVER_TIMESTAMP,
    })


def get_deliverable(store: DocumentStore, deliverable_id: str, expand: bool = True) -> Deliverable:
    doc = load_deliverable(store, deliverable_id)
    d = Deliverable.from_document(doc)
    if expand:
        d.feedback = [Feedback.from_document(f) for f in store.list_children(feedback_collection(deliverable_id))]
        d.revisions = [Revision.from_document(r)
                       for r in store.list_children(revisions_collection(deliverable_id), descending=True)]
    return d


def list_deliverables(store: DocumentStore, project_id: str) -> List[Deliverable]:
    docs = store.list_children(DELIVERABLES, where={"projectId": project_id})
    return [Deliverable.from_document(d) for d in docs]
