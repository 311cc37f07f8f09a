from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from portal.crud.deliverable import create_deliverable, get_deliverable, list_deliverables
from portal.deps.auth import get_current_actor
from portal.deps.workflow import get_store, get_workflow
from portal.schemas.actor import Actor
from portal.services.store import DocumentStore
from portal.services.workflow import Workflow
from portal.utils.report import generate_audit_pack, write_pack

router = APIRouter(tags=["deliverables"])


class DeliverableIn(BaseModel):
    name: str = Field(min_length=1)
    due_date: Optional[str] = None
    notes: Optional[str] = None

class CommentIn(BaseModel):
    comment: Optional[str] = None

class ReasonIn(BaseModel):
    reason: Optional[str] = None


def _out(store: DocumentStore, deliverable_id: str) -> dict:
    return get_deliverable(store, deliverable_id, expand=False).model_dump(
        mode="json", by_alias=True, exclude={"feedback", "revisions"})


@router.post("/api/projects/{project_id}/deliverables", status_code=201)
def api_create_deliverable(project_id: str, body: DeliverableIn,
                           store: DocumentStore = Depends(get_store),
                           actor: Optional[Actor] = Depends(get_current_actor)):
    did = create_deliverable(store, actor, project_id, body.name, body.due_date, body.notes)
    return _out(store, did)

@router.get("/api/projects/{project_id}/deliverables")
def api_list_deliverables(project_id: str, store: DocumentStore = Depends(get_store)):
    return [d.model_dump(mode="json", by_alias=True, exclude={"feedback", "revisions"})
            for d in list_deliverables(store, project_id)]

@router.get("/api/deliverables/{deliverable_id}")
def api_get_deliverable(deliverable_id: str, expand: bool = True,
                        store: DocumentStore = Depends(get_store)):
    return get_deliverable(store, deliverable_id, expand=expand).model_dump(mode="json", by_alias=True)


# -------------------------- lifecycle --------------------------

@router.post("/api/deliverables/{deliverable_id}/start")
def api_start(deliverable_id: str, wf: Workflow = Depends(get_workflow),
              actor: Optional[Actor] = Depends(get_current_actor)):
    wf.approvals.start_work(actor, deliverable_id)
    return _out(wf.store, deliverable_id)

@router.post("/api/deliverables/{deliverable_id}/deliver")
def api_deliver(deliverable_id: str, wf: Workflow = Depends(get_workflow),
                actor: Optional[Actor] = Depends(get_current_actor)):
    wf.approvals.mark_delivered(actor, deliverable_id)
    return _out(wf.store, deliverable_id)

@router.post("/api/deliverables/{deliverable_id}/approve")
def api_approve(deliverable_id: str, body: Optional[CommentIn] = None,
                wf: Workflow = Depends(get_workflow),
                actor: Optional[Actor] = Depends(get_current_actor)):
    wf.approvals.approve_deliverable(actor, deliverable_id, comment=body.comment if body else None)
    return _out(wf.store, deliverable_id)

@router.post("/api/deliverables/{deliverable_id}/reject")
def api_reject(deliverable_id: str, body: ReasonIn,
               wf: Workflow = Depends(get_workflow),
               actor: Optional[Actor] = Depends(get_current_actor)):
    wf.approvals.reject_deliverable(actor, deliverable_id, body.reason)
    return _out(wf.store, deliverable_id)

@router.post("/api/deliverables/{deliverable_id}/request-changes")
def api_request_changes(deliverable_id: str, body: Optional[CommentIn] = None,
                        wf: Workflow = Depends(get_workflow),
                        actor: Optional[Actor] = Depends(get_current_actor)):
    wf.approvals.request_changes(actor, deliverable_id, comment=body.comment if body else None)
    return _out(wf.store, deliverable_id)

@router.post("/api/deliverables/{deliverable_id}/reopen")
def api_reopen(deliverable_id: str, body: Optional[ReasonIn] = None,
               wf: Workflow = Depends(get_workflow),
               actor: Optional[Actor] = Depends(get_current_actor)):
    wf.approvals.reopen_deliverable(actor, deliverable_id, reason=body.reason if body else None)
    return _out(wf.store, deliverable_id)


# -------------------------- export --------------------------

@router.get("/api/deliverables/{deliverable_id}/audit-pack")
def api_audit_pack(deliverable_id: str, save: bool = False,
                   store: DocumentStore = Depends(get_store)):
    pack = generate_audit_pack(store, deliverable_id)
    if save:
        fp = write_pack(deliverable_id, pack)
        return {"saved": True, "path": str(fp), "pack": pack}
    return pack
