from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from portal.deps.auth import get_current_actor
from portal.deps.workflow import get_workflow
from portal.schemas.actor import Actor
from portal.schemas.revision import RevisionFile
from portal.services.workflow import Workflow

router = APIRouter(tags=["revisions"])


class RevisionIn(BaseModel):
    changes: str
    files: List[RevisionFile] = Field(default_factory=list)
    version: Optional[str] = None

class RevisionPatchIn(BaseModel):
    status: Optional[str] = None
    changes: Optional[str] = None
    files: Optional[List[RevisionFile]] = None
    rejection_reason: Optional[str] = None

class RejectIn(BaseModel):
    reason: Optional[str] = None

class CommentIn(BaseModel):
    content: str


def _revision_out(wf: Workflow, deliverable_id: str, revision_id: str) -> dict:
    for r in wf.revisions.list_revisions(deliverable_id):
        if r.id == revision_id:
            return r.model_dump(mode="json", by_alias=True)
    return {"id": revision_id}


@router.post("/api/deliverables/{deliverable_id}/revisions", status_code=201)
def api_add_revision(deliverable_id: str, body: RevisionIn,
                     wf: Workflow = Depends(get_workflow),
                     actor: Optional[Actor] = Depends(get_current_actor)):
    rid = wf.revisions.add_revision(actor, deliverable_id, body.changes, body.files, version=body.version)
    return _revision_out(wf, deliverable_id, rid)

@router.get("/api/deliverables/{deliverable_id}/revisions")
def api_list_revisions(deliverable_id: str, wf: Workflow = Depends(get_workflow)):
    return [r.model_dump(mode="json", by_alias=True) for r in wf.revisions.list_revisions(deliverable_id)]

@router.patch("/api/deliverables/{deliverable_id}/revisions/{revision_id}")
def api_update_revision(deliverable_id: str, revision_id: str, body: RevisionPatchIn,
                        wf: Workflow = Depends(get_workflow),
                        actor: Optional[Actor] = Depends(get_current_actor)):
    wf.revisions.update_revision(actor, deliverable_id, revision_id, status=body.status,
                                 changes=body.changes, files=body.files,
                                 rejection_reason=body.rejection_reason)
    return _revision_out(wf, deliverable_id, revision_id)

@router.post("/api/deliverables/{deliverable_id}/revisions/{revision_id}/approve")
def api_approve_revision(deliverable_id: str, revision_id: str,
                         wf: Workflow = Depends(get_workflow),
                         actor: Optional[Actor] = Depends(get_current_actor)):
    wf.revisions.approve_revision(actor, deliverable_id, revision_id)
    return _revision_out(wf, deliverable_id, revision_id)

@router.post("/api/deliverables/{deliverable_id}/revisions/{revision_id}/reject")
def api_reject_revision(deliverable_id: str, revision_id: str, body: RejectIn,
                        wf: Workflow = Depends(get_workflow),
                        actor: Optional[Actor] = Depends(get_current_actor)):
    wf.revisions.reject_revision(actor, deliverable_id, revision_id, body.reason)
    return _revision_out(wf, deliverable_id, revision_id)

@router.post("/api/deliverables/{deliverable_id}/revisions/{revision_id}/final")
def api_mark_final(deliverable_id: str, revision_id: str,
                   wf: Workflow = Depends(get_workflow),
                   actor: Optional[Actor] = Depends(get_current_actor)):
    wf.revisions.mark_final(actor, deliverable_id, revision_id)
    return _revision_out(wf, deliverable_id, revision_id)

@router.post("/api/deliverables/{deliverable_id}/revisions/{revision_id}/comments", status_code=201)
def api_add_comment(deliverable_id: str, revision_id: str, body: CommentIn,
                    wf: Workflow = Depends(get_workflow),
                    actor: Optional[Actor] = Depends(get_current_actor)):
    cid = wf.revisions.add_comment(actor, deliverable_id, revision_id, body.content)
    for c in wf.revisions.list_comments(deliverable_id, revision_id):
        if c.id == cid:
            return c.model_dump(mode="json", by_alias=True)
    return {"id": cid}

@router.get("/api/deliverables/{deliverable_id}/revisions/{revision_id}/comments")
def api_list_comments(deliverable_id: str, revision_id: str, wf: Workflow = Depends(get_workflow)):
    return [c.model_dump(mode="json", by_alias=True)
            for c in wf.revisions.list_comments(deliverable_id, revision_id)]
