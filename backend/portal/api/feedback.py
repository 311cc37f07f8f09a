from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from portal.deps.auth import get_current_actor
from portal.deps.workflow import get_workflow
from portal.schemas.actor import Actor
from portal.services.workflow import Workflow

router = APIRouter(tags=["feedback"])


class FeedbackIn(BaseModel):
    content: str
    status: str = "info"
    tags: List[str] = []

class FeedbackStatusIn(BaseModel):
    status: str
    override: bool = False


def _feedback_out(wf: Workflow, deliverable_id: str, feedback_id: str) -> dict:
    for f in wf.feedback.list_feedback(deliverable_id):
        if f.id == feedback_id:
            return f.model_dump(mode="json", by_alias=True)
    return {"id": feedback_id}


@router.post("/api/deliverables/{deliverable_id}/feedback", status_code=201)
def api_submit_feedback(deliverable_id: str, body: FeedbackIn,
                        wf: Workflow = Depends(get_workflow),
                        actor: Optional[Actor] = Depends(get_current_actor)):
    fid = wf.feedback.submit_feedback(actor, deliverable_id, body.content, body.status, body.tags)
    return _feedback_out(wf, deliverable_id, fid)

@router.get("/api/deliverables/{deliverable_id}/feedback")
def api_list_feedback(deliverable_id: str, wf: Workflow = Depends(get_workflow)):
    return [f.model_dump(mode="json", by_alias=True) for f in wf.feedback.list_feedback(deliverable_id)]

@router.post("/api/deliverables/{deliverable_id}/feedback/{feedback_id}/status")
def api_update_feedback_status(deliverable_id: str, feedback_id: str, body: FeedbackStatusIn,
                               wf: Workflow = Depends(get_workflow),
                               actor: Optional[Actor] = Depends(get_current_actor)):
    wf.feedback.update_feedback_status(actor, deliverable_id, feedback_id, body.status, override=body.override)
    return _feedback_out(wf, deliverable_id, feedback_id)

@router.post("/api/deliverables/{deliverable_id}/feedback/{feedback_id}/resolve")
def api_resolve_feedback(deliverable_id: str, feedback_id: str,
                         wf: Workflow = Depends(get_workflow),
                         actor: Optional[Actor] = Depends(get_current_actor)):
    wf.feedback.resolve_feedback(actor, deliverable_id, feedback_id)
    return _feedback_out(wf, deliverable_id, feedback_id)
