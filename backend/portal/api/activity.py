from typing import Optional

from fastapi import APIRouter, Depends, Query

from portal.deps.workflow import get_store
from portal.services.activity import list_activity
from portal.services.store import DocumentStore

router = APIRouter(tags=["activity"])


@router.get("/api/activity")
def api_list_activity(projectId: Optional[str] = None,
                      deliverableId: Optional[str] = None,
                      limit: int = Query(default=50, ge=1, le=500),
                      store: DocumentStore = Depends(get_store)):
    entries = list_activity(store, project_id=projectId, deliverable_id=deliverableId, limit=limit)
    return [e.model_dump(mode="json", by_alias=True) for e in entries]
