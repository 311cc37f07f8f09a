from fastapi import Depends
from sqlalchemy.orm import Session

from portal.core.database import get_db
from portal.services.store import DocumentStore
from portal.services.workflow import Workflow


def get_store(db: Session = Depends(get_db)) -> DocumentStore:
    return DocumentStore(db)

def get_workflow(store: DocumentStore = Depends(get_store)) -> Workflow:
    return Workflow(store)
