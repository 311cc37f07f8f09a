# portal/services/workflow.py
from typing import Iterable, List, Optional

from portal.crud.approval import ApprovalStateMachine
from portal.crud.feedback import FeedbackEngine
from portal.crud.revision import RevisionLedger
from portal.services.activity import ActivityRecorder, Hook
from portal.services.notify import notify_status_change
from portal.services.store import DocumentStore


def default_hooks(store: DocumentStore) -> List[Hook]:
    return [ActivityRecorder(store), notify_status_change]


class Workflow:
    """The three engines wired to one store and one list of post-commit hooks."""

    def __init__(self, store: DocumentStore, hooks: Optional[Iterable[Hook]] = None):
        self.store = store
        self.hooks = list(hooks) if hooks is not None else default_hooks(store)
        self.approvals = ApprovalStateMachine(store, self.hooks)
        self.feedback = FeedbackEngine(self.approvals)
        self.revisions = RevisionLedger(store, self.hooks)
