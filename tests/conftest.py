import os
import tempfile

# point the app at throwaway storage before anything under portal is imported
_tmp = tempfile.mkdtemp(prefix="portal-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_tmp}/portal.db"
os.environ["ACTIVITY_DIR"] = os.path.join(_tmp, "activity")
os.environ["AUDIT_PACK_DIR"] = os.path.join(_tmp, "audit-packs")
os.environ["LOG_JSON"] = "0"
os.environ.pop("SLACK_WEBHOOK_URL", None)

import pytest

from portal.core.database import SessionLocal, reset_db
from portal.core.security import create_access_token
from portal.schemas.actor import Actor, RoleClaim
from portal.schemas.deliverable import DeliverableStatus, derive_approval_status
from portal.services.activity import ActivityRecorder
from portal.services.notify import set_webhook_url
from portal.services.store import SERVER_TIMESTAMP, DocumentStore, clear_listeners
from portal.services.workflow import Workflow


@pytest.fixture
def db():
    reset_db()
    session = SessionLocal()
    yield session
    session.close()
    clear_listeners()
    set_webhook_url("")


@pytest.fixture
def store(db):
    return DocumentStore(db)


@pytest.fixture
def workflow(store):
    # activity only; the webhook hook is exercised separately
    return Workflow(store, hooks=[ActivityRecorder(store)])


@pytest.fixture
def client_actor():
    return Actor(id="u-client", display_name="Casey Client", email="casey@acme.test",
                 role_claim=RoleClaim.VIEWER, is_client_mode=True)

@pytest.fixture
def admin():
    return Actor(id="u-admin", display_name="Ada Admin", role_claim=RoleClaim.ADMIN)

@pytest.fixture
def editor():
    return Actor(id="u-editor", display_name="Eddie Editor", role_claim=RoleClaim.EDITOR)

@pytest.fixture
def viewer():
    return Actor(id="u-viewer", display_name="Vic Viewer", role_claim=RoleClaim.VIEWER)


@pytest.fixture
def make_deliverable(store):
    """Seed a deliverable directly in the store, bypassing the workflow (no activity)."""
    def _make(status: str = "Delivered", project_id: str = "p-1", name: str = "Homepage hero") -> str:
        return store.append_child("deliverables", {
            "projectId": project_id,
            "name": name,
            "status": status,
            "approvalStatus": derive_approval_status(DeliverableStatus(status)).value,
            "createdAt": SERVER_TIMESTAMP,
            "lastUpdated": SERVER_TIMESTAMP,
        })
    return _make


@pytest.fixture
def delivered(make_deliverable):
    return make_deliverable("Delivered")


def bearer(actor: Actor) -> dict:
    token = create_access_token(actor.id, actor.role_claim.value, name=actor.display_name,
                                email=actor.email, client_mode=actor.is_client_mode)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    return bearer
