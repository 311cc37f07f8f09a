import pytest

from portal.core.errors import InvalidState, NotFound, PermissionDenied
from portal.crud.revision import extract_mentions
from portal.services.activity import list_activity

FILES = [{"name": "hero-v1.png", "url": "https://cdn.test/hero-v1.png", "size": 2048, "type": "image/png"}]


@pytest.fixture
def revision(workflow, editor, delivered):
    return workflow.revisions.add_revision(editor, delivered, "First cut of the hero", FILES)


def _rev(store, did, rid):
    return store.get(f"deliverables/{did}/revisions/{rid}")


def test_add_revision_defaults_version(workflow, store, editor, delivered, revision):
    r = _rev(store, delivered, revision)
    assert r["version"] == "v1"
    assert r["status"] == "pending"
    assert r["files"][0]["name"] == "hero-v1.png"

    second = workflow.revisions.add_revision(editor, delivered, "Brighter palette", FILES)
    assert _rev(store, delivered, second)["version"] == "v2"
    assert [r.id for r in workflow.revisions.list_revisions(delivered)] == [second, revision]

    log = list_activity(store, deliverable_id=delivered)
    assert log[0].action_type.value == "revision"
    assert log[0].message == "Added revision v2: Brighter palette"


def test_add_revision_validation(workflow, editor, client_actor, delivered):
    with pytest.raises(InvalidState):
        workflow.revisions.add_revision(editor, delivered, "", FILES)
    with pytest.raises(InvalidState):
        workflow.revisions.add_revision(editor, delivered, "No files", [])
    with pytest.raises(InvalidState):
        workflow.revisions.add_revision(editor, delivered, "Bad file", [{"name": "", "url": "x"}])
    with pytest.raises(PermissionDenied):
        workflow.revisions.add_revision(client_actor, delivered, "From client", FILES)
    with pytest.raises(NotFound):
        workflow.revisions.add_revision(editor, "missing", "Orphan", FILES)


def test_rejected_revision_cannot_be_finalized(workflow, store, client_actor, delivered, revision):
    workflow.revisions.reject_revision(client_actor, delivered, revision, "missing asset")
    r = _rev(store, delivered, revision)
    assert r["status"] == "rejected"
    assert r["rejectionReason"] == "missing asset"

    with pytest.raises(InvalidState):
        workflow.revisions.mark_final(client_actor, delivered, revision)
    assert _rev(store, delivered, revision)["status"] == "rejected"


def test_rejection_needs_reason(workflow, store, client_actor, delivered, revision):
    with pytest.raises(InvalidState):
        workflow.revisions.reject_revision(client_actor, delivered, revision, "")
    assert _rev(store, delivered, revision)["status"] == "pending"


def test_approve_then_final(workflow, store, client_actor, editor, delivered, revision):
    workflow.revisions.approve_revision(client_actor, delivered, revision)
    with pytest.raises(InvalidState):
        workflow.revisions.approve_revision(client_actor, delivered, revision)
    with pytest.raises(InvalidState):
        workflow.revisions.reject_revision(client_actor, delivered, revision, "changed my mind")

    workflow.revisions.mark_final(editor, delivered, revision)
    r = _rev(store, delivered, revision)
    assert r["status"] == "final"
    assert r["markedFinalBy"] == "Eddie Editor"

    with pytest.raises(InvalidState):
        workflow.revisions.update_revision(editor, delivered, revision, changes="sneaky edit")

    messages = [e.message for e in list_activity(store, deliverable_id=delivered)]
    assert messages[:2] == ["Marked revision v1 as final", "Approved revision v1"]


def test_edit_pending_revision(workflow, store, editor, client_actor, delivered, revision):
    workflow.revisions.update_revision(editor, delivered, revision, changes="Recut with new music")
    assert _rev(store, delivered, revision)["changes"] == "Recut with new music"

    with pytest.raises(PermissionDenied):
        workflow.revisions.update_revision(client_actor, delivered, revision, changes="client edit")
    with pytest.raises(InvalidState):
        workflow.revisions.update_revision(editor, delivered, revision)
    with pytest.raises(InvalidState):
        workflow.revisions.update_revision(editor, delivered, revision, status="archived")


def test_viewer_cannot_review(workflow, viewer, delivered, revision):
    with pytest.raises(PermissionDenied):
        workflow.revisions.approve_revision(viewer, delivered, revision)


def test_comments_capture_mentions(workflow, store, viewer, delivered, revision):
    cid = workflow.revisions.add_comment(viewer, delivered, revision, "@alice please check with @bob_2 and @alice")
    [c] = workflow.revisions.list_comments(delivered, revision)
    assert c.id == cid
    assert c.mentioned_users == ["alice", "bob_2"]
    assert c.author == "Vic Viewer"

    latest = list_activity(store, deliverable_id=delivered, limit=1)[0]
    assert latest.action_type.value == "revision"
    assert latest.metadata["commentId"] == cid

    with pytest.raises(InvalidState):
        workflow.revisions.add_comment(viewer, delivered, revision, "   ")
    with pytest.raises(NotFound):
        workflow.revisions.add_comment(viewer, delivered, "nope", "hello")


def test_extract_mentions():
    assert extract_mentions("no mentions here") == []
    assert extract_mentions("email me@example.com") == []
    assert extract_mentions("@dana see me@example.com, cc @lee") == ["dana", "lee"]
    assert extract_mentions("(@dana) and @dana again") == ["dana"]
