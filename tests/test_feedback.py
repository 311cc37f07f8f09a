from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from portal.core.errors import (
    AlreadyApproved,
    InvalidState,
    NotFound,
    PermissionDenied,
    StoreUnavailable,
    Unauthenticated,
)
from portal.crud.approval import ApprovalStateMachine
from portal.crud.feedback import FeedbackEngine
from portal.services.activity import ActivityRecorder, list_activity
from portal.services.optimistic import OptimisticDocument


def _feedback(workflow, did):
    return workflow.feedback.list_feedback(did)


def test_client_approval_moves_deliverable_and_logs_once(workflow, store, client_actor, delivered):
    fid = workflow.feedback.submit_feedback(client_actor, delivered, "Looks great", status="approved")

    d = store.get(f"deliverables/{delivered}")
    assert d["status"] == "Approved"
    assert d["approvalStatus"] == "Approved"
    assert d["approvedBy"] == "Casey Client"

    entries = _feedback(workflow, delivered)
    assert [f.id for f in entries] == [fid]
    assert entries[0].status.value == "approved"
    assert entries[0].role.value == "client"
    assert entries[0].resolved is False

    log = list_activity(store, deliverable_id=delivered)
    assert len(log) == 1
    assert log[0].action_type.value == "approval"
    assert log[0].actor_role == "client"
    assert log[0].metadata["newStatus"] == "Approved"


def test_non_client_cannot_submit_verdict(workflow, store, admin, delivered):
    with pytest.raises(PermissionDenied):
        workflow.feedback.submit_feedback(admin, delivered, "Ship it", status="approved")

    assert store.get(f"deliverables/{delivered}")["status"] == "Delivered"
    assert _feedback(workflow, delivered) == []
    assert list_activity(store, deliverable_id=delivered) == []


def test_approving_twice_is_rejected(workflow, store, client_actor, make_deliverable):
    did = make_deliverable("Approved")
    with pytest.raises(AlreadyApproved):
        workflow.feedback.submit_feedback(client_actor, did, "Still good", status="approved")
    assert _feedback(workflow, did) == []
    assert list_activity(store, deliverable_id=did) == []


def test_change_request_puts_deliverable_in_review(workflow, store, client_actor, delivered):
    workflow.feedback.submit_feedback(client_actor, delivered, "Logo is too small", status="change-requested")
    d = store.get(f"deliverables/{delivered}")
    assert d["status"] == "In Review"
    assert d["approvalStatus"] == "Changes Requested"


def test_repeat_change_request_keeps_status_and_logs(workflow, store, client_actor, make_deliverable):
    did = make_deliverable("In Review")
    workflow.feedback.submit_feedback(client_actor, did, "Also fix the footer", status="change-requested")

    assert store.get(f"deliverables/{did}")["status"] == "In Review"
    assert len(_feedback(workflow, did)) == 1
    log = list_activity(store, deliverable_id=did)
    assert len(log) == 1
    assert log[0].action_type.value == "approval"


def test_verdict_needs_delivered_work(workflow, store, client_actor, make_deliverable):
    did = make_deliverable("In Progress")
    with pytest.raises(InvalidState):
        workflow.feedback.submit_feedback(client_actor, did, "Approve", status="approved")
    assert store.get(f"deliverables/{did}")["status"] == "In Progress"
    assert _feedback(workflow, did) == []


def test_info_feedback_from_anyone_authenticated(workflow, store, viewer, delivered):
    long_text = "x" * 150
    workflow.feedback.submit_feedback(viewer, delivered, long_text, tags=["copy", "copy", " ", "layout"])

    assert store.get(f"deliverables/{delivered}")["status"] == "Delivered"
    [entry] = _feedback(workflow, delivered)
    assert entry.role.value == "admin"
    assert entry.tags == ["copy", "layout"]

    [log] = list_activity(store, deliverable_id=delivered)
    assert log.action_type.value == "feedback"
    assert log.message == "Added feedback: " + "x" * 100 + "..."


@pytest.mark.parametrize("content", ["", "   ", None])
def test_empty_feedback_rejected(workflow, client_actor, delivered, content):
    with pytest.raises(InvalidState):
        workflow.feedback.submit_feedback(client_actor, delivered, content)


def test_anonymous_and_unknown_inputs(workflow, client_actor, delivered):
    with pytest.raises(Unauthenticated):
        workflow.feedback.submit_feedback(None, delivered, "hello")
    with pytest.raises(InvalidState):
        workflow.feedback.submit_feedback(client_actor, delivered, "hello", status="maybe")
    with pytest.raises(NotFound):
        workflow.feedback.submit_feedback(client_actor, "missing", "hello")


def test_verdict_and_status_written_in_one_commit(workflow, store, client_actor, delivered):
    with patch.object(store, "commit", wraps=store.commit) as spy:
        fid = workflow.feedback.submit_feedback(client_actor, delivered, "Approved", status="approved")

    # first commit: feedback + deliverable; second: the activity entry
    assert spy.call_count == 2
    paths = {op[0] for op in spy.call_args_list[0].args[0].ops}
    assert paths == {f"deliverables/{delivered}", f"deliverables/{delivered}/feedback/{fid}"}


def test_store_failure_rolls_back_local_copy(workflow, store, db, client_actor, delivered):
    local = OptimisticDocument(store.get(f"deliverables/{delivered}"))

    def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    with patch.object(db, "commit", side_effect=broken_commit):
        with pytest.raises(StoreUnavailable):
            workflow.feedback.submit_feedback(client_actor, delivered, "ok", status="approved", local=local)

    assert local.current["status"] == "Delivered"
    assert not local.has_pending
    assert store.get(f"deliverables/{delivered}")["status"] == "Delivered"
    assert _feedback(workflow, delivered) == []


def test_failing_hook_does_not_undo_mutation(store, client_actor, delivered):
    def boom(event):
        raise RuntimeError("hook down")

    engine = FeedbackEngine(ApprovalStateMachine(store, hooks=[boom, ActivityRecorder(store)]))
    engine.submit_feedback(client_actor, delivered, "Great", status="approved")

    assert store.get(f"deliverables/{delivered}")["status"] == "Approved"
    assert len(list_activity(store, deliverable_id=delivered)) == 1


# -------------------------- status updates --------------------------

def test_client_can_change_feedback_verdict(workflow, store, client_actor, delivered):
    fid = workflow.feedback.submit_feedback(client_actor, delivered, "Reviewing")
    workflow.feedback.update_feedback_status(client_actor, delivered, fid, "change-requested")

    assert store.get(f"deliverables/{delivered}")["status"] == "In Review"
    fb = store.get(f"deliverables/{delivered}/feedback/{fid}")
    assert fb["status"] == "change-requested"
    assert fb["override"] is False
    assert fb["updatedById"] == "u-client"


def test_admin_needs_override_to_change_status(workflow, store, client_actor, admin, editor, delivered):
    fid = workflow.feedback.submit_feedback(client_actor, delivered, "Reviewing")

    with pytest.raises(PermissionDenied):
        workflow.feedback.update_feedback_status(admin, delivered, fid, "approved")
    with pytest.raises(PermissionDenied):
        workflow.feedback.update_feedback_status(editor, delivered, fid, "approved", override=True)

    workflow.feedback.update_feedback_status(admin, delivered, fid, "approved", override=True)
    assert store.get(f"deliverables/{delivered}")["status"] == "Approved"
    assert store.get(f"deliverables/{delivered}/feedback/{fid}")["override"] is True

    latest = list_activity(store, deliverable_id=delivered, limit=1)[0]
    assert latest.message.endswith("(override)")
    assert latest.metadata["override"] is True


def test_admin_override_approves_change_request(workflow, store, client_actor, admin, delivered):
    fid = workflow.feedback.submit_feedback(client_actor, delivered, "Trim the intro", status="change-requested")
    assert store.get(f"deliverables/{delivered}")["status"] == "In Review"

    workflow.feedback.update_feedback_status(admin, delivered, fid, "approved", override=True)

    d = store.get(f"deliverables/{delivered}")
    assert d["status"] == "Approved"
    assert d["approvalStatus"] == "Approved"
    assert d["approvedBy"] == "Ada Admin"
    fb = store.get(f"deliverables/{delivered}/feedback/{fid}")
    assert fb["status"] == "approved"
    assert fb["override"] is True

    latest = list_activity(store, deliverable_id=delivered, limit=1)[0]
    assert latest.metadata["previousStatus"] == "In Review"
    assert latest.metadata["newStatus"] == "Approved"


def test_client_turns_change_request_into_approval_and_back(workflow, store, client_actor, delivered):
    fid = workflow.feedback.submit_feedback(client_actor, delivered, "Trim the intro", status="change-requested")

    workflow.feedback.update_feedback_status(client_actor, delivered, fid, "approved")
    d = store.get(f"deliverables/{delivered}")
    assert d["status"] == "Approved"
    assert d["approvedBy"] == "Casey Client"

    workflow.feedback.update_feedback_status(client_actor, delivered, fid, "change-requested")
    d = store.get(f"deliverables/{delivered}")
    assert d["status"] == "In Review"
    assert d["approvalStatus"] == "Changes Requested"
    assert d["approvedBy"] is None


def test_override_on_approved_feedback_keeps_status(workflow, store, client_actor, admin, delivered):
    fid = workflow.feedback.submit_feedback(client_actor, delivered, "Ship it", status="approved")
    before = store.get(f"deliverables/{delivered}")

    workflow.feedback.update_feedback_status(admin, delivered, fid, "approved", override=True)

    d = store.get(f"deliverables/{delivered}")
    assert d["status"] == "Approved"
    assert d["approvedBy"] == before["approvedBy"]
    fb = store.get(f"deliverables/{delivered}/feedback/{fid}")
    assert fb["override"] is True
    assert fb["updatedBy"] == "Ada Admin"

    latest = list_activity(store, deliverable_id=delivered, limit=1)[0]
    assert latest.metadata["previousStatus"] == latest.metadata["newStatus"] == "Approved"


def test_verdict_change_outside_review_only_touches_entry(workflow, store, client_actor, make_deliverable):
    did = make_deliverable("In Progress")
    fid = workflow.feedback.submit_feedback(client_actor, did, "Early thoughts")

    workflow.feedback.update_feedback_status(client_actor, did, fid, "approved")

    assert store.get(f"deliverables/{did}")["status"] == "In Progress"
    assert store.get(f"deliverables/{did}/feedback/{fid}")["status"] == "approved"


# -------------------------- resolve --------------------------

def test_resolve_once(workflow, store, client_actor, admin, delivered):
    fid = workflow.feedback.submit_feedback(client_actor, delivered, "Fix the kerning")

    with pytest.raises(PermissionDenied):
        workflow.feedback.resolve_feedback(client_actor, delivered, fid)

    workflow.feedback.resolve_feedback(admin, delivered, fid)
    fb = store.get(f"deliverables/{delivered}/feedback/{fid}")
    assert fb["resolved"] is True
    assert fb["resolvedBy"] == "Ada Admin"
    assert fb["resolvedAt"]

    with pytest.raises(InvalidState):
        workflow.feedback.resolve_feedback(admin, delivered, fid)
    with pytest.raises(InvalidState):
        workflow.feedback.update_feedback_status(client_actor, delivered, fid, "approved")

    messages = [e.message for e in list_activity(store, deliverable_id=delivered)]
    assert messages[0] == "Resolved feedback: Fix the kerning"
    assert len(messages) == 2


def test_resolve_missing_feedback(workflow, admin, delivered):
    with pytest.raises(NotFound):
        workflow.feedback.resolve_feedback(admin, delivered, "nope")


def test_subscribe_feedback_sees_new_entries(workflow, client_actor, delivered):
    seen = []
    unsubscribe = workflow.feedback.subscribe_feedback(delivered, seen.append)
    workflow.feedback.submit_feedback(client_actor, delivered, "first")
    unsubscribe()
    workflow.feedback.submit_feedback(client_actor, delivered, "second")

    assert [len(batch) for batch in seen] == [0, 1]
    assert seen[-1][0].content == "first"
