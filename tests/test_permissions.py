import pytest
from prometheus_client import REGISTRY

from portal.core.errors import PermissionDenied, Unauthenticated
from portal.core.permissions import (
    can_manage_work,
    can_resolve_feedback,
    can_review_revision,
    can_sign_off,
    can_submit_verdict,
    can_update_feedback_status,
    require,
    require_actor,
)
from portal.schemas.actor import Actor, RoleClaim


def _actor(role, client=False):
    return Actor(id=f"u-{role}", role_claim=role, is_client_mode=client)


@pytest.mark.parametrize("role, client, verdict, sign_off, manage, review, resolve", [
    (RoleClaim.ADMIN, False, False, True, True, True, True),
    (RoleClaim.EDITOR, False, False, False, True, True, True),
    (RoleClaim.VIEWER, False, False, False, False, False, True),
    (RoleClaim.VIEWER, True, True, False, False, True, False),
    (RoleClaim.ADMIN, True, True, False, False, True, False),
])
def test_gates(role, client, verdict, sign_off, manage, review, resolve):
    a = _actor(role, client)
    assert can_submit_verdict(a) is verdict
    assert can_sign_off(a) is sign_off
    assert can_manage_work(a) is manage
    assert can_review_revision(a) is review
    assert can_resolve_feedback(a) is resolve


def test_feedback_status_override():
    assert can_update_feedback_status(_actor(RoleClaim.VIEWER, client=True))
    assert not can_update_feedback_status(_actor(RoleClaim.ADMIN))
    assert can_update_feedback_status(_actor(RoleClaim.ADMIN), override=True)
    assert not can_update_feedback_status(_actor(RoleClaim.EDITOR), override=True)


def test_require_counts_denials():
    labels = {"operation": "approve_deliverable"}
    before = REGISTRY.get_sample_value("permission_denied_total", labels) or 0
    with pytest.raises(PermissionDenied) as exc:
        require(False, "approve_deliverable", "Only administrators can approve deliverables")
    assert exc.value.to_dict() == {
        "detail": "Only administrators can approve deliverables",
        "code": "permission_denied",
        "details": {"operation": "approve_deliverable"},
    }
    assert REGISTRY.get_sample_value("permission_denied_total", labels) == before + 1
    require(True, "approve_deliverable", "unused")


def test_require_actor():
    with pytest.raises(Unauthenticated):
        require_actor(None, "submit feedback")
    a = _actor(RoleClaim.VIEWER)
    assert require_actor(a, "submit feedback") is a
