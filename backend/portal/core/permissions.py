"""Permission gates for the delivery workflow.

Every gate is a pure predicate over ``(is_client_mode, role_claim)``; the
``require_*`` helpers turn a failed predicate into ``PermissionDenied`` with
the rule spelled out. Engines call these before touching the store.
"""
from __future__ import annotations
from typing import Optional

from portal.core.errors import PermissionDenied, Unauthenticated
from portal.metrics import permission_denied_total
from portal.schemas.actor import Actor, RoleClaim

STAFF_ROLES = {RoleClaim.ADMIN, RoleClaim.EDITOR}


# -------------------------- predicates --------------------------

def can_submit_verdict(actor: Actor) -> bool:
    return actor.is_client_mode

def can_update_feedback_status(actor: Actor, override: bool = False) -> bool:
    if actor.is_client_mode:
        return True
    return bool(override) and actor.role_claim == RoleClaim.ADMIN

def can_resolve_feedback(actor: Actor) -> bool:
    return not actor.is_client_mode

def can_sign_off(actor: Actor) -> bool:
    """Direct approve / reject / request changes / reopen."""
    return not actor.is_client_mode and actor.role_claim == RoleClaim.ADMIN

def can_manage_work(actor: Actor) -> bool:
    """Create deliverables, move them through production, submit revisions."""
    return not actor.is_client_mode and actor.role_claim in STAFF_ROLES

def can_review_revision(actor: Actor) -> bool:
    return actor.is_client_mode or actor.role_claim in STAFF_ROLES


# -------------------------- enforcement --------------------------

def require_actor(actor: Optional[Actor], action: str) -> Actor:
    if actor is None:
        raise Unauthenticated(f"You must be logged in to {action}")
    return actor

def deny(operation: str, message: str) -> PermissionDenied:
    permission_denied_total.labels(operation=operation).inc()
    return PermissionDenied(message, operation=operation)

def require(allowed: bool, operation: str, message: str) -> None:
    if not allowed:
        raise deny(operation, message)
