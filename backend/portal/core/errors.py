"""Typed workflow errors.

Every error carries a human-readable message naming the rule that was
violated; the HTTP layer maps ``status_code``/``code`` onto the response.
"""
from __future__ import annotations
from typing import Any


class WorkflowError(Exception):
    status_code = 400
    code = "workflow_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        out = {"detail": self.message, "code": self.code}
        if self.details:
            out["details"] = self.details
        return out


class Unauthenticated(WorkflowError):
    status_code = 401
    code = "unauthenticated"


class PermissionDenied(WorkflowError):
    status_code = 403
    code = "permission_denied"


class InvalidState(WorkflowError):
    status_code = 409
    code = "invalid_state"


class AlreadyApproved(InvalidState):
    code = "already_approved"


class NotFound(WorkflowError):
    status_code = 404
    code = "not_found"


class StoreUnavailable(WorkflowError):
    status_code = 503
    code = "store_unavailable"
