from __future__ import annotations
import enum
from typing import Optional

from pydantic import BaseModel


class RoleClaim(str, enum.Enum):
    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"


class Actor(BaseModel):
    """The current user as supplied by the identity provider."""

    id: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    role_claim: RoleClaim = RoleClaim.VIEWER
    is_client_mode: bool = False

    @property
    def name(self) -> str:
        return self.display_name or self.email or self.id

    @property
    def mode_role(self) -> str:
        # role recorded on feedback entries
        return "client" if self.is_client_mode else "admin"

    @property
    def log_role(self) -> str:
        return "client" if self.is_client_mode else self.role_claim.value
