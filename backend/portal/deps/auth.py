from fastapi import Depends, Header, HTTPException
from typing import Callable, Optional

from portal.core.security import decode_token
from portal.schemas.actor import Actor, RoleClaim


def get_current_actor(authorization: Optional[str] = Header(default=None)) -> Optional[Actor]:
    """Actor from the bearer token, or None when the request carries no token.

    Anonymous requests reach the engines, which reject them with
    ``Unauthenticated``; a token that is present but unusable is a 401 here.
    """
    if not authorization:
        return None
    if not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        data = decode_token(token, expected_type="access")
        role = RoleClaim(data.get("role") or RoleClaim.VIEWER.value)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid/expired token")
    return Actor(
        id=data.get("sub", "unknown"),
        display_name=data.get("name"),
        email=data.get("email"),
        role_claim=role,
        is_client_mode=bool(data.get("client_mode", False)),
    )


def require_role(*allowed: str) -> Callable:
    """Gate for operator endpoints outside the workflow (runtime config)."""
    def checker(actor: Optional[Actor] = Depends(get_current_actor)) -> Actor:
        if actor is None:
            raise HTTPException(status_code=401, detail="Missing bearer token")
        if allowed and (actor.is_client_mode or actor.role_claim.value not in allowed):
            raise HTTPException(status_code=403, detail="Forbidden")
        return actor
    return checker
