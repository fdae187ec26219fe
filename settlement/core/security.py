from __future__ import annotations

from typing import Literal

from fastapi import Header, HTTPException
from pydantic import BaseModel

from settlement.core.config import get_settings


ActorType = Literal["customer", "guest", "admin", "system"]


class Actor(BaseModel):
    type: ActorType
    id: str | None = None

    @property
    def user_id(self) -> int | None:
        if self.type != "customer" or self.id is None:
            return None
        return int(self.id)


def _auth_error(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


def _extract_api_key(authorization: str | None, x_api_key: str | None) -> str | None:
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise _auth_error("invalid authorization header")
        return token.strip()
    if x_api_key and x_api_key.strip():
        return x_api_key.strip()
    return None


def _storefront_actor(x_user_id: str | None) -> Actor:
    # The storefront owns login sessions and forwards the signed-in user id.
    if x_user_id is None or not x_user_id.strip():
        return Actor(type="guest")
    if not x_user_id.strip().isdigit():
        raise _auth_error("invalid user id header")
    return Actor(type="customer", id=x_user_id.strip())


def get_actor(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
) -> Actor:
    settings = get_settings()
    if not settings.auth_enabled:
        if x_user_id:
            return _storefront_actor(x_user_id)
        return Actor(type="admin", id=settings.admin_actor_id)

    api_key = _extract_api_key(authorization, x_api_key)
    if not api_key:
        raise _auth_error("missing api key")

    if api_key == settings.storefront_api_key:
        return _storefront_actor(x_user_id)
    if api_key == settings.admin_api_key:
        return Actor(type="admin", id=settings.admin_actor_id)
    if api_key == settings.system_api_key:
        return Actor(type="system", id=settings.system_actor_id)
    raise _auth_error("invalid api key")


def require_roles(actor: Actor, allowed: set[str], detail: str = "insufficient role") -> None:
    if actor.type not in allowed:
        raise HTTPException(status_code=403, detail=detail)


def require_admin(actor: Actor) -> None:
    require_roles(actor, {"admin"}, detail="admin access required")


def require_customer(actor: Actor) -> int:
    if actor.user_id is None:
        raise HTTPException(status_code=401, detail="login required")
    return actor.user_id
