"""FastAPI dependencies for access-token authentication and role checks."""

from __future__ import annotations

from typing import Awaitable, Callable

import jwt as pyjwt
from fastapi import Depends, Header, HTTPException

from storefront.config import Settings, get_settings
from storefront.services.user_jwt import Principal, verify_access_token


async def get_current_principal(
    authorization: str | None = Header(None, description="Bearer <access_token>"),
    settings: Settings = Depends(get_settings),
) -> Principal:
    """Dependency that verifies the Bearer access token and returns its ``Principal``."""
    if authorization is None:
        raise HTTPException(status_code=401, detail="No token provided")
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid Authorization header format")

    token = authorization[len("Bearer ") :]
    try:
        return verify_access_token(
            token, jwt_secret=settings.jwt_secret, algorithm=settings.jwt_algorithm
        )
    except pyjwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")


async def get_optional_principal(
    authorization: str | None = Header(None),
    settings: Settings = Depends(get_settings),
) -> Principal | None:
    """Like ``get_current_principal`` but returns ``None`` instead of 401."""
    if authorization is None:
        return None
    try:
        return await get_current_principal(authorization, settings)
    except HTTPException:
        return None


def require_role(*roles: str) -> Callable[..., Awaitable[Principal]]:
    """Build a dependency that admits only principals holding one of *roles*."""

    async def _require_role(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return principal

    return _require_role


require_admin = require_role("admin")
