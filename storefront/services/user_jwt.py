"""Access-token creation and verification.

Tokens are minted by the user service and verified by every other service
with the shared ``STOREFRONT_JWT_SECRET``.  The subject (``sub``) is the
user id and ``role`` drives authorization checks.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass

import jwt as pyjwt

ISSUER = "storefront-user-service"
ALGORITHM = "HS256"


@dataclass(frozen=True)
class Principal:
    """Decoded contents of an access token."""

    sub: str  # user_id
    role: str
    iss: str
    exp: int
    iat: int


def create_access_token(
    *,
    user_id: str | uuid.UUID,
    jwt_secret: str,
    role: str = "customer",
    expiry_minutes: int = 60,
    algorithm: str = ALGORITHM,
) -> str:
    """Mint an access token."""
    now = int(time.time())
    payload = {
        "sub": str(user_id),
        "role": role,
        "iss": ISSUER,
        "iat": now,
        "exp": now + expiry_minutes * 60,
    }
    return pyjwt.encode(payload, jwt_secret, algorithm=algorithm)


def verify_access_token(token: str, *, jwt_secret: str, algorithm: str = ALGORITHM) -> Principal:
    """Decode and verify an access token.

    Raises ``pyjwt.InvalidTokenError`` (or a subclass) on failure.
    """
    decoded = pyjwt.decode(
        token,
        jwt_secret,
        algorithms=[algorithm],
        issuer=ISSUER,
        options={"require": ["sub", "exp", "iat"]},
    )

    role = decoded.get("role")
    if not isinstance(role, str) or not role:
        raise pyjwt.InvalidTokenError("Token carries no role")

    return Principal(
        sub=str(decoded["sub"]),
        role=role,
        iss=decoded["iss"],
        exp=decoded["exp"],
        iat=decoded["iat"],
    )
