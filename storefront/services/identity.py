"""Rate-limit identity resolution for incoming requests.

An identity is the authenticated user id when one is known, otherwise the
client address.  Keys are namespaced (``user:`` / ``ip:``) so a user id can
never collide with an address.
"""

from __future__ import annotations

from typing import Callable

import jwt as pyjwt
from starlette.requests import Request

from storefront.services.user_jwt import ALGORITHM, verify_access_token

PrincipalLookup = Callable[[Request], "str | None"]


def client_address(request: Request, *, trust_forwarded: bool = True) -> str | None:
    """Return the originating client address for *request*.

    The first entry of ``X-Forwarded-For`` wins when *trust_forwarded* is set;
    otherwise (or when the header is absent) the socket peer is used.
    """
    if trust_forwarded:
        forwarded = request.headers.get("x-forwarded-for", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client is not None and request.client.host:
        return request.client.host
    return None


def bearer_principal_lookup(jwt_secret: str, algorithm: str = ALGORITHM) -> PrincipalLookup:
    """Build a lookup that reads the user id from a valid Bearer token.

    Missing or invalid tokens yield ``None``; authentication itself is left to
    the upstream service.
    """

    def _lookup(request: Request) -> str | None:
        authorization = request.headers.get("authorization", "")
        if not authorization.startswith("Bearer "):
            return None
        try:
            principal = verify_access_token(
                authorization[len("Bearer ") :], jwt_secret=jwt_secret, algorithm=algorithm
            )
        except pyjwt.InvalidTokenError:
            return None
        return principal.sub

    return _lookup


class IdentityResolver:
    """Resolve the identity key a request is rate limited under."""

    def __init__(
        self,
        *,
        principal_lookup: PrincipalLookup | None = None,
        trust_forwarded: bool = True,
    ) -> None:
        self._principal_lookup = principal_lookup
        self._trust_forwarded = trust_forwarded

    def __call__(self, request: Request, principal_id: str | None = None) -> str | None:
        if principal_id is None and self._principal_lookup is not None:
            principal_id = self._principal_lookup(request)
        if principal_id:
            return f"user:{principal_id}"

        address = client_address(request, trust_forwarded=self._trust_forwarded)
        if address:
            return f"ip:{address}"
        return None
