"""Per-route rate limiting as a FastAPI dependency.

Limiters are built once per application and registered by name on
``app.state.limiters``; a guard only holds the name.  Admitted decisions are
left on ``request.state.rate_limit`` for ``RateLimitHeadersMiddleware``.
"""

from __future__ import annotations

import logging

from fastapi import Depends, Request

from storefront.dependencies.auth import get_optional_principal
from storefront.services.rate_limiter import Decision, RateLimitExceeded, SlidingWindowRateLimiter
from storefront.services.user_jwt import Principal

logger = logging.getLogger(__name__)


class RateLimitGuard:
    """Admit the request against the named limiter or raise ``RateLimitExceeded``."""

    def __init__(self, limiter_name: str) -> None:
        self.limiter_name = limiter_name

    async def __call__(
        self,
        request: Request,
        principal: Principal | None = Depends(get_optional_principal),
    ) -> Decision:
        limiter: SlidingWindowRateLimiter = request.app.state.limiters[self.limiter_name]
        resolver = request.app.state.identity_resolver

        identity = resolver(request, principal.sub if principal else None)
        decision = limiter.admit(identity)
        if not decision.allowed:
            logger.warning(
                "Rate limit (%s) exceeded for %s",
                self.limiter_name,
                identity,
                extra={"identity": identity, "path": request.url.path, "method": request.method},
            )
            raise RateLimitExceeded(decision)

        request.state.rate_limit = decision
        return decision


# Strict limiter for write operations (POST, PUT, DELETE)
strict_rate_limit = RateLimitGuard("strict")

# Lenient limiter for read operations (GET)
lenient_rate_limit = RateLimitGuard("lenient")
