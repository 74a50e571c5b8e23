"""Starlette middleware and helpers that put rate limiters in front of routes."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from storefront.services.identity import IdentityResolver
from storefront.services.rate_limiter import Decision, SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

TOO_MANY_REQUESTS = "Too many requests. Please try again later."


def format_reset(reset_at_ms: int) -> str:
    """Render an epoch-millisecond instant as ISO-8601 UTC, e.g. ``2024-01-01T00:01:00.000Z``."""
    seconds, millis = divmod(reset_at_ms, 1000)
    instant = datetime.fromtimestamp(seconds, tz=timezone.utc) + timedelta(milliseconds=millis)
    return instant.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def rate_limit_headers(decision: Decision) -> dict[str, str]:
    """Return the ``X-RateLimit-*`` headers for a tracked decision."""
    if not decision.tracked:
        return {}
    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": format_reset(decision.reset_at),  # type: ignore[arg-type]
    }


def apply_rate_limit_headers(response: Response, decision: Decision) -> None:
    """Attach the headers for *decision* unless *response* already reports a limit.

    Relayed responses keep the counters of the service that produced them.
    """
    if any(name.lower().startswith("x-ratelimit-") for name in response.headers.keys()):
        return
    response.headers.update(rate_limit_headers(decision))


def rate_limited_response(decision: Decision) -> JSONResponse:
    """Build the terminal 429 response for a rejected decision."""
    retry_after = decision.retry_after or 0
    window_seconds = (decision.window_ms or 0) / 1000
    headers = {"Retry-After": str(retry_after), **rate_limit_headers(decision)}
    return JSONResponse(
        status_code=429,
        content={
            "error": TOO_MANY_REQUESTS,
            "retryAfter": retry_after,
            "message": (
                f"Rate limit exceeded. Maximum {decision.limit} requests "
                f"per {window_seconds:g} seconds."
            ),
        },
        headers=headers,
    )


@dataclass(frozen=True)
class RateLimitRule:
    """Apply *limiter* to requests under *path_prefixes* (optionally only *methods*)."""

    limiter: SlidingWindowRateLimiter
    path_prefixes: tuple[str, ...] = ("/",)
    methods: frozenset[str] | None = None

    def matches(self, request: Request) -> bool:
        if self.methods is not None and request.method not in self.methods:
            return False
        path = request.url.path
        return any(path.startswith(prefix) for prefix in self.path_prefixes)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Consult the first matching rule's limiter before the request reaches the app."""

    def __init__(
        self,
        app: ASGIApp,
        rules: Sequence[RateLimitRule],
        resolver: IdentityResolver,
        exempt_paths: Iterable[str] = ("/health",),
    ) -> None:
        super().__init__(app)
        self.rules = tuple(rules)
        self.resolver = resolver
        self.exempt_paths = frozenset(exempt_paths)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        rule = next((r for r in self.rules if r.matches(request)), None)
        if rule is None:
            return await call_next(request)

        identity = self.resolver(request)
        decision = rule.limiter.admit(identity)
        if not decision.allowed:
            logger.warning(
                "Rate limit exceeded for %s",
                identity,
                extra={"identity": identity, "path": request.url.path, "method": request.method},
            )
            return rate_limited_response(decision)

        response = await call_next(request)
        apply_rate_limit_headers(response, decision)
        return response


class RateLimitHeadersMiddleware(BaseHTTPMiddleware):
    """Report the decision a route guard stored on ``request.state.rate_limit``.

    Runs outside the exception handlers so error responses raised after the
    guard admitted the request still carry the counters.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        decision: Decision | None = getattr(request.state, "rate_limit", None)
        if decision is not None:
            apply_rate_limit_headers(response, decision)
        return response
