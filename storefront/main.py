"""FastAPI application entry-points for the storefront services.

Two ASGI apps are built from this package:

* ``gateway_app``: forwards ``/api/*`` to the upstream services behind a
  global per-caller rate limiter.
* ``product_app``: the product catalogue, with a lenient limiter on reads and
  a strict limiter on writes.

Run with e.g. ``uvicorn storefront.main:gateway_app --port 5000``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storefront.config import Settings, get_settings, is_production
from storefront.database import create_tables, init_engine, shutdown_engine
from storefront.logging_config import configure_logging
from storefront.middleware.rate_limit import (
    RateLimitHeadersMiddleware,
    RateLimitMiddleware,
    RateLimitRule,
    rate_limited_response,
)
from storefront.middleware.request_log import RequestLogMiddleware
from storefront.middleware.security import SecurityHeadersMiddleware
from storefront.routers import gateway, health, products
from storefront.services.identity import IdentityResolver, bearer_principal_lookup
from storefront.services.rate_limiter import RateLimitExceeded, SlidingWindowRateLimiter
from storefront.services.upstream import UpstreamProxy

_logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def build_limiter(settings: Settings, window_ms: int, max_requests: int) -> SlidingWindowRateLimiter:
    """Build a limiter sharing the configured memory ceiling and compaction policy."""
    return SlidingWindowRateLimiter.create(
        window_ms,
        max_requests,
        max_identities=settings.rate_limit_max_identities,
        compaction=settings.rate_limit_compaction,
    )


def _install_common(application: FastAPI, settings: Settings) -> None:
    """Middleware, exception handlers and settings wiring shared by both apps."""
    # Dependencies resolve the same settings the app was built with
    application.dependency_overrides[get_settings] = lambda: settings

    # -- Security headers / request logging -------------------------------------
    application.add_middleware(SecurityHeadersMiddleware)
    application.add_middleware(RequestLogMiddleware)

    # -- CORS ------------------------------------------------------------------
    # Keep CORS as the outermost middleware so headers are present even when
    # downstream handlers raise 5xx errors.
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
        max_age=3600,
    )

    # -- Exception handlers ----------------------------------------------------
    @application.exception_handler(RateLimitExceeded)
    async def _rate_limit_handler(_request: Request, exc: RateLimitExceeded) -> JSONResponse:
        return rate_limited_response(exc.decision)

    @application.exception_handler(Exception)
    async def _global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch unhandled exceptions and return a clean JSON error response."""
        _logger.exception(
            "Unhandled exception",
            extra={
                "path": request.url.path,
                "method": request.method,
            },
        )

        # Don't expose internal details in production
        if is_production():
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal server error"},
            )
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error",
                "error": str(exc),
                "type": type(exc).__name__,
            },
        )


# ---------------------------------------------------------------------------
# API gateway
# ---------------------------------------------------------------------------


def create_gateway_app(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the API gateway.

    *transport* replaces the network transport of the upstream client (tests).
    """
    if settings is None:
        settings = get_settings()

    proxy = UpstreamProxy(
        settings.upstream_routes(),
        timeout=settings.upstream_timeout_seconds,
        transport=transport,
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        configure_logging("api-gateway", settings.log_level)
        _logger.info("Starting API gateway")
        yield
        _logger.info("Shutting down API gateway")
        await proxy.aclose()

    application = FastAPI(
        title="Storefront API Gateway",
        description="Routes storefront API traffic to the backing services.",
        version=VERSION,
        lifespan=lifespan,
    )
    application.state.proxy = proxy

    limiter = build_limiter(
        settings,
        settings.gateway_rate_limit_window_ms,
        settings.gateway_rate_limit_max_requests,
    )
    application.state.limiters = {"gateway": limiter}

    # -- Rate-limit middleware (innermost, behind logging and headers) --------
    application.add_middleware(
        RateLimitMiddleware,
        rules=[RateLimitRule(limiter, path_prefixes=("/api/",))],
        resolver=IdentityResolver(
            principal_lookup=bearer_principal_lookup(settings.jwt_secret, settings.jwt_algorithm),
            trust_forwarded=settings.trust_forwarded_for,
        ),
    )
    _install_common(application, settings)

    application.include_router(health.gateway_router)
    application.include_router(gateway.router)
    return application


# ---------------------------------------------------------------------------
# Product service
# ---------------------------------------------------------------------------


def create_product_app(settings: Settings | None = None) -> FastAPI:
    """Build the product service."""
    if settings is None:
        settings = get_settings()

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        """Initialise the database on startup, tear down on shutdown."""
        configure_logging("product-service", settings.log_level)
        _logger.info("Starting product service")
        init_engine(settings)
        await create_tables()
        yield
        _logger.info("Shutting down product service")
        await shutdown_engine()

    application = FastAPI(
        title="Storefront Product Service",
        description="Product catalogue CRUD.",
        version=VERSION,
        lifespan=lifespan,
    )

    # Strict and lenient limiters never share state
    application.state.limiters = {
        "strict": build_limiter(
            settings, settings.product_strict_window_ms, settings.product_strict_max_requests
        ),
        "lenient": build_limiter(
            settings, settings.product_lenient_window_ms, settings.product_lenient_max_requests
        ),
    }
    application.state.identity_resolver = IdentityResolver(
        trust_forwarded=settings.trust_forwarded_for
    )
    # Innermost: sees route errors after the exception handlers rendered them
    application.add_middleware(RateLimitHeadersMiddleware)
    _install_common(application, settings)

    application.include_router(health.product_router)
    application.include_router(products.router)
    return application


gateway_app = create_gateway_app()
product_app = create_product_app()
