"""Shared pytest fixtures for the storefront test suite.

The product service runs against an in-memory SQLite database (via
aiosqlite); the gateway's upstream services are replaced with an
``httpx.MockTransport`` so tests need no external infrastructure.
"""

from __future__ import annotations

import uuid
from typing import AsyncIterator, Callable

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from storefront.config import Settings
from storefront.database import get_session
from storefront.main import create_gateway_app, create_product_app
from storefront.models.db import Base
from storefront.services.user_jwt import create_access_token

JWT_SECRET = "test-jwt-secret"


# ---------------------------------------------------------------------------
# Settings override
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        jwt_secret=JWT_SECRET,
        user_service_url="http://users.test",
        product_service_url="http://products.test",
        order_service_url="http://orders.test",
        payment_service_url="http://payments.test",
        cart_service_url="http://cart.test",
        notification_service_url="http://notifications.test",
        gateway_rate_limit_window_ms=60_000,
        gateway_rate_limit_max_requests=100,
        product_strict_window_ms=60_000,
        product_strict_max_requests=30,
        product_lenient_window_ms=60_000,
        product_lenient_max_requests=100,
        cors_origins=["http://localhost:3000"],
    )


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_token() -> Callable[..., str]:
    def _make(role: str = "customer", user_id: str | None = None) -> str:
        return create_access_token(
            user_id=user_id or str(uuid.uuid4()), jwt_secret=JWT_SECRET, role=role
        )

    return _make


@pytest.fixture()
def admin_headers(make_token: Callable[..., str]) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token('admin')}"}


@pytest.fixture()
def customer_headers(make_token: Callable[..., str]) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token('customer')}"}


# ---------------------------------------------------------------------------
# Async engine + session wired to in-memory SQLite
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def db_session(settings: Settings) -> AsyncIterator[AsyncSession]:
    engine = create_async_engine(settings.database_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


# ---------------------------------------------------------------------------
# Product service client
# ---------------------------------------------------------------------------


@pytest.fixture()
def product_client_factory(
    db_session: AsyncSession,
) -> Callable[[Settings], AsyncClient]:
    """Build an ``AsyncClient`` for a product app created with the given settings."""

    def _factory(app_settings: Settings) -> AsyncClient:
        app = create_product_app(settings=app_settings)

        # Override the get_session dependency to use our test session
        async def _override_get_session() -> AsyncIterator[AsyncSession]:
            yield db_session

        app.dependency_overrides[get_session] = _override_get_session
        transport = ASGITransport(app=app)  # type: ignore[arg-type]
        return AsyncClient(transport=transport, base_url="http://testserver")

    return _factory


@pytest_asyncio.fixture()
async def product_client(
    settings: Settings, product_client_factory: Callable[[Settings], AsyncClient]
) -> AsyncIterator[AsyncClient]:
    async with product_client_factory(settings) as ac:
        yield ac


# ---------------------------------------------------------------------------
# Gateway client with mocked upstreams
# ---------------------------------------------------------------------------


@pytest.fixture()
def upstream_requests() -> list[httpx.Request]:
    return []


def echo_upstream(recorded: list[httpx.Request]) -> httpx.MockTransport:
    """Upstream stand-in that records each request and echoes it back as JSON."""

    def _handler(request: httpx.Request) -> httpx.Response:
        recorded.append(request)
        return httpx.Response(
            200,
            json={
                "host": request.url.host,
                "path": request.url.path,
                "query": request.url.query.decode(),
                "method": request.method,
                "body": request.content.decode(),
                "forwarded_for": request.headers.get("x-forwarded-for"),
            },
            headers={"X-Upstream": request.url.host},
        )

    return httpx.MockTransport(_handler)


@pytest.fixture()
def gateway_client_factory(
    upstream_requests: list[httpx.Request],
) -> Callable[..., AsyncClient]:
    def _factory(
        app_settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> AsyncClient:
        app = create_gateway_app(
            settings=app_settings, transport=transport or echo_upstream(upstream_requests)
        )
        return AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver")  # type: ignore[arg-type]

    return _factory


@pytest_asyncio.fixture()
async def gateway_client(
    settings: Settings, gateway_client_factory: Callable[..., AsyncClient]
) -> AsyncIterator[AsyncClient]:
    async with gateway_client_factory(settings) as ac:
        yield ac
