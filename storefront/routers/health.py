"""Health-check endpoints for load balancers and monitoring."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database import get_session
from storefront.models.schemas import HealthResponse

logger = logging.getLogger(__name__)

gateway_router = APIRouter(tags=["health"])
product_router = APIRouter(tags=["health"])


@gateway_router.get("/", response_class=PlainTextResponse, include_in_schema=False)
async def gateway_root() -> str:
    return "API Gateway is Running"


@gateway_router.get("/health", response_model=HealthResponse, summary="Health check")
async def gateway_health() -> HealthResponse:
    return HealthResponse(status="healthy", service="api-gateway")


@product_router.get("/health", response_model=HealthResponse, summary="Health check")
async def product_health(
    session: AsyncSession = Depends(get_session),
) -> HealthResponse | JSONResponse:
    """Return service health, checking that the database answers."""
    try:
        await session.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Health check: database query failed")
        return JSONResponse(
            status_code=503,
            content={"status": "degraded", "error": "database_unavailable"},
        )

    return HealthResponse(status="healthy", service="product-service")
