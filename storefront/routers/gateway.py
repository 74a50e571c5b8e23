"""Catch-all route that relays ``/api/*`` requests to upstream services."""

from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.responses import Response

from storefront.services.upstream import UpstreamProxy

logger = logging.getLogger(__name__)

router = APIRouter(tags=["gateway"])

_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


@router.api_route("/api/{path:path}", methods=_METHODS, include_in_schema=False)
async def forward(request: Request, path: str) -> Response:
    proxy: UpstreamProxy = request.app.state.proxy
    upstream = proxy.match(request.url.path)
    if upstream is None:
        raise HTTPException(status_code=404, detail="No upstream service for this path")

    try:
        return await proxy.forward(request, upstream)
    except httpx.TimeoutException:
        logger.warning("Upstream timed out: %s %s -> %s", request.method, request.url.path, upstream)
        return JSONResponse(status_code=504, content={"detail": "Upstream service timed out"})
    except httpx.TransportError:
        logger.warning(
            "Upstream unavailable: %s %s -> %s", request.method, request.url.path, upstream
        )
        return JSONResponse(status_code=502, content={"detail": "Upstream service unavailable"})
