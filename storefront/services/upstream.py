"""Relay gateway requests to upstream services by URL prefix."""

from __future__ import annotations

import logging
from collections.abc import Mapping

import httpx
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

# Headers that describe a single connection and must not be relayed
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)

# Recomputed by httpx/Starlette for the relayed message
_REQUEST_SKIP = HOP_BY_HOP_HEADERS | {"host", "content-length"}
_RESPONSE_SKIP = HOP_BY_HOP_HEADERS | {"content-length", "content-encoding"}


class UpstreamProxy:
    """Long-lived httpx client plus the prefix -> upstream routing table."""

    def __init__(
        self,
        routes: Mapping[str, str],
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        # Longest prefix first so nested prefixes resolve to the most specific upstream
        self.routes = dict(sorted(routes.items(), key=lambda item: len(item[0]), reverse=True))
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport, follow_redirects=False)

    def match(self, path: str) -> str | None:
        """Return the upstream base URL for *path*, or ``None``."""
        for prefix, upstream in self.routes.items():
            if path == prefix or path.startswith(prefix + "/"):
                return upstream
        return None

    async def forward(self, request: Request, upstream: str) -> Response:
        """Relay *request* to *upstream* and return its response.

        Raises ``httpx.TimeoutException`` / ``httpx.TransportError`` when the
        upstream cannot be reached.
        """
        url = upstream.rstrip("/") + request.url.path
        if request.url.query:
            url = f"{url}?{request.url.query}"

        headers = [
            (name, value)
            for name, value in request.headers.items()
            if name.lower() not in _REQUEST_SKIP and name.lower() != "x-forwarded-for"
        ]
        headers.append(("x-forwarded-for", self._forwarded_for(request)))
        request_id = getattr(request.state, "request_id", None)
        if request_id and "x-request-id" not in request.headers:
            headers.append(("x-request-id", request_id))

        body = await request.body()
        upstream_response = await self._client.request(
            request.method, url, headers=headers, content=body or None
        )
        logger.debug(
            "Forwarded %s %s -> %s (%d)",
            request.method,
            request.url.path,
            upstream,
            upstream_response.status_code,
        )

        response = Response(
            content=upstream_response.content,
            status_code=upstream_response.status_code,
        )
        for name, value in upstream_response.headers.multi_items():
            if name.lower() not in _RESPONSE_SKIP:
                response.headers.append(name, value)
        return response

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _forwarded_for(request: Request) -> str:
        existing = request.headers.get("x-forwarded-for")
        peer = request.client.host if request.client is not None else "unknown"
        return f"{existing}, {peer}" if existing else peer
