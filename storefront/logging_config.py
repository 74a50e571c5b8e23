"""Process-wide logging setup shared by the gateway and the product service."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from storefront.config import is_production

# Request attributes passed through ``extra=`` by the middlewares
_EXTRA_FIELDS = ("request_id", "path", "method", "status_code", "duration_ms", "identity")

_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore")

_TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(service)s %(name)s: %(message)s"


class _ServiceFilter(logging.Filter):
    """Stamp every record with the name of the service that emitted it."""

    def __init__(self, service: str) -> None:
        super().__init__()
        self.service = service

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "service"):
            record.service = self.service
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with request extras when they are set."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        service = getattr(record, "service", None)
        if service:
            entry["service"] = service
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update(
            (key, getattr(record, key)) for key in _EXTRA_FIELDS if hasattr(record, key)
        )
        return json.dumps(entry, default=str)


def configure_logging(service: str = "storefront", level: str | int = "INFO") -> None:
    """Route all logging to stdout for *service*.

    JSON in production (``STOREFRONT_ENV``), a one-line text format otherwise.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(_ServiceFilter(service))
    if is_production():
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper() if isinstance(level, str) else level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
