"""Product SKU generation in PRD-<epoch ms>-<suffix> format.

SKUs are case-insensitive (stored upper-cased) and collision-checked against
the database.
"""

from __future__ import annotations

import secrets
import time
from typing import TYPE_CHECKING

from sqlalchemy import select

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.db import Product

SKU_PREFIX = "PRD"

SUFFIX_CHARS: str = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
SUFFIX_LENGTH = 9


def _random_suffix(length: int = SUFFIX_LENGTH) -> str:
    """Return a random string of *length* characters from ``SUFFIX_CHARS``."""
    return "".join(secrets.choice(SUFFIX_CHARS) for _ in range(length))


def generate_sku(now_ms: int | None = None) -> str:
    """Generate a single SKU (not collision-checked)."""
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    return f"{SKU_PREFIX}-{now_ms}-{_random_suffix()}"


async def generate_unique_sku(session: AsyncSession, max_attempts: int = 10) -> str:
    """Generate a SKU that no stored product uses yet.

    Raises ``RuntimeError`` if a unique SKU cannot be produced within
    *max_attempts* tries.
    """
    for _ in range(max_attempts):
        sku = generate_sku()
        result = await session.execute(select(Product.id).where(Product.sku == sku))
        if result.scalar_one_or_none() is None:
            return sku

    raise RuntimeError(f"Failed to generate a unique SKU after {max_attempts} attempts")


def normalise_sku(raw: str) -> str:
    """Normalise user input to uppercase, stripping whitespace."""
    return raw.strip().upper()
