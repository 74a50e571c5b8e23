"""Tests for the PRD-<epoch ms>-<suffix> SKU generator."""

from __future__ import annotations

import re

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.db import Product
from storefront.services import sku as sku_module
from storefront.services.sku import (
    SUFFIX_CHARS,
    generate_sku,
    generate_unique_sku,
    normalise_sku,
)

SKU_RE = re.compile(r"^PRD-\d+-[0-9A-Z]{9}$")


class TestGenerateSku:
    def test_format_matches_pattern(self) -> None:
        for _ in range(50):
            sku = generate_sku()
            assert SKU_RE.match(sku), f"SKU {sku!r} does not match PRD-<ms>-<suffix>"

    def test_embeds_timestamp(self) -> None:
        assert generate_sku(now_ms=1_700_000_000_000).startswith("PRD-1700000000000-")

    def test_suffix_uses_allowed_chars(self) -> None:
        for _ in range(50):
            suffix = generate_sku().rsplit("-", 1)[1]
            for ch in suffix:
                assert ch in SUFFIX_CHARS, f"Character {ch!r} not in SUFFIX_CHARS"

    def test_generates_distinct_skus(self) -> None:
        skus = {generate_sku(now_ms=0) for _ in range(200)}
        assert len(skus) == 200


class TestGenerateUniqueSku:
    async def test_skips_taken_sku(
        self, db_session: AsyncSession, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        db_session.add(
            Product(
                name="Taken",
                description="Already holds the first candidate SKU.",
                price=1.0,
                category="misc",
                sku="PRD-1-AAAAAAAAA",
            )
        )
        await db_session.commit()

        candidates = iter(["PRD-1-AAAAAAAAA", "PRD-1-BBBBBBBBB"])
        monkeypatch.setattr(sku_module, "generate_sku", lambda: next(candidates))
        assert await generate_unique_sku(db_session) == "PRD-1-BBBBBBBBB"

    async def test_gives_up_after_max_attempts(
        self, db_session: AsyncSession, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        db_session.add(
            Product(
                name="Taken",
                description="Already holds the only candidate SKU.",
                price=1.0,
                category="misc",
                sku="PRD-1-AAAAAAAAA",
            )
        )
        await db_session.commit()

        monkeypatch.setattr(sku_module, "generate_sku", lambda: "PRD-1-AAAAAAAAA")
        with pytest.raises(RuntimeError, match="3 attempts"):
            await generate_unique_sku(db_session, max_attempts=3)


class TestNormaliseSku:
    def test_uppercases_lowercase_input(self) -> None:
        assert normalise_sku("esp-001") == "ESP-001"

    def test_strips_whitespace(self) -> None:
        assert normalise_sku("  ESP-001  ") == "ESP-001"
