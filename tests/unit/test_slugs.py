"""
Unit tests for slug normalization and the SlugAllocator.
"""

import re
from unittest.mock import AsyncMock

import pytest
from pymongo.errors import AutoReconnect

from mdb_storefront.core.slugs import SlugAllocator, normalize_slug
from mdb_storefront.exceptions import ExhaustedError


def taken(*slugs):
    """exists_check that reports the given slugs as taken."""
    existing = set(slugs)

    async def check(candidate):
        return candidate in existing

    return check


class TestNormalizeSlug:
    """Test display name normalization."""

    @pytest.mark.parametrize(
        "display_name,expected",
        [
            ("Oak Chair", "oak-chair"),
            ("Café Table (New)", "cafe-table-new"),
            ("Mira's Haven", "miras-haven"),
            ("  Oak   Chair!! ", "oak-chair"),
            ("3-Seater / Sofa", "3-seater-sofa"),
            ("Déjà Vu: Lamp", "deja-vu-lamp"),
        ],
    )
    def test_normalization(self, display_name, expected):
        assert normalize_slug(display_name) == expected

    @pytest.mark.parametrize("display_name", ["", None, "椅子", "!!!", "()"])
    def test_names_without_slug_characters_normalize_to_empty(self, display_name):
        assert normalize_slug(display_name) == ""

    def test_result_is_url_safe(self):
        slug = normalize_slug("Ünïcödé & Friends @ Home ~ 2024")
        assert re.fullmatch(r"[a-z0-9]+(-[a-z0-9]+)*", slug)


class TestSlugAllocator:
    """Test allocation against an exists_check."""

    @pytest.mark.asyncio
    async def test_free_base_is_used(self, backoff):
        allocator = SlugAllocator(backoff)
        assert await allocator.allocate("Oak Chair", "Product", None, taken()) == "oak-chair"

    @pytest.mark.asyncio
    async def test_collisions_get_numeric_suffix(self, backoff):
        allocator = SlugAllocator(backoff)
        slug = await allocator.allocate(
            "Oak Chair", "Product", None, taken("oak-chair", "oak-chair-1")
        )
        assert slug == "oak-chair-2"

    @pytest.mark.asyncio
    async def test_empty_name_falls_back_to_kind_timestamp_random(self, backoff):
        allocator = SlugAllocator(backoff)
        slug = await allocator.allocate("椅子", "Product", None, taken())
        assert re.fullmatch(r"product-\d+-\d{1,3}", slug)

    @pytest.mark.asyncio
    async def test_probe_limit_falls_back_to_timestamp(self, backoff):
        allocator = SlugAllocator(backoff, probe_limit=2)

        async def everything_taken(candidate):
            return True

        slug = await allocator.allocate("Oak Chair", "Product", None, everything_taken)
        assert re.fullmatch(r"oak-chair-\d{10,}", slug)

    @pytest.mark.asyncio
    async def test_unreachable_store_fails_allocation(self, backoff):
        allocator = SlugAllocator(backoff)
        check = AsyncMock(side_effect=AutoReconnect("down"))

        with pytest.raises(ExhaustedError):
            await allocator.allocate("Oak Chair", "Product", None, check)

    @pytest.mark.asyncio
    async def test_exhausted_probe_fails_allocation(self, backoff):
        allocator = SlugAllocator(backoff)
        check = AsyncMock(side_effect=ExhaustedError("both paths down"))

        with pytest.raises(ExhaustedError):
            await allocator.allocate("Oak Chair", "Product", None, check)

    @pytest.mark.asyncio
    async def test_degraded_mode_assumes_free(self, backoff):
        allocator = SlugAllocator(backoff, degraded_mode=True)
        check = AsyncMock(side_effect=AutoReconnect("down"))

        assert await allocator.allocate("Oak Chair", "Product", None, check) == "oak-chair"

    @pytest.mark.asyncio
    async def test_allocate_record(self, backoff):
        allocator = SlugAllocator(backoff)
        record = await allocator.allocate_record(
            "Sofa Beds", "Category", "abc123", taken("sofa-beds")
        )
        assert record.base_slug == "sofa-beds"
        assert record.final_slug == "sofa-beds-1"
        assert record.owner_id == "abc123"

    @pytest.mark.asyncio
    async def test_uniqueness_checks_are_logged(self, backoff):
        allocator = SlugAllocator(backoff)
        log = []

        slug = await allocator.allocate("Oak Chair", "Product", None, taken("oak-chair"), attempts=log)

        assert slug == "oak-chair-1"
        assert [(a.path, a.attempt, a.outcome) for a in log] == [
            ("slug-probe", 1, "success"),
            ("slug-probe", 1, "success"),
        ]

    @pytest.mark.asyncio
    async def test_failed_check_is_logged(self, backoff):
        allocator = SlugAllocator(backoff, degraded_mode=True)
        log = []

        await allocator.allocate(
            "Oak Chair", "Product", None, AsyncMock(side_effect=AutoReconnect("down")), attempts=log
        )

        assert [a.outcome for a in log] == ["transient"]
        assert log[0].error == "AutoReconnect: down"
