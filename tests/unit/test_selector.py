"""
Unit tests for the AccessPathSelector.

Tests primary/secondary fallback, error propagation and per-path metrics.
"""

from unittest.mock import AsyncMock

import pytest
from bson import ObjectId
from pymongo.errors import AutoReconnect, DuplicateKeyError

from mdb_storefront.core.types import Operation, OpSpec, Source
from mdb_storefront.exceptions import ExhaustedError, NotFoundError, SchemaMismatchError
from mdb_storefront.observability import get_metrics_collector


def op_spec(primary, secondary, operation=Operation.READ):
    return OpSpec(operation=operation, primary=primary, secondary=secondary)


class TestPrimaryPath:
    """Test results served by the primary path."""

    @pytest.mark.asyncio
    async def test_primary_success(self, selector):
        primary = AsyncMock(return_value={"_id": 1})
        secondary = AsyncMock()

        result = await selector.perform("Product", op_spec(primary, secondary))

        assert result.source == Source.PRIMARY
        assert result.payload == {"_id": 1}
        assert len(result.attempts) == 1
        secondary.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_primary_recovers_after_transient_failure(self, selector):
        primary = AsyncMock(side_effect=[AutoReconnect("flap"), {"_id": 1}])
        secondary = AsyncMock()

        result = await selector.perform("Product", op_spec(primary, secondary))

        assert result.source == Source.PRIMARY
        assert [a.outcome for a in result.attempts] == ["transient", "success"]
        secondary.assert_not_awaited()


class TestFallback:
    """Test falling back to the secondary path."""

    @pytest.mark.asyncio
    async def test_exhausted_primary_falls_back(self, selector, fake_sleep):
        primary = AsyncMock(side_effect=AutoReconnect("down"))
        secondary = AsyncMock(return_value=["doc"])

        result = await selector.perform("Product", op_spec(primary, secondary, Operation.LIST))

        assert result.source == Source.SECONDARY
        assert result.payload == ["doc"]
        assert primary.await_count == 3
        assert [(a.path, a.outcome) for a in result.attempts] == [
            ("primary", "transient"),
            ("primary", "transient"),
            ("primary", "transient"),
            ("secondary", "success"),
        ]

    @pytest.mark.asyncio
    async def test_schema_mismatch_falls_back_without_retry(self, selector):
        primary = AsyncMock(side_effect=SchemaMismatchError("bad doc", kind="Product"))
        secondary = AsyncMock(return_value={"_id": 1})

        result = await selector.perform("Product", op_spec(primary, secondary))

        assert result.source == Source.SECONDARY
        assert primary.await_count == 1

    @pytest.mark.asyncio
    async def test_both_paths_exhausted(self, selector):
        last = AutoReconnect("secondary down")
        primary = AsyncMock(side_effect=AutoReconnect("primary down"))
        secondary = AsyncMock(side_effect=last)

        with pytest.raises(ExhaustedError) as exc_info:
            await selector.perform("Product", op_spec(primary, secondary))

        error = exc_info.value
        assert error.last_error is last
        assert len(error.attempts) == 5
        assert [a.path for a in error.attempts] == ["primary"] * 3 + ["secondary"] * 2
        assert error.context["kind"] == "Product"


class TestTerminalErrors:
    """Test errors that must not fall back."""

    @pytest.mark.asyncio
    async def test_not_found_propagates_from_primary(self, selector):
        primary = AsyncMock(side_effect=NotFoundError("missing", kind="Product"))
        secondary = AsyncMock()

        with pytest.raises(NotFoundError) as exc_info:
            await selector.perform("Product", op_spec(primary, secondary))

        secondary.assert_not_awaited()
        assert [a.outcome for a in exc_info.value.attempts] == ["terminal"]

    @pytest.mark.asyncio
    async def test_duplicate_key_propagates(self, selector):
        primary = AsyncMock(side_effect=DuplicateKeyError("E11000", code=11000))
        secondary = AsyncMock()

        with pytest.raises(DuplicateKeyError):
            await selector.perform("Product", op_spec(primary, secondary, Operation.CREATE))

        secondary.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_terminal_error_on_secondary_propagates(self, selector):
        primary = AsyncMock(side_effect=AutoReconnect("down"))
        secondary = AsyncMock(side_effect=NotFoundError("missing"))

        with pytest.raises(NotFoundError) as exc_info:
            await selector.perform("Product", op_spec(primary, secondary))

        assert len(exc_info.value.attempts) == 4


class TestRoute:
    """Test route() against real repositories."""

    @pytest.mark.asyncio
    async def test_route_binds_call_to_both_repositories(self, selector, primary, store):
        stored = await store.insert("Category", {"name": "Lamps"})
        primary.fail_always("get", AutoReconnect("down"))

        result = await selector.route(
            "Category", Operation.READ, lambda repo: repo.get("Category", str(stored["_id"]))
        )

        assert result.source == Source.SECONDARY
        assert result.payload["name"] == "Lamps"
        assert primary.call_count("get") == 3

    @pytest.mark.asyncio
    async def test_route_returns_none_payload_for_missing_documents(self, selector):
        result = await selector.route(
            "Category", Operation.READ, lambda repo: repo.get("Category", str(ObjectId()))
        )
        assert result.source == Source.PRIMARY
        assert result.payload is None


class TestMetrics:
    """Test per-path metrics."""

    @pytest.mark.asyncio
    async def test_outcomes_recorded_per_path(self, selector):
        primary = AsyncMock(side_effect=AutoReconnect("down"))
        secondary = AsyncMock(return_value=1)

        await selector.perform("Product", op_spec(primary, secondary))

        collector = get_metrics_collector()
        assert collector.get_operation_count("selector.read") == 2
        metrics = collector.get_metrics("selector.read")["metrics"]
        assert metrics["selector.read[kind=Product_path=primary]"]["error_count"] == 1
        assert metrics["selector.read[kind=Product_path=secondary]"]["error_count"] == 0
