"""
Unit tests for StorefrontEngine.

Most tests inject in-memory repositories; the MongoDB wiring is checked
with the connection manager and repositories patched out.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from mdb_storefront import StorefrontEngine
from mdb_storefront.config import StoreConfig
from mdb_storefront.core.types import Source
from mdb_storefront.exceptions import ConfigurationError
from mdb_storefront.repositories import MappedRepository


@pytest.fixture
def config(monkeypatch):
    monkeypatch.delenv("STOREFRONT_SLUG_DEGRADED_MODE", raising=False)
    return StoreConfig(mongo_uri="mongodb://localhost:27017", db_name="shop")


@pytest.fixture
def engine(config, registry, store, backoff):
    return StorefrontEngine(
        config,
        registry=registry,
        primary=MappedRepository(store),
        secondary=store,
        backoff=backoff,
    )


class TestLifecycle:
    """Test initialize and shutdown."""

    def test_facade_before_initialize(self, engine):
        assert not engine.initialized
        with pytest.raises(RuntimeError):
            engine.facade
        with pytest.raises(RuntimeError):
            engine.orchestrator

    @pytest.mark.asyncio
    async def test_health_before_initialize(self, engine):
        report = await engine.health()
        assert report["status"] == "unhealthy"

    @pytest.mark.asyncio
    async def test_invalid_config_is_rejected(self, registry, store):
        engine = StorefrontEngine(
            StoreConfig(mongo_uri="mongodb://localhost", db_name="shop", max_pool_size=0),
            registry=registry,
            primary=MappedRepository(store),
            secondary=store,
        )

        with pytest.raises(ConfigurationError):
            await engine.initialize()

    @pytest.mark.asyncio
    async def test_initialize_and_shutdown(self, engine):
        await engine.initialize()

        assert engine.initialized
        assert engine.facade.registry is engine.registry
        assert [rule.name for rule in engine.orchestrator.rules] == ["payment-request"]

        await engine.shutdown()
        await engine.shutdown()

        assert not engine.initialized

    @pytest.mark.asyncio
    async def test_health_with_in_memory_paths(self, engine):
        await engine.initialize()

        report = await engine.health()

        assert report["status"] == "healthy"
        assert report["checks"][0]["name"] == "access_paths"


class TestWiring:
    """Test the components the engine wires together."""

    @pytest.mark.asyncio
    async def test_upi_order_derives_payment_request(self, engine, store, upi_order):
        await engine.initialize()

        result = await engine.facade.create("Order", upi_order)

        assert result.source == Source.PRIMARY
        requests = await store.find("PaymentRequest")
        assert [r["order"] for r in requests] == [result.entity.id]

    @pytest.mark.asyncio
    async def test_products_get_slugs(self, engine, oak_chair):
        await engine.initialize()

        first = await engine.facade.create("Product", oak_chair)
        second = await engine.facade.create("Product", oak_chair)

        assert first.entity.fields["slug"] == "oak-chair"
        assert second.entity.fields["slug"] == "oak-chair-1"

    @pytest.mark.asyncio
    async def test_custom_rules_replace_defaults(self, config, registry, store, backoff, upi_order):
        engine = StorefrontEngine(
            config,
            registry=registry,
            rules=[],
            primary=MappedRepository(store),
            secondary=store,
            backoff=backoff,
        )
        await engine.initialize()

        await engine.facade.create("Order", upi_order)

        assert await store.find("PaymentRequest") == []


class TestMongoWiring:
    """Test the MongoDB setup path with the driver patched out."""

    @pytest.mark.asyncio
    async def test_connects_and_ensures_indexes(self, config):
        connection = MagicMock()
        connection.initialize = AsyncMock()
        connection.shutdown = AsyncMock()
        connection.degraded = False
        mapped_store, direct_store = MagicMock(), MagicMock()
        mapped_store.ensure_indexes = AsyncMock(return_value=["slug_unique"])
        direct_store.ensure_indexes = AsyncMock(return_value=["slug_unique"])

        with patch(
            "mdb_storefront.core.engine.ConnectionManager", return_value=connection
        ) as manager_cls, patch(
            "mdb_storefront.core.engine.MongoRepository", side_effect=[mapped_store, direct_store]
        ) as repo_cls:
            engine = StorefrontEngine(config)
            await engine.initialize()

        assert manager_cls.call_args.kwargs["db_name"] == "shop"
        connection.initialize.assert_awaited_once()
        assert repo_cls.call_args_list[0].args[0] is connection.primary_db
        assert repo_cls.call_args_list[1].args[0] is connection.direct_db
        mapped_store.ensure_indexes.assert_awaited_once()
        direct_store.ensure_indexes.assert_not_awaited()

        await engine.shutdown()
        connection.shutdown.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_degraded_start_indexes_through_direct_client(self, config):
        connection = MagicMock()
        connection.initialize = AsyncMock()
        connection.degraded = True
        mapped_store, direct_store = MagicMock(), MagicMock()
        mapped_store.ensure_indexes = AsyncMock()
        direct_store.ensure_indexes = AsyncMock(return_value=[])

        with patch("mdb_storefront.core.engine.ConnectionManager", return_value=connection), patch(
            "mdb_storefront.core.engine.MongoRepository", side_effect=[mapped_store, direct_store]
        ):
            await StorefrontEngine(config).initialize()

        direct_store.ensure_indexes.assert_awaited_once()
        mapped_store.ensure_indexes.assert_not_awaited()
