"""
Engine

The composition root of MDB_STOREFRONT. Wires:
- Database connections (mapped and direct clients)
- Unique indexes
- Repositories, access path selector and backoff
- Slug allocation and placeholder synthesis
- The persistence facade and the derived-entity orchestrator

This module is part of MDB_STOREFRONT.
"""

import logging
from typing import Any

from ..config import StoreConfig
from ..database import ConnectionManager
from ..observability import HealthChecker, check_access_paths
from ..observability import get_logger as get_contextual_logger
from ..repositories import DocumentRepository, MappedRepository, MongoRepository
from ..schemas import SchemaRegistry, default_registry
from .backoff import BackoffController
from .facade import PersistenceFacade
from .orchestrator import DerivedEntityOrchestrator, payment_request_rule
from .placeholders import PlaceholderSynthesizer
from .selector import AccessPathSelector
from .slugs import SlugAllocator
from .types import DerivedRule

logger = logging.getLogger(__name__)
contextual_logger = get_contextual_logger(__name__)


class StorefrontEngine:
    """
    Storefront persistence engine.

    Example:
        engine = StorefrontEngine(StoreConfig(mongo_uri=uri, db_name="storefront"))
        await engine.initialize()
        result = await engine.facade.create("Product", {...})
        await engine.shutdown()

    For tests and local development, pass ready-made repositories instead of
    a MongoDB URI:

        store = InMemoryRepository(default_registry())
        engine = StorefrontEngine(
            StoreConfig(mongo_uri="memory://", db_name="test"),
            primary=MappedRepository(store),
            secondary=store,
        )
    """

    def __init__(
        self,
        config: StoreConfig | None = None,
        registry: SchemaRegistry | None = None,
        rules: list[DerivedRule] | None = None,
        primary: DocumentRepository | None = None,
        secondary: DocumentRepository | None = None,
        backoff: BackoffController | None = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            config: Configuration (defaults to one read from the environment)
            registry: Entity kinds (defaults to the built-in storefront kinds)
            rules: Derived-entity rules (defaults to the payment request rule)
            primary: Repository of the mapped path; skips MongoDB setup when
                given together with ``secondary``
            secondary: Repository of the raw path
            backoff: Backoff controller (inject one with a fake sleep in tests)
        """
        self.config = config or StoreConfig()
        self.registry = registry or default_registry()
        self._rules = rules if rules is not None else [payment_request_rule()]
        self._primary = primary
        self._secondary = secondary
        self._backoff = backoff or BackoffController()

        self._connection_manager: ConnectionManager | None = None
        self._facade: PersistenceFacade | None = None
        self._orchestrator: DerivedEntityOrchestrator | None = None
        self._health_checker = HealthChecker()
        self._initialized = False

    async def initialize(self) -> None:
        """
        Connect, ensure indexes and wire the persistence components.

        Raises:
            ConfigurationError: If the configuration is invalid, or a rule's
                target kind has no unique index on derivedKey
            InitializationError: If neither access path reaches MongoDB
        """
        if self._initialized:
            logger.warning("StorefrontEngine already initialized. Skipping re-initialization.")
            return

        self.config.validate()

        if self._primary is None or self._secondary is None:
            await self._connect()

        selector = AccessPathSelector(
            primary=self._primary,
            secondary=self._secondary,
            backoff=self._backoff,
            primary_policy=self.config.primary_policy(),
            secondary_policy=self.config.secondary_policy(),
        )
        slugs = SlugAllocator(
            self._backoff,
            policy=self.config.probe_policy(),
            degraded_mode=self.config.slug_degraded_mode,
        )
        self._facade = PersistenceFacade(
            selector,
            self.registry,
            slugs,
            PlaceholderSynthesizer(self.registry),
            placeholder_list_size=self.config.placeholder_list_size,
        )
        self._orchestrator = DerivedEntityOrchestrator(self._facade, self._rules)
        self._facade.subscribe(self._orchestrator.on_created)

        primary, secondary = self._primary, self._secondary

        async def access_paths():
            return await check_access_paths(primary, secondary)

        self._health_checker.register_check(access_paths)

        self._initialized = True
        contextual_logger.info(
            "StorefrontEngine initialized",
            extra={
                "kinds": self.registry.kinds,
                "rules": [rule.name for rule in self._rules],
                "slug_degraded_mode": self.config.slug_degraded_mode,
            },
        )

    async def _connect(self) -> None:
        self._connection_manager = ConnectionManager(
            mongo_uri=self.config.mongo_uri,
            db_name=self.config.db_name,
            max_pool_size=self.config.max_pool_size,
            min_pool_size=self.config.min_pool_size,
            server_selection_timeout_ms=self.config.server_selection_timeout_ms,
            direct_timeout_ms=self.config.direct_timeout_ms,
        )
        await self._connection_manager.initialize()

        mapped_store = MongoRepository(self._connection_manager.primary_db, self.registry)
        direct_store = MongoRepository(self._connection_manager.direct_db, self.registry)

        index_store = direct_store if self._connection_manager.degraded else mapped_store
        indexes = await index_store.ensure_indexes()
        logger.info(f"Unique indexes in place: {indexes}")

        self._primary = MappedRepository(mapped_store)
        self._secondary = direct_store

    @property
    def facade(self) -> PersistenceFacade:
        """
        Get the persistence facade.

        Raises:
            RuntimeError: If the engine is not initialized
        """
        if not self._initialized or self._facade is None:
            raise RuntimeError("StorefrontEngine not initialized. Call initialize() first.")
        return self._facade

    @property
    def orchestrator(self) -> DerivedEntityOrchestrator:
        if not self._initialized or self._orchestrator is None:
            raise RuntimeError("StorefrontEngine not initialized. Call initialize() first.")
        return self._orchestrator

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def health(self) -> dict[str, Any]:
        """Health of both access paths (see ``check_access_paths``)."""
        if not self._initialized:
            return {"status": "unhealthy", "checks": [], "message": "Engine not initialized"}
        return await self._health_checker.check_all()

    async def shutdown(self) -> None:
        """Close connections. Safe to call more than once."""
        if not self._initialized:
            return
        if self._connection_manager is not None:
            await self._connection_manager.shutdown()
            self._connection_manager = None
            self._primary = None
            self._secondary = None
        self._facade = None
        self._orchestrator = None
        self._health_checker = HealthChecker()
        self._initialized = False
        contextual_logger.info("StorefrontEngine shut down")
