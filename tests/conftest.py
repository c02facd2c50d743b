"""
Pytest configuration and shared fixtures for MDB_STOREFRONT tests.

This module provides:
- An in-memory store behind both access paths
- A repository wrapper that injects failures per method
- A fake sleep so backoff never waits in tests
- A fully wired facade and orchestrator
"""

import random
from typing import Any, Dict, List

import pytest

from mdb_storefront.core.backoff import BackoffController
from mdb_storefront.core.facade import PersistenceFacade
from mdb_storefront.core.orchestrator import DerivedEntityOrchestrator, payment_request_rule
from mdb_storefront.core.placeholders import PlaceholderSynthesizer
from mdb_storefront.core.selector import AccessPathSelector
from mdb_storefront.core.slugs import SlugAllocator
from mdb_storefront.core.types import RetryPolicy
from mdb_storefront.observability import get_metrics_collector
from mdb_storefront.repositories import DocumentRepository, InMemoryRepository, MappedRepository
from mdb_storefront.schemas import SchemaRegistry, default_registry

# ============================================================================
# TEST DOUBLES
# ============================================================================


class FakeSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FlakyRepository(DocumentRepository):
    """
    Repository wrapper that fails or short-circuits selected methods.

    ``fail_next`` queues exceptions for the next calls of a method,
    ``fail_always`` makes every call of a method raise, ``go_down`` makes
    every method raise and ``return_next`` queues canned return values.
    """

    METHODS = ("insert", "get", "find", "count", "update", "ping")

    def __init__(self, inner: DocumentRepository) -> None:
        super().__init__(inner.registry)
        self.inner = inner
        self.calls: List[str] = []
        self._queued_errors: Dict[str, List[BaseException]] = {}
        self._persistent_errors: Dict[str, BaseException] = {}
        self._queued_results: Dict[str, List[Any]] = {}

    def fail_next(self, method: str, *errors: BaseException) -> None:
        self._queued_errors.setdefault(method, []).extend(errors)

    def fail_always(self, method: str, error: BaseException) -> None:
        self._persistent_errors[method] = error

    def go_down(self, error: BaseException) -> None:
        for method in self.METHODS:
            self.fail_always(method, error)

    def return_next(self, method: str, *values: Any) -> None:
        self._queued_results.setdefault(method, []).extend(values)

    def heal(self) -> None:
        self._queued_errors.clear()
        self._persistent_errors.clear()
        self._queued_results.clear()

    def call_count(self, method: str) -> int:
        return self.calls.count(method)

    async def _call(self, method: str, *args: Any, **kwargs: Any) -> Any:
        self.calls.append(method)
        if method in self._persistent_errors:
            raise self._persistent_errors[method]
        queued = self._queued_errors.get(method)
        if queued:
            raise queued.pop(0)
        results = self._queued_results.get(method)
        if results:
            return results.pop(0)
        return await getattr(self.inner, method)(*args, **kwargs)

    async def insert(self, kind, fields):
        return await self._call("insert", kind, fields)

    async def get(self, kind, id):
        return await self._call("get", kind, id)

    async def find(self, kind, filter=None, skip=0, limit=100, sort=None):
        return await self._call("find", kind, filter, skip=skip, limit=limit, sort=sort)

    async def count(self, kind, filter=None):
        return await self._call("count", kind, filter)

    async def update(self, kind, id, patch, expected_version=None):
        return await self._call("update", kind, id, patch, expected_version)

    async def ping(self):
        return await self._call("ping")


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture(autouse=True)
def reset_metrics():
    """Start every test with an empty global metrics collector."""
    get_metrics_collector().reset()
    yield
    get_metrics_collector().reset()


@pytest.fixture
def registry() -> SchemaRegistry:
    return default_registry()


@pytest.fixture
def store(registry: SchemaRegistry) -> InMemoryRepository:
    """The single in-memory store both access paths read and write."""
    return InMemoryRepository(registry)


@pytest.fixture
def primary(store: InMemoryRepository) -> FlakyRepository:
    """Mapped (validating) access path over the shared store."""
    return FlakyRepository(MappedRepository(store))


@pytest.fixture
def secondary(store: InMemoryRepository) -> FlakyRepository:
    """Raw access path over the shared store."""
    return FlakyRepository(store)


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def backoff(fake_sleep: FakeSleep) -> BackoffController:
    return BackoffController(sleep=fake_sleep, rng=random.Random(42))


@pytest.fixture
def primary_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=0.1, multiplier=2.0, max_delay=1.0, timeout=1.0)


@pytest.fixture
def secondary_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=2, base_delay=0.5, multiplier=2.0, max_delay=5.0, timeout=2.0)


@pytest.fixture
def selector(
    primary: FlakyRepository,
    secondary: FlakyRepository,
    backoff: BackoffController,
    primary_policy: RetryPolicy,
    secondary_policy: RetryPolicy,
) -> AccessPathSelector:
    return AccessPathSelector(primary, secondary, backoff, primary_policy, secondary_policy)


@pytest.fixture
def synthesizer(registry: SchemaRegistry) -> PlaceholderSynthesizer:
    return PlaceholderSynthesizer(registry)


@pytest.fixture
def facade(
    selector: AccessPathSelector,
    registry: SchemaRegistry,
    backoff: BackoffController,
    synthesizer: PlaceholderSynthesizer,
) -> PersistenceFacade:
    return PersistenceFacade(selector, registry, SlugAllocator(backoff), synthesizer)


@pytest.fixture
def orchestrator(facade: PersistenceFacade) -> DerivedEntityOrchestrator:
    """Orchestrator with the payment request rule, subscribed to the facade."""
    orchestrator = DerivedEntityOrchestrator(facade, [payment_request_rule()])
    facade.subscribe(orchestrator.on_created)
    return orchestrator


@pytest.fixture
def oak_chair() -> Dict[str, Any]:
    return {"name": "Oak Chair", "price": 120, "category": "chairs", "stock": 5}


@pytest.fixture
def upi_order() -> Dict[str, Any]:
    return {
        "user": "user-1",
        "orderItems": [
            {"name": "Oak Chair", "quantity": 2, "price": 2250, "product": "product-1"}
        ],
        "paymentMethod": "upi",
        "totalPrice": 4500,
        "isPaid": False,
    }
