"""
Shared pytest fixtures for the backfill engine tests.

This module provides:
- Configuration fixtures (config, make_config)
- Store fixtures (store, seeded stores for the common scenarios)
- Component fixtures (cache, events, recorder, mock_tracer, clock)
- Seeding helpers (seed)

All fixtures are function scoped.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest
import pytest_asyncio

from backfill.cache import OwnerCache
from backfill.config import BackfillConfig
from backfill.events import EventEmitter, RecordingListener
from backfill.observability import MockTracer
from backfill.stores.in_memory import InMemoryDocumentStore

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for tests."""
    config.addinivalue_line("markers", "sqlite: marks tests that require SQLite (aiosqlite)")


# ============================================================================
# Helpers
# ============================================================================


class FakeClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Seeder:
    """Writes owner and product documents using the configured field names."""

    def __init__(self, store: InMemoryDocumentStore, config: BackfillConfig) -> None:
        self.store = store
        self.config = config

    async def owner(self, owner_id: str, company_id: str | None, **fields: Any) -> None:
        data: dict[str, Any] = {"email": f"{owner_id.lower()}@example.com", **fields}
        if company_id is not None:
            data[self.config.value_field] = company_id
        await self.store.put(self.config.owner_collection, owner_id, data)

    async def product(
        self,
        product_id: str,
        owner_id: str | None,
        company_id: str | None = None,
        **fields: Any,
    ) -> None:
        data: dict[str, Any] = {"name": f"Product {product_id}", "status": "active", **fields}
        if owner_id is not None:
            data[self.config.owner_field] = owner_id
        if company_id is not None:
            data[self.config.value_field] = company_id
        await self.store.put(self.config.product_collection, product_id, data)

    async def products(
        self,
        owner_id: str,
        count: int,
        prefix: str = "p",
        company_id: str | None = None,
    ) -> list[str]:
        """Store ``count`` products for one owner; ids sort in creation order."""
        ids = [f"{prefix}-{owner_id}-{i:03d}" for i in range(count)]
        for product_id in ids:
            await self.product(product_id, owner_id, company_id)
        return ids

    async def get_product(self, product_id: str) -> dict[str, Any]:
        doc = await self.store.get_by_id(self.config.product_collection, product_id)
        assert doc is not None, f"product {product_id} missing"
        return dict(doc.data)


# =============================================================================
# Component fixtures
# =============================================================================


@pytest.fixture
def config() -> BackfillConfig:
    """Default configuration with a batch size small enough to page in tests."""
    return BackfillConfig(batch_size=2)


@pytest.fixture
def make_config() -> Callable[..., BackfillConfig]:
    """Factory for configs that differ from the ``config`` fixture."""

    def _make(**overrides: Any) -> BackfillConfig:
        return BackfillConfig(batch_size=2).with_overrides(**overrides)

    return _make


@pytest.fixture
def store() -> InMemoryDocumentStore:
    """Provide a fresh, empty in-memory store."""
    return InMemoryDocumentStore(enable_tracing=False)


@pytest.fixture
def seed(store: InMemoryDocumentStore, config: BackfillConfig) -> Seeder:
    return Seeder(store, config)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(store: InMemoryDocumentStore, config: BackfillConfig) -> OwnerCache:
    return OwnerCache(store, config, enable_tracing=False)


@pytest.fixture
def events() -> EventEmitter:
    return EventEmitter()


@pytest.fixture
def recorder(events: EventEmitter) -> RecordingListener:
    """A listener subscribed to every event of the ``events`` fixture."""
    listener = RecordingListener()
    events.subscribe(listener)
    return listener


@pytest.fixture
def mock_tracer() -> MockTracer:
    return MockTracer()


# =============================================================================
# Seeded stores
# =============================================================================


@pytest_asyncio.fixture
async def scenario_store(seed: Seeder) -> InMemoryDocumentStore:
    """
    Two sellers: U1 has company C1 and two products without one; U2 has a
    blank company and one product without one.
    """
    await seed.owner("U1", "C1")
    await seed.owner("U2", "")
    await seed.product("P1", "U1")
    await seed.product("P2", "U1")
    await seed.product("P3", "U2")
    return seed.store


@pytest_asyncio.fixture
async def mixed_store(seed: Seeder) -> InMemoryDocumentStore:
    """
    A store covering every eligibility class.

    - U1 (C1): P1, P2 missing the value; P4 already migrated with C-OLD
    - U2 (blank): P3 missing the value
    - U3 (no document): P6 missing the value
    - P5 has no owner
    """
    await seed.owner("U1", "C1")
    await seed.owner("U2", "")
    await seed.product("P1", "U1")
    await seed.product("P2", "U1")
    await seed.product("P3", "U2")
    await seed.product("P4", "U1", "C-OLD")
    await seed.product("P5", None)
    await seed.product("P6", "U3")
    return seed.store
