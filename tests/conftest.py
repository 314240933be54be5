"""
Shared pytest fixtures for the crewflow tests.

This module provides:
- A fully wired in-memory marketplace (harness) with fakes
- Catalog fixtures (customer, business, product, service)
- Event store and event bus fixtures
- SQLite availability check and skip marker
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

import pytest
import pytest_asyncio

from crewflow.actors import Customer, SupplyingBusiness
from crewflow.bus.memory import InMemoryEventBus
from crewflow.catalog import Business, Product, Service
from crewflow.stores.in_memory import InMemoryEventStore
from crewflow.testing import MarketplaceHarness

if TYPE_CHECKING:
    from crewflow.stores.sqlite import SQLiteEventStore

# ============================================================================
# SQLite Availability Check
# ============================================================================

AIOSQLITE_AVAILABLE = False
try:
    import aiosqlite  # noqa: F401

    AIOSQLITE_AVAILABLE = True
except ImportError:
    pass

skip_if_no_aiosqlite = pytest.mark.skipif(not AIOSQLITE_AVAILABLE, reason="aiosqlite not installed")


# ============================================================================
# Infrastructure Fixtures
# ============================================================================


@pytest.fixture
def event_store() -> InMemoryEventStore:
    """Provide a fresh in-memory event store with tracing disabled."""
    return InMemoryEventStore(enable_tracing=False)


@pytest.fixture
def event_bus() -> InMemoryEventBus:
    """Provide an in-memory event bus that records published events."""
    return InMemoryEventBus(enable_tracing=False, record_events=True)


@pytest_asyncio.fixture
async def sqlite_event_store() -> AsyncGenerator[SQLiteEventStore, None]:
    """Provide an initialized in-memory SQLite event store."""
    if not AIOSQLITE_AVAILABLE:
        pytest.skip("aiosqlite not installed")
    from crewflow.stores.sqlite import SQLiteEventStore

    async with SQLiteEventStore(":memory:", enable_tracing=False) as store:
        await store.initialize()
        yield store


# ============================================================================
# Marketplace Fixtures
# ============================================================================


@pytest.fixture
def harness() -> MarketplaceHarness:
    """Provide a wired marketplace with fake payments, carrier and job queue."""
    return MarketplaceHarness()


@pytest.fixture
def customer(harness: MarketplaceHarness) -> Customer:
    return harness.add_customer()


@pytest.fixture
def business(harness: MarketplaceHarness) -> Business:
    """A distributor that ships its own orders at a flat $8.00."""
    return harness.add_business(handles_shipping=True, default_shipping_cost=Decimal("8.00"))


@pytest.fixture
def business_actor(business: Business) -> SupplyingBusiness:
    return business.as_actor()


@pytest_asyncio.fixture
async def product(harness: MarketplaceHarness, business: Business) -> Product:
    """A $40.00 product with 10 units in stock."""
    return await harness.add_product(business, name="Safety Boots", price=Decimal("40.00"), stock=10)


@pytest.fixture
def service(harness: MarketplaceHarness, business: Business) -> Service:
    """A flat-price $100.00 service."""
    return harness.add_service(business, name="Site Survey", price=Decimal("100.00"))


@pytest.fixture
def quotable_service(harness: MarketplaceHarness, business: Business) -> Service:
    """A service with a $50.00 base price that requires a quote."""
    return harness.add_service(business, name="Deep Clean", price=Decimal("50.00"), quotable=True)


@pytest.fixture
def aggregate_id() -> UUID:
    return uuid4()
