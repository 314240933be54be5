"""
Explicitly constructed dependencies shared by the workflows.

Nothing in the engine reaches for a module-level client. Every workflow
takes a ``MarketplaceContext`` holding the repositories, the lookup
projection and the external collaborators.

Example:
    >>> context = MarketplaceContext.create(
    ...     catalog=catalog,
    ...     payments=gateway,
    ...     carrier=carrier,
    ... )
    >>> orders = OrderWorkflow(context)
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from crewflow.aggregates.repository import AggregateRepository
from crewflow.bus.interface import EventBus
from crewflow.bus.memory import InMemoryEventBus
from crewflow.catalog import Catalog
from crewflow.config import MarketplaceConfig, WebhookConfig
from crewflow.domain.bookings import BookingAggregate
from crewflow.domain.invoices import InvoiceAggregate
from crewflow.domain.orders import OrderAggregate
from crewflow.domain.quotes import QuoteAggregate
from crewflow.domain.shipments import ShipmentAggregate
from crewflow.integrations.carriers import CarrierProvider
from crewflow.integrations.currency import CurrencyConverter
from crewflow.integrations.payments import PaymentGateway
from crewflow.inventory import InMemoryStockStore, InventoryLedger, StockStore
from crewflow.observability import Tracer, create_tracer
from crewflow.projections.lookups import LookupProjection
from crewflow.stores.in_memory import InMemoryEventStore
from crewflow.stores.interface import EventStore

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(UTC)


def new_token() -> str:
    """A 64 hex character single-use confirmation token."""
    return secrets.token_hex(32)


@dataclass
class Repositories:
    orders: AggregateRepository[OrderAggregate]
    bookings: AggregateRepository[BookingAggregate]
    quotes: AggregateRepository[QuoteAggregate]
    invoices: AggregateRepository[InvoiceAggregate]
    shipments: AggregateRepository[ShipmentAggregate]

    @classmethod
    def build(
        cls,
        event_store: EventStore,
        event_bus: EventBus,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> Repositories:
        def repo(factory: type, aggregate_type: str) -> AggregateRepository:
            return AggregateRepository(
                event_store=event_store,
                aggregate_factory=factory,
                aggregate_type=aggregate_type,
                event_publisher=event_bus,
                tracer=tracer,
                enable_tracing=enable_tracing,
            )

        return cls(
            orders=repo(OrderAggregate, "Order"),
            bookings=repo(BookingAggregate, "Booking"),
            quotes=repo(QuoteAggregate, "Quote"),
            invoices=repo(InvoiceAggregate, "Invoice"),
            shipments=repo(ShipmentAggregate, "Shipment"),
        )


@dataclass
class MarketplaceContext:
    """
    Everything a workflow needs.

    Attributes:
        repositories: Aggregate repositories sharing one event store
        lookups: Token, invoice, shipment and tracking indexes
        catalog: Products, services, businesses and customers
        inventory: Stock ledger for order items
        payments: Payment gateway client
        carrier: Shipping rate and label provider
        currency: Currency converter
        config: Marketplace business rules
        webhooks: Webhook secrets; required only by the webhook handlers
        clock: Current time source
        token_factory: Confirmation token generator
        event_bus: Bus the repositories publish saved events to
    """

    repositories: Repositories
    lookups: LookupProjection
    catalog: Catalog
    inventory: InventoryLedger
    payments: PaymentGateway
    carrier: CarrierProvider
    currency: CurrencyConverter
    config: MarketplaceConfig = field(default_factory=MarketplaceConfig)
    webhooks: WebhookConfig | None = None
    clock: Callable[[], datetime] = utc_now
    token_factory: Callable[[], str] = new_token
    event_bus: EventBus | None = None
    tracer: Tracer | None = None

    @classmethod
    def create(
        cls,
        *,
        catalog: Catalog,
        payments: PaymentGateway,
        carrier: CarrierProvider,
        event_store: EventStore | None = None,
        event_bus: EventBus | None = None,
        stock_store: StockStore | None = None,
        currency: CurrencyConverter | None = None,
        config: MarketplaceConfig | None = None,
        webhooks: WebhookConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
        token_factory: Callable[[], str] = new_token,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> MarketplaceContext:
        """
        Wire a context. Missing stores default to their in-memory versions.

        The lookup projection is subscribed to the bus here, so lookups are
        current as soon as ``AggregateRepository.save`` returns.
        """
        tracer = tracer or create_tracer(__name__, enable_tracing)
        event_store = event_store or InMemoryEventStore(tracer=tracer)
        event_bus = event_bus or InMemoryEventBus(tracer=tracer)
        lookups = LookupProjection()
        event_bus.subscribe_all(lookups)
        logger.debug("Wired marketplace context on %s", type(event_store).__name__)
        return cls(
            repositories=Repositories.build(event_store, event_bus, tracer=tracer),
            lookups=lookups,
            catalog=catalog,
            inventory=InventoryLedger(stock_store or InMemoryStockStore(), tracer=tracer),
            payments=payments,
            carrier=carrier,
            currency=currency or CurrencyConverter(clock=clock),
            config=config or MarketplaceConfig(),
            webhooks=webhooks,
            clock=clock,
            token_factory=token_factory,
            event_bus=event_bus,
            tracer=tracer,
        )

    def workflow_tracer(self, name: str) -> Tracer:
        return self.tracer or create_tracer(name, True)


__all__ = ["MarketplaceContext", "Repositories", "new_token", "utc_now"]
