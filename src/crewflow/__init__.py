"""
crewflow - order and booking lifecycle engine for a services marketplace.

This library provides:
- Event-sourced orders, bookings, quotes, invoices and shipments
- Role-scoped transition tables for every status field
- Workflows that return their email and notification side effects
- Payment and carrier webhook reconciliation
- In-memory and SQLite event stores, Redis-backed job queue
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("crewflow")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from crewflow.actors import (
    PAYMENT_WEBHOOK,
    TRACKING_WEBHOOK,
    Actor,
    ActorKind,
    Admin,
    BusinessKind,
    Customer,
    SupplyingBusiness,
    SystemActor,
)
from crewflow.aggregates import AggregateRepository, AggregateRoot, DeclarativeAggregate
from crewflow.bus import EventBus, InMemoryEventBus
from crewflow.catalog import Business, Catalog, CustomerProfile, InMemoryCatalog, Product, Service
from crewflow.config import MarketplaceConfig, WebhookConfig
from crewflow.effects import EffectDispatcher, EmailEffect, NotificationEffect, WorkflowResult
from crewflow.events import DomainEvent, register_event
from crewflow.exceptions import (
    AggregateNotFoundError,
    AlreadyProcessedError,
    CrewflowError,
    ExternalServiceError,
    IllegalTransitionError,
    InvalidTokenError,
    NotFoundError,
    OptimisticLockError,
    ReconciliationError,
    SignatureVerificationError,
    UnauthorizedError,
    ValidationError,
)
from crewflow.stores import EventStore, InMemoryEventStore
from crewflow.stores.sqlite import SQLiteEventStore
from crewflow.workflows import (
    BookingWorkflow,
    MarketplaceContext,
    OrderLine,
    OrderWorkflow,
    PaymentWebhookReconciler,
    QuoteLine,
    ShipmentOrchestrator,
    TrackingWebhookHandler,
)

__all__ = [
    "__version__",
    "PAYMENT_WEBHOOK",
    "TRACKING_WEBHOOK",
    "Actor",
    "ActorKind",
    "Admin",
    "AggregateNotFoundError",
    "AggregateRepository",
    "AggregateRoot",
    "AlreadyProcessedError",
    "BookingWorkflow",
    "Business",
    "BusinessKind",
    "Catalog",
    "CrewflowError",
    "Customer",
    "CustomerProfile",
    "DeclarativeAggregate",
    "DomainEvent",
    "EffectDispatcher",
    "EmailEffect",
    "EventBus",
    "EventStore",
    "ExternalServiceError",
    "IllegalTransitionError",
    "InMemoryCatalog",
    "InMemoryEventBus",
    "InMemoryEventStore",
    "InvalidTokenError",
    "MarketplaceConfig",
    "MarketplaceContext",
    "NotFoundError",
    "NotificationEffect",
    "OptimisticLockError",
    "OrderLine",
    "OrderWorkflow",
    "PaymentWebhookReconciler",
    "Product",
    "QuoteLine",
    "ReconciliationError",
    "SQLiteEventStore",
    "Service",
    "ShipmentOrchestrator",
    "SignatureVerificationError",
    "SupplyingBusiness",
    "SystemActor",
    "TrackingWebhookHandler",
    "UnauthorizedError",
    "ValidationError",
    "WorkflowResult",
    "register_event",
]
