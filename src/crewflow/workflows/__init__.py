"""Marketplace workflows: orders, bookings, shipments, invoicing and webhooks."""

from crewflow.workflows.bookings import BookingWorkflow, QuoteLine, QuoteLineUpdate
from crewflow.workflows.context import MarketplaceContext, Repositories, new_token, utc_now
from crewflow.workflows.invoicing import InvoiceLedger
from crewflow.workflows.orders import OrderLine, OrderWorkflow
from crewflow.workflows.shipments import ShipmentOrchestrator, build_parcel
from crewflow.workflows.webhooks import PaymentWebhookReconciler, TrackingWebhookHandler

__all__ = [
    "BookingWorkflow",
    "InvoiceLedger",
    "MarketplaceContext",
    "OrderLine",
    "OrderWorkflow",
    "PaymentWebhookReconciler",
    "QuoteLine",
    "QuoteLineUpdate",
    "Repositories",
    "ShipmentOrchestrator",
    "TrackingWebhookHandler",
    "build_parcel",
    "new_token",
    "utc_now",
]
