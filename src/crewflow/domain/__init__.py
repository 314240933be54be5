"""Event-sourced lifecycle aggregates: orders, bookings, quotes, invoices, shipments."""

from crewflow.domain.bookings import BookingAggregate, BookingState
from crewflow.domain.invoices import InvoiceAggregate, InvoiceLine, InvoiceState
from crewflow.domain.orders import OrderAggregate, OrderItem, OrderState
from crewflow.domain.quotes import QuoteAggregate, QuoteItem, QuoteState
from crewflow.domain.shipments import ShipmentAggregate, ShipmentRate, ShipmentState

__all__ = [
    "BookingAggregate",
    "BookingState",
    "InvoiceAggregate",
    "InvoiceLine",
    "InvoiceState",
    "OrderAggregate",
    "OrderItem",
    "OrderState",
    "QuoteAggregate",
    "QuoteItem",
    "QuoteState",
    "ShipmentAggregate",
    "ShipmentRate",
    "ShipmentState",
]
