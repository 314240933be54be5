"""Status vocabularies and common type definitions for crewflow."""

from enum import Enum
from typing import TypeVar
from uuid import UUID

from pydantic import BaseModel

# Type variable for aggregate state
TState = TypeVar("TState", bound=BaseModel)

AggregateId = UUID
Version = int


class OrderItemStatus(str, Enum):
    """Per-item (and aggregate) order status."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    DECLINED = "declined"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            OrderItemStatus.DELIVERED,
            OrderItemStatus.DECLINED,
            OrderItemStatus.CANCELLED,
        )


# The aggregate order status shares the item vocabulary.
OrderStatus = OrderItemStatus

# Lifecycle rank used to pick the least advanced status of a mixed order.
ORDER_PROGRESS: dict[OrderItemStatus, int] = {
    OrderItemStatus.PENDING: 0,
    OrderItemStatus.CONFIRMED: 1,
    OrderItemStatus.PROCESSING: 2,
    OrderItemStatus.SHIPPED: 3,
    OrderItemStatus.OUT_FOR_DELIVERY: 4,
    OrderItemStatus.DELIVERED: 5,
}


class PaymentStatus(str, Enum):
    PENDING = "pending"
    DEPOSIT_PAID = "deposit_paid"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    DECLINED = "declined"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            BookingStatus.COMPLETED,
            BookingStatus.DECLINED,
            BookingStatus.CANCELLED,
        )


class BookingQuoteStatus(str, Enum):
    """Quote progress as seen from the booking (derived from item statuses)."""

    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    PROVIDED = "provided"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EDIT_REQUESTED = "edit_requested"
    EDITED = "edited"
    PARTIALLY_ACCEPTED = "partially_accepted"


class CompletionStatus(str, Enum):
    PENDING = "pending"
    REQUEST_COMPLETED = "request_completed"
    COMPLETED = "completed"
    REJECTED = "rejected"


class QuoteItemStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EDIT_REQUESTED = "edit_requested"
    EDITED = "edited"


class QuoteStatus(str, Enum):
    """Lifecycle of the quote record itself."""

    QUOTED = "quoted"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    DEPOSIT_PAID = "deposit_paid"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class InvoiceStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class TransactionType(str, Enum):
    ORDER = "order"
    BOOKING = "booking"


class InvoicePhase(str, Enum):
    FULL = "full"
    DEPOSIT = "deposit"
    BALANCE = "balance"


class ShipmentStatus(str, Enum):
    CREATED = "created"
    RATES_FETCHED = "rates_fetched"
    RATE_SELECTED = "rate_selected"
    LABEL_PURCHASED = "label_purchased"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    FAILED = "failed"
    RETURNED_TO_SUPPLIER = "returned_to_supplier"


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"
