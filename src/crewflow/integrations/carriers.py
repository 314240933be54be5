"""
Carrier / shipping provider interface.

The engine only orchestrates: it asks a provider for rates once per
shipment, buys the selected label, and maps the provider's tracking
vocabulary onto ``ShipmentStatus``.
"""

import hashlib
import hmac
import json
import logging
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from crewflow.exceptions import SignatureVerificationError, ValidationError
from crewflow.types import NotificationPriority, OrderItemStatus, ShipmentStatus

logger = logging.getLogger(__name__)

TRACKING_SIGNATURE_HEADER = "X-Hmac-Signature"
TRACKING_SIGNATURE_PREFIX = "hmac-sha256-hex="


class Address(BaseModel):
    name: str = ""
    street1: str = ""
    street2: str | None = None
    city: str = ""
    state: str = ""
    zip: str = ""
    country: str = "US"
    phone: str | None = None
    email: str | None = None


class Parcel(BaseModel):
    """Parcel dimensions in inches and weight in ounces."""

    length: Decimal = Decimal("0")
    width: Decimal = Decimal("0")
    height: Decimal = Decimal("0")
    weight: Decimal = Decimal("0")


class CarrierRate(BaseModel):
    rate_id: str
    carrier: str
    service: str
    rate: Decimal
    currency: str = "USD"
    estimated_days: int | None = None


class CarrierShipment(BaseModel):
    carrier_shipment_id: str
    rates: list[CarrierRate] = Field(default_factory=list)


class PurchasedLabel(BaseModel):
    tracking_code: str
    label_url: str
    carrier: str


class TrackingUpdate(BaseModel):
    """Normalized tracking webhook event."""

    event_type: str
    tracking_code: str
    status: str
    payload: dict[str, Any] = Field(default_factory=dict)


@runtime_checkable
class CarrierProvider(Protocol):
    """
    Rate quoting and label purchase.

    Implementations raise ``ExternalServiceError`` when the provider fails.
    """

    async def create_shipment(
        self, from_address: Address, to_address: Address, parcel: Parcel
    ) -> CarrierShipment: ...

    async def buy_label(self, carrier_shipment_id: str, rate_id: str) -> PurchasedLabel: ...


# Provider tracking status -> shipment status
TRACKING_STATUS_MAP: dict[str, ShipmentStatus] = {
    "unknown": ShipmentStatus.CREATED,
    "pre_transit": ShipmentStatus.LABEL_PURCHASED,
    "in_transit": ShipmentStatus.SHIPPED,
    "out_for_delivery": ShipmentStatus.SHIPPED,
    "delivered": ShipmentStatus.DELIVERED,
    "failure": ShipmentStatus.FAILED,
    "return_to_sender": ShipmentStatus.RETURNED_TO_SUPPLIER,
    "cancelled": ShipmentStatus.FAILED,
}

# Shipment statuses that propagate onto the shipment's order items
SHIPMENT_TO_ITEM_STATUS: dict[ShipmentStatus, OrderItemStatus] = {
    ShipmentStatus.SHIPPED: OrderItemStatus.SHIPPED,
    ShipmentStatus.DELIVERED: OrderItemStatus.DELIVERED,
    ShipmentStatus.FAILED: OrderItemStatus.CANCELLED,
    ShipmentStatus.RETURNED_TO_SUPPLIER: OrderItemStatus.CANCELLED,
}

NOTIFICATION_PRIORITIES: dict[ShipmentStatus, NotificationPriority] = {
    ShipmentStatus.SHIPPED: NotificationPriority.MEDIUM,
    ShipmentStatus.DELIVERED: NotificationPriority.HIGH,
    ShipmentStatus.FAILED: NotificationPriority.URGENT,
    ShipmentStatus.RETURNED_TO_SUPPLIER: NotificationPriority.URGENT,
}


def map_tracking_status(carrier_status: str) -> ShipmentStatus | None:
    """Map a provider tracking status; None for statuses we don't track."""
    return TRACKING_STATUS_MAP.get(carrier_status.strip().lower())


def sign_tracking_payload(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"{TRACKING_SIGNATURE_PREFIX}{digest}"


def verify_tracking_signature(body: bytes, header: str | None, secret: str) -> None:
    """
    Check the ``X-Hmac-Signature`` header of a tracking webhook.

    Raises:
        SignatureVerificationError: Missing, malformed or wrong signature
    """
    if not header:
        raise SignatureVerificationError("tracking", "missing signature header")
    if not header.startswith(TRACKING_SIGNATURE_PREFIX):
        raise SignatureVerificationError("tracking", "unsupported signature scheme")
    expected = sign_tracking_payload(body, secret)
    if not hmac.compare_digest(expected, header.strip()):
        raise SignatureVerificationError("tracking", "signature mismatch")


def parse_tracking_event(body: bytes) -> TrackingUpdate | None:
    """
    Parse a tracking webhook body.

    Returns None for event types other than tracker.created/tracker.updated.

    Raises:
        ValidationError: If the body is not JSON or lacks tracking data
    """
    try:
        payload = json.loads(body)
    except ValueError as e:
        raise ValidationError(f"tracking webhook body is not JSON: {e}") from e

    event_type = payload.get("description") if isinstance(payload, dict) else None
    if not event_type:
        raise ValidationError("tracking webhook is missing its event description")
    if event_type not in ("tracker.created", "tracker.updated"):
        logger.debug("Ignoring tracking webhook event %s", event_type)
        return None

    result = payload.get("result") or {}
    tracking_code = result.get("tracking_code")
    status = result.get("status")
    if not tracking_code or not status:
        raise ValidationError("tracking webhook is missing tracking_code or status")
    return TrackingUpdate(
        event_type=event_type,
        tracking_code=tracking_code,
        status=status,
        payload=result,
    )


__all__ = [
    "Address",
    "CarrierProvider",
    "CarrierRate",
    "CarrierShipment",
    "NOTIFICATION_PRIORITIES",
    "Parcel",
    "PurchasedLabel",
    "SHIPMENT_TO_ITEM_STATUS",
    "TRACKING_SIGNATURE_HEADER",
    "TRACKING_STATUS_MAP",
    "TrackingUpdate",
    "map_tracking_status",
    "parse_tracking_event",
    "sign_tracking_payload",
    "verify_tracking_signature",
]
