"""
Payment gateway interface and webhook authentication.

All amounts cross this boundary as integer minor units. Gateway adapters
raise ``ExternalServiceError`` on failure; the engine never sees gateway
exception types.
"""

import hashlib
import hmac
import json
import logging
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from crewflow.exceptions import SignatureVerificationError, ValidationError

logger = logging.getLogger(__name__)

PAYMENT_SIGNATURE_HEADER = "Stripe-Signature"

INVOICE_PAID_EVENTS = frozenset({"invoice.paid", "invoice.payment_succeeded"})
INVOICE_FAILED_EVENTS = frozenset({"invoice.payment_failed"})
INVOICE_VOIDED_EVENTS = frozenset({"invoice.voided"})


class GatewayInvoice(BaseModel):
    """Gateway-side view of an invoice."""

    invoice_id: str
    customer_id: str
    status: str = "draft"
    hosted_invoice_url: str | None = None
    amount_due: int = 0
    currency: str = "USD"
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_dead(self) -> bool:
        """Void or uncollectible invoices are replaced instead of reused."""
        return self.status in ("void", "uncollectible")


@runtime_checkable
class PaymentGateway(Protocol):
    """Customer, invoice, transfer and refund operations of a payment provider."""

    async def create_customer(self, email: str, name: str, metadata: dict[str, str]) -> str: ...

    async def create_invoice(
        self,
        customer_id: str,
        currency: str,
        days_until_due: int,
        metadata: dict[str, str],
        description: str | None = None,
    ) -> GatewayInvoice: ...

    async def add_invoice_line(
        self,
        invoice_id: str,
        amount_minor: int,
        currency: str,
        description: str,
        metadata: dict[str, str] | None = None,
    ) -> None: ...

    async def finalize_invoice(self, invoice_id: str) -> GatewayInvoice: ...

    async def send_invoice(self, invoice_id: str) -> GatewayInvoice: ...

    async def retrieve_invoice(self, invoice_id: str) -> GatewayInvoice: ...

    async def void_invoice(self, invoice_id: str) -> GatewayInvoice: ...

    async def create_transfer(
        self,
        amount_minor: int,
        currency: str,
        destination: str,
        metadata: dict[str, str],
    ) -> str: ...

    async def refund_invoice(
        self,
        invoice_id: str,
        amount_minor: int,
        *,
        refund_application_fee: bool = False,
        reverse_transfer: bool = False,
        metadata: dict[str, str] | None = None,
    ) -> str: ...


class PaymentWebhookEvent(BaseModel):
    """A parsed gateway event about an invoice."""

    event_id: str
    event_type: str
    gateway_invoice_id: str | None = None
    paid_at: datetime | None = None
    amount_paid: int = 0
    failure_message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    data: dict[str, Any] = Field(default_factory=dict)


# Stripe-Signature format: HMAC-SHA256 over "<timestamp>.<raw body>", sent as
# "t=<timestamp>,v1=<hex digest>" with one v1 entry per active signing secret.
def sign_payment_payload(body: bytes, secret: str, timestamp: int) -> str:
    """Build a ``t=<ts>,v1=<hex>`` signature header for ``body``."""
    signed = f"{timestamp}.".encode() + body
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def verify_payment_signature(
    body: bytes,
    header: str | None,
    secret: str,
    tolerance: timedelta,
    now: datetime | None = None,
) -> None:
    """
    Verify a signed payment webhook.

    Raises:
        SignatureVerificationError: Missing or malformed header, stale
            timestamp, or no matching ``v1`` signature
    """
    if not header:
        raise SignatureVerificationError("payment", "missing signature header")

    timestamp: int | None = None
    signatures: list[str] = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise SignatureVerificationError("payment", "invalid timestamp") from None
        elif key == "v1":
            signatures.append(value)

    if timestamp is None or not signatures:
        raise SignatureVerificationError("payment", "malformed signature header")

    current = now or datetime.now(UTC)
    age = abs(current.timestamp() - timestamp)
    if age > tolerance.total_seconds():
        raise SignatureVerificationError("payment", "timestamp outside tolerance")

    expected = sign_payment_payload(body, secret, timestamp).split("v1=", 1)[1]
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise SignatureVerificationError("payment", "signature mismatch")


def parse_payment_event(body: bytes) -> PaymentWebhookEvent:
    """
    Parse a gateway event body.

    Raises:
        ValidationError: If the body is not a JSON event
    """
    try:
        payload = json.loads(body)
    except ValueError as e:
        raise ValidationError(f"payment webhook body is not JSON: {e}") from e
    if not isinstance(payload, dict) or "type" not in payload:
        raise ValidationError("payment webhook body is missing its event type")

    obj = (payload.get("data") or {}).get("object") or {}
    paid_at_ts = (obj.get("status_transitions") or {}).get("paid_at")
    failure = (obj.get("last_finalization_error") or {}).get("message")
    return PaymentWebhookEvent(
        event_id=str(payload.get("id", "")),
        event_type=payload["type"],
        gateway_invoice_id=obj.get("id"),
        paid_at=datetime.fromtimestamp(paid_at_ts, UTC) if paid_at_ts else None,
        amount_paid=int(obj.get("amount_paid") or 0),
        failure_message=failure,
        metadata=obj.get("metadata") or {},
        data=obj,
    )


__all__ = [
    "GatewayInvoice",
    "INVOICE_FAILED_EVENTS",
    "INVOICE_PAID_EVENTS",
    "INVOICE_VOIDED_EVENTS",
    "PAYMENT_SIGNATURE_HEADER",
    "PaymentGateway",
    "PaymentWebhookEvent",
    "parse_payment_event",
    "sign_payment_payload",
    "verify_payment_signature",
]
