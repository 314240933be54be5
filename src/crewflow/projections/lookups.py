"""
Lookup indexes the workflows need to find aggregates by external keys.

- confirmation token -> order item or booking
- gateway invoice id -> invoice
- order -> invoices, booking -> invoice per phase
- order -> shipments, (order, business) -> shipment
- tracking code -> shipment

The projection is fed by the event bus after each save, so an index entry
exists as soon as the event that creates it is durable.
"""

import asyncio
import logging
from dataclasses import dataclass
from uuid import UUID

from crewflow.domain.bookings import BookingRequested
from crewflow.domain.invoices import InvoiceDrafted
from crewflow.domain.orders import OrderPlaced
from crewflow.domain.shipments import ShipmentCreated, ShipmentLabelPurchased
from crewflow.handlers.decorators import handles
from crewflow.projections.base import DeclarativeProjection
from crewflow.types import InvoicePhase

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenTarget:
    """What a confirmation token confirms: an order item or a booking."""

    aggregate_type: str
    aggregate_id: UUID
    item_id: UUID | None = None


class LookupProjection(DeclarativeProjection):
    """In-memory lookup indexes."""

    def __init__(self) -> None:
        super().__init__()
        self._lock = asyncio.Lock()
        self._tokens: dict[str, TokenTarget] = {}
        self._invoices_by_gateway_id: dict[str, UUID] = {}
        self._order_invoices: dict[UUID, list[UUID]] = {}
        self._booking_invoices: dict[UUID, dict[InvoicePhase, list[UUID]]] = {}
        self._order_shipments: dict[UUID, list[UUID]] = {}
        self._business_shipments: dict[tuple[UUID, UUID], UUID] = {}
        self._tracking_codes: dict[str, UUID] = {}

    # -- handlers ------------------------------------------------------------

    @handles(OrderPlaced)
    async def _on_order_placed(self, event: OrderPlaced) -> None:
        async with self._lock:
            for item in event.items:
                self._tokens[item.confirmation_token] = TokenTarget(
                    "Order", event.aggregate_id, item.item_id
                )

    @handles(BookingRequested)
    async def _on_booking_requested(self, event: BookingRequested) -> None:
        async with self._lock:
            self._tokens[event.confirmation_token] = TokenTarget("Booking", event.aggregate_id)

    @handles(InvoiceDrafted)
    async def _on_invoice_drafted(self, event: InvoiceDrafted) -> None:
        async with self._lock:
            self._invoices_by_gateway_id[event.gateway_invoice_id] = event.aggregate_id
            if event.order_id is not None:
                self._order_invoices.setdefault(event.order_id, []).append(event.aggregate_id)
            if event.booking_id is not None:
                phases = self._booking_invoices.setdefault(event.booking_id, {})
                phases.setdefault(event.phase, []).append(event.aggregate_id)

    @handles(ShipmentCreated)
    async def _on_shipment_created(self, event: ShipmentCreated) -> None:
        async with self._lock:
            self._order_shipments.setdefault(event.order_id, []).append(event.aggregate_id)
            self._business_shipments[(event.order_id, event.business_id)] = event.aggregate_id

    @handles(ShipmentLabelPurchased)
    async def _on_label_purchased(self, event: ShipmentLabelPurchased) -> None:
        async with self._lock:
            self._tracking_codes[event.tracking_number] = event.aggregate_id

    async def reset(self) -> None:
        async with self._lock:
            self._tokens.clear()
            self._invoices_by_gateway_id.clear()
            self._order_invoices.clear()
            self._booking_invoices.clear()
            self._order_shipments.clear()
            self._business_shipments.clear()
            self._tracking_codes.clear()

    # -- queries -------------------------------------------------------------

    def find_token(self, token: str) -> TokenTarget | None:
        return self._tokens.get(token)

    def find_invoice(self, gateway_invoice_id: str) -> UUID | None:
        return self._invoices_by_gateway_id.get(gateway_invoice_id)

    def invoices_for_order(self, order_id: UUID) -> list[UUID]:
        return list(self._order_invoices.get(order_id, []))

    def invoices_for_booking(self, booking_id: UUID, phase: InvoicePhase) -> list[UUID]:
        """Invoice ids issued for a booking phase, oldest first."""
        return list(self._booking_invoices.get(booking_id, {}).get(phase, []))

    def shipments_for_order(self, order_id: UUID) -> list[UUID]:
        return list(self._order_shipments.get(order_id, []))

    def shipment_for(self, order_id: UUID, business_id: UUID) -> UUID | None:
        return self._business_shipments.get((order_id, business_id))

    def find_shipment_by_tracking(self, tracking_code: str) -> UUID | None:
        return self._tracking_codes.get(tracking_code)


__all__ = ["LookupProjection", "TokenTarget"]
