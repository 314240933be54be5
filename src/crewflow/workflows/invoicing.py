"""
Invoice ledger: issues gateway invoices and keeps the Invoice aggregates in step.

The gateway invoice is created first and the local Invoice aggregate is
drafted with its id, so a payment webhook can always resolve the gateway id
back to an Invoice. Amounts go to the gateway in integer minor units of
the settlement currency.

Order invoices are built incrementally: lines are added per newly
confirmed item and per business-handled shipment, and the invoice is
finalized only once every active business's shipping cost is known.
Booking invoices are issued whole, once per phase (deposit, balance).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID, uuid4

from crewflow.actors import Actor
from crewflow.domain.bookings import BookingState
from crewflow.domain.invoices import InvoiceAggregate, InvoiceLine, InvoiceState
from crewflow.domain.orders import OrderState
from crewflow.domain.quotes import QuoteState
from crewflow.domain.shipments import ShipmentState
from crewflow.exceptions import IllegalTransitionError, ValidationError
from crewflow.money import ZERO, from_minor_units, percent_of, quantize, split_in_half, to_minor_units
from crewflow.observability import (
    ATTR_BOOKING_ID,
    ATTR_GATEWAY_INVOICE_ID,
    ATTR_INVOICE_ID,
    ATTR_ORDER_ID,
    Tracer,
    create_tracer,
)
from crewflow.types import InvoicePhase, InvoiceStatus, OrderItemStatus, TransactionType
from crewflow.workflows.context import MarketplaceContext

logger = logging.getLogger(__name__)

# Item statuses whose lines belong on the order invoice.
INVOICEABLE_ITEM_STATUSES = frozenset(
    {
        OrderItemStatus.CONFIRMED,
        OrderItemStatus.PROCESSING,
        OrderItemStatus.SHIPPED,
        OrderItemStatus.OUT_FOR_DELIVERY,
        OrderItemStatus.DELIVERED,
    }
)

LINE_SUPPLIER_PRODUCT = "supplier_product"
LINE_BUSINESS_SHIPPING = "manufacturer_shipping"
LINE_PLATFORM_SHIPPING = "platform_shipping"
LINE_PLATFORM_FEE = "platform_fee"
LINE_SERVICE = "service"
LINE_QUOTE_ITEM = "quote_item"
LINE_DEPOSIT_DISCOUNT = "deposit_discount"
LINE_DEPOSIT_PAID = "deposit_paid"


def finalize_gate(order: OrderState, shipments: Iterable[ShipmentState]) -> bool:
    """
    True when an order invoice may be finalized.

    No item may still be pending, there must be at least one shipment, and
    every business with invoiceable items needs a shipment whose cost is
    known (business-handled or label purchased).
    """
    if any(item.status == OrderItemStatus.PENDING for item in order.items):
        return False
    by_business = {shipment.business_id: shipment for shipment in shipments}
    if not by_business:
        return False
    active = {item.business_id for item in order.items if item.status in INVOICEABLE_ITEM_STATUSES}
    if not active:
        return False
    for business_id in active:
        shipment = by_business.get(business_id)
        if shipment is None or not shipment.is_invoice_ready:
            return False
    return True


def booking_price_lines(booking: BookingState, quote: QuoteState | None, currency: str) -> list[InvoiceLine]:
    """Full-price lines of a booking: base service, quote items, platform fee."""
    lines = [
        InvoiceLine(
            description=booking.service_name,
            amount_minor=to_minor_units(booking.service_amount, currency),
            currency=currency,
            metadata={"type": LINE_SERVICE, "service_id": str(booking.service_id)},
        )
    ]
    if quote is not None:
        for item in quote.items:
            lines.append(
                InvoiceLine(
                    description=f"{item.name} x{item.quantity}",
                    amount_minor=to_minor_units(item.total_price, currency),
                    currency=currency,
                    metadata={"type": LINE_QUOTE_ITEM, "quote_item_id": str(item.item_id)},
                )
            )
    lines.append(
        InvoiceLine(
            description="Platform Fee",
            amount_minor=to_minor_units(booking.platform_fee, currency),
            currency=currency,
            metadata={"type": LINE_PLATFORM_FEE},
        )
    )
    return lines


def deposit_split(total_minor: int) -> tuple[int, int]:
    """(deposit, balance) in minor units; the deposit takes the odd cent."""
    return split_in_half(total_minor)


class InvoiceLedger:
    """
    Creates, extends, finalizes and refunds invoices.

    Example:
        >>> ledger = InvoiceLedger(context)
        >>> invoice = await ledger.sync_order_invoice(order, shipments, actor)
        >>> invoice.finalized
        False
    """

    def __init__(
        self,
        context: MarketplaceContext,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._context = context
        self._tracer = tracer or context.tracer or create_tracer(__name__, enable_tracing)

    @property
    def currency(self) -> str:
        return self._context.config.settlement_currency

    # -- customers -----------------------------------------------------------

    async def ensure_gateway_customer(self, customer_id: UUID) -> str:
        """Return the customer's gateway id, creating the gateway customer once."""
        profile = await self._context.catalog.get_customer(customer_id)
        if profile.gateway_customer_id:
            return profile.gateway_customer_id
        gateway_customer_id = await self._context.payments.create_customer(
            profile.email, profile.name, {"userId": str(customer_id)}
        )
        await self._context.catalog.set_gateway_customer_id(customer_id, gateway_customer_id)
        logger.info(
            "Created gateway customer %s for %s",
            gateway_customer_id,
            customer_id,
            extra={"actor_id": str(customer_id)},
        )
        return gateway_customer_id

    async def load(self, invoice_id: UUID) -> InvoiceAggregate:
        return await self._context.repositories.invoices.load(invoice_id)

    # -- order invoices ------------------------------------------------------

    async def _current_order_invoice(self, order: OrderState) -> InvoiceAggregate | None:
        if order.invoice_id is None:
            return None
        invoice = await self.load(order.invoice_id)
        state = invoice.state
        if state is None or not state.is_reusable:
            return None
        return invoice

    async def _draft_order_invoice(self, order: OrderState, actor: Actor) -> InvoiceAggregate:
        gateway_customer_id = await self.ensure_gateway_customer(order.customer_id)
        metadata = {"transactionType": TransactionType.ORDER.value, "orderId": str(order.order_id)}
        gateway_invoice = await self._context.payments.create_invoice(
            gateway_customer_id,
            self.currency,
            self._context.config.order_invoice_days_until_due,
            metadata,
            description=f"Order {order.order_id}",
        )
        invoice = InvoiceAggregate(uuid4())
        invoice.draft(
            transaction_type=TransactionType.ORDER,
            phase=InvoicePhase.FULL,
            customer_id=order.customer_id,
            order_id=order.order_id,
            gateway_invoice_id=gateway_invoice.invoice_id,
            gateway_customer_id=gateway_customer_id,
            currency=self.currency,
            original_amount=ZERO,
            original_currency=order.currency,
            metadata=metadata,
            actor=actor,
        )
        logger.info(
            "Drafted order invoice %s (gateway %s)",
            invoice.aggregate_id,
            gateway_invoice.invoice_id,
            extra={
                "order_id": str(order.order_id),
                "invoice_id": str(invoice.aggregate_id),
                "gateway_invoice_id": gateway_invoice.invoice_id,
            },
        )
        return invoice

    async def _add_lines(self, invoice: InvoiceAggregate, lines: list[InvoiceLine], actor: Actor) -> None:
        state = invoice.state
        if state is None or not lines:
            return
        for line in lines:
            await self._context.payments.add_invoice_line(
                state.gateway_invoice_id,
                line.amount_minor,
                line.currency,
                line.description,
                {k: str(v) for k, v in line.metadata.items()},
            )
        invoice.add_lines(lines, actor)

    async def sync_order_invoice(
        self,
        order: OrderState,
        shipments: list[ShipmentState],
        actor: Actor,
    ) -> InvoiceState | None:
        """
        Create or extend the order's invoice, finalizing it when the gate opens.

        Only items not yet invoiced get a line, so calling this again after
        another business confirms adds just that business's items. Returns
        None when no item is invoiceable yet.

        Call it after the order's status change is saved. The invoice link
        and the invoiced item ids are recorded on a freshly loaded order.
        """
        with self._tracer.span("crewflow.invoices.sync_order", {ATTR_ORDER_ID: str(order.order_id)}):
            invoice = await self._current_order_invoice(order)
            # A replacement invoice starts over with every invoiceable item.
            already = set(order.invoiced_item_ids) if invoice is not None else set()
            new_items = [
                item
                for item in order.items
                if item.status in INVOICEABLE_ITEM_STATUSES and item.item_id not in already
            ]
            if invoice is None:
                if not new_items:
                    return None
                invoice = await self._draft_order_invoice(order, actor)
            state = invoice.state
            assert state is not None
            if state.finalized:
                return state

            lines = [
                InvoiceLine(
                    description=f"{item.product_name} x{item.quantity}",
                    amount_minor=to_minor_units(item.converted_total, self.currency),
                    currency=self.currency,
                    metadata={
                        "type": LINE_SUPPLIER_PRODUCT,
                        "item_id": str(item.item_id),
                        "business_id": str(item.business_id),
                    },
                )
                for item in new_items
            ]
            lines.extend(self._business_shipping_lines(state, shipments))
            await self._add_lines(invoice, lines, actor)

            if finalize_gate(order, shipments):
                await self._finalize_order_invoice(invoice, order, shipments, actor)

            await self._context.repositories.invoices.save(invoice)
            final_state = invoice.state
            assert final_state is not None

            order_aggregate = await self._context.repositories.orders.load(order.order_id)
            order_aggregate.link_invoice(
                final_state.invoice_id,
                final_state.gateway_invoice_id,
                final_state.invoice_url,
                actor,
            )
            order_aggregate.mark_items_invoiced([item.item_id for item in new_items], actor)
            await self._context.repositories.orders.save(order_aggregate)
            return final_state

    def _invoiced_shipments(self, state: InvoiceState, line_type: str) -> set[str]:
        return {
            str(line.metadata.get("shipment_id"))
            for line in state.lines
            if line.metadata.get("type") == line_type
        }

    def _business_shipping_lines(self, state: InvoiceState, shipments: list[ShipmentState]) -> list[InvoiceLine]:
        done = self._invoiced_shipments(state, LINE_BUSINESS_SHIPPING)
        return [
            InvoiceLine(
                description="Shipping (handled by supplier)",
                amount_minor=to_minor_units(shipment.shipment_cost or ZERO, self.currency),
                currency=self.currency,
                metadata={
                    "type": LINE_BUSINESS_SHIPPING,
                    "shipment_id": str(shipment.shipment_id),
                    "business_id": str(shipment.business_id),
                },
            )
            for shipment in shipments
            if shipment.business_handled
            and shipment.shipment_cost
            and str(shipment.shipment_id) not in done
        ]

    async def _finalize_order_invoice(
        self,
        invoice: InvoiceAggregate,
        order: OrderState,
        shipments: list[ShipmentState],
        actor: Actor,
    ) -> None:
        state = invoice.state
        assert state is not None
        done = self._invoiced_shipments(state, LINE_PLATFORM_SHIPPING)
        lines: list[InvoiceLine] = []
        for shipment in shipments:
            rate = shipment.selected_rate
            if shipment.business_handled or rate is None or str(shipment.shipment_id) in done:
                continue
            lines.append(
                InvoiceLine(
                    description=f"Shipping (platform) - {rate.carrier} {rate.service}",
                    amount_minor=to_minor_units(rate.rate, self.currency),
                    currency=self.currency,
                    metadata={
                        "type": LINE_PLATFORM_SHIPPING,
                        "shipment_id": str(shipment.shipment_id),
                        "business_id": str(shipment.business_id),
                    },
                )
            )

        invoiced_ids = set(order.invoiced_item_ids) | {
            item.item_id for item in order.items if item.status in INVOICEABLE_ITEM_STATUSES
        }
        items_total = quantize(
            sum((item.converted_total for item in order.items if item.item_id in invoiced_ids), ZERO)
        )
        platform_fee = percent_of(items_total, self._context.config.platform_fee_rate)
        lines.append(
            InvoiceLine(
                description="Platform Fee",
                amount_minor=to_minor_units(platform_fee, self.currency),
                currency=self.currency,
                metadata={"type": LINE_PLATFORM_FEE},
            )
        )
        await self._add_lines(invoice, lines, actor)

        state = invoice.state
        assert state is not None
        invoice.revise_amounts(
            original_amount=from_minor_units(state.amount_due_minor, self.currency),
            platform_fee=platform_fee,
            distributor_amount=items_total,
            actor=actor,
        )
        await self._context.payments.finalize_invoice(state.gateway_invoice_id)
        sent = await self._context.payments.send_invoice(state.gateway_invoice_id)
        invoice.finalize(sent.hosted_invoice_url, self._context.clock(), actor)
        logger.info(
            "Finalized order invoice %s for %d minor units",
            state.invoice_id,
            state.amount_due_minor,
            extra={
                "order_id": str(order.order_id),
                "invoice_id": str(state.invoice_id),
                "gateway_invoice_id": state.gateway_invoice_id,
            },
        )

    # -- booking invoices ----------------------------------------------------

    async def existing_booking_invoice(self, booking: BookingState, phase: InvoicePhase) -> InvoiceState | None:
        """
        The live invoice already issued for a booking phase, if any.

        An invoice is live unless it was cancelled locally or is void or
        uncollectible at the gateway.
        """
        ref = booking.invoices.get(phase)
        if ref is None:
            return None
        invoice = await self.load(ref.invoice_id)
        state = invoice.state
        if state is None or not state.is_reusable:
            return None
        gateway_invoice = await self._context.payments.retrieve_invoice(state.gateway_invoice_id)
        if gateway_invoice.is_dead:
            logger.info(
                "Gateway invoice %s is %s; issuing a new %s invoice",
                state.gateway_invoice_id,
                gateway_invoice.status,
                phase.value,
                extra={"booking_id": str(booking.booking_id), "gateway_invoice_id": state.gateway_invoice_id},
            )
            return None
        return state

    async def issue_booking_invoice(
        self,
        booking: BookingState,
        quote: QuoteState | None,
        phase: InvoicePhase,
        actor: Actor,
    ) -> InvoiceState:
        """
        Issue the deposit or balance invoice of a booking.

        Both show the full-price lines. The deposit invoice adds a negative
        "Deposit discount (50%)" line and the balance invoice a negative
        "Deposit paid" line, so each bills one half of the total.
        """
        if phase == InvoicePhase.FULL:
            raise ValidationError("booking invoices are issued per deposit or balance phase", field="phase")
        if not booking.is_priced or booking.quote_amount is None:
            raise IllegalTransitionError(
                "booking", booking.status.value, f"{phase.value}_invoice", reason="booking is not priced"
            )
        with self._tracer.span(
            "crewflow.invoices.issue_booking", {ATTR_BOOKING_ID: str(booking.booking_id)}
        ) as span:
            currency = self.currency
            lines = booking_price_lines(booking, quote, currency)
            total_minor = sum(line.amount_minor for line in lines)
            deposit_minor, balance_minor = deposit_split(total_minor)
            quote_deposit, quote_balance = split_in_half(to_minor_units(booking.quote_amount, currency))
            fee_deposit, fee_balance = split_in_half(to_minor_units(booking.platform_fee, currency))
            if phase == InvoicePhase.DEPOSIT:
                lines.append(
                    InvoiceLine(
                        description="Deposit discount (50%)",
                        amount_minor=-balance_minor,
                        currency=currency,
                        metadata={"type": LINE_DEPOSIT_DISCOUNT},
                    )
                )
                distributor_minor, fee_minor = quote_deposit, fee_deposit
            else:
                lines.append(
                    InvoiceLine(
                        description="Deposit paid",
                        amount_minor=-deposit_minor,
                        currency=currency,
                        metadata={"type": LINE_DEPOSIT_PAID},
                    )
                )
                distributor_minor, fee_minor = quote_balance, fee_balance

            gateway_customer_id = await self.ensure_gateway_customer(booking.customer_id)
            metadata = {
                "transactionType": TransactionType.BOOKING.value,
                "bookingId": str(booking.booking_id),
                "invoiceType": phase.value,
            }
            gateway_invoice = await self._context.payments.create_invoice(
                gateway_customer_id,
                currency,
                self._context.config.booking_invoice_days_until_due,
                metadata,
                description=f"{booking.service_name} ({phase.value})",
            )
            invoice = InvoiceAggregate(uuid4())
            invoice.draft(
                transaction_type=TransactionType.BOOKING,
                phase=phase,
                customer_id=booking.customer_id,
                booking_id=booking.booking_id,
                gateway_invoice_id=gateway_invoice.invoice_id,
                gateway_customer_id=gateway_customer_id,
                currency=currency,
                original_amount=from_minor_units(
                    deposit_minor if phase == InvoicePhase.DEPOSIT else balance_minor, currency
                ),
                original_currency=booking.service_currency,
                rate_locked_at=quote.accepted_at if quote else None,
                platform_fee=from_minor_units(fee_minor, currency),
                distributor_amount=from_minor_units(distributor_minor, currency),
                metadata=metadata,
                actor=actor,
            )
            await self._add_lines(invoice, lines, actor)
            await self._context.payments.finalize_invoice(gateway_invoice.invoice_id)
            sent = await self._context.payments.send_invoice(gateway_invoice.invoice_id)
            invoice.finalize(sent.hosted_invoice_url, self._context.clock(), actor)
            await self._context.repositories.invoices.save(invoice)

            state = invoice.state
            assert state is not None
            if span:
                span.set_attribute(ATTR_INVOICE_ID, str(state.invoice_id))
                span.set_attribute(ATTR_GATEWAY_INVOICE_ID, state.gateway_invoice_id)
            logger.info(
                "Issued %s invoice %s for booking %s: %d minor units",
                phase.value,
                state.invoice_id,
                booking.booking_id,
                state.amount_due_minor,
                extra={
                    "booking_id": str(booking.booking_id),
                    "invoice_id": str(state.invoice_id),
                    "gateway_invoice_id": state.gateway_invoice_id,
                },
            )
            return state

    async def void(self, invoice_id: UUID, reason: str, actor: Actor) -> InvoiceState | None:
        """
        Void a pending invoice locally and at the gateway.

        Returns None (and changes nothing) when the invoice is already
        settled or cancelled.
        """
        invoice = await self.load(invoice_id)
        state = invoice.state
        if state is None or state.status not in (InvoiceStatus.PENDING, InvoiceStatus.FAILED):
            return None
        await self._context.payments.void_invoice(state.gateway_invoice_id)
        invoice.void(reason, actor)
        await self._context.repositories.invoices.save(invoice)
        logger.info(
            "Voided invoice %s: %s",
            invoice_id,
            reason,
            extra={"invoice_id": str(invoice_id), "gateway_invoice_id": state.gateway_invoice_id},
        )
        return invoice.state

    # -- money movement ------------------------------------------------------

    async def refund(
        self,
        invoice_id: UUID,
        amount: Decimal,
        actor: Actor,
        *,
        refund_application_fee: bool = False,
        reverse_transfer: bool = False,
        metadata: dict[str, str] | None = None,
    ) -> str:
        """Refund part of a paid invoice. Returns the gateway refund id."""
        invoice = await self.load(invoice_id)
        state = invoice.state
        assert state is not None
        amount_minor = to_minor_units(amount, self.currency)
        refund_id = await self._context.payments.refund_invoice(
            state.gateway_invoice_id,
            amount_minor,
            refund_application_fee=refund_application_fee,
            reverse_transfer=reverse_transfer,
            metadata=metadata,
        )
        invoice.record_refund(amount_minor, actor)
        await self._context.repositories.invoices.save(invoice)
        logger.info(
            "Refunded %s on invoice %s",
            amount,
            invoice_id,
            extra={"invoice_id": str(invoice_id), "gateway_invoice_id": state.gateway_invoice_id},
        )
        return refund_id

    async def transfer(self, amount: Decimal, destination: str, metadata: dict[str, str]) -> str:
        """Pay a supplying business out. Returns the gateway transfer id."""
        return await self._context.payments.create_transfer(
            to_minor_units(amount, self.currency), self.currency, destination, metadata
        )


__all__ = [
    "INVOICEABLE_ITEM_STATUSES",
    "InvoiceLedger",
    "booking_price_lines",
    "deposit_split",
    "finalize_gate",
]
