"""
Inbound webhook handling.

Payment events settle invoices and cascade the result to the order or
booking the invoice belongs to. Tracking events move shipments. Both
handlers are idempotent: a replayed event finds the record already in
its target state and changes nothing.
"""

from __future__ import annotations

import logging
from uuid import UUID

from crewflow.actors import PAYMENT_WEBHOOK, TRACKING_WEBHOOK
from crewflow.domain.invoices import InvoiceState
from crewflow.domain.shipments import ShipmentState
from crewflow.effects import Effect, WorkflowResult, email, notification
from crewflow.exceptions import (
    AlreadyProcessedError,
    CrewflowError,
    OptimisticLockError,
    ReconciliationError,
)
from crewflow.integrations.carriers import parse_tracking_event, verify_tracking_signature
from crewflow.integrations.payments import (
    INVOICE_FAILED_EVENTS,
    INVOICE_PAID_EVENTS,
    INVOICE_VOIDED_EVENTS,
    PaymentWebhookEvent,
    parse_payment_event,
    verify_payment_signature,
)
from crewflow.money import from_minor_units
from crewflow.observability import (
    ATTR_GATEWAY_INVOICE_ID,
    ATTR_INVOICE_ID,
    ATTR_WEBHOOK_EVENT_TYPE,
    SpanKindEnum,
    Tracer,
    create_tracer,
)
from crewflow.types import InvoicePhase, NotificationPriority, PaymentStatus, QuoteStatus, TransactionType
from crewflow.workflows.context import MarketplaceContext
from crewflow.workflows.shipments import ShipmentOrchestrator

logger = logging.getLogger(__name__)


class PaymentWebhookReconciler:
    """
    Applies signed payment gateway events.

    Example:
        >>> reconciler = PaymentWebhookReconciler(context)
        >>> result = await reconciler.handle(request_body, headers["Stripe-Signature"])
    """

    def __init__(
        self,
        context: MarketplaceContext,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        if context.webhooks is None:
            raise ValueError("webhook secrets are not configured")
        self._context = context
        self._webhooks = context.webhooks
        self._tracer = tracer or context.tracer or create_tracer(__name__, enable_tracing)

    async def handle(self, body: bytes, signature_header: str | None) -> WorkflowResult[InvoiceState | None]:
        """
        Verify, parse and apply one event.

        Unknown event types and events for invoices we did not issue are
        acknowledged and ignored.

        Raises:
            SignatureVerificationError: Bad or stale signature
            ValidationError: Malformed body
            ReconciliationError: The invoice was settled but its order or
                booking could not be updated
        """
        verify_payment_signature(
            body,
            signature_header,
            self._webhooks.payment_signing_secret,
            self._webhooks.signature_tolerance,
            now=self._context.clock(),
        )
        event = parse_payment_event(body)
        with self._tracer.span_with_kind(
            "crewflow.webhooks.payment",
            SpanKindEnum.SERVER,
            {ATTR_WEBHOOK_EVENT_TYPE: event.event_type},
        ) as span:
            known = INVOICE_PAID_EVENTS | INVOICE_FAILED_EVENTS | INVOICE_VOIDED_EVENTS
            if event.event_type not in known:
                logger.debug("Ignoring payment event type %s", event.event_type)
                return WorkflowResult(None)
            invoice_id = self._context.lookups.find_invoice(event.gateway_invoice_id or "")
            if invoice_id is None:
                logger.warning(
                    "Payment event %s references unknown invoice %s",
                    event.event_id,
                    event.gateway_invoice_id,
                    extra={"gateway_invoice_id": event.gateway_invoice_id},
                )
                return WorkflowResult(None)
            if span:
                span.set_attribute(ATTR_INVOICE_ID, str(invoice_id))
                span.set_attribute(ATTR_GATEWAY_INVOICE_ID, event.gateway_invoice_id or "")

            if event.event_type in INVOICE_PAID_EVENTS:
                return await self._paid(invoice_id, event)
            if event.event_type in INVOICE_FAILED_EVENTS:
                return await self._failed(invoice_id, event)
            return await self._voided(invoice_id, event)

    async def _settle(self, invoice_id: UUID, event: PaymentWebhookEvent, action: str) -> InvoiceState | None:
        """
        Apply ``action`` to the invoice and save it.

        Returns None when the invoice was already in the target state, or
        another delivery of the same event saved first.
        """
        invoice = await self._context.repositories.invoices.load(invoice_id)
        try:
            if action == "paid":
                invoice.mark_paid(event.paid_at or self._context.clock(), event.amount_paid, PAYMENT_WEBHOOK)
            elif action == "failed":
                invoice.mark_failed(event.failure_message, PAYMENT_WEBHOOK)
            else:
                invoice.void(f"voided at gateway ({event.event_id})", PAYMENT_WEBHOOK)
        except AlreadyProcessedError as e:
            log = logger.info if action == "paid" else logger.warning
            log(
                "Ignoring %s event %s for invoice %s: invoice is %s",
                action,
                event.event_id,
                invoice_id,
                e.status,
                extra={"invoice_id": str(invoice_id), "gateway_invoice_id": event.gateway_invoice_id},
            )
            return None
        try:
            await self._context.repositories.invoices.save(invoice)
        except OptimisticLockError:
            logger.info(
                "Invoice %s was updated concurrently; treating event %s as processed",
                invoice_id,
                event.event_id,
                extra={"invoice_id": str(invoice_id)},
            )
            return None
        return invoice.state

    async def _paid(self, invoice_id: UUID, event: PaymentWebhookEvent) -> WorkflowResult[InvoiceState | None]:
        state = await self._settle(invoice_id, event, "paid")
        if state is None:
            return WorkflowResult(None)
        logger.info(
            "Invoice %s paid: %d minor units",
            invoice_id,
            event.amount_paid,
            extra={"invoice_id": str(invoice_id), "gateway_invoice_id": state.gateway_invoice_id},
        )
        try:
            if state.transaction_type == TransactionType.ORDER:
                effects = await self._order_paid(state)
            else:
                effects = await self._booking_paid(state)
        except CrewflowError as e:
            logger.critical(
                "Invoice %s is paid but its %s was not updated: %s",
                invoice_id,
                state.transaction_type.value,
                e,
                exc_info=True,
                extra={"invoice_id": str(invoice_id), "gateway_invoice_id": state.gateway_invoice_id},
            )
            raise ReconciliationError("payment", state.gateway_invoice_id, str(e)) from e
        return WorkflowResult(state, effects)

    async def _order_paid(self, invoice: InvoiceState) -> list[Effect]:
        assert invoice.order_id is not None
        order = await self._context.repositories.orders.load(invoice.order_id)
        order.change_payment_status(PaymentStatus.PAID, PAYMENT_WEBHOOK, notes=f"Invoice {invoice.gateway_invoice_id} paid")
        await self._context.repositories.orders.save(order)
        state = order.state
        assert state is not None

        customer = await self._context.catalog.get_customer(state.customer_id)
        amount = f"{from_minor_units(invoice.amount_paid_minor, invoice.currency)} {invoice.currency}"
        effects: list[Effect] = [
            email(
                customer.email,
                "Payment Received",
                f"<p>We received your payment of {amount} for order {state.order_id}.</p>",
            ),
            notification(
                state.customer_id,
                "payment_received",
                "Payment Received",
                f"Payment for order {state.order_id} was received.",
                data={"orderId": str(state.order_id)},
            ),
        ]
        for business_id in state.business_ids:
            business = await self._context.catalog.get_business(business_id)
            effects.append(
                notification(
                    business.owner_user_id,
                    "order_paid",
                    "Order Paid",
                    f"Order {state.order_id} has been paid. You can proceed with fulfilment.",
                    priority=NotificationPriority.HIGH,
                    data={"orderId": str(state.order_id)},
                )
            )
        return effects

    async def _booking_paid(self, invoice: InvoiceState) -> list[Effect]:
        assert invoice.booking_id is not None
        booking = await self._context.repositories.bookings.load(invoice.booking_id)
        deposit = invoice.phase == InvoicePhase.DEPOSIT
        booking.change_payment_status(
            PaymentStatus.DEPOSIT_PAID if deposit else PaymentStatus.PAID,
            PAYMENT_WEBHOOK,
            paid_at=invoice.paid_at,
        )
        await self._context.repositories.bookings.save(booking)
        state = booking.state
        assert state is not None

        if state.quote_id is not None:
            quote = await self._context.repositories.quotes.load(state.quote_id)
            quote.change_status(QuoteStatus.DEPOSIT_PAID if deposit else QuoteStatus.COMPLETED, PAYMENT_WEBHOOK)
            await self._context.repositories.quotes.save(quote)

        customer = await self._context.catalog.get_customer(state.customer_id)
        business = await self._context.catalog.get_business(state.business_id)
        label = "Deposit" if deposit else "Balance"
        data = {"bookingId": str(state.booking_id)}
        return [
            email(
                customer.email,
                f"{label} Payment Received - {state.service_name}",
                f"<p>Your {label.lower()} payment for {state.service_name} on {state.date} was received.</p>",
            ),
            notification(
                business.owner_user_id,
                f"booking_{'deposit' if deposit else 'balance'}_paid",
                f"{label} Paid",
                f"The customer paid the {label.lower()} for booking {state.booking_id}.",
                priority=NotificationPriority.HIGH,
                data=data,
            ),
        ]

    async def _failed(self, invoice_id: UUID, event: PaymentWebhookEvent) -> WorkflowResult[InvoiceState | None]:
        state = await self._settle(invoice_id, event, "failed")
        if state is None:
            return WorkflowResult(None)
        reason = event.failure_message or "the payment was declined"
        logger.warning(
            "Payment failed for invoice %s: %s",
            invoice_id,
            reason,
            extra={"invoice_id": str(invoice_id), "gateway_invoice_id": state.gateway_invoice_id},
        )
        note = f"Payment failed: {reason}"
        try:
            if state.order_id is not None:
                order = await self._context.repositories.orders.load(state.order_id)
                order.change_payment_status(PaymentStatus.FAILED, PAYMENT_WEBHOOK, notes=note)
                await self._context.repositories.orders.save(order)
            elif state.booking_id is not None and state.phase == InvoicePhase.DEPOSIT:
                booking = await self._context.repositories.bookings.load(state.booking_id)
                booking.change_payment_status(PaymentStatus.FAILED, PAYMENT_WEBHOOK)
                await self._context.repositories.bookings.save(booking)
        except CrewflowError as e:
            logger.critical(
                "Invoice %s failed but its %s was not updated: %s",
                invoice_id,
                state.transaction_type.value,
                e,
                exc_info=True,
                extra={"invoice_id": str(invoice_id)},
            )
            raise ReconciliationError("payment", state.gateway_invoice_id, str(e)) from e

        customer = await self._context.catalog.get_customer(state.customer_id)
        reference = f"order {state.order_id}" if state.order_id else f"booking {state.booking_id}"
        return WorkflowResult(
            state,
            [
                email(
                    customer.email,
                    "Payment Failed - Action Required",
                    f"<p>Your payment for {reference} failed: {reason}.</p>"
                    f'<p><a href="{state.invoice_url or ""}">Retry payment</a></p>',
                )
            ],
        )

    async def _voided(self, invoice_id: UUID, event: PaymentWebhookEvent) -> WorkflowResult[InvoiceState | None]:
        state = await self._settle(invoice_id, event, "voided")
        if state is None:
            return WorkflowResult(None)
        logger.info(
            "Invoice %s voided at the gateway",
            invoice_id,
            extra={"invoice_id": str(invoice_id), "gateway_invoice_id": state.gateway_invoice_id},
        )
        unpaid = (PaymentStatus.PENDING, PaymentStatus.FAILED)
        try:
            if state.order_id is not None:
                order = await self._context.repositories.orders.load(state.order_id)
                order_state = order.state
                if order_state is not None and order_state.payment_status in unpaid:
                    order.change_payment_status(PaymentStatus.CANCELLED, PAYMENT_WEBHOOK, notes="Invoice voided")
                    await self._context.repositories.orders.save(order)
            elif state.booking_id is not None:
                booking = await self._context.repositories.bookings.load(state.booking_id)
                booking_state = booking.state
                if booking_state is not None and booking_state.payment_status in unpaid:
                    booking.change_payment_status(PaymentStatus.CANCELLED, PAYMENT_WEBHOOK)
                    await self._context.repositories.bookings.save(booking)
        except CrewflowError as e:
            logger.critical(
                "Invoice %s voided but its %s was not updated: %s",
                invoice_id,
                state.transaction_type.value,
                e,
                exc_info=True,
                extra={"invoice_id": str(invoice_id)},
            )
            raise ReconciliationError("payment", state.gateway_invoice_id, str(e)) from e
        return WorkflowResult(state)


class TrackingWebhookHandler:
    """Applies signed carrier tracking events to shipments."""

    def __init__(
        self,
        context: MarketplaceContext,
        shipments: ShipmentOrchestrator | None = None,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        if context.webhooks is None:
            raise ValueError("webhook secrets are not configured")
        self._context = context
        self._webhooks = context.webhooks
        self._shipments = shipments or ShipmentOrchestrator(context)
        self._tracer = tracer or context.tracer or create_tracer(__name__, enable_tracing)

    async def handle(self, body: bytes, signature_header: str | None) -> WorkflowResult[ShipmentState | None]:
        """
        Raises:
            SignatureVerificationError: Bad signature
            ValidationError: Malformed body
            ReconciliationError: The shipment moved but its order items did not
        """
        verify_tracking_signature(body, signature_header, self._webhooks.tracking_signing_secret)
        update = parse_tracking_event(body)
        if update is None:
            return WorkflowResult(None)
        with self._tracer.span_with_kind(
            "crewflow.webhooks.tracking",
            SpanKindEnum.SERVER,
            {ATTR_WEBHOOK_EVENT_TYPE: update.event_type},
        ):
            logger.debug(
                "Tracking event %s for %s: %s",
                update.event_type,
                update.tracking_code,
                update.status,
                extra={"actor_id": TRACKING_WEBHOOK.actor_id},
            )
            return await self._shipments.apply_tracking(update)


__all__ = ["PaymentWebhookReconciler", "TrackingWebhookHandler"]
