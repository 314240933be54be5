"""
Order workflow.

Orders are split across supplying businesses: each item is confirmed or
declined by its own business through an emailed single-use token, or
moved by a role-scoped status update. Every operation returns a
``WorkflowResult`` whose effects the caller dispatches after the call.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel

from crewflow.actors import Actor, ActorKind, Admin, Customer, SupplyingBusiness, SystemActor
from crewflow.catalog import Business
from crewflow.domain.orders import (
    SHIPPED_ITEM_STATUSES,
    OrderAggregate,
    OrderItem,
    OrderPayout,
    OrderRefund,
    OrderState,
)
from crewflow.effects import Effect, WorkflowResult, email, notification
from crewflow.exceptions import (
    AlreadyProcessedError,
    ExternalServiceError,
    IllegalTransitionError,
    InvalidTokenError,
    NotFoundError,
    OptimisticLockError,
    UnauthorizedError,
    ValidationError,
)
from crewflow.money import ZERO, from_minor_units, percent_of, quantize
from crewflow.observability import ATTR_ACTOR_KIND, ATTR_ORDER_ID, ATTR_REQUESTED_STATUS, Tracer, create_tracer
from crewflow.transitions import ORDER_TRANSITIONS
from crewflow.types import InvoiceStatus, NotificationPriority, OrderItemStatus, PaymentStatus
from crewflow.workflows.access import require_customer
from crewflow.workflows.context import MarketplaceContext
from crewflow.workflows.invoicing import InvoiceLedger
from crewflow.workflows.shipments import ShipmentOrchestrator

logger = logging.getLogger(__name__)


class OrderLine(BaseModel):
    """One requested product of a new order."""

    product_id: UUID
    quantity: int


def business_share(order: OrderState, items: Sequence[OrderItem]) -> Decimal:
    """The part of ``total_amount`` attributable to ``items``, pro rata by USD line total."""
    if order.subtotal <= ZERO:
        return ZERO
    lines = sum((item.converted_total for item in items), ZERO)
    return quantize(order.total_amount * lines / order.subtotal)


def ops_alert(config_email: str, order_id: UUID, kind: str, detail: str) -> Effect:
    return email(
        config_email,
        f"[OPS ALERT] Order {order_id} - {kind}",
        f"<p>Order {order_id} needs manual attention.</p><p>{detail}</p>",
    )


class OrderWorkflow:
    """
    Order lifecycle operations.

    Example:
        >>> orders = OrderWorkflow(context)
        >>> result = await orders.create_order(customer, [OrderLine(...)], address)
        >>> await dispatcher.dispatch(result.effects)
    """

    def __init__(
        self,
        context: MarketplaceContext,
        *,
        invoices: InvoiceLedger | None = None,
        shipments: ShipmentOrchestrator | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._context = context
        self._invoices = invoices or InvoiceLedger(context)
        self._shipments = shipments or ShipmentOrchestrator(context, self._invoices)
        self._tracer = tracer or context.tracer or create_tracer(__name__, enable_tracing)

    @property
    def shipments(self) -> ShipmentOrchestrator:
        return self._shipments

    @property
    def invoices(self) -> InvoiceLedger:
        return self._invoices

    async def get_order(self, order_id: UUID) -> OrderState:
        state = (await self._context.repositories.orders.load(order_id)).state
        assert state is not None
        return state

    # -- creation ------------------------------------------------------------

    async def create_order(
        self,
        customer: Customer,
        products: list[OrderLine],
        delivery_address: dict[str, Any],
    ) -> WorkflowResult[OrderState]:
        """
        Place an order for one or more products.

        Every line is priced in its product's currency and converted to the
        settlement currency; the platform fee is charged on the converted
        subtotal. Each item gets its own confirmation token.

        Raises:
            ValidationError: No products, a quantity below 1, or an unknown product
        """
        if not products:
            raise ValidationError("an order needs at least one product", field="products")
        for line in products:
            if line.quantity <= 0:
                raise ValidationError(
                    f"quantity for product {line.product_id} must be positive", field="quantity"
                )

        config = self._context.config
        now = self._context.clock()
        with self._tracer.span("crewflow.orders.create", {ATTR_ACTOR_KIND: customer.kind.value}) as span:
            items: list[OrderItem] = []
            businesses: dict[UUID, Business] = {}
            for line in products:
                try:
                    product = await self._context.catalog.get_product(line.product_id)
                    business = businesses.get(product.business_id) or await self._context.catalog.get_business(
                        product.business_id
                    )
                except NotFoundError as e:
                    raise ValidationError(str(e), field="products") from e
                businesses[business.business_id] = business

                native_total = max(quantize(product.price * line.quantity - product.discount), ZERO)
                converted = await self._context.currency.convert_price(
                    native_total, product.currency, config.settlement_currency
                )
                items.append(
                    OrderItem(
                        item_id=uuid4(),
                        product_id=product.product_id,
                        product_name=product.name,
                        business_id=business.business_id,
                        business_kind=business.kind,
                        quantity=line.quantity,
                        unit_price=product.price,
                        discount=product.discount,
                        original_currency=product.currency,
                        original_total=native_total,
                        converted_total=converted.converted_amount,
                        conversion_rate=converted.conversion_rate,
                        confirmation_token=self._context.token_factory(),
                        token_expires_at=now + config.token_ttl,
                    )
                )

            subtotal = quantize(sum((item.converted_total for item in items), ZERO))
            platform_fee = percent_of(subtotal, config.platform_fee_rate)
            order = OrderAggregate(uuid4())
            order.place(
                customer_id=customer.user_id,
                delivery_address=delivery_address,
                items=items,
                currency=config.settlement_currency,
                subtotal=subtotal,
                platform_fee=platform_fee,
                total_amount=subtotal + platform_fee,
                actor=customer,
            )
            await self._context.repositories.orders.save(order)
            if span:
                span.set_attribute(ATTR_ORDER_ID, str(order.aggregate_id))

        state = order.state
        assert state is not None
        logger.info(
            "Order %s placed: %d item(s), %d business(es), total %s",
            state.order_id,
            len(items),
            len(businesses),
            state.total_amount,
            extra={"order_id": str(state.order_id), "actor_id": customer.actor_id},
        )
        profile = await self._context.catalog.get_customer(customer.user_id)
        return WorkflowResult(state, self._creation_effects(state, profile.email, businesses))

    def _creation_effects(
        self, state: OrderState, customer_email: str, businesses: dict[UUID, Business]
    ) -> list[Effect]:
        base = self._context.config.frontend_url
        effects: list[Effect] = [
            notification(
                state.customer_id,
                "order_created",
                "Order Created",
                f"Your order {state.order_id} has been placed and sent to the suppliers.",
                data={"orderId": str(state.order_id)},
            )
        ]
        for business_id, business in businesses.items():
            rows = "".join(
                f"<li>{item.product_name} x{item.quantity}: "
                f'<a href="{base}/orders/confirm?token={item.confirmation_token}">Confirm</a> | '
                f'<a href="{base}/orders/decline?token={item.confirmation_token}">Decline</a></li>'
                for item in state.items_for_business(business_id)
            )
            effects.append(
                email(
                    business.email,
                    "New Order Confirmation Required",
                    f"<p>Order {state.order_id} needs your confirmation.</p><ul>{rows}</ul>",
                )
            )
            effects.append(
                notification(
                    business.owner_user_id,
                    "new_order",
                    "New Order Received",
                    f"Order {state.order_id} contains items from {business.name}.",
                    priority=NotificationPriority.HIGH,
                    data={"orderId": str(state.order_id), "businessId": str(business_id)},
                )
            )
        effects.append(
            email(
                customer_email,
                "Order Received",
                f"<p>We received your order {state.order_id} for {state.total_amount} "
                f"{state.currency}.</p>",
            )
        )
        return effects

    # -- token confirmation --------------------------------------------------

    async def _load_by_token(self, token: str) -> tuple[OrderAggregate, OrderItem]:
        target = self._context.lookups.find_token(token)
        if target is None or target.aggregate_type != "Order" or target.item_id is None:
            raise InvalidTokenError()
        order = await self._context.repositories.orders.load(target.aggregate_id)
        state = order.state
        assert state is not None
        item = state.item_by_token(token)
        if item is None:
            raise InvalidTokenError()
        if item.status != OrderItemStatus.PENDING:
            raise AlreadyProcessedError("order item", item.item_id, item.status.value)
        if self._context.clock() > item.token_expires_at:
            raise InvalidTokenError()
        return order, item

    async def _consume(self, order: OrderAggregate, item: OrderItem) -> None:
        try:
            await self._context.repositories.orders.save(order)
        except OptimisticLockError as e:
            # Another request used a token of this order first; re-check ours.
            fresh = await self._context.repositories.orders.load(order.aggregate_id)
            current = fresh.state.item(item.item_id) if fresh.state else item
            if current.status != OrderItemStatus.PENDING:
                raise AlreadyProcessedError("order item", item.item_id, current.status.value) from e
            raise

    async def confirm_order(self, token: str) -> WorkflowResult[OrderState]:
        """
        Confirm one order item through its emailed token.

        Stock is deducted immediately and the business's shipment is created.
        The order invoice is synced on a best-effort basis; a gateway
        failure there is logged and can be retried with ``sync_invoice``.

        Raises:
            InvalidTokenError: Unknown or expired token
            AlreadyProcessedError: The item was already confirmed or declined
        """
        order, item = await self._load_by_token(token)
        business = await self._context.catalog.get_business(item.business_id)
        actor = business.as_actor()
        with self._tracer.span(
            "crewflow.orders.confirm_by_token",
            {ATTR_ORDER_ID: str(order.aggregate_id), ATTR_REQUESTED_STATUS: OrderItemStatus.CONFIRMED.value},
        ):
            ORDER_TRANSITIONS.require(item.status, actor.kind, OrderItemStatus.CONFIRMED)
            order.change_item_status(
                item.item_id, OrderItemStatus.CONFIRMED, actor, notes="Confirmed via email link"
            )
            await self._consume(order, item)
            await self._context.inventory.deduct(order.aggregate_id, item.item_id, item.product_id, item.quantity)

            state = order.state
            assert state is not None
            shipping_cost = business.default_shipping_cost if business.handles_shipping else None
            await self._shipments.create_for_business(
                state, business.business_id, actor, shipment_cost=shipping_cost
            )
            await self._sync_invoice_best_effort(state, actor)

        logger.info(
            "Order %s item %s confirmed by %s",
            state.order_id,
            item.item_id,
            business.business_id,
            extra={"order_id": str(state.order_id), "actor_id": actor.actor_id, "status": "confirmed"},
        )
        return WorkflowResult(
            await self.get_order(state.order_id),
            await self._item_decision_effects(state, item, "confirmed"),
        )

    async def decline_order(self, token: str, reason: str | None = None) -> WorkflowResult[OrderState]:
        """
        Decline one order item through its emailed token. No stock moves.

        Raises:
            InvalidTokenError: Unknown or expired token
            AlreadyProcessedError: The item was already confirmed or declined
        """
        order, item = await self._load_by_token(token)
        business = await self._context.catalog.get_business(item.business_id)
        actor = business.as_actor()
        ORDER_TRANSITIONS.require(item.status, actor.kind, OrderItemStatus.DECLINED)
        order.change_item_status(
            item.item_id,
            OrderItemStatus.DECLINED,
            actor,
            reason=reason,
            notes="Declined via email link",
        )
        await self._consume(order, item)
        state = order.state
        assert state is not None
        logger.info(
            "Order %s item %s declined by %s",
            state.order_id,
            item.item_id,
            business.business_id,
            extra={"order_id": str(state.order_id), "actor_id": actor.actor_id, "status": "declined"},
        )
        effects = await self._item_decision_effects(state, item, "declined", reason)
        state = await self._close_unpaid_if_inactive(order, actor)
        if state.status not in (OrderItemStatus.CANCELLED, OrderItemStatus.DECLINED):
            # The decline may have been the last thing holding the invoice open.
            await self._sync_invoice_best_effort(state, actor)
            state = await self.get_order(state.order_id)
        return WorkflowResult(state, effects)

    async def _item_decision_effects(
        self, state: OrderState, item: OrderItem, decision: str, reason: str | None = None
    ) -> list[Effect]:
        customer = await self._context.catalog.get_customer(state.customer_id)
        message = f"{item.product_name} on order {state.order_id} was {decision} by the supplier."
        if reason:
            message += f" Reason: {reason}"
        return [
            notification(
                state.customer_id,
                f"order_item_{decision}",
                f"Order Item {decision.capitalize()}",
                message,
                data={"orderId": str(state.order_id), "itemId": str(item.item_id)},
            ),
            email(customer.email, f"Order {state.order_id} - item {decision}", f"<p>{message}</p>"),
        ]

    async def _sync_invoice_best_effort(self, state: OrderState, actor: Actor) -> None:
        try:
            await self._invoices.sync_order_invoice(
                state, await self._shipments.shipments_for_order(state.order_id), actor
            )
        except ExternalServiceError as e:
            logger.error(
                "Invoice sync for order %s failed: %s",
                state.order_id,
                e,
                exc_info=True,
                extra={"order_id": str(state.order_id)},
            )

    async def sync_invoice(self, order_id: UUID, actor: Actor) -> WorkflowResult[OrderState]:
        """Create, extend or finalize the order invoice from the current state."""
        state = await self.get_order(order_id)
        if not isinstance(actor, (Admin, SystemActor, SupplyingBusiness)):
            raise UnauthorizedError(actor.actor_id, "sync an order invoice")
        await self._invoices.sync_order_invoice(
            state, await self._shipments.shipments_for_order(order_id), actor
        )
        return WorkflowResult(await self.get_order(order_id))

    # -- status updates ------------------------------------------------------

    def _scope(self, state: OrderState, actor: Actor, item_ids: list[UUID] | None) -> list[OrderItem]:
        if isinstance(actor, Customer):
            require_customer(actor, state.customer_id, "update this order")
            items = list(state.items)
        elif isinstance(actor, SupplyingBusiness):
            items = state.items_for_business(actor.business_id)
            if not items:
                raise UnauthorizedError(actor.actor_id, f"update order {state.order_id}")
        else:
            items = list(state.items)
        if item_ids is not None:
            wanted = set(item_ids)
            unknown = wanted - {item.item_id for item in items}
            if unknown:
                raise NotFoundError("order item", sorted(str(i) for i in unknown)[0])
            items = [item for item in items if item.item_id in wanted]
        return [item for item in items if not item.status.is_terminal]

    async def update_order_status(
        self,
        actor: Actor,
        order_id: UUID,
        new_status: OrderItemStatus,
        *,
        item_ids: list[UUID] | None = None,
        reason: str | None = None,
        notes: str | None = None,
        shipping_cost: Decimal | None = None,
        tracking_number: str | None = None,
    ) -> WorkflowResult[OrderState]:
        """
        Move order items as ``actor``.

        Customers act on the whole order and are checked against the order's
        aggregate status; a customer cancel only reaches items that have not
        shipped. Businesses act on their own items, admins and
        system actors on all items, each checked per item. Every item is
        checked before any is changed.

        Raises:
            UnauthorizedError: The actor is not a party, or the move belongs
                to another role
            IllegalTransitionError: No role may make the move, or no item is
                left to move
        """
        order = await self._context.repositories.orders.load(order_id)
        state = order.state
        assert state is not None
        if shipping_cost is not None and shipping_cost < ZERO:
            raise ValidationError("shipping_cost must not be negative", field="shipping_cost")

        with self._tracer.span(
            "crewflow.orders.update_status",
            {
                ATTR_ORDER_ID: str(order_id),
                ATTR_ACTOR_KIND: actor.kind.value,
                ATTR_REQUESTED_STATUS: new_status.value,
            },
        ):
            shipped_businesses = {item.business_id for item in state.items if item.status in SHIPPED_ITEM_STATUSES}
            items = self._scope(state, actor, item_ids)
            if actor.kind == ActorKind.CUSTOMER:
                ORDER_TRANSITIONS.require(state.status, actor.kind, new_status)
                if new_status == OrderItemStatus.CANCELLED:
                    items = [item for item in items if ORDER_TRANSITIONS.can(item.status, actor.kind, new_status)]
            for item in items:
                if actor.kind != ActorKind.CUSTOMER:
                    ORDER_TRANSITIONS.require(item.status, actor.kind, new_status)
            items = [item for item in items if item.status != new_status]
            if not items:
                raise IllegalTransitionError(
                    "order", state.status.value, new_status.value, reason="no items to update"
                )

            full_notes = notes
            if tracking_number:
                full_notes = f"{notes or ''} Tracking: {tracking_number}".strip()
            for item in items:
                order.change_item_status(item.item_id, new_status, actor, reason=reason, notes=full_notes)
            await self._context.repositories.orders.save(order)
            state = order.state
            assert state is not None
            logger.info(
                "Order %s: %d item(s) moved to %s by %s",
                order_id,
                len(items),
                new_status.value,
                actor.kind.value,
                extra={"order_id": str(order_id), "actor_id": actor.actor_id, "status": new_status.value},
            )

            effects: list[Effect] = []
            if new_status == OrderItemStatus.CONFIRMED:
                await self._after_confirm(state, items, actor, shipping_cost)
            elif new_status == OrderItemStatus.CANCELLED:
                effects.extend(await self._after_cancel(order, items, actor, reason, shipped_businesses))
            if new_status in (OrderItemStatus.CANCELLED, OrderItemStatus.DECLINED):
                closed = await self._close_unpaid_if_inactive(order, actor)
                if new_status == OrderItemStatus.DECLINED and closed.status not in (
                    OrderItemStatus.CANCELLED,
                    OrderItemStatus.DECLINED,
                ):
                    await self._sync_invoice_best_effort(closed, actor)

        state = await self.get_order(order_id)
        effects.insert(
            0,
            notification(
                state.customer_id,
                "order_status_updated",
                "Order Status Updated",
                f"Your order {order_id} is now {state.status.value}.",
                data={"orderId": str(order_id), "status": state.status.value},
            ),
        )
        return WorkflowResult(state, effects)

    async def _after_confirm(
        self,
        state: OrderState,
        items: list[OrderItem],
        actor: Actor,
        shipping_cost: Decimal | None,
    ) -> None:
        for item in items:
            await self._context.inventory.deduct(state.order_id, item.item_id, item.product_id, item.quantity)
        for business_id in dict.fromkeys(item.business_id for item in items):
            business = await self._context.catalog.get_business(business_id)
            cost = shipping_cost
            if cost is None and business.handles_shipping:
                cost = business.default_shipping_cost
            await self._shipments.create_for_business(state, business_id, actor, shipment_cost=cost)
        await self._invoices.sync_order_invoice(
            state, await self._shipments.shipments_for_order(state.order_id), actor
        )

    async def _close_unpaid_if_inactive(self, order: OrderAggregate, actor: Actor) -> OrderState:
        """Cancel the payment and void the invoice of an unpaid order with no active items."""
        state = order.state
        assert state is not None
        if state.status not in (OrderItemStatus.CANCELLED, OrderItemStatus.DECLINED):
            return state
        if state.payment_status not in (PaymentStatus.PENDING, PaymentStatus.FAILED):
            return state
        if state.invoice_id is not None:
            try:
                await self._invoices.void(state.invoice_id, f"order {state.status.value}", actor)
            except ExternalServiceError as e:
                logger.error(
                    "Could not void invoice %s of order %s: %s",
                    state.invoice_id,
                    state.order_id,
                    e,
                    exc_info=True,
                    extra={"order_id": str(state.order_id), "invoice_id": str(state.invoice_id)},
                )
        fresh = await self._context.repositories.orders.load(state.order_id)
        fresh.change_payment_status(PaymentStatus.CANCELLED, actor, notes=f"order {state.status.value}")
        await self._context.repositories.orders.save(fresh)
        result = fresh.state
        assert result is not None
        return result

    # -- cancellation money --------------------------------------------------

    async def _after_cancel(
        self,
        order: OrderAggregate,
        items: list[OrderItem],
        actor: Actor,
        reason: str | None,
        shipped_businesses: set[UUID],
    ) -> list[Effect]:
        """
        Restore stock, then refund and pay out per the cancellation policy.

        A customer cancel is settled per business: a business that already
        shipped keeps its full line total, any other is refunded to the
        customer less its handling fee. Every amount is a share of the
        cancelled items only, never of the whole order.
        """
        for item in items:
            await self._context.inventory.restore(order.aggregate_id, item.item_id)
        state = order.state
        assert state is not None
        if state.payment_status != PaymentStatus.PAID:
            return []

        config = self._context.config
        effects: list[Effect] = []
        order = await self._context.repositories.orders.load(state.order_id)
        if actor.kind == ActorKind.CUSTOMER:
            by_business: dict[UUID, list[OrderItem]] = {}
            for item in items:
                by_business.setdefault(item.business_id, []).append(item)
            unshipped = [item for item in items if item.business_id not in shipped_businesses]
            refund_amount = percent_of(business_share(state, unshipped), config.customer_cancel_refund_rate)
            effects.extend(await self._refund(order, refund_amount, None, "customer cancel", actor))
            for business_id, business_items in by_business.items():
                if business_id in shipped_businesses:
                    amount = quantize(sum((i.converted_total for i in business_items), ZERO))
                    effects.extend(
                        await self._payout(order, business_id, amount, "customer cancel after shipment", actor)
                    )
                    continue
                fee = percent_of(
                    business_share(state, business_items), Decimal("1") - config.customer_cancel_refund_rate
                )
                effects.extend(await self._payout(order, business_id, fee, "cancellation handling fee", actor))
        else:
            refund_amount = business_share(state, items)
            business_ids = list(dict.fromkeys(item.business_id for item in items))
            effects.extend(
                await self._refund(
                    order,
                    refund_amount,
                    business_ids[0] if len(business_ids) == 1 else None,
                    reason or "supplier cancel",
                    actor,
                    full_reversal=True,
                )
            )
            effects.append(
                ops_alert(
                    config.ops_alert_email,
                    state.order_id,
                    "SUPPLIER_CANCEL",
                    f"{actor.kind.value} {actor.actor_id} cancelled {len(items)} paid item(s). "
                    f"Refunded {refund_amount} {state.currency}. Reason: {reason or 'n/a'}",
                )
            )

        current = order.state
        assert current is not None
        if current.status == OrderItemStatus.CANCELLED and current.refunds:
            order.change_payment_status(PaymentStatus.REFUNDED, actor, notes="order cancelled")
        await self._context.repositories.orders.save(order)
        return effects

    async def _refund(
        self,
        order: OrderAggregate,
        amount: Decimal,
        business_id: UUID | None,
        reason: str,
        actor: Actor,
        *,
        full_reversal: bool = False,
    ) -> list[Effect]:
        state = order.state
        assert state is not None
        if amount <= ZERO:
            return []
        if state.invoice_id is None:
            return self._money_failure(state.order_id, "REFUND_FAILED", "order has no invoice to refund")
        try:
            invoice = (await self._invoices.load(state.invoice_id)).state
            if invoice is None or invoice.status not in (InvoiceStatus.PAID, InvoiceStatus.REFUNDED):
                return self._money_failure(state.order_id, "REFUND_FAILED", "order invoice is not paid")
            refundable = from_minor_units(invoice.amount_paid_minor - invoice.refunded_minor, invoice.currency)
            if amount > refundable:
                logger.warning(
                    "Capping refund of %s for order %s at the %s left on its invoice",
                    amount,
                    state.order_id,
                    refundable,
                    extra={"order_id": str(state.order_id), "invoice_id": str(state.invoice_id)},
                )
                amount = refundable
                if amount <= ZERO:
                    return self._money_failure(state.order_id, "REFUND_FAILED", "order invoice is fully refunded")
            refund_id = await self._invoices.refund(
                state.invoice_id,
                amount,
                actor,
                refund_application_fee=full_reversal,
                reverse_transfer=full_reversal,
                metadata={"orderId": str(state.order_id), "reason": reason},
            )
        except (ExternalServiceError, IllegalTransitionError) as e:
            logger.error(
                "Refund of %s for order %s failed: %s",
                amount,
                state.order_id,
                e,
                exc_info=True,
                extra={"order_id": str(state.order_id)},
            )
            return self._money_failure(state.order_id, "REFUND_FAILED", str(e))
        order.record_refund(
            OrderRefund(refund_id=refund_id, amount=amount, business_id=business_id, reason=reason), actor
        )
        logger.info(
            "Refunded %s to customer for order %s (%s)",
            amount,
            state.order_id,
            reason,
            extra={"order_id": str(state.order_id)},
        )
        return []

    async def _payout(
        self, order: OrderAggregate, business_id: UUID, amount: Decimal, reason: str, actor: Actor
    ) -> list[Effect]:
        state = order.state
        assert state is not None
        if amount <= ZERO:
            return []
        business = await self._context.catalog.get_business(business_id)
        if not business.payout_account_id:
            return self._money_failure(
                state.order_id, "PAYOUT_FAILED", f"business {business_id} has no payout account"
            )
        try:
            transfer_id = await self._invoices.transfer(
                amount,
                business.payout_account_id,
                {"orderId": str(state.order_id), "businessId": str(business_id), "reason": reason},
            )
        except ExternalServiceError as e:
            logger.error(
                "Payout of %s to business %s for order %s failed: %s",
                amount,
                business_id,
                state.order_id,
                e,
                exc_info=True,
                extra={"order_id": str(state.order_id)},
            )
            return self._money_failure(state.order_id, "PAYOUT_FAILED", str(e))
        order.record_payout(
            OrderPayout(transfer_id=transfer_id, business_id=business_id, amount=amount, reason=reason),
            actor,
        )
        logger.info(
            "Transferred %s to business %s for order %s (%s)",
            amount,
            business_id,
            state.order_id,
            reason,
            extra={"order_id": str(state.order_id)},
        )
        return []

    def _money_failure(self, order_id: UUID, kind: str, detail: str) -> list[Effect]:
        logger.error(
            "Cancellation money movement for order %s needs manual repair: %s",
            order_id,
            detail,
            extra={"order_id": str(order_id)},
        )
        return [ops_alert(self._context.config.ops_alert_email, order_id, kind, detail)]


__all__ = ["OrderLine", "OrderWorkflow", "business_share", "ops_alert"]
