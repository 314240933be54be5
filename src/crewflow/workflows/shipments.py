"""
Shipment orchestration.

One shipment per (order, supplying business). The shipment id is derived
from that pair, so two concurrent creators write to the same stream and
the loser of the optimistic-lock race simply loads the winner's shipment.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from crewflow.actors import TRACKING_WEBHOOK, Actor
from crewflow.catalog import Product
from crewflow.domain.orders import OrderItem, OrderState
from crewflow.domain.shipments import ShipmentAggregate, ShipmentRate, ShipmentState, shipment_id_for
from crewflow.effects import WorkflowResult, email, notification
from crewflow.exceptions import (
    ExternalServiceError,
    IllegalTransitionError,
    OptimisticLockError,
    ReconciliationError,
    ValidationError,
)
from crewflow.integrations.carriers import (
    NOTIFICATION_PRIORITIES,
    SHIPMENT_TO_ITEM_STATUS,
    Address,
    Parcel,
    TrackingUpdate,
    map_tracking_status,
)
from crewflow.observability import ATTR_ORDER_ID, ATTR_SHIPMENT_ID, Tracer, create_tracer
from crewflow.transitions import ORDER_TRANSITIONS
from crewflow.types import OrderItemStatus, ShipmentStatus
from crewflow.workflows.access import require_business
from crewflow.workflows.context import MarketplaceContext
from crewflow.workflows.invoicing import InvoiceLedger

logger = logging.getLogger(__name__)

SHIPPABLE_ITEM_STATUSES = frozenset({OrderItemStatus.CONFIRMED, OrderItemStatus.PROCESSING})

TRACKING_MESSAGES: dict[ShipmentStatus, tuple[str, str]] = {
    ShipmentStatus.SHIPPED: ("Order Shipped", "Your order {order_id} is on its way."),
    ShipmentStatus.DELIVERED: ("Order Delivered", "Your order {order_id} has been delivered."),
    ShipmentStatus.FAILED: (
        "Delivery Failed",
        "Delivery of your order {order_id} failed. The affected items were cancelled.",
    ),
    ShipmentStatus.RETURNED_TO_SUPPLIER: (
        "Order Returned",
        "Your order {order_id} was returned to the supplier. The affected items were cancelled.",
    ),
}


def build_parcel(items: list[tuple[OrderItem, Product]]) -> Parcel:
    """Largest dimension per axis, summed weight."""
    parcel = Parcel()
    for item, product in items:
        parcel = Parcel(
            length=max(parcel.length, product.length),
            width=max(parcel.width, product.width),
            height=max(parcel.height, product.height),
            weight=parcel.weight + product.weight * item.quantity,
        )
    return parcel


class ShipmentOrchestrator:
    """
    Creates shipments, quotes carrier rates, buys labels and applies tracking.

    Example:
        >>> shipments = ShipmentOrchestrator(context)
        >>> result = await shipments.create_for_business(order, business_id, actor)
        >>> result.value.status
        <ShipmentStatus.RATES_FETCHED: 'rates_fetched'>
    """

    def __init__(
        self,
        context: MarketplaceContext,
        invoices: InvoiceLedger | None = None,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._context = context
        self._invoices = invoices or InvoiceLedger(context)
        self._tracer = tracer or context.tracer or create_tracer(__name__, enable_tracing)

    async def load(self, shipment_id: UUID) -> ShipmentAggregate:
        return await self._context.repositories.shipments.load(shipment_id)

    async def shipments_for_order(self, order_id: UUID) -> list[ShipmentState]:
        states = []
        for shipment_id in self._context.lookups.shipments_for_order(order_id):
            state = (await self.load(shipment_id)).state
            if state is not None:
                states.append(state)
        return states

    async def _parcel_for(self, items: list[OrderItem]) -> Parcel:
        pairs = [(item, await self._context.catalog.get_product(item.product_id)) for item in items]
        return build_parcel(pairs)

    async def create_for_business(
        self,
        order: OrderState,
        business_id: UUID,
        actor: Actor,
        *,
        shipment_cost: Decimal | None = None,
        fetch_rates: bool = True,
    ) -> WorkflowResult[ShipmentState]:
        """
        Create (or extend) the shipment for one business's confirmed items.

        With ``shipment_cost`` the shipment is business-handled and no
        carrier is involved. Otherwise rates are fetched once; a carrier
        failure is logged and leaves the shipment ``created`` so rates can
        be fetched again later.
        """
        items = [
            item
            for item in order.items_for_business(business_id)
            if item.status in SHIPPABLE_ITEM_STATUSES
        ]
        if not items:
            raise ValidationError(
                f"business {business_id} has no confirmed items on order {order.order_id}",
                field="business_id",
            )
        shipment_id = shipment_id_for(order.order_id, business_id)
        with self._tracer.span(
            "crewflow.shipments.create",
            {ATTR_ORDER_ID: str(order.order_id), ATTR_SHIPMENT_ID: str(shipment_id)},
        ):
            parcel = await self._parcel_for(items)
            item_ids = [item.item_id for item in items]
            repo = self._context.repositories.shipments

            if await repo.exists(shipment_id):
                shipment = await self._extend(shipment_id, item_ids, parcel, actor)
            else:
                business = await self._context.catalog.get_business(business_id)
                shipment = ShipmentAggregate(shipment_id)
                shipment.create(
                    order_id=order.order_id,
                    business_id=business_id,
                    item_ids=item_ids,
                    from_address=business.address,
                    to_address=Address.model_validate(order.delivery_address),
                    parcel=parcel,
                    shipment_cost=shipment_cost,
                    actor=actor,
                )
                try:
                    await repo.save(shipment)
                    logger.info(
                        "Created shipment %s for order %s business %s",
                        shipment_id,
                        order.order_id,
                        business_id,
                        extra={"order_id": str(order.order_id), "shipment_id": str(shipment_id)},
                    )
                except OptimisticLockError:
                    logger.debug(
                        "Shipment %s created concurrently; using the existing one",
                        shipment_id,
                        extra={"shipment_id": str(shipment_id)},
                    )
                    shipment = await self._extend(shipment_id, item_ids, parcel, actor)

            state = shipment.state
            assert state is not None
            if fetch_rates and not state.business_handled and state.status == ShipmentStatus.CREATED:
                try:
                    state = await self.fetch_rates(shipment_id, actor)
                except ExternalServiceError as e:
                    logger.error(
                        "Rate fetch for shipment %s failed: %s",
                        shipment_id,
                        e,
                        exc_info=True,
                        extra={"order_id": str(order.order_id), "shipment_id": str(shipment_id)},
                    )
            return WorkflowResult(state)

    async def _extend(
        self, shipment_id: UUID, item_ids: list[UUID], parcel: Parcel, actor: Actor
    ) -> ShipmentAggregate:
        shipment = await self.load(shipment_id)
        state = shipment.state
        assert state is not None
        new_ids = [item_id for item_id in item_ids if item_id not in state.item_ids]
        if not new_ids:
            return shipment
        try:
            shipment.add_items(new_ids, parcel, actor)
        except IllegalTransitionError:
            logger.warning(
                "Shipment %s already has a label; %d new item(s) not attached",
                shipment_id,
                len(new_ids),
                extra={"shipment_id": str(shipment_id)},
            )
            return shipment
        await self._context.repositories.shipments.save(shipment)
        return shipment

    async def fetch_rates(self, shipment_id: UUID, actor: Actor) -> ShipmentState:
        """
        Ask the carrier for rates once and record them.

        Raises:
            ExternalServiceError: The carrier call failed
        """
        shipment = await self.load(shipment_id)
        state = shipment.state
        assert state is not None
        require_business(actor, state.business_id, "fetch shipping rates")
        with self._tracer.span("crewflow.shipments.fetch_rates", {ATTR_SHIPMENT_ID: str(shipment_id)}):
            carrier_shipment = await self._context.carrier.create_shipment(
                state.from_address, state.to_address, state.parcel
            )
            rates = [
                ShipmentRate(
                    rate_id=rate.rate_id,
                    carrier=rate.carrier,
                    service=rate.service,
                    rate=rate.rate,
                    currency=rate.currency,
                    estimated_days=rate.estimated_days,
                )
                for rate in carrier_shipment.rates
            ]
            shipment.record_rates(carrier_shipment.carrier_shipment_id, rates, actor)
            await self._context.repositories.shipments.save(shipment)
        logger.info(
            "Fetched %d rate(s) for shipment %s",
            len(rates),
            shipment_id,
            extra={"shipment_id": str(shipment_id)},
        )
        result = shipment.state
        assert result is not None
        return result

    async def select_rate(self, shipment_id: UUID, rate_id: str, actor: Actor) -> ShipmentState:
        shipment = await self.load(shipment_id)
        state = shipment.state
        assert state is not None
        require_business(actor, state.business_id, "select a shipping rate")
        shipment.select_rate(rate_id, actor)
        await self._context.repositories.shipments.save(shipment)
        result = shipment.state
        assert result is not None
        return result

    async def purchase_label(self, shipment_id: UUID, actor: Actor) -> WorkflowResult[ShipmentState]:
        """
        Buy the label for the selected rate.

        The shipment's confirmed order items move to ``processing`` and the
        order invoice is synced, since a purchased label may open the
        finalize gate. The label URL is emailed to the business.

        Raises:
            IllegalTransitionError: No rate is selected
            ExternalServiceError: The carrier call failed
        """
        shipment = await self.load(shipment_id)
        state = shipment.state
        assert state is not None
        require_business(actor, state.business_id, "purchase a shipping label")
        rate = state.selected_rate
        if state.status != ShipmentStatus.RATE_SELECTED or rate is None or state.carrier_shipment_id is None:
            raise IllegalTransitionError(
                "shipment",
                state.status.value,
                ShipmentStatus.LABEL_PURCHASED.value,
                reason="a rate must be selected first",
            )
        with self._tracer.span(
            "crewflow.shipments.purchase_label",
            {ATTR_SHIPMENT_ID: str(shipment_id), ATTR_ORDER_ID: str(state.order_id)},
        ):
            label = await self._context.carrier.buy_label(state.carrier_shipment_id, rate.rate_id)
            shipment.record_label(label.tracking_code, label.label_url, label.carrier, actor)
            await self._context.repositories.shipments.save(shipment)
            logger.info(
                "Purchased %s label %s for shipment %s",
                label.carrier,
                label.tracking_code,
                shipment_id,
                extra={"shipment_id": str(shipment_id), "order_id": str(state.order_id)},
            )

            order = await self._context.repositories.orders.load(state.order_id)
            order_state = order.state
            assert order_state is not None
            for item_id in state.item_ids:
                item = order_state.item(item_id)
                if item.status == OrderItemStatus.CONFIRMED and ORDER_TRANSITIONS.can(
                    item.status, actor.kind, OrderItemStatus.PROCESSING
                ):
                    order.change_item_status(
                        item_id, OrderItemStatus.PROCESSING, actor, notes="Shipping label purchased"
                    )
            await self._context.repositories.orders.save(order)

            order_state = order.state
            assert order_state is not None
            await self._invoices.sync_order_invoice(
                order_state, await self.shipments_for_order(state.order_id), actor
            )

        business = await self._context.catalog.get_business(state.business_id)
        final = shipment.state
        assert final is not None
        effects = [
            email(
                business.email,
                f"Shipping label ready - Order {state.order_id}",
                (
                    f"<p>Your {label.carrier} label for order {state.order_id} is ready.</p>"
                    f"<p>Tracking number: {label.tracking_code}</p>"
                    f'<p><a href="{label.label_url}">Download label</a></p>'
                ),
            )
        ]
        return WorkflowResult(final, effects)

    async def apply_tracking(self, update: TrackingUpdate) -> WorkflowResult[ShipmentState | None]:
        """
        Apply a carrier tracking update.

        Unknown tracking codes and untracked statuses are ignored with a
        warning. A status equal to the current one is a no-op, so webhook
        retries produce no duplicate notifications.

        Raises:
            ReconciliationError: The shipment was updated but its order items
                were not
        """
        shipment_id = self._context.lookups.find_shipment_by_tracking(update.tracking_code)
        if shipment_id is None:
            logger.warning(
                "No shipment for tracking code %s",
                update.tracking_code,
                extra={"status": update.status},
            )
            return WorkflowResult(None)
        mapped = map_tracking_status(update.status)
        if mapped is None:
            logger.warning(
                "Ignoring untracked carrier status %r for shipment %s",
                update.status,
                shipment_id,
                extra={"shipment_id": str(shipment_id)},
            )
            return WorkflowResult(None)

        with self._tracer.span("crewflow.shipments.apply_tracking", {ATTR_SHIPMENT_ID: str(shipment_id)}):
            shipment = await self.load(shipment_id)
            if not shipment.apply_tracking(mapped, update.status, update.payload, TRACKING_WEBHOOK):
                logger.debug(
                    "Shipment %s already %s; tracking update is a no-op",
                    shipment_id,
                    mapped.value,
                    extra={"shipment_id": str(shipment_id)},
                )
                return WorkflowResult(shipment.state)
            await self._context.repositories.shipments.save(shipment)
            state = shipment.state
            assert state is not None
            logger.info(
                "Shipment %s is now %s",
                shipment_id,
                mapped.value,
                extra={"shipment_id": str(shipment_id), "order_id": str(state.order_id), "status": mapped.value},
            )

            target = SHIPMENT_TO_ITEM_STATUS.get(mapped)
            if target is None:
                return WorkflowResult(state)
            try:
                order_state = await self._propagate(state, target, update.status)
            except Exception as e:
                logger.critical(
                    "Shipment %s updated to %s but order %s was not: %s",
                    shipment_id,
                    mapped.value,
                    state.order_id,
                    e,
                    exc_info=True,
                    extra={"shipment_id": str(shipment_id), "order_id": str(state.order_id)},
                )
                raise ReconciliationError("tracking", update.tracking_code, str(e)) from e

        customer = await self._context.catalog.get_customer(order_state.customer_id)
        title, template = TRACKING_MESSAGES[mapped]
        message = template.format(order_id=state.order_id)
        data = {
            "orderId": str(state.order_id),
            "shipmentId": str(shipment_id),
            "trackingNumber": update.tracking_code,
            "status": mapped.value,
        }
        effects = [
            notification(
                order_state.customer_id,
                f"shipment_{mapped.value}",
                title,
                message,
                priority=NOTIFICATION_PRIORITIES[mapped],
                data=data,
            ),
            email(customer.email, f"{title} - Order {state.order_id}", f"<p>{message}</p>"),
        ]
        return WorkflowResult(state, effects)

    async def _propagate(self, shipment: ShipmentState, target: OrderItemStatus, carrier_status: str) -> OrderState:
        order = await self._context.repositories.orders.load(shipment.order_id)
        order_state = order.state
        assert order_state is not None
        cancelled: list[UUID] = []
        for item_id in shipment.item_ids:
            item = order_state.item(item_id)
            if item.status == target or item.status.is_terminal:
                continue
            if not ORDER_TRANSITIONS.can(item.status, TRACKING_WEBHOOK.kind, target):
                logger.warning(
                    "Tracking cannot move item %s from %s to %s",
                    item_id,
                    item.status.value,
                    target.value,
                    extra={"order_id": str(shipment.order_id)},
                )
                continue
            order.change_item_status(
                item_id, target, TRACKING_WEBHOOK, notes=f"Carrier status: {carrier_status}"
            )
            if target == OrderItemStatus.CANCELLED:
                cancelled.append(item_id)
        await self._context.repositories.orders.save(order)
        for item_id in cancelled:
            await self._context.inventory.restore(shipment.order_id, item_id)
        result = order.state
        assert result is not None
        return result


__all__ = ["SHIPPABLE_ITEM_STATUSES", "ShipmentOrchestrator", "build_parcel"]
