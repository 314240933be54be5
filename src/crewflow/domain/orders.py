"""
Order aggregate.

An order embeds its items; each item moves through its own status
independently per supplying business, and the order status is re-derived
from the item statuses whenever one of them changes. ``history`` is the
append-only audit log of every transition.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from crewflow.actors import Actor, ActorKind, BusinessKind
from crewflow.aggregates.base import DeclarativeAggregate
from crewflow.events.base import DomainEvent
from crewflow.events.registry import register_event
from crewflow.exceptions import IllegalTransitionError, NotFoundError, ValidationError
from crewflow.handlers.decorators import handles
from crewflow.money import ZERO
from crewflow.transitions import derive_order_status
from crewflow.types import OrderItemStatus, OrderStatus, PaymentStatus

# =============================================================================
# State
# =============================================================================


SHIPPED_ITEM_STATUSES = frozenset(
    {OrderItemStatus.SHIPPED, OrderItemStatus.OUT_FOR_DELIVERY, OrderItemStatus.DELIVERED}
)


class OrderItem(BaseModel):
    """One product line of an order, owned by a single supplying business."""

    item_id: UUID
    product_id: UUID
    product_name: str
    business_id: UUID
    business_kind: BusinessKind = BusinessKind.DISTRIBUTOR
    quantity: int
    unit_price: Decimal
    discount: Decimal = ZERO
    original_currency: str
    original_total: Decimal
    converted_total: Decimal
    conversion_rate: Decimal
    status: OrderItemStatus = OrderItemStatus.PENDING
    confirmation_token: str
    token_expires_at: datetime
    decline_reason: str | None = None


class OrderHistoryEntry(BaseModel):
    from_status: str
    to_status: str
    item_id: UUID | None = None
    actor_id: str | None = None
    actor_kind: ActorKind | None = None
    reason: str | None = None
    notes: str | None = None
    at: datetime


class OrderRefund(BaseModel):
    refund_id: str
    amount: Decimal
    business_id: UUID | None = None
    reason: str


class OrderPayout(BaseModel):
    transfer_id: str
    business_id: UUID
    amount: Decimal
    reason: str


class OrderState(BaseModel):
    order_id: UUID
    customer_id: UUID
    delivery_address: dict[str, Any] = Field(default_factory=dict)
    items: list[OrderItem] = Field(default_factory=list)
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    currency: str = "USD"
    subtotal: Decimal = ZERO
    platform_fee: Decimal = ZERO
    total_amount: Decimal = ZERO
    invoice_id: UUID | None = None
    gateway_invoice_id: str | None = None
    invoice_url: str | None = None
    invoiced_item_ids: list[UUID] = Field(default_factory=list)
    history: list[OrderHistoryEntry] = Field(default_factory=list)
    refunds: list[OrderRefund] = Field(default_factory=list)
    payouts: list[OrderPayout] = Field(default_factory=list)
    created_at: datetime | None = None

    def item(self, item_id: UUID) -> OrderItem:
        for item in self.items:
            if item.item_id == item_id:
                return item
        raise NotFoundError("order item", item_id)

    def item_by_token(self, token: str) -> OrderItem | None:
        for item in self.items:
            if item.confirmation_token == token:
                return item
        return None

    def items_for_business(self, business_id: UUID) -> list[OrderItem]:
        return [item for item in self.items if item.business_id == business_id]

    @property
    def business_ids(self) -> list[UUID]:
        seen: list[UUID] = []
        for item in self.items:
            if item.business_id not in seen:
                seen.append(item.business_id)
        return seen

    @property
    def has_shipped_item(self) -> bool:
        return any(item.status in SHIPPED_ITEM_STATUSES for item in self.items)

    @property
    def refunded_amount(self) -> Decimal:
        return sum((refund.amount for refund in self.refunds), ZERO)


# =============================================================================
# Events
# =============================================================================


@register_event
class OrderPlaced(DomainEvent):
    aggregate_type: str = "Order"
    customer_id: UUID
    delivery_address: dict[str, Any]
    items: list[OrderItem]
    currency: str
    subtotal: Decimal
    platform_fee: Decimal
    total_amount: Decimal


@register_event
class OrderItemStatusChanged(DomainEvent):
    aggregate_type: str = "Order"
    item_id: UUID
    from_status: OrderItemStatus
    to_status: OrderItemStatus
    actor_kind: ActorKind | None = None
    reason: str | None = None
    notes: str | None = None


@register_event
class OrderPaymentStatusChanged(DomainEvent):
    aggregate_type: str = "Order"
    from_status: PaymentStatus
    to_status: PaymentStatus
    actor_kind: ActorKind | None = None
    notes: str | None = None


@register_event
class OrderInvoiceLinked(DomainEvent):
    aggregate_type: str = "Order"
    invoice_id: UUID
    gateway_invoice_id: str
    invoice_url: str | None = None


@register_event
class OrderItemsInvoiced(DomainEvent):
    aggregate_type: str = "Order"
    item_ids: list[UUID]


@register_event
class OrderRefundIssued(DomainEvent):
    aggregate_type: str = "Order"
    refund: OrderRefund


@register_event
class OrderPayoutTransferred(DomainEvent):
    aggregate_type: str = "Order"
    payout: OrderPayout


# =============================================================================
# Aggregate
# =============================================================================


class OrderAggregate(DeclarativeAggregate[OrderState]):
    """
    Event-sourced order.

    Command methods check structural rules (item exists, item not terminal).
    Role legality is decided by the caller against ``ORDER_TRANSITIONS``.
    """

    aggregate_type = "Order"

    def _get_initial_state(self) -> OrderState:
        raise NotImplementedError("orders are created by place()")

    # -- commands ------------------------------------------------------------

    def place(
        self,
        *,
        customer_id: UUID,
        delivery_address: dict[str, Any],
        items: list[OrderItem],
        currency: str,
        subtotal: Decimal,
        platform_fee: Decimal,
        total_amount: Decimal,
        actor: Actor,
    ) -> None:
        if self._state is not None:
            raise ValidationError(f"order {self._aggregate_id} already exists")
        if not items:
            raise ValidationError("an order needs at least one item", field="products")
        self._raise_event(
            OrderPlaced(
                **self._event_fields(actor.actor_id),
                customer_id=customer_id,
                delivery_address=delivery_address,
                items=items,
                currency=currency,
                subtotal=subtotal,
                platform_fee=platform_fee,
                total_amount=total_amount,
            )
        )

    def change_item_status(
        self,
        item_id: UUID,
        to_status: OrderItemStatus,
        actor: Actor,
        *,
        reason: str | None = None,
        notes: str | None = None,
    ) -> None:
        item = self._require_state().item(item_id)
        if item.status.is_terminal or item.status == to_status:
            raise IllegalTransitionError("order item", item.status.value, to_status.value)
        self._raise_event(
            OrderItemStatusChanged(
                **self._event_fields(actor.actor_id),
                item_id=item_id,
                from_status=item.status,
                to_status=to_status,
                actor_kind=actor.kind,
                reason=reason,
                notes=notes,
            )
        )

    def change_payment_status(
        self,
        to_status: PaymentStatus,
        actor: Actor,
        *,
        notes: str | None = None,
    ) -> None:
        state = self._require_state()
        if state.payment_status == to_status:
            return
        self._raise_event(
            OrderPaymentStatusChanged(
                **self._event_fields(actor.actor_id),
                from_status=state.payment_status,
                to_status=to_status,
                actor_kind=actor.kind,
                notes=notes,
            )
        )

    def link_invoice(
        self,
        invoice_id: UUID,
        gateway_invoice_id: str,
        invoice_url: str | None,
        actor: Actor,
    ) -> None:
        state = self._require_state()
        if (
            state.invoice_id == invoice_id
            and state.gateway_invoice_id == gateway_invoice_id
            and state.invoice_url == invoice_url
        ):
            return
        self._raise_event(
            OrderInvoiceLinked(
                **self._event_fields(actor.actor_id),
                invoice_id=invoice_id,
                gateway_invoice_id=gateway_invoice_id,
                invoice_url=invoice_url,
            )
        )

    def mark_items_invoiced(self, item_ids: list[UUID], actor: Actor) -> None:
        already = set(self._require_state().invoiced_item_ids)
        new_ids = [item_id for item_id in item_ids if item_id not in already]
        if not new_ids:
            return
        self._raise_event(
            OrderItemsInvoiced(**self._event_fields(actor.actor_id), item_ids=new_ids)
        )

    def record_refund(self, refund: OrderRefund, actor: Actor) -> None:
        self._require_state()
        self._raise_event(OrderRefundIssued(**self._event_fields(actor.actor_id), refund=refund))

    def record_payout(self, payout: OrderPayout, actor: Actor) -> None:
        self._require_state()
        self._raise_event(
            OrderPayoutTransferred(**self._event_fields(actor.actor_id), payout=payout)
        )

    # -- event handlers ------------------------------------------------------

    @handles(OrderPlaced)
    def _on_placed(self, event: OrderPlaced) -> None:
        self._state = OrderState(
            order_id=event.aggregate_id,
            customer_id=event.customer_id,
            delivery_address=event.delivery_address,
            items=[item.model_copy() for item in event.items],
            currency=event.currency,
            subtotal=event.subtotal,
            platform_fee=event.platform_fee,
            total_amount=event.total_amount,
            created_at=event.occurred_at,
            history=[
                OrderHistoryEntry(
                    from_status="",
                    to_status=OrderStatus.PENDING.value,
                    actor_id=event.actor_id,
                    actor_kind=ActorKind.CUSTOMER,
                    notes="Order placed",
                    at=event.occurred_at,
                )
            ],
        )

    @handles(OrderItemStatusChanged)
    def _on_item_status_changed(self, event: OrderItemStatusChanged) -> None:
        state = self._require_state()
        items = []
        for item in state.items:
            if item.item_id == event.item_id:
                update: dict[str, Any] = {"status": event.to_status}
                if event.to_status == OrderItemStatus.DECLINED:
                    update["decline_reason"] = event.reason
                item = item.model_copy(update=update)
            items.append(item)
        history = [
            *state.history,
            OrderHistoryEntry(
                from_status=event.from_status.value,
                to_status=event.to_status.value,
                item_id=event.item_id,
                actor_id=event.actor_id,
                actor_kind=event.actor_kind,
                reason=event.reason,
                notes=event.notes,
                at=event.occurred_at,
            ),
        ]
        self._state = state.model_copy(
            update={
                "items": items,
                "status": derive_order_status(item.status for item in items),
                "history": history,
            }
        )

    @handles(OrderPaymentStatusChanged)
    def _on_payment_status_changed(self, event: OrderPaymentStatusChanged) -> None:
        state = self._require_state()
        history = [
            *state.history,
            OrderHistoryEntry(
                from_status=f"payment:{event.from_status.value}",
                to_status=f"payment:{event.to_status.value}",
                actor_id=event.actor_id,
                actor_kind=event.actor_kind,
                notes=event.notes,
                at=event.occurred_at,
            ),
        ]
        self._state = state.model_copy(
            update={"payment_status": event.to_status, "history": history}
        )

    @handles(OrderInvoiceLinked)
    def _on_invoice_linked(self, event: OrderInvoiceLinked) -> None:
        self._state = self._require_state().model_copy(
            update={
                "invoice_id": event.invoice_id,
                "gateway_invoice_id": event.gateway_invoice_id,
                "invoice_url": event.invoice_url,
            }
        )

    @handles(OrderItemsInvoiced)
    def _on_items_invoiced(self, event: OrderItemsInvoiced) -> None:
        state = self._require_state()
        self._state = state.model_copy(
            update={"invoiced_item_ids": [*state.invoiced_item_ids, *event.item_ids]}
        )

    @handles(OrderRefundIssued)
    def _on_refund_issued(self, event: OrderRefundIssued) -> None:
        state = self._require_state()
        self._state = state.model_copy(update={"refunds": [*state.refunds, event.refund]})

    @handles(OrderPayoutTransferred)
    def _on_payout_transferred(self, event: OrderPayoutTransferred) -> None:
        state = self._require_state()
        self._state = state.model_copy(update={"payouts": [*state.payouts, event.payout]})


__all__ = [
    "OrderAggregate",
    "OrderHistoryEntry",
    "OrderInvoiceLinked",
    "OrderItem",
    "OrderItemStatusChanged",
    "OrderItemsInvoiced",
    "OrderPaymentStatusChanged",
    "OrderPayout",
    "OrderPayoutTransferred",
    "OrderPlaced",
    "OrderRefund",
    "OrderRefundIssued",
    "OrderState",
    "SHIPPED_ITEM_STATUSES",
]
