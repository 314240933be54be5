"""
Quote aggregate.

A quote belongs to exactly one booking and lists priced service lines.
Each line keeps its original price, its settlement-currency price and the
rate used; ``lock_rates`` freezes the rates at acceptance so later rate
drift cannot change what was agreed.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from crewflow.actors import Actor, ActorKind
from crewflow.aggregates.base import DeclarativeAggregate
from crewflow.events.base import DomainEvent
from crewflow.events.registry import register_event
from crewflow.exceptions import IllegalTransitionError, NotFoundError, ValidationError
from crewflow.handlers.decorators import handles
from crewflow.money import ZERO, percent_of, quantize
from crewflow.types import QuoteItemStatus, QuoteStatus


class QuoteItem(BaseModel):
    item_id: UUID
    name: str
    description: str | None = None
    quantity: int
    original_unit_price: Decimal
    original_currency: str
    converted_unit_price: Decimal
    converted_currency: str = "USD"
    conversion_rate: Decimal
    conversion_timestamp: datetime
    rate_locked_at: datetime | None = None
    status: QuoteItemStatus = QuoteItemStatus.PENDING
    edit_reason: str | None = None

    @property
    def total_price(self) -> Decimal:
        return quantize(self.converted_unit_price * self.quantity)


class QuoteState(BaseModel):
    quote_id: UUID
    booking_id: UUID
    business_id: UUID
    customer_id: UUID
    items: list[QuoteItem] = Field(default_factory=list)
    status: QuoteStatus = QuoteStatus.QUOTED
    platform_fee_rate: Decimal
    service_amount: Decimal
    amount: Decimal = ZERO
    platform_fee: Decimal = ZERO
    quote_amount: Decimal = ZERO
    accepted_at: datetime | None = None

    def item(self, item_id: UUID) -> QuoteItem:
        for item in self.items:
            if item.item_id == item_id:
                return item
        raise NotFoundError("quote item", item_id)

    @property
    def item_statuses(self) -> list[QuoteItemStatus]:
        return [item.status for item in self.items]

    @property
    def total_amount(self) -> Decimal:
        return self.quote_amount + self.platform_fee


def _with_totals(state: QuoteState, items: list[QuoteItem]) -> QuoteState:
    amount = quantize(sum((item.total_price for item in items), ZERO))
    quote_amount = quantize(state.service_amount + amount)
    return state.model_copy(
        update={
            "items": items,
            "amount": amount,
            "quote_amount": quote_amount,
            "platform_fee": percent_of(quote_amount, state.platform_fee_rate),
        }
    )


@register_event
class QuoteProvided(DomainEvent):
    aggregate_type: str = "Quote"
    booking_id: UUID
    business_id: UUID
    customer_id: UUID
    items: list[QuoteItem]
    platform_fee_rate: Decimal
    service_amount: Decimal


@register_event
class QuoteItemStatusChanged(DomainEvent):
    aggregate_type: str = "Quote"
    item_id: UUID
    from_status: QuoteItemStatus
    to_status: QuoteItemStatus
    actor_kind: ActorKind | None = None
    reason: str | None = None


@register_event
class QuoteItemRevised(DomainEvent):
    aggregate_type: str = "Quote"
    item: QuoteItem


@register_event
class QuoteItemRemoved(DomainEvent):
    aggregate_type: str = "Quote"
    item_id: UUID


@register_event
class QuoteRatesLocked(DomainEvent):
    aggregate_type: str = "Quote"
    locked_at: datetime


@register_event
class QuoteStatusChanged(DomainEvent):
    aggregate_type: str = "Quote"
    from_status: QuoteStatus
    to_status: QuoteStatus


class QuoteAggregate(DeclarativeAggregate[QuoteState]):
    """Event-sourced quote owned by one booking."""

    aggregate_type = "Quote"

    def _get_initial_state(self) -> QuoteState:
        raise NotImplementedError("quotes are created by provide()")

    def provide(
        self,
        *,
        booking_id: UUID,
        business_id: UUID,
        customer_id: UUID,
        items: list[QuoteItem],
        platform_fee_rate: Decimal,
        service_amount: Decimal,
        actor: Actor,
    ) -> None:
        if self._state is not None:
            raise ValidationError(f"quote {self._aggregate_id} already exists")
        if not items:
            raise ValidationError("a quote needs at least one item", field="items")
        self._raise_event(
            QuoteProvided(
                **self._event_fields(actor.actor_id),
                booking_id=booking_id,
                business_id=business_id,
                customer_id=customer_id,
                items=items,
                platform_fee_rate=platform_fee_rate,
                service_amount=service_amount,
            )
        )

    def change_item_status(
        self,
        item_id: UUID,
        to_status: QuoteItemStatus,
        actor: Actor,
        *,
        reason: str | None = None,
    ) -> None:
        state = self._require_open()
        item = state.item(item_id)
        if item.status == to_status:
            return
        self._raise_event(
            QuoteItemStatusChanged(
                **self._event_fields(actor.actor_id),
                item_id=item_id,
                from_status=item.status,
                to_status=to_status,
                actor_kind=actor.kind,
                reason=reason,
            )
        )

    def revise_item(self, item: QuoteItem, actor: Actor) -> None:
        """Replace a line with a revised version; the line becomes ``edited``."""
        state = self._require_open()
        state.item(item.item_id)
        self._raise_event(
            QuoteItemRevised(
                **self._event_fields(actor.actor_id),
                item=item.model_copy(update={"status": QuoteItemStatus.EDITED, "edit_reason": None}),
            )
        )

    def remove_item(self, item_id: UUID, actor: Actor) -> None:
        state = self._require_open()
        state.item(item_id)
        if len(state.items) == 1:
            raise ValidationError("cannot remove the last quote item", field="item_id")
        self._raise_event(QuoteItemRemoved(**self._event_fields(actor.actor_id), item_id=item_id))

    def lock_rates(self, locked_at: datetime, actor: Actor) -> None:
        self._require_state()
        self._raise_event(QuoteRatesLocked(**self._event_fields(actor.actor_id), locked_at=locked_at))

    def change_status(self, to_status: QuoteStatus, actor: Actor) -> None:
        state = self._require_state()
        if state.status == to_status:
            return
        self._raise_event(
            QuoteStatusChanged(
                **self._event_fields(actor.actor_id),
                from_status=state.status,
                to_status=to_status,
            )
        )

    def _require_open(self) -> QuoteState:
        state = self._require_state()
        if state.status != QuoteStatus.QUOTED:
            raise IllegalTransitionError(
                "quote", state.status.value, "modified", reason="quote is no longer open"
            )
        return state

    # -- event handlers ------------------------------------------------------

    @handles(QuoteProvided)
    def _on_provided(self, event: QuoteProvided) -> None:
        state = QuoteState(
            quote_id=event.aggregate_id,
            booking_id=event.booking_id,
            business_id=event.business_id,
            customer_id=event.customer_id,
            platform_fee_rate=event.platform_fee_rate,
            service_amount=event.service_amount,
        )
        self._state = _with_totals(state, [item.model_copy() for item in event.items])

    @handles(QuoteItemStatusChanged)
    def _on_item_status_changed(self, event: QuoteItemStatusChanged) -> None:
        state = self._require_state()
        items = [
            item.model_copy(update={"status": event.to_status, "edit_reason": event.reason})
            if item.item_id == event.item_id
            else item
            for item in state.items
        ]
        self._state = state.model_copy(update={"items": items})

    @handles(QuoteItemRevised)
    def _on_item_revised(self, event: QuoteItemRevised) -> None:
        state = self._require_state()
        items = [event.item if item.item_id == event.item.item_id else item for item in state.items]
        self._state = _with_totals(state, items)

    @handles(QuoteItemRemoved)
    def _on_item_removed(self, event: QuoteItemRemoved) -> None:
        state = self._require_state()
        self._state = _with_totals(
            state, [item for item in state.items if item.item_id != event.item_id]
        )

    @handles(QuoteRatesLocked)
    def _on_rates_locked(self, event: QuoteRatesLocked) -> None:
        state = self._require_state()
        items = [item.model_copy(update={"rate_locked_at": event.locked_at}) for item in state.items]
        self._state = state.model_copy(update={"items": items, "accepted_at": event.locked_at})

    @handles(QuoteStatusChanged)
    def _on_status_changed(self, event: QuoteStatusChanged) -> None:
        self._state = self._require_state().model_copy(update={"status": event.to_status})


__all__ = [
    "QuoteAggregate",
    "QuoteItem",
    "QuoteItemRemoved",
    "QuoteItemRevised",
    "QuoteItemStatusChanged",
    "QuoteProvided",
    "QuoteRatesLocked",
    "QuoteState",
    "QuoteStatusChanged",
]
