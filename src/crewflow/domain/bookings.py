"""
Booking aggregate.

A booking carries two independent status machines, ``status`` and
``completed_status``, whose legal combinations are fixed by
``BOOKING_JOINT_STATES``. Every change to either, and to the quote and
payment status, lands in ``status_history``.
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
from crewflow.exceptions import IllegalTransitionError, ValidationError
from crewflow.handlers.decorators import handles
from crewflow.money import ZERO
from crewflow.transitions import require_booking_combination
from crewflow.types import (
    BookingQuoteStatus,
    BookingStatus,
    CompletionStatus,
    InvoicePhase,
    PaymentStatus,
)


class BookingHistoryEntry(BaseModel):
    field: str
    from_status: str
    to_status: str
    actor_id: str | None = None
    actor_kind: ActorKind | None = None
    reason: str | None = None
    at: datetime


class BookingInvoiceRef(BaseModel):
    invoice_id: UUID
    gateway_invoice_id: str
    invoice_url: str | None = None


class BookingState(BaseModel):
    booking_id: UUID
    customer_id: UUID
    business_id: UUID
    business_kind: BusinessKind = BusinessKind.DISTRIBUTOR
    service_id: UUID
    service_name: str
    service_price: Decimal
    service_currency: str
    date: str
    time: str
    notes: str | None = None
    status: BookingStatus = BookingStatus.PENDING
    requires_quote: bool = False
    quote_status: BookingQuoteStatus = BookingQuoteStatus.NOT_REQUIRED
    completed_status: CompletionStatus = CompletionStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    confirmation_token: str
    token_expires_at: datetime
    quote_id: UUID | None = None
    service_amount: Decimal = ZERO
    quote_amount: Decimal | None = None
    platform_fee: Decimal = ZERO
    total_amount: Decimal = ZERO
    invoices: dict[InvoicePhase, BookingInvoiceRef] = Field(default_factory=dict)
    deposit_paid_at: datetime | None = None
    paid_at: datetime | None = None
    rejection_reason: str | None = None
    status_history: list[BookingHistoryEntry] = Field(default_factory=list)
    created_at: datetime | None = None

    @property
    def is_priced(self) -> bool:
        return self.quote_amount is not None


@register_event
class BookingRequested(DomainEvent):
    aggregate_type: str = "Booking"
    customer_id: UUID
    business_id: UUID
    business_kind: BusinessKind
    service_id: UUID
    service_name: str
    service_price: Decimal
    service_currency: str
    date: str
    time: str
    notes: str | None = None
    requires_quote: bool
    confirmation_token: str
    token_expires_at: datetime


@register_event
class BookingStatusChanged(DomainEvent):
    aggregate_type: str = "Booking"
    from_status: BookingStatus
    to_status: BookingStatus
    actor_kind: ActorKind | None = None
    reason: str | None = None


@register_event
class BookingQuoteStatusChanged(DomainEvent):
    aggregate_type: str = "Booking"
    from_status: BookingQuoteStatus
    to_status: BookingQuoteStatus
    actor_kind: ActorKind | None = None
    reason: str | None = None


@register_event
class BookingCompletionStatusChanged(DomainEvent):
    aggregate_type: str = "Booking"
    from_status: CompletionStatus
    to_status: CompletionStatus
    actor_kind: ActorKind | None = None
    reason: str | None = None


@register_event
class BookingPaymentStatusChanged(DomainEvent):
    aggregate_type: str = "Booking"
    from_status: PaymentStatus
    to_status: PaymentStatus
    actor_kind: ActorKind | None = None
    paid_at: datetime | None = None


@register_event
class BookingPriced(DomainEvent):
    aggregate_type: str = "Booking"
    quote_id: UUID | None = None
    service_amount: Decimal
    quote_amount: Decimal
    platform_fee: Decimal
    total_amount: Decimal


@register_event
class BookingInvoiceLinked(DomainEvent):
    aggregate_type: str = "Booking"
    phase: InvoicePhase
    invoice: BookingInvoiceRef


class BookingAggregate(DeclarativeAggregate[BookingState]):
    """Event-sourced service booking."""

    aggregate_type = "Booking"

    def _get_initial_state(self) -> BookingState:
        raise NotImplementedError("bookings are created by request()")

    def request(
        self,
        *,
        customer_id: UUID,
        business_id: UUID,
        business_kind: BusinessKind,
        service_id: UUID,
        service_name: str,
        service_price: Decimal,
        service_currency: str,
        date: str,
        time: str,
        notes: str | None,
        requires_quote: bool,
        confirmation_token: str,
        token_expires_at: datetime,
        actor: Actor,
    ) -> None:
        if self._state is not None:
            raise ValidationError(f"booking {self._aggregate_id} already exists")
        self._raise_event(
            BookingRequested(
                **self._event_fields(actor.actor_id),
                customer_id=customer_id,
                business_id=business_id,
                business_kind=business_kind,
                service_id=service_id,
                service_name=service_name,
                service_price=service_price,
                service_currency=service_currency,
                date=date,
                time=time,
                notes=notes,
                requires_quote=requires_quote,
                confirmation_token=confirmation_token,
                token_expires_at=token_expires_at,
            )
        )

    def change_status(
        self,
        to_status: BookingStatus,
        actor: Actor,
        *,
        reason: str | None = None,
    ) -> None:
        """
        Move ``status``.

        Raises:
            IllegalTransitionError: If the booking is terminal, if it would be
                confirmed while a required quote is not provided, or if the
                result is not a legal (status, completion) pair
        """
        state = self._require_state()
        if state.status.is_terminal or state.status == to_status:
            raise IllegalTransitionError("booking", state.status.value, to_status.value)
        if (
            to_status == BookingStatus.CONFIRMED
            and state.requires_quote
            and state.quote_status != BookingQuoteStatus.PROVIDED
        ):
            raise IllegalTransitionError(
                "booking",
                state.status.value,
                to_status.value,
                reason=f"quote must be provided first (quote status: {state.quote_status.value})",
            )
        require_booking_combination(
            to_status,
            state.completed_status,
            current=(state.status, state.completed_status),
        )
        self._raise_event(
            BookingStatusChanged(
                **self._event_fields(actor.actor_id),
                from_status=state.status,
                to_status=to_status,
                actor_kind=actor.kind,
                reason=reason,
            )
        )

    def change_quote_status(
        self,
        to_status: BookingQuoteStatus,
        actor: Actor,
        *,
        reason: str | None = None,
    ) -> None:
        state = self._require_state()
        if not state.requires_quote:
            raise IllegalTransitionError(
                "booking quote", state.quote_status.value, to_status.value,
                reason="booking does not require a quote",
            )
        if state.quote_status == to_status:
            return
        self._raise_event(
            BookingQuoteStatusChanged(
                **self._event_fields(actor.actor_id),
                from_status=state.quote_status,
                to_status=to_status,
                actor_kind=actor.kind,
                reason=reason,
            )
        )

    def change_completion_status(
        self,
        to_status: CompletionStatus,
        actor: Actor,
        *,
        reason: str | None = None,
    ) -> None:
        """
        Move ``completed_status``; reaching ``completed`` also completes the booking.

        Only a confirmed booking can move through the handshake. The joint
        (status, completion) pair is checked before any event is raised.
        """
        state = self._require_state()
        if state.status != BookingStatus.CONFIRMED:
            raise IllegalTransitionError(
                "booking completion",
                state.completed_status.value,
                to_status.value,
                reason=f"booking is {state.status.value}",
            )
        target_status = (
            BookingStatus.COMPLETED if to_status == CompletionStatus.COMPLETED else state.status
        )
        require_booking_combination(
            target_status,
            to_status,
            current=(state.status, state.completed_status),
        )
        self._raise_event(
            BookingCompletionStatusChanged(
                **self._event_fields(actor.actor_id),
                from_status=state.completed_status,
                to_status=to_status,
                actor_kind=actor.kind,
                reason=reason,
            )
        )
        if target_status != state.status:
            self._raise_event(
                BookingStatusChanged(
                    **self._event_fields(actor.actor_id),
                    from_status=state.status,
                    to_status=target_status,
                    actor_kind=actor.kind,
                    reason="completion confirmed",
                )
            )

    def change_payment_status(
        self,
        to_status: PaymentStatus,
        actor: Actor,
        *,
        paid_at: datetime | None = None,
    ) -> None:
        state = self._require_state()
        if state.payment_status == to_status:
            return
        self._raise_event(
            BookingPaymentStatusChanged(
                **self._event_fields(actor.actor_id),
                from_status=state.payment_status,
                to_status=to_status,
                actor_kind=actor.kind,
                paid_at=paid_at,
            )
        )

    def price(
        self,
        *,
        service_amount: Decimal,
        quote_amount: Decimal,
        platform_fee: Decimal,
        quote_id: UUID | None,
        actor: Actor,
    ) -> None:
        self._require_state()
        self._raise_event(
            BookingPriced(
                **self._event_fields(actor.actor_id),
                quote_id=quote_id,
                service_amount=service_amount,
                quote_amount=quote_amount,
                platform_fee=platform_fee,
                total_amount=quote_amount + platform_fee,
            )
        )

    def link_invoice(self, phase: InvoicePhase, invoice: BookingInvoiceRef, actor: Actor) -> None:
        state = self._require_state()
        if state.invoices.get(phase) == invoice:
            return
        self._raise_event(
            BookingInvoiceLinked(**self._event_fields(actor.actor_id), phase=phase, invoice=invoice)
        )

    # -- event handlers ------------------------------------------------------

    def _history(
        self,
        state: BookingState,
        field: str,
        event: DomainEvent,
        from_status: str,
        to_status: str,
        actor_kind: ActorKind | None,
        reason: str | None = None,
    ) -> list[BookingHistoryEntry]:
        return [
            *state.status_history,
            BookingHistoryEntry(
                field=field,
                from_status=from_status,
                to_status=to_status,
                actor_id=event.actor_id,
                actor_kind=actor_kind,
                reason=reason,
                at=event.occurred_at,
            ),
        ]

    @handles(BookingRequested)
    def _on_requested(self, event: BookingRequested) -> None:
        self._state = BookingState(
            booking_id=event.aggregate_id,
            customer_id=event.customer_id,
            business_id=event.business_id,
            business_kind=event.business_kind,
            service_id=event.service_id,
            service_name=event.service_name,
            service_price=event.service_price,
            service_currency=event.service_currency,
            date=event.date,
            time=event.time,
            notes=event.notes,
            requires_quote=event.requires_quote,
            quote_status=(
                BookingQuoteStatus.PENDING
                if event.requires_quote
                else BookingQuoteStatus.NOT_REQUIRED
            ),
            confirmation_token=event.confirmation_token,
            token_expires_at=event.token_expires_at,
            created_at=event.occurred_at,
            status_history=[
                BookingHistoryEntry(
                    field="status",
                    from_status="",
                    to_status=BookingStatus.PENDING.value,
                    actor_id=event.actor_id,
                    actor_kind=ActorKind.CUSTOMER,
                    at=event.occurred_at,
                )
            ],
        )

    @handles(BookingStatusChanged)
    def _on_status_changed(self, event: BookingStatusChanged) -> None:
        state = self._require_state()
        self._state = state.model_copy(
            update={
                "status": event.to_status,
                "status_history": self._history(
                    state, "status", event,
                    event.from_status.value, event.to_status.value,
                    event.actor_kind, event.reason,
                ),
            }
        )

    @handles(BookingQuoteStatusChanged)
    def _on_quote_status_changed(self, event: BookingQuoteStatusChanged) -> None:
        state = self._require_state()
        self._state = state.model_copy(
            update={
                "quote_status": event.to_status,
                "status_history": self._history(
                    state, "quote_status", event,
                    event.from_status.value, event.to_status.value,
                    event.actor_kind, event.reason,
                ),
            }
        )

    @handles(BookingCompletionStatusChanged)
    def _on_completion_status_changed(self, event: BookingCompletionStatusChanged) -> None:
        state = self._require_state()
        update: dict[str, Any] = {
            "completed_status": event.to_status,
            "status_history": self._history(
                state, "completed_status", event,
                event.from_status.value, event.to_status.value,
                event.actor_kind, event.reason,
            ),
        }
        if event.to_status == CompletionStatus.REJECTED:
            update["rejection_reason"] = event.reason
        self._state = state.model_copy(update=update)

    @handles(BookingPaymentStatusChanged)
    def _on_payment_status_changed(self, event: BookingPaymentStatusChanged) -> None:
        state = self._require_state()
        update: dict[str, Any] = {
            "payment_status": event.to_status,
            "status_history": self._history(
                state, "payment_status", event,
                event.from_status.value, event.to_status.value,
                event.actor_kind,
            ),
        }
        if event.to_status == PaymentStatus.DEPOSIT_PAID:
            update["deposit_paid_at"] = event.paid_at
        elif event.to_status == PaymentStatus.PAID:
            update["paid_at"] = event.paid_at
        self._state = state.model_copy(update=update)

    @handles(BookingPriced)
    def _on_priced(self, event: BookingPriced) -> None:
        self._state = self._require_state().model_copy(
            update={
                "quote_id": event.quote_id,
                "service_amount": event.service_amount,
                "quote_amount": event.quote_amount,
                "platform_fee": event.platform_fee,
                "total_amount": event.total_amount,
            }
        )

    @handles(BookingInvoiceLinked)
    def _on_invoice_linked(self, event: BookingInvoiceLinked) -> None:
        state = self._require_state()
        self._state = state.model_copy(
            update={"invoices": {**state.invoices, event.phase: event.invoice}}
        )


__all__ = [
    "BookingAggregate",
    "BookingCompletionStatusChanged",
    "BookingHistoryEntry",
    "BookingInvoiceLinked",
    "BookingInvoiceRef",
    "BookingPaymentStatusChanged",
    "BookingPriced",
    "BookingQuoteStatusChanged",
    "BookingRequested",
    "BookingState",
    "BookingStatusChanged",
]
