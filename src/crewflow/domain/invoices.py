"""
Invoice aggregate.

Append-only record of one payment collection: an order invoice, or the
deposit or balance invoice of a booking. It mirrors the gateway invoice it
was issued as and is the first record a payment webhook updates.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from crewflow.actors import Actor
from crewflow.aggregates.base import DeclarativeAggregate
from crewflow.events.base import DomainEvent
from crewflow.events.registry import register_event
from crewflow.exceptions import AlreadyProcessedError, IllegalTransitionError, ValidationError
from crewflow.handlers.decorators import handles
from crewflow.money import ZERO
from crewflow.types import InvoicePhase, InvoiceStatus, TransactionType


class InvoiceLine(BaseModel):
    description: str
    amount_minor: int
    currency: str = "USD"
    metadata: dict[str, Any] = Field(default_factory=dict)


class InvoiceState(BaseModel):
    invoice_id: UUID
    transaction_type: TransactionType
    phase: InvoicePhase = InvoicePhase.FULL
    order_id: UUID | None = None
    booking_id: UUID | None = None
    customer_id: UUID
    gateway_invoice_id: str
    gateway_customer_id: str
    invoice_url: str | None = None
    status: InvoiceStatus = InvoiceStatus.PENDING
    currency: str = "USD"
    original_amount: Decimal = ZERO
    original_currency: str = "USD"
    conversion_rate: Decimal = Decimal("1")
    rate_locked_at: datetime | None = None
    platform_fee: Decimal = ZERO
    distributor_amount: Decimal = ZERO
    lines: list[InvoiceLine] = Field(default_factory=list)
    finalized: bool = False
    finalized_at: datetime | None = None
    paid_at: datetime | None = None
    amount_paid_minor: int = 0
    refunded_minor: int = 0
    failure_reason: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def amount_due_minor(self) -> int:
        return sum(line.amount_minor for line in self.lines)

    @property
    def is_reusable(self) -> bool:
        """A live invoice is returned again instead of issuing a duplicate."""
        return self.status != InvoiceStatus.CANCELLED


@register_event
class InvoiceDrafted(DomainEvent):
    aggregate_type: str = "Invoice"
    transaction_type: TransactionType
    phase: InvoicePhase
    order_id: UUID | None = None
    booking_id: UUID | None = None
    customer_id: UUID
    gateway_invoice_id: str
    gateway_customer_id: str
    currency: str
    original_amount: Decimal = ZERO
    original_currency: str = "USD"
    conversion_rate: Decimal = Decimal("1")
    rate_locked_at: datetime | None = None
    platform_fee: Decimal = ZERO
    distributor_amount: Decimal = ZERO
    metadata: dict[str, Any] = Field(default_factory=dict)


@register_event
class InvoiceLinesAdded(DomainEvent):
    aggregate_type: str = "Invoice"
    lines: list[InvoiceLine]


@register_event
class InvoiceAmountsRevised(DomainEvent):
    aggregate_type: str = "Invoice"
    original_amount: Decimal
    platform_fee: Decimal
    distributor_amount: Decimal


@register_event
class InvoiceFinalized(DomainEvent):
    aggregate_type: str = "Invoice"
    invoice_url: str | None = None
    finalized_at: datetime


@register_event
class InvoicePaid(DomainEvent):
    aggregate_type: str = "Invoice"
    paid_at: datetime
    amount_paid_minor: int


@register_event
class InvoicePaymentFailed(DomainEvent):
    aggregate_type: str = "Invoice"
    reason: str | None = None


@register_event
class InvoiceVoided(DomainEvent):
    aggregate_type: str = "Invoice"
    reason: str | None = None


@register_event
class InvoiceRefunded(DomainEvent):
    aggregate_type: str = "Invoice"
    amount_minor: int
    fully_refunded: bool


class InvoiceAggregate(DeclarativeAggregate[InvoiceState]):
    """Event-sourced invoice."""

    aggregate_type = "Invoice"

    def _get_initial_state(self) -> InvoiceState:
        raise NotImplementedError("invoices are created by draft()")

    def draft(
        self,
        *,
        transaction_type: TransactionType,
        phase: InvoicePhase,
        customer_id: UUID,
        gateway_invoice_id: str,
        gateway_customer_id: str,
        currency: str,
        actor: Actor,
        order_id: UUID | None = None,
        booking_id: UUID | None = None,
        original_amount: Decimal = ZERO,
        original_currency: str = "USD",
        conversion_rate: Decimal = Decimal("1"),
        rate_locked_at: datetime | None = None,
        platform_fee: Decimal = ZERO,
        distributor_amount: Decimal = ZERO,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if self._state is not None:
            raise ValidationError(f"invoice {self._aggregate_id} already exists")
        if (order_id is None) == (booking_id is None):
            raise ValidationError("an invoice references exactly one order or booking")
        self._raise_event(
            InvoiceDrafted(
                **self._event_fields(actor.actor_id),
                transaction_type=transaction_type,
                phase=phase,
                order_id=order_id,
                booking_id=booking_id,
                customer_id=customer_id,
                gateway_invoice_id=gateway_invoice_id,
                gateway_customer_id=gateway_customer_id,
                currency=currency,
                original_amount=original_amount,
                original_currency=original_currency,
                conversion_rate=conversion_rate,
                rate_locked_at=rate_locked_at,
                platform_fee=platform_fee,
                distributor_amount=distributor_amount,
                metadata=metadata or {},
            )
        )

    def add_lines(self, lines: list[InvoiceLine], actor: Actor) -> None:
        state = self._require_state()
        if state.finalized:
            raise IllegalTransitionError(
                "invoice", "finalized", "draft", reason="lines cannot be added after finalize"
            )
        if lines:
            self._raise_event(InvoiceLinesAdded(**self._event_fields(actor.actor_id), lines=lines))

    def revise_amounts(
        self,
        *,
        original_amount: Decimal,
        platform_fee: Decimal,
        distributor_amount: Decimal,
        actor: Actor,
    ) -> None:
        self._require_state()
        self._raise_event(
            InvoiceAmountsRevised(
                **self._event_fields(actor.actor_id),
                original_amount=original_amount,
                platform_fee=platform_fee,
                distributor_amount=distributor_amount,
            )
        )

    def finalize(self, invoice_url: str | None, finalized_at: datetime, actor: Actor) -> None:
        state = self._require_state()
        if state.finalized:
            return
        self._raise_event(
            InvoiceFinalized(
                **self._event_fields(actor.actor_id),
                invoice_url=invoice_url,
                finalized_at=finalized_at,
            )
        )

    def mark_paid(self, paid_at: datetime, amount_paid_minor: int, actor: Actor) -> None:
        """
        Raises:
            AlreadyProcessedError: If the invoice is already paid
        """
        state = self._require_state()
        if state.status == InvoiceStatus.PAID:
            raise AlreadyProcessedError("invoice", state.invoice_id, state.status.value)
        self._raise_event(
            InvoicePaid(
                **self._event_fields(actor.actor_id),
                paid_at=paid_at,
                amount_paid_minor=amount_paid_minor,
            )
        )

    def mark_failed(self, reason: str | None, actor: Actor) -> None:
        state = self._require_state()
        if state.status in (InvoiceStatus.PAID, InvoiceStatus.REFUNDED, InvoiceStatus.CANCELLED):
            raise AlreadyProcessedError("invoice", state.invoice_id, state.status.value)
        self._raise_event(InvoicePaymentFailed(**self._event_fields(actor.actor_id), reason=reason))

    def void(self, reason: str | None, actor: Actor) -> None:
        state = self._require_state()
        if state.status in (InvoiceStatus.PAID, InvoiceStatus.REFUNDED, InvoiceStatus.CANCELLED):
            raise AlreadyProcessedError("invoice", state.invoice_id, state.status.value)
        self._raise_event(InvoiceVoided(**self._event_fields(actor.actor_id), reason=reason))

    def record_refund(self, amount_minor: int, actor: Actor) -> None:
        state = self._require_state()
        if state.status not in (InvoiceStatus.PAID, InvoiceStatus.REFUNDED):
            raise IllegalTransitionError("invoice", state.status.value, InvoiceStatus.REFUNDED.value)
        fully = state.refunded_minor + amount_minor >= state.amount_paid_minor
        self._raise_event(
            InvoiceRefunded(
                **self._event_fields(actor.actor_id),
                amount_minor=amount_minor,
                fully_refunded=fully,
            )
        )

    # -- event handlers ------------------------------------------------------

    @handles(InvoiceDrafted)
    def _on_drafted(self, event: InvoiceDrafted) -> None:
        self._state = InvoiceState(
            invoice_id=event.aggregate_id,
            transaction_type=event.transaction_type,
            phase=event.phase,
            order_id=event.order_id,
            booking_id=event.booking_id,
            customer_id=event.customer_id,
            gateway_invoice_id=event.gateway_invoice_id,
            gateway_customer_id=event.gateway_customer_id,
            currency=event.currency,
            original_amount=event.original_amount,
            original_currency=event.original_currency,
            conversion_rate=event.conversion_rate,
            rate_locked_at=event.rate_locked_at,
            platform_fee=event.platform_fee,
            distributor_amount=event.distributor_amount,
            metadata=event.metadata,
        )

    @handles(InvoiceLinesAdded)
    def _on_lines_added(self, event: InvoiceLinesAdded) -> None:
        state = self._require_state()
        self._state = state.model_copy(update={"lines": [*state.lines, *event.lines]})

    @handles(InvoiceAmountsRevised)
    def _on_amounts_revised(self, event: InvoiceAmountsRevised) -> None:
        self._state = self._require_state().model_copy(
            update={
                "original_amount": event.original_amount,
                "platform_fee": event.platform_fee,
                "distributor_amount": event.distributor_amount,
            }
        )

    @handles(InvoiceFinalized)
    def _on_finalized(self, event: InvoiceFinalized) -> None:
        self._state = self._require_state().model_copy(
            update={
                "finalized": True,
                "finalized_at": event.finalized_at,
                "invoice_url": event.invoice_url,
            }
        )

    @handles(InvoicePaid)
    def _on_paid(self, event: InvoicePaid) -> None:
        self._state = self._require_state().model_copy(
            update={
                "status": InvoiceStatus.PAID,
                "paid_at": event.paid_at,
                "amount_paid_minor": event.amount_paid_minor,
                "failure_reason": None,
            }
        )

    @handles(InvoicePaymentFailed)
    def _on_payment_failed(self, event: InvoicePaymentFailed) -> None:
        self._state = self._require_state().model_copy(
            update={"status": InvoiceStatus.FAILED, "failure_reason": event.reason}
        )

    @handles(InvoiceVoided)
    def _on_voided(self, event: InvoiceVoided) -> None:
        self._state = self._require_state().model_copy(update={"status": InvoiceStatus.CANCELLED})

    @handles(InvoiceRefunded)
    def _on_refunded(self, event: InvoiceRefunded) -> None:
        state = self._require_state()
        update: dict[str, Any] = {"refunded_minor": state.refunded_minor + event.amount_minor}
        if event.fully_refunded:
            update["status"] = InvoiceStatus.REFUNDED
        self._state = state.model_copy(update=update)


__all__ = [
    "InvoiceAggregate",
    "InvoiceAmountsRevised",
    "InvoiceDrafted",
    "InvoiceFinalized",
    "InvoiceLine",
    "InvoiceLinesAdded",
    "InvoicePaid",
    "InvoicePaymentFailed",
    "InvoiceRefunded",
    "InvoiceState",
    "InvoiceVoided",
]
