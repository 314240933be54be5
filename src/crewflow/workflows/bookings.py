"""
Booking and quote workflow.

A booking either has a flat service price or requires a quote. Providing
the quote prices the booking and confirms it in one step. The customer
then accepts or rejects the quote as a whole or line by line, and the
booking's quote status is re-derived from the line statuses after every
change. Payment is collected in two halves: a deposit once the booking is
priced and accepted, a balance once the business asks for completion.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID, uuid4

from pydantic import BaseModel

from crewflow.actors import Actor, Customer
from crewflow.catalog import Business
from crewflow.domain.bookings import BookingAggregate, BookingInvoiceRef, BookingState
from crewflow.domain.invoices import InvoiceState
from crewflow.domain.quotes import QuoteAggregate, QuoteItem, QuoteState
from crewflow.effects import Effect, WorkflowResult, email, notification
from crewflow.exceptions import (
    AlreadyProcessedError,
    ExternalServiceError,
    IllegalTransitionError,
    InvalidTokenError,
    NotFoundError,
    OptimisticLockError,
    ValidationError,
)
from crewflow.money import ZERO, percent_of
from crewflow.observability import ATTR_ACTOR_KIND, ATTR_BOOKING_ID, ATTR_REQUESTED_STATUS, Tracer, create_tracer
from crewflow.transitions import BOOKING_TRANSITIONS, COMPLETION_TRANSITIONS, derive_quote_status
from crewflow.types import (
    BookingQuoteStatus,
    BookingStatus,
    CompletionStatus,
    InvoicePhase,
    NotificationPriority,
    PaymentStatus,
    QuoteItemStatus,
    QuoteStatus,
)
from crewflow.workflows.access import require_business, require_customer, require_party
from crewflow.workflows.context import MarketplaceContext
from crewflow.workflows.invoicing import InvoiceLedger

logger = logging.getLogger(__name__)

# Booking quote statuses from which the customer can still decide.
OPEN_QUOTE_STATUSES = frozenset(
    {
        BookingQuoteStatus.PROVIDED,
        BookingQuoteStatus.EDIT_REQUESTED,
        BookingQuoteStatus.EDITED,
        BookingQuoteStatus.PARTIALLY_ACCEPTED,
    }
)

# Quote records a cancelled or completed booking still has to close.
CLOSABLE_QUOTE_STATUSES = frozenset({QuoteStatus.QUOTED, QuoteStatus.ACCEPTED, QuoteStatus.DEPOSIT_PAID})


class QuoteLine(BaseModel):
    """A priced line offered by the business."""

    name: str
    description: str | None = None
    quantity: int = 1
    unit_price: Decimal
    currency: str = "USD"


class QuoteLineUpdate(BaseModel):
    """Fields of a quote line the business may revise; None keeps the current value."""

    name: str | None = None
    description: str | None = None
    quantity: int | None = None
    unit_price: Decimal | None = None
    currency: str | None = None


def _validate_line(quantity: int, unit_price: Decimal) -> None:
    if quantity <= 0:
        raise ValidationError("quote item quantity must be positive", field="quantity")
    if unit_price < ZERO:
        raise ValidationError("quote item price must not be negative", field="unit_price")


class BookingWorkflow:
    """
    Booking lifecycle operations.

    Example:
        >>> bookings = BookingWorkflow(context)
        >>> result = await bookings.create_booking(customer, service_id, "2025-06-01", "09:00")
        >>> await bookings.add_quote(business_actor, result.value.booking_id, [QuoteLine(...)])
    """

    def __init__(
        self,
        context: MarketplaceContext,
        *,
        invoices: InvoiceLedger | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._context = context
        self._invoices = invoices or InvoiceLedger(context)
        self._tracer = tracer or context.tracer or create_tracer(__name__, enable_tracing)

    async def get_booking(self, booking_id: UUID) -> BookingState:
        state = (await self._context.repositories.bookings.load(booking_id)).state
        assert state is not None
        return state

    async def get_quote(self, booking_id: UUID) -> QuoteState | None:
        booking = await self.get_booking(booking_id)
        if booking.quote_id is None:
            return None
        return (await self._context.repositories.quotes.load(booking.quote_id)).state

    async def _load(self, booking_id: UUID) -> tuple[BookingAggregate, BookingState]:
        booking = await self._context.repositories.bookings.load(booking_id)
        state = booking.state
        assert state is not None
        return booking, state

    async def _load_quote(self, state: BookingState) -> QuoteAggregate:
        if state.quote_id is None:
            raise NotFoundError("quote", state.booking_id)
        return await self._context.repositories.quotes.load(state.quote_id)

    async def _to_settlement(self, amount: Decimal, currency: str) -> Decimal:
        converted = await self._context.currency.convert_price(
            amount, currency, self._context.config.settlement_currency
        )
        return converted.converted_amount

    # -- creation ------------------------------------------------------------

    async def create_booking(
        self,
        customer: Customer,
        service_id: UUID,
        date: str,
        time: str,
        notes: str | None = None,
    ) -> WorkflowResult[BookingState]:
        """
        Request a service.

        Quotable services start with quote status ``pending``; others with
        ``not_required``.

        Raises:
            ValidationError: Unknown service, or missing date or time
        """
        if not date or not time:
            raise ValidationError("date and time are required", field="date")
        try:
            service = await self._context.catalog.get_service(service_id)
            business = await self._context.catalog.get_business(service.business_id)
        except NotFoundError as e:
            raise ValidationError(str(e), field="service_id") from e

        booking = BookingAggregate(uuid4())
        booking.request(
            customer_id=customer.user_id,
            business_id=business.business_id,
            business_kind=business.kind,
            service_id=service.service_id,
            service_name=service.name,
            service_price=service.price,
            service_currency=service.currency,
            date=date,
            time=time,
            notes=notes,
            requires_quote=service.is_quotable,
            confirmation_token=self._context.token_factory(),
            token_expires_at=self._context.clock() + self._context.config.token_ttl,
            actor=customer,
        )
        await self._context.repositories.bookings.save(booking)
        state = booking.state
        assert state is not None
        logger.info(
            "Booking %s requested for service %s",
            state.booking_id,
            service.service_id,
            extra={"booking_id": str(state.booking_id), "actor_id": customer.actor_id},
        )

        profile = await self._context.catalog.get_customer(customer.user_id)
        base = self._context.config.frontend_url
        token = state.confirmation_token
        effects: list[Effect] = [
            email(
                business.email,
                "New Booking Request",
                (
                    f"<p>{profile.name} requested {service.name} on {date} at {time}.</p>"
                    + (f"<p>Notes: {notes}</p>" if notes else "")
                    + (
                        "<p>This service requires a quote before it can be confirmed.</p>"
                        if state.requires_quote
                        else f'<p><a href="{base}/bookings/confirm?token={token}">Confirm</a> | '
                        f'<a href="{base}/bookings/decline?token={token}">Decline</a></p>'
                    )
                ),
            ),
            notification(
                business.owner_user_id,
                "new_booking",
                "New Booking Request",
                f"{service.name} requested for {date} {time}.",
                priority=NotificationPriority.HIGH,
                data={"bookingId": str(state.booking_id)},
            ),
            email(
                profile.email,
                "Booking Request Received",
                f"<p>Your request for {service.name} on {date} at {time} was sent to {business.name}.</p>",
            ),
        ]
        return WorkflowResult(state, effects)

    # -- confirmation --------------------------------------------------------

    async def _load_by_token(self, token: str) -> tuple[BookingAggregate, BookingState]:
        target = self._context.lookups.find_token(token)
        if target is None or target.aggregate_type != "Booking":
            raise InvalidTokenError()
        booking, state = await self._load(target.aggregate_id)
        if state.confirmation_token != token:
            raise InvalidTokenError()
        if state.status != BookingStatus.PENDING:
            raise AlreadyProcessedError("booking", state.booking_id, state.status.value)
        if self._context.clock() > state.token_expires_at:
            raise InvalidTokenError()
        return booking, state

    async def _consume(self, booking: BookingAggregate) -> None:
        try:
            await self._context.repositories.bookings.save(booking)
        except OptimisticLockError as e:
            current = await self.get_booking(booking.aggregate_id)
            if current.status != BookingStatus.PENDING:
                raise AlreadyProcessedError("booking", booking.aggregate_id, current.status.value) from e
            raise

    async def _price_flat(self, booking: BookingAggregate, state: BookingState, actor: Actor) -> None:
        if state.requires_quote or state.is_priced:
            return
        amount = await self._to_settlement(state.service_price, state.service_currency)
        booking.price(
            service_amount=amount,
            quote_amount=amount,
            platform_fee=percent_of(amount, self._context.config.platform_fee_rate),
            quote_id=None,
            actor=actor,
        )

    async def confirm_booking(self, token: str) -> WorkflowResult[BookingState]:
        """
        Confirm a booking through its emailed token.

        Flat-price bookings are priced at the service price here.

        Raises:
            InvalidTokenError: Unknown or expired token
            AlreadyProcessedError: The booking is no longer pending
            IllegalTransitionError: The booking still needs a quote
        """
        booking, state = await self._load_by_token(token)
        business = await self._context.catalog.get_business(state.business_id)
        actor = business.as_actor()
        BOOKING_TRANSITIONS.require(state.status, actor.kind, BookingStatus.CONFIRMED)
        await self._price_flat(booking, state, actor)
        booking.change_status(BookingStatus.CONFIRMED, actor, reason="Confirmed via email link")
        await self._consume(booking)
        state = booking.state
        assert state is not None
        logger.info(
            "Booking %s confirmed by token",
            state.booking_id,
            extra={"booking_id": str(state.booking_id), "actor_id": actor.actor_id, "status": "confirmed"},
        )
        return WorkflowResult(state, await self._status_effects(state, business, BookingStatus.CONFIRMED))

    async def decline_booking(self, token: str, reason: str | None = None) -> WorkflowResult[BookingState]:
        """
        Decline a booking through its emailed token.

        Raises:
            InvalidTokenError: Unknown or expired token
            AlreadyProcessedError: The booking is no longer pending
        """
        booking, state = await self._load_by_token(token)
        business = await self._context.catalog.get_business(state.business_id)
        actor = business.as_actor()
        BOOKING_TRANSITIONS.require(state.status, actor.kind, BookingStatus.DECLINED)
        booking.change_status(BookingStatus.DECLINED, actor, reason=reason)
        await self._consume(booking)
        state = await self._close_payment(state.booking_id, actor, "booking declined")
        return WorkflowResult(state, await self._status_effects(state, business, BookingStatus.DECLINED, reason))

    async def update_booking_status(
        self,
        actor: Actor,
        booking_id: UUID,
        new_status: BookingStatus,
        *,
        reason: str | None = None,
    ) -> WorkflowResult[BookingState]:
        """
        Move the booking status as ``actor``.

        ``completed`` is only reachable through the completion handshake.

        Raises:
            UnauthorizedError: The actor is not a party or the move belongs to another role
            IllegalTransitionError: The move is not in the table, or breaks the
                (status, completion status) pairing
        """
        booking, state = await self._load(booking_id)
        require_party(actor, state.customer_id, state.business_id, "update this booking")
        with self._tracer.span(
            "crewflow.bookings.update_status",
            {
                ATTR_BOOKING_ID: str(booking_id),
                ATTR_ACTOR_KIND: actor.kind.value,
                ATTR_REQUESTED_STATUS: new_status.value,
            },
        ):
            BOOKING_TRANSITIONS.require(state.status, actor.kind, new_status)
            if new_status == BookingStatus.CONFIRMED:
                await self._price_flat(booking, state, actor)
            booking.change_status(new_status, actor, reason=reason)
            await self._context.repositories.bookings.save(booking)
            logger.info(
                "Booking %s moved to %s by %s",
                booking_id,
                new_status.value,
                actor.kind.value,
                extra={"booking_id": str(booking_id), "actor_id": actor.actor_id, "status": new_status.value},
            )
            if new_status in (BookingStatus.CANCELLED, BookingStatus.DECLINED):
                await self._close_quote(state, actor, QuoteStatus.CANCELLED)
                state = await self._close_payment(booking_id, actor, f"booking {new_status.value}")
            else:
                state = await self.get_booking(booking_id)
        business = await self._context.catalog.get_business(state.business_id)
        return WorkflowResult(state, await self._status_effects(state, business, new_status, reason))

    async def _close_payment(self, booking_id: UUID, actor: Actor, reason: str) -> BookingState:
        """Cancel an unpaid booking's payment status and void its pending invoices."""
        booking, state = await self._load(booking_id)
        if state.payment_status not in (PaymentStatus.PENDING, PaymentStatus.FAILED):
            if state.payment_status != PaymentStatus.CANCELLED:
                logger.warning(
                    "Booking %s closed with payment status %s; no automatic refund",
                    booking_id,
                    state.payment_status.value,
                    extra={"booking_id": str(booking_id)},
                )
            return state
        for ref in state.invoices.values():
            try:
                await self._invoices.void(ref.invoice_id, reason, actor)
            except ExternalServiceError as e:
                logger.error(
                    "Could not void invoice %s of booking %s: %s",
                    ref.invoice_id,
                    booking_id,
                    e,
                    exc_info=True,
                    extra={"booking_id": str(booking_id), "invoice_id": str(ref.invoice_id)},
                )
        booking.change_payment_status(PaymentStatus.CANCELLED, actor)
        await self._context.repositories.bookings.save(booking)
        result = booking.state
        assert result is not None
        return result

    async def _close_quote(self, state: BookingState, actor: Actor, status: QuoteStatus) -> None:
        if state.quote_id is None:
            return
        quote = await self._context.repositories.quotes.load(state.quote_id)
        quote_state = quote.state
        if quote_state is None or quote_state.status not in CLOSABLE_QUOTE_STATUSES:
            return
        quote.change_status(status, actor)
        await self._context.repositories.quotes.save(quote)

    async def _status_effects(
        self,
        state: BookingState,
        business: Business,
        new_status: BookingStatus,
        reason: str | None = None,
    ) -> list[Effect]:
        customer = await self._context.catalog.get_customer(state.customer_id)
        message = f"Your booking for {state.service_name} on {state.date} is now {new_status.value}."
        if reason:
            message += f" Reason: {reason}"
        return [
            notification(
                state.customer_id,
                f"booking_{new_status.value}",
                f"Booking {new_status.value.capitalize()}",
                message,
                data={"bookingId": str(state.booking_id), "status": new_status.value},
            ),
            email(customer.email, f"Booking {new_status.value.capitalize()} - {state.service_name}", f"<p>{message}</p>"),
            notification(
                business.owner_user_id,
                f"booking_{new_status.value}",
                f"Booking {new_status.value.capitalize()}",
                f"Booking {state.booking_id} for {state.service_name} is now {new_status.value}.",
                data={"bookingId": str(state.booking_id), "status": new_status.value},
            ),
        ]

    # -- quotes --------------------------------------------------------------

    async def _quote_item(self, line: QuoteLine, item_id: UUID | None = None) -> QuoteItem:
        _validate_line(line.quantity, line.unit_price)
        converted = await self._context.currency.convert_price(
            line.unit_price, line.currency, self._context.config.settlement_currency
        )
        return QuoteItem(
            item_id=item_id or uuid4(),
            name=line.name,
            description=line.description,
            quantity=line.quantity,
            original_unit_price=converted.original_amount,
            original_currency=converted.original_currency,
            converted_unit_price=converted.converted_amount,
            converted_currency=converted.converted_currency,
            conversion_rate=converted.conversion_rate,
            conversion_timestamp=converted.conversion_timestamp,
        )

    def _reprice(self, booking: BookingAggregate, quote: QuoteState, actor: Actor) -> None:
        booking.price(
            service_amount=quote.service_amount,
            quote_amount=quote.quote_amount,
            platform_fee=quote.platform_fee,
            quote_id=quote.quote_id,
            actor=actor,
        )

    async def add_quote(self, actor: Actor, booking_id: UUID, lines: list[QuoteLine]) -> WorkflowResult[BookingState]:
        """
        Price a pending quotable booking; this also confirms it.

        Raises:
            ValidationError: No lines, or a line with a bad quantity or price
            IllegalTransitionError: The booking is not awaiting a quote
        """
        booking, state = await self._load(booking_id)
        require_business(actor, state.business_id, "quote this booking")
        if not lines:
            raise ValidationError("a quote needs at least one item", field="items")
        if not state.requires_quote:
            raise IllegalTransitionError(
                "booking quote", state.quote_status.value, BookingQuoteStatus.PROVIDED.value,
                reason="booking does not require a quote",
            )
        if state.status != BookingStatus.PENDING or state.quote_status != BookingQuoteStatus.PENDING:
            raise IllegalTransitionError(
                "booking quote", state.quote_status.value, BookingQuoteStatus.PROVIDED.value,
                reason=f"booking is {state.status.value}",
            )
        BOOKING_TRANSITIONS.require(state.status, actor.kind, BookingStatus.CONFIRMED)

        with self._tracer.span("crewflow.bookings.add_quote", {ATTR_BOOKING_ID: str(booking_id)}):
            items = [await self._quote_item(line) for line in lines]
            quote = QuoteAggregate(uuid4())
            quote.provide(
                booking_id=booking_id,
                business_id=state.business_id,
                customer_id=state.customer_id,
                items=items,
                platform_fee_rate=self._context.config.platform_fee_rate,
                service_amount=await self._to_settlement(state.service_price, state.service_currency),
                actor=actor,
            )
            await self._context.repositories.quotes.save(quote)
            quote_state = quote.state
            assert quote_state is not None

            self._reprice(booking, quote_state, actor)
            booking.change_quote_status(BookingQuoteStatus.PROVIDED, actor)
            booking.change_status(BookingStatus.CONFIRMED, actor, reason="Quote provided")
            await self._context.repositories.bookings.save(booking)

        state = booking.state
        assert state is not None
        logger.info(
            "Quote %s provided for booking %s: %s + fee %s",
            quote_state.quote_id,
            booking_id,
            quote_state.quote_amount,
            quote_state.platform_fee,
            extra={"booking_id": str(booking_id), "actor_id": actor.actor_id},
        )
        customer = await self._context.catalog.get_customer(state.customer_id)
        message = (
            f"A quote of {state.total_amount} {self._context.config.settlement_currency} "
            f"was provided for {state.service_name}."
        )
        return WorkflowResult(
            state,
            [
                notification(
                    state.customer_id,
                    "quote_provided",
                    "Quote Received",
                    message,
                    priority=NotificationPriority.HIGH,
                    data={"bookingId": str(booking_id), "quoteId": str(quote_state.quote_id)},
                ),
                email(customer.email, f"Quote Received - {state.service_name}", f"<p>{message}</p>"),
            ],
        )

    def _require_open_quote(self, state: BookingState) -> None:
        if state.quote_status not in OPEN_QUOTE_STATUSES:
            raise IllegalTransitionError(
                "booking quote", state.quote_status.value, "updated", reason="quote is not open"
            )

    async def _apply_quote_change(
        self,
        booking: BookingAggregate,
        quote: QuoteAggregate,
        actor: Actor,
        *,
        reason: str | None = None,
    ) -> WorkflowResult[BookingState]:
        """
        Re-derive the booking's quote status and settle a fully decided quote.

        All lines accepted locks the conversion rates and accepts the quote.
        All lines rejected declines the quote and cancels the booking.
        """
        quote_state = quote.state
        assert quote_state is not None
        derived = derive_quote_status(quote_state.item_statuses)
        if derived == BookingQuoteStatus.ACCEPTED:
            quote.lock_rates(self._context.clock(), actor)
            quote.change_status(QuoteStatus.ACCEPTED, actor)
        elif derived == BookingQuoteStatus.REJECTED:
            quote.change_status(QuoteStatus.DECLINED, actor)
        await self._context.repositories.quotes.save(quote)
        quote_state = quote.state
        assert quote_state is not None

        state = booking.state
        assert state is not None
        if state.quote_amount != quote_state.quote_amount or state.platform_fee != quote_state.platform_fee:
            self._reprice(booking, quote_state, actor)
        booking.change_quote_status(derived, actor, reason=reason)
        if derived == BookingQuoteStatus.REJECTED and not state.status.is_terminal:
            booking.change_status(BookingStatus.CANCELLED, actor, reason=reason or "Quote rejected")
        await self._context.repositories.bookings.save(booking)

        state = booking.state
        assert state is not None
        logger.info(
            "Booking %s quote is now %s",
            state.booking_id,
            derived.value,
            extra={"booking_id": str(state.booking_id), "actor_id": actor.actor_id, "status": derived.value},
        )
        if derived == BookingQuoteStatus.REJECTED:
            state = await self._close_payment(state.booking_id, actor, "quote rejected")
        return WorkflowResult(state, await self._quote_effects(state, derived, reason))

    async def _quote_effects(
        self, state: BookingState, derived: BookingQuoteStatus, reason: str | None
    ) -> list[Effect]:
        business = await self._context.catalog.get_business(state.business_id)
        titles = {
            BookingQuoteStatus.ACCEPTED: "Quote Accepted",
            BookingQuoteStatus.REJECTED: "Quote Rejected",
            BookingQuoteStatus.EDIT_REQUESTED: "Quote Edit Requested",
            BookingQuoteStatus.PARTIALLY_ACCEPTED: "Quote Partially Accepted",
        }
        title = titles.get(derived)
        if title is None:
            return []
        message = f"The quote for booking {state.booking_id} ({state.service_name}): {derived.value}."
        if reason:
            message += f" Reason: {reason}"
        effects: list[Effect] = [
            notification(
                business.owner_user_id,
                f"quote_{derived.value}",
                title,
                message,
                priority=NotificationPriority.HIGH,
                data={"bookingId": str(state.booking_id)},
            )
        ]
        if derived in (BookingQuoteStatus.ACCEPTED, BookingQuoteStatus.REJECTED):
            effects.append(email(business.email, f"{title} - {state.service_name}", f"<p>{message}</p>"))
        return effects

    async def _customer_quote_op(
        self, actor: Actor, booking_id: UUID
    ) -> tuple[BookingAggregate, BookingState, QuoteAggregate]:
        booking, state = await self._load(booking_id)
        require_customer(actor, state.customer_id, "respond to this quote")
        self._require_open_quote(state)
        return booking, state, await self._load_quote(state)

    async def accept_quote(self, actor: Actor, booking_id: UUID) -> WorkflowResult[BookingState]:
        """Accept every line of the quote and lock its conversion rates."""
        booking, _, quote = await self._customer_quote_op(actor, booking_id)
        quote_state = quote.state
        assert quote_state is not None
        for item in quote_state.items:
            quote.change_item_status(item.item_id, QuoteItemStatus.ACCEPTED, actor)
        return await self._apply_quote_change(booking, quote, actor)

    async def reject_quote(
        self, actor: Actor, booking_id: UUID, reason: str | None = None
    ) -> WorkflowResult[BookingState]:
        """Reject every line; the booking and its payment are cancelled."""
        booking, _, quote = await self._customer_quote_op(actor, booking_id)
        quote_state = quote.state
        assert quote_state is not None
        for item in quote_state.items:
            quote.change_item_status(item.item_id, QuoteItemStatus.REJECTED, actor, reason=reason)
        return await self._apply_quote_change(booking, quote, actor, reason=reason)

    async def accept_quote_item(self, actor: Actor, booking_id: UUID, item_id: UUID) -> WorkflowResult[BookingState]:
        booking, _, quote = await self._customer_quote_op(actor, booking_id)
        quote.change_item_status(item_id, QuoteItemStatus.ACCEPTED, actor)
        return await self._apply_quote_change(booking, quote, actor)

    async def reject_quote_item(
        self, actor: Actor, booking_id: UUID, item_id: UUID, reason: str | None = None
    ) -> WorkflowResult[BookingState]:
        booking, _, quote = await self._customer_quote_op(actor, booking_id)
        quote.change_item_status(item_id, QuoteItemStatus.REJECTED, actor, reason=reason)
        return await self._apply_quote_change(booking, quote, actor, reason=reason)

    async def request_quote_item_edit(
        self, actor: Actor, booking_id: UUID, item_id: UUID, reason: str
    ) -> WorkflowResult[BookingState]:
        """
        Ask the business to revise one line.

        Raises:
            ValidationError: ``reason`` is empty
        """
        if not reason or not reason.strip():
            raise ValidationError("a reason is required to request an edit", field="reason")
        booking, _, quote = await self._customer_quote_op(actor, booking_id)
        quote.change_item_status(item_id, QuoteItemStatus.EDIT_REQUESTED, actor, reason=reason.strip())
        return await self._apply_quote_change(booking, quote, actor, reason=reason.strip())

    async def _business_quote_op(
        self, actor: Actor, booking_id: UUID
    ) -> tuple[BookingAggregate, BookingState, QuoteAggregate]:
        booking, state = await self._load(booking_id)
        require_business(actor, state.business_id, "edit this quote")
        self._require_open_quote(state)
        return booking, state, await self._load_quote(state)

    async def update_quote_item(
        self, actor: Actor, booking_id: UUID, item_id: UUID, update: QuoteLineUpdate
    ) -> WorkflowResult[BookingState]:
        """Revise one line; it becomes ``edited`` and the totals are recomputed."""
        booking, _, quote = await self._business_quote_op(actor, booking_id)
        quote_state = quote.state
        assert quote_state is not None
        current = quote_state.item(item_id)
        line = QuoteLine(
            name=update.name if update.name is not None else current.name,
            description=update.description if update.description is not None else current.description,
            quantity=update.quantity if update.quantity is not None else current.quantity,
            unit_price=update.unit_price if update.unit_price is not None else current.original_unit_price,
            currency=update.currency if update.currency is not None else current.original_currency,
        )
        quote.revise_item(await self._quote_item(line, item_id), actor)
        return await self._apply_quote_change(booking, quote, actor)

    async def remove_quote_item(self, actor: Actor, booking_id: UUID, item_id: UUID) -> WorkflowResult[BookingState]:
        """
        Remove one line and recompute the totals.

        Raises:
            ValidationError: It is the quote's last line
        """
        booking, _, quote = await self._business_quote_op(actor, booking_id)
        quote.remove_item(item_id, actor)
        return await self._apply_quote_change(booking, quote, actor)

    # -- payments ------------------------------------------------------------

    async def _issue(
        self,
        booking: BookingAggregate,
        state: BookingState,
        phase: InvoicePhase,
        actor: Actor,
    ) -> WorkflowResult[InvoiceState]:
        quote = (await self._load_quote(state)).state if state.quote_id else None
        invoice = await self._invoices.issue_booking_invoice(state, quote, phase, actor)
        booking.link_invoice(
            phase,
            BookingInvoiceRef(
                invoice_id=invoice.invoice_id,
                gateway_invoice_id=invoice.gateway_invoice_id,
                invoice_url=invoice.invoice_url,
            ),
            actor,
        )
        await self._context.repositories.bookings.save(booking)
        customer = await self._context.catalog.get_customer(state.customer_id)
        label = "Deposit" if phase == InvoicePhase.DEPOSIT else "Balance"
        message = f"Your {label.lower()} invoice for {state.service_name} is ready."
        effects: list[Effect] = [
            email(
                customer.email,
                f"{label} Invoice - {state.service_name}",
                f'<p>{message}</p><p><a href="{invoice.invoice_url or ""}">Pay invoice</a></p>',
            ),
            notification(
                state.customer_id,
                f"{phase.value}_invoice",
                f"{label} Invoice Ready",
                message,
                data={"bookingId": str(state.booking_id), "invoiceUrl": invoice.invoice_url or ""},
            ),
        ]
        return WorkflowResult(invoice, effects)

    async def create_booking_payment(self, actor: Actor, booking_id: UUID) -> WorkflowResult[InvoiceState]:
        """
        Issue the deposit invoice, or return the live one already issued.

        Raises:
            IllegalTransitionError: The booking is not confirmed, its quote is
                not accepted, or its payment is past the deposit stage
        """
        booking, state = await self._load(booking_id)
        require_customer(actor, state.customer_id, "pay for this booking")
        existing = await self._invoices.existing_booking_invoice(state, InvoicePhase.DEPOSIT)
        if existing is not None:
            logger.debug(
                "Returning existing deposit invoice %s",
                existing.invoice_id,
                extra={"booking_id": str(booking_id), "invoice_id": str(existing.invoice_id)},
            )
            return WorkflowResult(existing)
        if state.status != BookingStatus.CONFIRMED:
            raise IllegalTransitionError(
                "booking payment", state.payment_status.value, PaymentStatus.DEPOSIT_PAID.value,
                reason=f"booking is {state.status.value}",
            )
        if state.requires_quote and state.quote_status != BookingQuoteStatus.ACCEPTED:
            raise IllegalTransitionError(
                "booking payment", state.payment_status.value, PaymentStatus.DEPOSIT_PAID.value,
                reason=f"quote is {state.quote_status.value}",
            )
        if state.payment_status not in (PaymentStatus.PENDING, PaymentStatus.FAILED):
            raise IllegalTransitionError(
                "booking payment", state.payment_status.value, PaymentStatus.DEPOSIT_PAID.value
            )
        with self._tracer.span("crewflow.bookings.create_deposit_payment", {ATTR_BOOKING_ID: str(booking_id)}):
            return await self._issue(booking, state, InvoicePhase.DEPOSIT, actor)

    async def create_balance_payment(self, actor: Actor, booking_id: UUID) -> WorkflowResult[InvoiceState]:
        """
        Issue the balance invoice, or return the live one already issued.

        Raises:
            IllegalTransitionError: The booking is not confirmed, the deposit is
                not paid, or the business has not requested completion
        """
        booking, state = await self._load(booking_id)
        require_customer(actor, state.customer_id, "pay for this booking")
        existing = await self._invoices.existing_booking_invoice(state, InvoicePhase.BALANCE)
        if existing is not None:
            return WorkflowResult(existing)
        if state.status != BookingStatus.CONFIRMED:
            raise IllegalTransitionError(
                "booking payment", state.payment_status.value, PaymentStatus.PAID.value,
                reason=f"booking is {state.status.value}",
            )
        if state.payment_status != PaymentStatus.DEPOSIT_PAID:
            raise IllegalTransitionError(
                "booking payment", state.payment_status.value, PaymentStatus.PAID.value,
                reason="deposit must be paid first",
            )
        if state.completed_status != CompletionStatus.REQUEST_COMPLETED:
            raise IllegalTransitionError(
                "booking payment", state.payment_status.value, PaymentStatus.PAID.value,
                reason="the business has not requested completion",
            )
        with self._tracer.span("crewflow.bookings.create_balance_payment", {ATTR_BOOKING_ID: str(booking_id)}):
            return await self._issue(booking, state, InvoicePhase.BALANCE, actor)

    # -- completion handshake ------------------------------------------------

    async def update_completion_status(
        self,
        actor: Actor,
        booking_id: UUID,
        new_status: CompletionStatus,
        *,
        rejection_reason: str | None = None,
    ) -> WorkflowResult[BookingState]:
        """
        Drive the completion handshake.

        The business requests completion once the deposit is paid; the
        customer confirms once the balance is paid, or rejects with a reason.

        Raises:
            ValidationError: Rejecting without a reason
            UnauthorizedError: Wrong party for the move
            IllegalTransitionError: Payment prerequisites unmet or illegal move
        """
        booking, state = await self._load(booking_id)
        require_party(actor, state.customer_id, state.business_id, "update booking completion")
        COMPLETION_TRANSITIONS.require(state.completed_status, actor.kind, new_status)
        if new_status == CompletionStatus.REQUEST_COMPLETED and state.payment_status not in (
            PaymentStatus.DEPOSIT_PAID,
            PaymentStatus.PAID,
        ):
            raise IllegalTransitionError(
                "booking completion", state.completed_status.value, new_status.value,
                reason="deposit must be paid first",
            )
        if new_status == CompletionStatus.COMPLETED and state.payment_status != PaymentStatus.PAID:
            raise IllegalTransitionError(
                "booking completion", state.completed_status.value, new_status.value,
                reason="balance must be paid first",
            )
        reason = None
        if new_status == CompletionStatus.REJECTED:
            if not rejection_reason or not rejection_reason.strip():
                raise ValidationError("a rejection reason is required", field="rejection_reason")
            reason = rejection_reason.strip()

        booking.change_completion_status(new_status, actor, reason=reason)
        await self._context.repositories.bookings.save(booking)
        if new_status == CompletionStatus.COMPLETED:
            await self._close_quote(state, actor, QuoteStatus.COMPLETED)
        state = booking.state
        assert state is not None
        logger.info(
            "Booking %s completion is now %s",
            booking_id,
            new_status.value,
            extra={"booking_id": str(booking_id), "actor_id": actor.actor_id, "status": new_status.value},
        )
        return WorkflowResult(state, await self._completion_effects(state, new_status, reason))

    async def _completion_effects(
        self, state: BookingState, new_status: CompletionStatus, reason: str | None
    ) -> list[Effect]:
        business = await self._context.catalog.get_business(state.business_id)
        data = {"bookingId": str(state.booking_id)}
        if new_status == CompletionStatus.REQUEST_COMPLETED:
            customer = await self._context.catalog.get_customer(state.customer_id)
            message = f"{business.name} marked {state.service_name} as done. Please confirm completion."
            return [
                notification(state.customer_id, "completion_requested", "Completion Requested", message, data=data),
                email(customer.email, f"Please confirm completion - {state.service_name}", f"<p>{message}</p>"),
            ]
        if new_status == CompletionStatus.COMPLETED:
            message = f"The customer confirmed completion of booking {state.booking_id}."
            return [
                email(
                    business.email,
                    "Payment can be released",
                    f"<p>{message}</p><p>Amount owed: {state.quote_amount} "
                    f"{self._context.config.settlement_currency}</p>",
                ),
                notification(
                    business.owner_user_id,
                    "booking_completed",
                    "Booking Completed",
                    message,
                    priority=NotificationPriority.HIGH,
                    data=data,
                ),
            ]
        message = f"The customer rejected completion of booking {state.booking_id}: {reason}"
        return [
            notification(
                business.owner_user_id,
                "completion_rejected",
                "Completion Rejected",
                message,
                priority=NotificationPriority.HIGH,
                data={**data, "reason": reason or ""},
            )
        ]


__all__ = ["BookingWorkflow", "OPEN_QUOTE_STATUSES", "QuoteLine", "QuoteLineUpdate"]
