"""
Unit tests for the transition tables and derived statuses.

Tests cover:
- Role-gated order item moves for every actor kind
- Unauthorized vs illegal moves
- Booking and completion tables
- Legal (status, completion) pairs of a booking
- derive_order_status and derive_quote_status
"""

import itertools

import pytest

from crewflow.actors import ActorKind
from crewflow.exceptions import IllegalTransitionError, UnauthorizedError
from crewflow.transitions import (
    BOOKING_TRANSITIONS,
    COMPLETION_TRANSITIONS,
    ORDER_TRANSITIONS,
    TransitionTable,
    derive_order_status,
    derive_quote_status,
    is_legal_booking_combination,
    require_booking_combination,
)
from crewflow.types import (
    BookingQuoteStatus,
    BookingStatus,
    CompletionStatus,
    OrderItemStatus,
    QuoteItemStatus,
)

S = OrderItemStatus
Q = QuoteItemStatus


class TestOrderTransitions:
    """Tests for ORDER_TRANSITIONS."""

    def test_distributor_confirms_pending_item(self) -> None:
        """A distributor may confirm or decline a pending item."""
        assert ORDER_TRANSITIONS.can(S.PENDING, ActorKind.DISTRIBUTOR, S.CONFIRMED)
        assert ORDER_TRANSITIONS.can(S.PENDING, ActorKind.DISTRIBUTOR, S.DECLINED)

    def test_manufacturer_cannot_decline(self) -> None:
        """Manufacturers have the distributor table minus declined."""
        assert ORDER_TRANSITIONS.can(S.PENDING, ActorKind.MANUFACTURER, S.CONFIRMED)
        assert not ORDER_TRANSITIONS.can(S.PENDING, ActorKind.MANUFACTURER, S.DECLINED)
        assert not ORDER_TRANSITIONS.can(S.CONFIRMED, ActorKind.MANUFACTURER, S.DECLINED)

    def test_customer_rows(self) -> None:
        """Customers cancel early or confirm delivery of a shipped order."""
        assert ORDER_TRANSITIONS.can(S.PENDING, ActorKind.CUSTOMER, S.CANCELLED)
        assert ORDER_TRANSITIONS.can(S.CONFIRMED, ActorKind.CUSTOMER, S.CANCELLED)
        assert ORDER_TRANSITIONS.can(S.SHIPPED, ActorKind.CUSTOMER, S.DELIVERED)
        assert not ORDER_TRANSITIONS.can(S.SHIPPED, ActorKind.CUSTOMER, S.CANCELLED)

    def test_customer_confirming_is_unauthorized(self) -> None:
        """A move that exists for another role raises UnauthorizedError."""
        with pytest.raises(UnauthorizedError):
            ORDER_TRANSITIONS.require(S.PENDING, ActorKind.CUSTOMER, S.CONFIRMED)

    def test_move_nobody_may_make_is_illegal(self) -> None:
        """A move absent from every row raises IllegalTransitionError."""
        with pytest.raises(IllegalTransitionError):
            ORDER_TRANSITIONS.require(S.DELIVERED, ActorKind.ADMIN, S.PENDING)

    def test_terminal_states_have_no_moves(self) -> None:
        """Delivered, declined and cancelled items cannot move."""
        for state in (S.DELIVERED, S.DECLINED, S.CANCELLED):
            assert ORDER_TRANSITIONS.reachable(state) == frozenset()

    def test_system_can_ship_from_processing(self) -> None:
        """Tracking updates may skip ahead to shipped or delivered."""
        assert ORDER_TRANSITIONS.can(S.PROCESSING, ActorKind.SYSTEM, S.SHIPPED)
        assert ORDER_TRANSITIONS.can(S.CONFIRMED, ActorKind.SYSTEM, S.DELIVERED)


class TestTransitionTable:
    """Tests for TransitionTable itself."""

    def test_allowed_is_empty_for_unknown_rows(self) -> None:
        """Rows that don't exist allow nothing."""
        table = TransitionTable("thing", {("a", ActorKind.ADMIN): {"b"}})
        assert table.allowed("a", ActorKind.CUSTOMER) == frozenset()
        assert table.allowed("a", ActorKind.ADMIN) == frozenset({"b"})

    def test_require_passes_for_allowed_move(self) -> None:
        """require() returns None for a legal move."""
        table = TransitionTable("thing", {("a", ActorKind.ADMIN): {"b"}})
        assert table.require("a", ActorKind.ADMIN, "b") is None


class TestBookingTransitions:
    """Tests for BOOKING_TRANSITIONS and COMPLETION_TRANSITIONS."""

    def test_customer_may_cancel(self) -> None:
        """Customers cancel pending or confirmed bookings."""
        assert BOOKING_TRANSITIONS.can(BookingStatus.PENDING, ActorKind.CUSTOMER, BookingStatus.CANCELLED)
        assert BOOKING_TRANSITIONS.can(BookingStatus.CONFIRMED, ActorKind.CUSTOMER, BookingStatus.CANCELLED)

    def test_customer_cannot_confirm(self) -> None:
        """Confirming belongs to the business."""
        with pytest.raises(UnauthorizedError):
            BOOKING_TRANSITIONS.require(BookingStatus.PENDING, ActorKind.CUSTOMER, BookingStatus.CONFIRMED)

    def test_completion_handshake_roles(self) -> None:
        """The business requests completion and the customer answers."""
        assert COMPLETION_TRANSITIONS.can(
            CompletionStatus.PENDING, ActorKind.DISTRIBUTOR, CompletionStatus.REQUEST_COMPLETED
        )
        assert COMPLETION_TRANSITIONS.can(
            CompletionStatus.REQUEST_COMPLETED, ActorKind.CUSTOMER, CompletionStatus.COMPLETED
        )
        assert COMPLETION_TRANSITIONS.can(
            CompletionStatus.REJECTED, ActorKind.MANUFACTURER, CompletionStatus.REQUEST_COMPLETED
        )
        with pytest.raises(UnauthorizedError):
            COMPLETION_TRANSITIONS.require(
                CompletionStatus.REQUEST_COMPLETED, ActorKind.DISTRIBUTOR, CompletionStatus.COMPLETED
            )

    def test_completed_is_final(self) -> None:
        """Nothing leaves completed."""
        with pytest.raises(IllegalTransitionError):
            COMPLETION_TRANSITIONS.require(
                CompletionStatus.COMPLETED, ActorKind.CUSTOMER, CompletionStatus.REJECTED
            )


class TestBookingCombinations:
    """Tests for the legal (status, completion) pairs."""

    @pytest.mark.parametrize(
        ("status", "completed", "legal"),
        [
            (BookingStatus.PENDING, CompletionStatus.PENDING, True),
            (BookingStatus.PENDING, CompletionStatus.REQUEST_COMPLETED, False),
            (BookingStatus.CONFIRMED, CompletionStatus.REQUEST_COMPLETED, True),
            (BookingStatus.CONFIRMED, CompletionStatus.COMPLETED, False),
            (BookingStatus.COMPLETED, CompletionStatus.COMPLETED, True),
            (BookingStatus.COMPLETED, CompletionStatus.PENDING, False),
            (BookingStatus.CANCELLED, CompletionStatus.REJECTED, True),
        ],
    )
    def test_pairs(self, status: BookingStatus, completed: CompletionStatus, legal: bool) -> None:
        """Only the listed pairs are legal."""
        assert is_legal_booking_combination(status, completed) is legal

    def test_require_raises_with_both_pairs_in_message(self) -> None:
        """The error names the current and requested pair."""
        with pytest.raises(IllegalTransitionError, match="confirmed/pending"):
            require_booking_combination(
                BookingStatus.COMPLETED,
                CompletionStatus.PENDING,
                current=(BookingStatus.CONFIRMED, CompletionStatus.PENDING),
            )


class TestDeriveOrderStatus:
    """Tests for derive_order_status()."""

    def test_uniform_items(self) -> None:
        """All items sharing a status give that status."""
        assert derive_order_status([S.SHIPPED, S.SHIPPED]) == S.SHIPPED
        assert derive_order_status([S.DECLINED]) == S.DECLINED

    def test_least_advanced_active_item_wins(self) -> None:
        """Mixed active items give the least advanced one."""
        assert derive_order_status([S.SHIPPED, S.CONFIRMED, S.DELIVERED]) == S.CONFIRMED

    def test_inactive_items_are_ignored(self) -> None:
        """Declined and cancelled items don't hold the order back."""
        assert derive_order_status([S.DECLINED, S.SHIPPED]) == S.SHIPPED

    def test_no_active_items(self) -> None:
        """Cancelled wins over declined when nothing is active."""
        assert derive_order_status([S.DECLINED, S.CANCELLED]) == S.CANCELLED

    def test_empty_is_pending(self) -> None:
        """An order with no items is pending."""
        assert derive_order_status([]) == S.PENDING


class TestDeriveQuoteStatus:
    """Tests for derive_quote_status()."""

    @pytest.mark.parametrize(
        ("statuses", "expected"),
        [
            ([Q.ACCEPTED, Q.ACCEPTED], BookingQuoteStatus.ACCEPTED),
            ([Q.REJECTED, Q.REJECTED], BookingQuoteStatus.REJECTED),
            ([Q.ACCEPTED, Q.EDIT_REQUESTED], BookingQuoteStatus.EDIT_REQUESTED),
            ([Q.EDITED, Q.PENDING], BookingQuoteStatus.EDITED),
            ([Q.ACCEPTED, Q.PENDING], BookingQuoteStatus.PARTIALLY_ACCEPTED),
            ([Q.PENDING, Q.PENDING], BookingQuoteStatus.PROVIDED),
            ([Q.ACCEPTED, Q.REJECTED], BookingQuoteStatus.PROVIDED),
        ],
    )
    def test_derivation(self, statuses: list[QuoteItemStatus], expected: BookingQuoteStatus) -> None:
        """The booking quote status is a function of the item statuses."""
        assert derive_quote_status(statuses) == expected

    def test_total_over_every_combination(self) -> None:
        """Every combination of up to three item statuses derives a status, the same one each time."""
        derived_values = {
            BookingQuoteStatus.ACCEPTED,
            BookingQuoteStatus.REJECTED,
            BookingQuoteStatus.EDIT_REQUESTED,
            BookingQuoteStatus.EDITED,
            BookingQuoteStatus.PARTIALLY_ACCEPTED,
            BookingQuoteStatus.PROVIDED,
        }
        for size in (1, 2, 3):
            for combo in itertools.product(list(QuoteItemStatus), repeat=size):
                first = derive_quote_status(combo)
                assert first in derived_values
                assert derive_quote_status(combo) == first
                assert derive_quote_status(reversed(combo)) == first
