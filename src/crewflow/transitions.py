"""
Declarative transition tables and derived-status functions.

Every role-gated state machine in the engine is a ``TransitionTable`` keyed
by ``(state, actor kind)``. Workflows check a requested move once, up
front, against the table; nothing else in the engine decides legality.

The derivations at the bottom (``derive_order_status``,
``derive_quote_status``) are pure functions of child statuses and are
re-run after every child mutation.
"""

from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any

from crewflow.actors import ActorKind
from crewflow.exceptions import IllegalTransitionError, UnauthorizedError
from crewflow.types import (
    ORDER_PROGRESS,
    BookingQuoteStatus,
    BookingStatus,
    CompletionStatus,
    OrderItemStatus,
    QuoteItemStatus,
)

Rules = Mapping[tuple[Any, ActorKind], Iterable[Any]]


def _value(state: Any) -> str:
    return state.value if isinstance(state, Enum) else str(state)


class TransitionTable:
    """
    Role-gated transition table.

    Example:
        >>> table = TransitionTable("booking", {
        ...     (BookingStatus.PENDING, ActorKind.CUSTOMER): {BookingStatus.CANCELLED},
        ... })
        >>> table.can(BookingStatus.PENDING, ActorKind.CUSTOMER, BookingStatus.CANCELLED)
        True
    """

    def __init__(self, entity: str, rules: Rules) -> None:
        self.entity = entity
        self._rules: dict[tuple[Any, ActorKind], frozenset[Any]] = {
            key: frozenset(targets) for key, targets in rules.items()
        }

    def allowed(self, state: Any, actor_kind: ActorKind) -> frozenset[Any]:
        """Targets ``actor_kind`` may move to from ``state``."""
        return self._rules.get((state, actor_kind), frozenset())

    def can(self, state: Any, actor_kind: ActorKind, target: Any) -> bool:
        return target in self.allowed(state, actor_kind)

    def reachable(self, state: Any) -> frozenset[Any]:
        """Targets reachable from ``state`` by any actor kind."""
        targets: set[Any] = set()
        for (source, _kind), allowed in self._rules.items():
            if source == state:
                targets |= allowed
        return frozenset(targets)

    def require(self, state: Any, actor_kind: ActorKind, target: Any) -> None:
        """
        Raise unless ``actor_kind`` may move from ``state`` to ``target``.

        Raises:
            UnauthorizedError: The move exists but belongs to another role
            IllegalTransitionError: No role may make this move
        """
        if self.can(state, actor_kind, target):
            return
        if target in self.reachable(state):
            raise UnauthorizedError(
                actor_kind.value,
                f"move {self.entity} from '{_value(state)}' to '{_value(target)}'",
            )
        raise IllegalTransitionError(self.entity, _value(state), _value(target))


S = OrderItemStatus

_BUSINESS_ORDER_RULES: dict[OrderItemStatus, set[OrderItemStatus]] = {
    S.PENDING: {S.CONFIRMED, S.DECLINED},
    S.CONFIRMED: {S.PROCESSING, S.DECLINED, S.CANCELLED},
    S.PROCESSING: {S.SHIPPED, S.CANCELLED},
    S.SHIPPED: {S.OUT_FOR_DELIVERY, S.CANCELLED},
    S.OUT_FOR_DELIVERY: {S.DELIVERED, S.CANCELLED},
}

_MANUFACTURER_ORDER_RULES = {
    state: targets - {S.DECLINED} for state, targets in _BUSINESS_ORDER_RULES.items()
}

# Customer rows are keyed on the aggregate order status.
_CUSTOMER_ORDER_RULES = {
    S.PENDING: {S.CANCELLED},
    S.CONFIRMED: {S.CANCELLED},
    S.SHIPPED: {S.DELIVERED},
}

# Tracking webhooks and label purchases.
_SYSTEM_ORDER_RULES = {
    S.CONFIRMED: {S.PROCESSING, S.SHIPPED, S.DELIVERED, S.CANCELLED},
    S.PROCESSING: {S.SHIPPED, S.DELIVERED, S.CANCELLED},
    S.SHIPPED: {S.DELIVERED, S.CANCELLED},
    S.OUT_FOR_DELIVERY: {S.SHIPPED, S.DELIVERED, S.CANCELLED},
}


def _rows(kind: ActorKind, rules: Mapping[Any, Iterable[Any]]) -> dict[tuple[Any, ActorKind], Iterable[Any]]:
    return {(state, kind): targets for state, targets in rules.items()}


ORDER_TRANSITIONS = TransitionTable(
    "order item",
    {
        **_rows(ActorKind.CUSTOMER, _CUSTOMER_ORDER_RULES),
        **_rows(ActorKind.DISTRIBUTOR, _BUSINESS_ORDER_RULES),
        **_rows(ActorKind.MANUFACTURER, _MANUFACTURER_ORDER_RULES),
        **_rows(ActorKind.ADMIN, _BUSINESS_ORDER_RULES),
        **_rows(ActorKind.SYSTEM, _SYSTEM_ORDER_RULES),
    },
)

B = BookingStatus
_BUSINESS_KINDS = (ActorKind.DISTRIBUTOR, ActorKind.MANUFACTURER, ActorKind.ADMIN)

BOOKING_TRANSITIONS = TransitionTable(
    "booking",
    {
        (B.PENDING, ActorKind.CUSTOMER): {B.CANCELLED},
        (B.CONFIRMED, ActorKind.CUSTOMER): {B.CANCELLED},
        **{(B.PENDING, kind): {B.CONFIRMED, B.DECLINED, B.CANCELLED} for kind in _BUSINESS_KINDS},
        **{(B.CONFIRMED, kind): {B.COMPLETED, B.CANCELLED} for kind in _BUSINESS_KINDS},
    },
)

C = CompletionStatus

COMPLETION_TRANSITIONS = TransitionTable(
    "booking completion",
    {
        **{(C.PENDING, kind): {C.REQUEST_COMPLETED} for kind in _BUSINESS_KINDS},
        **{(C.REJECTED, kind): {C.REQUEST_COMPLETED} for kind in _BUSINESS_KINDS},
        (C.REQUEST_COMPLETED, ActorKind.CUSTOMER): {C.COMPLETED, C.REJECTED},
    },
)

# Legal (status, completedStatus) combinations of a booking.
BOOKING_JOINT_STATES: dict[BookingStatus, frozenset[CompletionStatus]] = {
    B.PENDING: frozenset({C.PENDING}),
    B.CONFIRMED: frozenset({C.PENDING, C.REQUEST_COMPLETED, C.REJECTED}),
    B.COMPLETED: frozenset({C.COMPLETED}),
    B.CANCELLED: frozenset({C.PENDING, C.REQUEST_COMPLETED, C.REJECTED}),
    B.DECLINED: frozenset({C.PENDING, C.REQUEST_COMPLETED, C.REJECTED}),
}


def is_legal_booking_combination(status: BookingStatus, completed: CompletionStatus) -> bool:
    return completed in BOOKING_JOINT_STATES[status]


def require_booking_combination(
    status: BookingStatus,
    completed: CompletionStatus,
    *,
    current: tuple[BookingStatus, CompletionStatus],
) -> None:
    """
    Raise IllegalTransitionError if ``(status, completed)`` is not a legal pair.

    ``current`` is the pair before the move, used for the error message.
    """
    if not is_legal_booking_combination(status, completed):
        raise IllegalTransitionError(
            "booking",
            f"{current[0].value}/{current[1].value}",
            f"{status.value}/{completed.value}",
            reason="status and completion status cannot be combined",
        )


def derive_order_status(statuses: Iterable[OrderItemStatus]) -> OrderItemStatus:
    """
    Aggregate order status from its item statuses.

    Uniform items give their shared status. Otherwise declined and
    cancelled items are ignored and the least advanced active item wins; an
    order with no active items is cancelled if any item was cancelled, else
    declined.
    """
    items = list(statuses)
    if not items:
        return OrderItemStatus.PENDING
    distinct = set(items)
    if len(distinct) == 1:
        return items[0]

    active = [s for s in items if s not in (OrderItemStatus.DECLINED, OrderItemStatus.CANCELLED)]
    if not active:
        if OrderItemStatus.CANCELLED in distinct:
            return OrderItemStatus.CANCELLED
        return OrderItemStatus.DECLINED
    return min(active, key=lambda s: ORDER_PROGRESS[s])


def derive_quote_status(statuses: Iterable[QuoteItemStatus]) -> BookingQuoteStatus:
    """Booking quote status as a pure function of the quote's item statuses."""
    items = set(statuses)
    if not items:
        return BookingQuoteStatus.PROVIDED
    if items == {QuoteItemStatus.ACCEPTED}:
        return BookingQuoteStatus.ACCEPTED
    if items == {QuoteItemStatus.REJECTED}:
        return BookingQuoteStatus.REJECTED
    if QuoteItemStatus.EDIT_REQUESTED in items:
        return BookingQuoteStatus.EDIT_REQUESTED
    if QuoteItemStatus.EDITED in items:
        return BookingQuoteStatus.EDITED
    if items == {QuoteItemStatus.ACCEPTED, QuoteItemStatus.PENDING}:
        return BookingQuoteStatus.PARTIALLY_ACCEPTED
    return BookingQuoteStatus.PROVIDED


__all__ = [
    "BOOKING_JOINT_STATES",
    "BOOKING_TRANSITIONS",
    "COMPLETION_TRANSITIONS",
    "ORDER_TRANSITIONS",
    "TransitionTable",
    "derive_order_status",
    "derive_quote_status",
    "is_legal_booking_combination",
    "require_booking_combination",
]
