"""
Event handler decorators.

``@handles`` marks a method as the handler for one event type. Aggregates
(sync handlers that fold events into state) and projections (async handlers
that maintain lookup indexes) both discover marked methods when the class is
created.

Example:
    >>> class OrderAggregate(DeclarativeAggregate[OrderState]):
    ...     @handles(OrderPlaced)
    ...     def _on_placed(self, event: OrderPlaced) -> None:
    ...         self._state = OrderState(...)
"""

from collections.abc import Callable
from typing import Any, TypeVar

from crewflow.events.base import DomainEvent

F = TypeVar("F", bound=Callable[..., Any])


def handles(event_type: type[DomainEvent]) -> Callable[[F], F]:
    """
    Mark a method as the handler for ``event_type``.

    Args:
        event_type: The DomainEvent subclass this handler processes
    """

    def decorator(func: F) -> F:
        func._handles_event_type = event_type  # type: ignore[attr-defined]
        return func

    return decorator


def get_handled_event_type(func: Callable[..., Any]) -> type[DomainEvent] | None:
    """Return the event type a function was marked with, if any."""
    return getattr(func, "_handles_event_type", None)


def collect_handlers(cls: type) -> dict[type[DomainEvent], str]:
    """Map event types to the names of the methods on ``cls`` that handle them."""
    found: dict[type[DomainEvent], str] = {}
    for name in dir(cls):
        try:
            method = getattr(cls, name)
        except AttributeError:
            continue
        event_type = get_handled_event_type(method)
        if event_type is not None:
            found[event_type] = name
    return found


__all__ = ["collect_handlers", "get_handled_event_type", "handles"]
