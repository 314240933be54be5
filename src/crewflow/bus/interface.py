"""Event bus interface definitions.

The event bus decouples the repositories that save events from the
projections that index them (tokens, gateway invoice ids, tracking codes).
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from crewflow.events.base import DomainEvent

# Type alias for simple function-based handlers
EventHandlerFunc = Callable[[DomainEvent], Awaitable[None] | None]


@runtime_checkable
class EventSubscriber(Protocol):
    """Handler that declares the event types it wants."""

    def subscribed_to(self) -> list[type[DomainEvent]]: ...

    async def handle(self, event: DomainEvent) -> None: ...


class EventBus(ABC):
    """
    Abstract event bus for publishing and subscribing to domain events.

    Example:
        >>> event_bus = InMemoryEventBus()
        >>> event_bus.subscribe(OrderPlaced, handler)
        >>> event_bus.subscribe_all(lookup_projection)
        >>> await event_bus.publish([OrderPlaced(...)])
    """

    @abstractmethod
    async def publish(self, events: list[DomainEvent]) -> None:
        """
        Publish events to all registered subscribers.

        Events are processed in order, and all handlers for each event are
        invoked before moving to the next event.
        """

    @abstractmethod
    def subscribe(self, event_type: type[DomainEvent], handler: Any) -> None:
        """Subscribe a handler (object with handle() or callable) to one event type."""

    @abstractmethod
    def unsubscribe(self, event_type: type[DomainEvent], handler: Any) -> bool:
        """Remove a handler. Returns True if it was subscribed."""

    @abstractmethod
    def subscribe_all(self, subscriber: EventSubscriber) -> None:
        """Subscribe to every event type the subscriber declares."""

    @abstractmethod
    def subscribe_to_all_events(self, handler: Any) -> None:
        """Wildcard subscription."""


__all__ = ["EventBus", "EventHandlerFunc", "EventSubscriber"]
