"""
Event type registry for serialization and deserialization.

Durable stores persist events as JSON plus their ``event_type`` string. The
registry maps that string back to the pydantic class on load.

Usage:
    @register_event
    class OrderPlaced(DomainEvent):
        aggregate_type: str = "Order"
        ...

    event_class = default_registry.get("OrderPlaced")
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from crewflow.events.base import DomainEvent

logger = logging.getLogger(__name__)

TEvent = TypeVar("TEvent", bound="DomainEvent")


class EventTypeNotFoundError(KeyError):
    """Raised when an event type is not found in the registry."""

    def __init__(self, event_type: str, available_types: list[str]) -> None:
        self.event_type = event_type
        self.available_types = available_types
        available = ", ".join(sorted(available_types)) if available_types else "none"
        super().__init__(
            f"Unknown event type: '{event_type}'. "
            f"Available types: {available}. "
            f"Did you forget to register this event type?"
        )


class DuplicateEventTypeError(ValueError):
    """Raised when a different class is registered under an existing name."""

    def __init__(
        self,
        event_type: str,
        existing_class: type[DomainEvent],
        new_class: type[DomainEvent],
    ) -> None:
        self.event_type = event_type
        self.existing_class = existing_class
        self.new_class = new_class
        super().__init__(
            f"Event type '{event_type}' is already registered to {existing_class.__name__}. "
            f"Cannot register {new_class.__name__} with the same type name."
        )


class EventRegistry:
    """
    Registry mapping event type names to event classes.

    Thread-Safety:
        All operations use an internal lock.
    """

    def __init__(self) -> None:
        self._registry: dict[str, type[DomainEvent]] = {}
        self._lock = threading.RLock()

    def register(
        self,
        event_class: type[TEvent],
        event_type: str | None = None,
    ) -> type[TEvent]:
        """
        Register an event class.

        Args:
            event_class: The event class to register
            event_type: Optional name override; defaults to the class name

        Returns:
            The registered class, so this can be used as a decorator

        Raises:
            DuplicateEventTypeError: If the name belongs to another class
        """
        resolved_type = event_type or event_class.__name__

        with self._lock:
            existing = self._registry.get(resolved_type)
            if existing is not None:
                if existing is not event_class:
                    raise DuplicateEventTypeError(resolved_type, existing, event_class)
                return event_class

            self._registry[resolved_type] = event_class
            logger.debug(
                "Registered event type '%s' -> %s",
                resolved_type,
                event_class.__name__,
                extra={"event_type": resolved_type, "event_class": event_class.__name__},
            )
            return event_class

    def get(self, event_type: str) -> type[DomainEvent]:
        """
        Get an event class by type name.

        Raises:
            EventTypeNotFoundError: If the type is not registered
        """
        with self._lock:
            event_class = self._registry.get(event_type)
            if event_class is None:
                raise EventTypeNotFoundError(event_type, list(self._registry))
            return event_class

    def get_or_none(self, event_type: str) -> type[DomainEvent] | None:
        with self._lock:
            return self._registry.get(event_type)

    def list_types(self) -> list[str]:
        with self._lock:
            return sorted(self._registry)

    def __contains__(self, event_type: str) -> bool:
        with self._lock:
            return event_type in self._registry

    def __len__(self) -> int:
        with self._lock:
            return len(self._registry)

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._registry))


default_registry = EventRegistry()


def register_event(event_class: type[TEvent]) -> type[TEvent]:
    """Class decorator registering an event in the default registry."""
    return default_registry.register(event_class)


def get_event_class(event_type: str) -> type[DomainEvent]:
    return default_registry.get(event_type)


__all__ = [
    "DuplicateEventTypeError",
    "EventRegistry",
    "EventTypeNotFoundError",
    "default_registry",
    "get_event_class",
    "register_event",
]
