"""Domain event base class and registry."""

from crewflow.events.base import DomainEvent
from crewflow.events.registry import (
    DuplicateEventTypeError,
    EventRegistry,
    EventTypeNotFoundError,
    default_registry,
    get_event_class,
    register_event,
)

__all__ = [
    "DomainEvent",
    "DuplicateEventTypeError",
    "EventRegistry",
    "EventTypeNotFoundError",
    "default_registry",
    "get_event_class",
    "register_event",
]
