"""
Base classes for event-sourced aggregates.

Aggregates are the consistency boundaries of the workflow engine. Each
command method validates against current state, then raises events; state
only ever changes by applying those events.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Generic, Literal
from uuid import UUID

from crewflow.events.base import DomainEvent
from crewflow.exceptions import EventVersionError, UnhandledEventError
from crewflow.handlers.decorators import collect_handlers
from crewflow.types import TState

logger = logging.getLogger(__name__)

UnregisteredEventHandling = Literal["ignore", "warn", "error"]


class AggregateRoot(Generic[TState], ABC):
    """
    Base class for event-sourced aggregate roots.

    Subclasses must implement:
    - ``_apply(event)``: Update state based on event type
    - ``_get_initial_state()``: Return initial state for new aggregates

    Attributes:
        aggregate_id: Unique identifier for this aggregate instance
        aggregate_type: String identifier for this aggregate type
        version: Current version (number of events applied)
    """

    aggregate_type: str = "Unknown"

    # When True, new events with an unexpected version raise EventVersionError
    validate_versions: bool = True

    def __init__(self, aggregate_id: UUID) -> None:
        self._aggregate_id = aggregate_id
        self._version = 0
        self._uncommitted_events: list[DomainEvent] = []
        self._state: TState | None = None

    @property
    def aggregate_id(self) -> UUID:
        return self._aggregate_id

    @property
    def version(self) -> int:
        return self._version

    @property
    def state(self) -> TState | None:
        """Current state, or None for an aggregate with no events."""
        return self._state

    @property
    def uncommitted_events(self) -> list[DomainEvent]:
        """Events not yet persisted (a copy)."""
        return self._uncommitted_events.copy()

    @property
    def has_uncommitted_events(self) -> bool:
        return len(self._uncommitted_events) > 0

    def apply_event(self, event: DomainEvent, is_new: bool = True) -> None:
        """
        Apply an event to the aggregate.

        Args:
            event: The domain event to apply
            is_new: True for freshly raised events (tracked for persistence),
                False when replaying history

        Raises:
            EventVersionError: If is_new and the event version is not current + 1
        """
        if is_new:
            expected_version = self._version + 1
            if event.aggregate_version != expected_version:
                if self.validate_versions:
                    raise EventVersionError(
                        expected_version=expected_version,
                        actual_version=event.aggregate_version,
                        event_id=event.event_id,
                        aggregate_id=self._aggregate_id,
                    )
                logger.warning(
                    "Version mismatch (validation disabled): expected %d, got %d "
                    "for aggregate %s, event %s",
                    expected_version,
                    event.aggregate_version,
                    self._aggregate_id,
                    event.event_id,
                    extra={
                        "aggregate_id": str(self._aggregate_id),
                        "expected_version": expected_version,
                        "actual_version": event.aggregate_version,
                        "event_id": str(event.event_id),
                    },
                )

        self._version = event.aggregate_version
        self._apply(event)

        if is_new:
            self._uncommitted_events.append(event)

    @abstractmethod
    def _apply(self, event: DomainEvent) -> None:
        """Apply event to update aggregate state."""

    @abstractmethod
    def _get_initial_state(self) -> TState:
        """Initial state for a new aggregate."""

    def mark_events_as_committed(self) -> None:
        """Called by the repository once events are persisted."""
        self._uncommitted_events.clear()

    def load_from_history(self, events: list[DomainEvent]) -> None:
        """Reconstitute state by replaying events in order."""
        for event in events:
            self.apply_event(event, is_new=False)

    def get_next_version(self) -> int:
        return self._version + 1

    def _raise_event(self, event: DomainEvent) -> None:
        """Apply a freshly created event and track it for persistence."""
        self.apply_event(event, is_new=True)

    def _event_fields(self, actor_id: str | None = None) -> dict[str, Any]:
        """Envelope fields every new event of this aggregate needs."""
        return {
            "aggregate_id": self._aggregate_id,
            "aggregate_type": self.aggregate_type,
            "aggregate_version": self.get_next_version(),
            "actor_id": actor_id,
        }

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"id={self._aggregate_id}, "
            f"version={self._version}, "
            f"uncommitted={len(self._uncommitted_events)})"
        )


class DeclarativeAggregate(AggregateRoot[TState], ABC):
    """
    Aggregate that routes events to methods marked with ``@handles``.

    Attributes:
        unregistered_event_handling: What to do with events that have no
            handler: "ignore", "warn" or "error".

    Example:
        >>> class ShipmentAggregate(DeclarativeAggregate[ShipmentState]):
        ...     aggregate_type = "Shipment"
        ...
        ...     @handles(ShipmentCreated)
        ...     def _on_created(self, event: ShipmentCreated) -> None:
        ...         self._state = ShipmentState(...)
    """

    unregistered_event_handling: UnregisteredEventHandling = "error"

    _event_handlers: dict[type[DomainEvent], str] = {}

    def __init_subclass__(cls, **kwargs: object) -> None:
        super().__init_subclass__(**kwargs)
        cls._event_handlers = collect_handlers(cls)

    def _apply(self, event: DomainEvent) -> None:
        handler_name = self._event_handlers.get(type(event))
        if handler_name:
            getattr(self, handler_name)(event)
        else:
            self._handle_unregistered_event(event)

    def _handle_unregistered_event(self, event: DomainEvent) -> None:
        available_handlers = [et.__name__ for et in self._event_handlers]

        if self.unregistered_event_handling == "error":
            raise UnhandledEventError(
                event_type=type(event).__name__,
                event_id=event.event_id,
                handler_class=self.__class__.__name__,
                available_handlers=available_handlers,
            )
        elif self.unregistered_event_handling == "warn":
            logger.warning(
                "No handler registered for event type %s in %s",
                type(event).__name__,
                self.__class__.__name__,
                extra={
                    "event_type": type(event).__name__,
                    "event_id": str(event.event_id),
                    "handler_class": self.__class__.__name__,
                },
            )

    def _require_state(self) -> TState:
        """State of an aggregate that must already exist."""
        if self._state is None:
            raise RuntimeError(f"{self.aggregate_type} {self._aggregate_id} has no events")
        return self._state


__all__ = [
    "AggregateRoot",
    "DeclarativeAggregate",
    "UnregisteredEventHandling",
]
