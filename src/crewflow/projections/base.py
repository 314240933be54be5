"""
Projection base classes.

Projections subscribe to the event bus and maintain read-side indexes.
``DeclarativeProjection`` routes each event to the async method marked
with ``@handles`` for its type and derives its subscriptions from those
marks.
"""

import logging
from abc import ABC, abstractmethod
from typing import Literal

from crewflow.events.base import DomainEvent
from crewflow.exceptions import UnhandledEventError
from crewflow.handlers.decorators import collect_handlers
from crewflow.observability import ATTR_EVENT_TYPE, ATTR_HANDLER_NAME, Tracer, create_tracer

logger = logging.getLogger(__name__)

UnregisteredEventHandling = Literal["ignore", "warn", "error"]


class Projection(ABC):
    """Base class for projections."""

    @abstractmethod
    async def handle(self, event: DomainEvent) -> None:
        """Apply one event to the read model."""

    @abstractmethod
    async def reset(self) -> None:
        """Drop all read model state (for rebuilds)."""

    async def rebuild(self, events: list[DomainEvent]) -> None:
        """Reset, then replay ``events`` in order."""
        await self.reset()
        for event in events:
            await self.handle(event)


class DeclarativeProjection(Projection):
    """
    Projection that routes events to ``@handles``-marked async methods.

    Example:
        >>> class TokenIndex(DeclarativeProjection):
        ...     @handles(OrderPlaced)
        ...     async def _on_order_placed(self, event: OrderPlaced) -> None:
        ...         ...
        ...
        ...     async def reset(self) -> None:
        ...         ...
    """

    unregistered_event_handling: UnregisteredEventHandling = "ignore"

    def __init__(self, *, tracer: Tracer | None = None, enable_tracing: bool = False) -> None:
        self._handlers = collect_handlers(type(self))
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def projection_name(self) -> str:
        return type(self).__name__

    def subscribed_to(self) -> list[type[DomainEvent]]:
        return list(self._handlers)

    async def handle(self, event: DomainEvent) -> None:
        handler_name = self._handlers.get(type(event))
        if handler_name is None:
            self._handle_unregistered(event)
            return
        with self._tracer.span(
            "crewflow.projection.handle",
            {ATTR_EVENT_TYPE: type(event).__name__, ATTR_HANDLER_NAME: handler_name},
        ):
            await getattr(self, handler_name)(event)

    def _handle_unregistered(self, event: DomainEvent) -> None:
        if self.unregistered_event_handling == "error":
            raise UnhandledEventError(
                event_type=type(event).__name__,
                event_id=event.event_id,
                handler_class=self.projection_name,
                available_handlers=[et.__name__ for et in self._handlers],
            )
        if self.unregistered_event_handling == "warn":
            logger.warning(
                "No handler registered for event type %s in %s",
                type(event).__name__,
                self.projection_name,
            )


__all__ = ["DeclarativeProjection", "Projection", "UnregisteredEventHandling"]
