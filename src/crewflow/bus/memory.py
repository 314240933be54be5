"""In-memory event bus implementation.

Distributes saved events to subscribers in the same process. Publishing
awaits every handler, so lookup indexes are current by the time
``repository.save`` returns.
"""

import asyncio
import logging
import threading
from collections import defaultdict
from typing import Any

from crewflow.bus.interface import EventBus, EventSubscriber
from crewflow.events.base import DomainEvent
from crewflow.handlers.adapter import HandlerAdapter
from crewflow.observability import Tracer, create_tracer
from crewflow.observability.attributes import (
    ATTR_AGGREGATE_ID,
    ATTR_EVENT_ID,
    ATTR_EVENT_TYPE,
    ATTR_HANDLER_COUNT,
    ATTR_HANDLER_NAME,
    ATTR_HANDLER_SUCCESS,
)

logger = logging.getLogger(__name__)


class InMemoryEventBus(EventBus):
    """
    In-memory event bus.

    Handler failures are logged and counted but never reach the publisher:
    the events are already durable when they are published.

    Example:
        >>> bus = InMemoryEventBus()
        >>> bus.subscribe(OrderPlaced, my_handler)
        >>> await bus.publish([OrderPlaced(...)])
    """

    def __init__(
        self,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
        record_events: bool = False,
    ) -> None:
        """
        Args:
            tracer: Optional custom Tracer instance
            enable_tracing: If True and OpenTelemetry is available, emit traces
            record_events: Keep every published event in ``published_events``
        """
        self._subscribers: dict[type[DomainEvent], list[HandlerAdapter]] = defaultdict(list)
        self._all_event_handlers: list[HandlerAdapter] = []
        self._lock = threading.RLock()
        self._record_events = record_events
        self._published: list[DomainEvent] = []
        self._stats = {
            "events_published": 0,
            "handlers_invoked": 0,
            "handler_errors": 0,
        }
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def publish(self, events: list[DomainEvent]) -> None:
        if not events:
            return
        for event in events:
            await self._dispatch_event(event)
            self._stats["events_published"] += 1
            if self._record_events:
                self._published.append(event)

    async def _dispatch_event(self, event: DomainEvent) -> None:
        event_type = type(event)

        with self._lock:
            handlers = list(self._subscribers.get(event_type, [])) + list(
                self._all_event_handlers
            )

        if not handlers:
            logger.debug(
                "No handlers registered for event type: %s",
                event_type.__name__,
                extra={"event_type": event_type.__name__},
            )
            return

        with self._tracer.span(
            "crewflow.event_bus.dispatch",
            {
                ATTR_EVENT_TYPE: event_type.__name__,
                ATTR_EVENT_ID: str(event.event_id),
                ATTR_AGGREGATE_ID: str(event.aggregate_id),
                ATTR_HANDLER_COUNT: len(handlers),
            },
        ):
            await asyncio.gather(*(self._safe_handle(adapter, event) for adapter in handlers))

    async def _safe_handle(self, adapter: HandlerAdapter, event: DomainEvent) -> None:
        with self._tracer.span(
            "crewflow.event_bus.handle",
            {
                ATTR_EVENT_TYPE: type(event).__name__,
                ATTR_EVENT_ID: str(event.event_id),
                ATTR_HANDLER_NAME: adapter.name,
            },
        ) as span:
            try:
                await adapter.handle(event)
                if span:
                    span.set_attribute(ATTR_HANDLER_SUCCESS, True)
                self._stats["handlers_invoked"] += 1
            except Exception as e:
                if span:
                    span.set_attribute(ATTR_HANDLER_SUCCESS, False)
                    span.record_exception(e)
                self._stats["handler_errors"] += 1
                logger.error(
                    "Handler %s failed processing %s: %s",
                    adapter.name,
                    type(event).__name__,
                    e,
                    exc_info=True,
                    extra={
                        "handler": adapter.name,
                        "event_type": type(event).__name__,
                        "event_id": str(event.event_id),
                    },
                )

    def subscribe(self, event_type: type[DomainEvent], handler: Any) -> None:
        adapter = HandlerAdapter(handler)
        with self._lock:
            self._subscribers[event_type].append(adapter)
        logger.debug(
            "Registered handler %s for %s",
            adapter.name,
            event_type.__name__,
            extra={"handler": adapter.name, "event_type": event_type.__name__},
        )

    def unsubscribe(self, event_type: type[DomainEvent], handler: Any) -> bool:
        target = HandlerAdapter(handler)
        with self._lock:
            adapters = self._subscribers.get(event_type, [])
            for i, adapter in enumerate(adapters):
                if adapter == target:
                    adapters.pop(i)
                    return True
        return False

    def subscribe_all(self, subscriber: EventSubscriber) -> None:
        for event_type in subscriber.subscribed_to():
            self.subscribe(event_type, subscriber)

    def subscribe_to_all_events(self, handler: Any) -> None:
        adapter = HandlerAdapter(handler)
        with self._lock:
            self._all_event_handlers.append(adapter)
        logger.debug("Registered wildcard handler %s", adapter.name)

    def clear_subscribers(self) -> None:
        with self._lock:
            self._subscribers.clear()
            self._all_event_handlers.clear()

    def get_subscriber_count(self, event_type: type[DomainEvent] | None = None) -> int:
        with self._lock:
            if event_type is None:
                return sum(len(handlers) for handlers in self._subscribers.values())
            return len(self._subscribers.get(event_type, []))

    def get_stats(self) -> dict[str, int]:
        return dict(self._stats)

    @property
    def published_events(self) -> list[DomainEvent]:
        """Events published so far (only when ``record_events`` is on)."""
        return list(self._published)


__all__ = ["InMemoryEventBus"]
