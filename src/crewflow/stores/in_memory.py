"""
In-memory event store implementation.

Useful for testing and development. All events are lost when the process
terminates.
"""

import asyncio
from collections import defaultdict
from uuid import UUID

from crewflow.events.base import DomainEvent
from crewflow.observability import (
    ATTR_AGGREGATE_ID,
    ATTR_AGGREGATE_TYPE,
    ATTR_EVENT_COUNT,
    ATTR_EXPECTED_VERSION,
    ATTR_FROM_VERSION,
    Tracer,
    create_tracer,
)
from crewflow.stores.interface import (
    AppendResult,
    EventStore,
    EventStream,
    check_expected_version,
)


class InMemoryEventStore(EventStore):
    """
    In-memory implementation of the event store.

    The version check and the append happen under one asyncio lock, so two
    concurrent writers of the same stream cannot both succeed.

    Example:
        >>> store = InMemoryEventStore()
        >>> result = await store.append_events(
        ...     aggregate_id=order_id,
        ...     aggregate_type="Order",
        ...     events=[OrderPlaced(...)],
        ...     expected_version=0,
        ... )
        >>> assert result.success
    """

    def __init__(
        self,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._streams: dict[tuple[UUID, str], list[DomainEvent]] = defaultdict(list)
        self._event_ids: set[UUID] = set()
        self._global_position: int = 0
        self._lock: asyncio.Lock = asyncio.Lock()

    async def append_events(
        self,
        aggregate_id: UUID,
        aggregate_type: str,
        events: list[DomainEvent],
        expected_version: int,
    ) -> AppendResult:
        """
        Append events to an aggregate's stream.

        Events whose id was already stored are skipped.

        Raises:
            OptimisticLockError: If expected version doesn't match current version
        """
        if not events:
            return AppendResult.successful(expected_version)

        with self._tracer.span(
            "crewflow.in_memory_event_store.append_events",
            {
                ATTR_AGGREGATE_ID: str(aggregate_id),
                ATTR_AGGREGATE_TYPE: aggregate_type,
                ATTR_EVENT_COUNT: len(events),
                ATTR_EXPECTED_VERSION: expected_version,
            },
        ):
            async with self._lock:
                stream = self._streams[(aggregate_id, aggregate_type)]
                check_expected_version(aggregate_id, expected_version, len(stream))

                for event in events:
                    if event.event_id in self._event_ids:
                        continue
                    self._global_position += 1
                    stream.append(event)
                    self._event_ids.add(event.event_id)

                return AppendResult.successful(len(stream), self._global_position)

    async def get_events(
        self,
        aggregate_id: UUID,
        aggregate_type: str | None = None,
        from_version: int = 0,
    ) -> EventStream:
        with self._tracer.span(
            "crewflow.in_memory_event_store.get_events",
            {
                ATTR_AGGREGATE_ID: str(aggregate_id),
                ATTR_AGGREGATE_TYPE: aggregate_type or "any",
                ATTR_FROM_VERSION: from_version,
            },
        ):
            async with self._lock:
                if aggregate_type:
                    events = list(self._streams.get((aggregate_id, aggregate_type), []))
                    resolved_type = aggregate_type
                else:
                    events = []
                    resolved_type = "Unknown"
                    for (stream_id, stream_type), stream in self._streams.items():
                        if stream_id == aggregate_id and stream:
                            events = list(stream)
                            resolved_type = stream_type
                            break

                version = len(events)
                return EventStream(
                    aggregate_id=aggregate_id,
                    aggregate_type=resolved_type,
                    events=events[from_version:],
                    version=version,
                )

    async def event_exists(self, event_id: UUID) -> bool:
        async with self._lock:
            return event_id in self._event_ids

    async def get_stream_version(self, aggregate_id: UUID, aggregate_type: str) -> int:
        async with self._lock:
            return len(self._streams.get((aggregate_id, aggregate_type), []))

    async def clear(self) -> None:
        """Remove all events. Intended for tests."""
        async with self._lock:
            self._streams.clear()
            self._event_ids.clear()
            self._global_position = 0

    @property
    def event_count(self) -> int:
        return sum(len(stream) for stream in self._streams.values())


__all__ = ["InMemoryEventStore"]
