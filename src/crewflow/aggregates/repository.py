"""
Repository pattern for event-sourced aggregates.

Repositories load aggregates by replaying their streams and save them by
appending uncommitted events under optimistic locking.
"""

import logging
from typing import Any, Generic, TypeVar
from uuid import UUID

from crewflow.aggregates.base import AggregateRoot
from crewflow.exceptions import AggregateNotFoundError
from crewflow.observability import Tracer, create_tracer
from crewflow.observability.attributes import (
    ATTR_AGGREGATE_ID,
    ATTR_AGGREGATE_TYPE,
    ATTR_EVENT_COUNT,
    ATTR_VERSION,
)
from crewflow.stores.interface import EventPublisher, EventStore

logger = logging.getLogger(__name__)

TAggregate = TypeVar("TAggregate", bound="AggregateRoot[Any]")


class AggregateRepository(Generic[TAggregate]):
    """
    Repository for event-sourced aggregates.

    After a successful save the new events are published, which is how the
    lookup projection learns about tokens, gateway invoice ids and tracking
    codes.

    Example:
        >>> repo = AggregateRepository(
        ...     event_store=InMemoryEventStore(),
        ...     aggregate_factory=OrderAggregate,
        ...     aggregate_type="Order",
        ... )
        >>> order = OrderAggregate(uuid4())
        >>> order.place(...)
        >>> await repo.save(order)
        >>> loaded = await repo.load(order.aggregate_id)
    """

    def __init__(
        self,
        event_store: EventStore,
        aggregate_factory: type[TAggregate],
        aggregate_type: str,
        event_publisher: EventPublisher | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the repository.

        Args:
            event_store: Event store for persistence and retrieval
            aggregate_factory: Class to instantiate when loading aggregates
            aggregate_type: Type name of the aggregate (e.g., 'Order')
            event_publisher: Optional publisher for broadcasting saved events
            tracer: Optional custom Tracer instance
            enable_tracing: If True and OpenTelemetry is available, emit traces
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._event_store = event_store
        self._aggregate_factory = aggregate_factory
        self._aggregate_type = aggregate_type
        self._event_publisher = event_publisher

    @property
    def aggregate_type(self) -> str:
        return self._aggregate_type

    @property
    def event_store(self) -> EventStore:
        return self._event_store

    async def load(self, aggregate_id: UUID) -> TAggregate:
        """
        Load an aggregate from its event history.

        Raises:
            AggregateNotFoundError: If no events exist for the aggregate
        """
        with self._tracer.span(
            "crewflow.repository.load",
            {
                ATTR_AGGREGATE_ID: str(aggregate_id),
                ATTR_AGGREGATE_TYPE: self._aggregate_type,
            },
        ) as span:
            event_stream = await self._event_store.get_events(
                aggregate_id,
                aggregate_type=self._aggregate_type,
            )
            if not event_stream.events:
                raise AggregateNotFoundError(aggregate_id, self._aggregate_type)

            aggregate = self._aggregate_factory(aggregate_id)
            aggregate.load_from_history(event_stream.events)

            if span:
                span.set_attribute(ATTR_VERSION, aggregate.version)

            logger.debug(
                "Loaded %s/%s at version %d",
                self._aggregate_type,
                aggregate_id,
                aggregate.version,
            )
            return aggregate

    async def exists(self, aggregate_id: UUID) -> bool:
        version = await self._event_store.get_stream_version(aggregate_id, self._aggregate_type)
        return version > 0

    async def load_or_create(self, aggregate_id: UUID) -> TAggregate:
        """Load an existing aggregate or return a new, empty one."""
        try:
            return await self.load(aggregate_id)
        except AggregateNotFoundError:
            return self._aggregate_factory(aggregate_id)

    async def save(self, aggregate: TAggregate) -> None:
        """
        Persist uncommitted events, then publish them.

        No-op when the aggregate has no uncommitted events.

        Raises:
            OptimisticLockError: If another writer appended to the stream
                since this aggregate was loaded
        """
        uncommitted_events = aggregate.uncommitted_events
        if not uncommitted_events:
            return

        with self._tracer.span(
            "crewflow.repository.save",
            {
                ATTR_AGGREGATE_ID: str(aggregate.aggregate_id),
                ATTR_AGGREGATE_TYPE: self._aggregate_type,
                ATTR_EVENT_COUNT: len(uncommitted_events),
                ATTR_VERSION: aggregate.version,
            },
        ):
            expected_version = aggregate.version - len(uncommitted_events)

            result = await self._event_store.append_events(
                aggregate_id=aggregate.aggregate_id,
                aggregate_type=self._aggregate_type,
                events=uncommitted_events,
                expected_version=expected_version,
            )

            if result.success:
                aggregate.mark_events_as_committed()
                logger.debug(
                    "Saved %d event(s) for %s/%s, now at version %d",
                    len(uncommitted_events),
                    self._aggregate_type,
                    aggregate.aggregate_id,
                    aggregate.version,
                )
                if self._event_publisher:
                    await self._event_publisher.publish(uncommitted_events)


__all__ = ["AggregateRepository", "TAggregate"]
