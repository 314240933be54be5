"""
Event store interface and data structures.

The event store is the durable source of truth for every workflow
aggregate. Appends are atomic per call and guarded by optimistic locking,
which is what makes single-use tokens and idempotent webhooks safe without
distributed locks.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable
from uuid import UUID

from crewflow.events.base import DomainEvent
from crewflow.exceptions import OptimisticLockError


@dataclass(frozen=True)
class EventStream:
    """
    Events of a single aggregate in chronological order.

    Attributes:
        aggregate_id: Unique identifier of the aggregate
        aggregate_type: Type name of the aggregate (e.g., 'Order')
        events: Events in chronological order (oldest first)
        version: Current version of the aggregate
    """

    aggregate_id: UUID
    aggregate_type: str
    events: list[DomainEvent] = field(default_factory=list)
    version: int = 0

    @property
    def is_empty(self) -> bool:
        return len(self.events) == 0

    @property
    def latest_event(self) -> DomainEvent | None:
        return self.events[-1] if self.events else None


@dataclass(frozen=True)
class AppendResult:
    """
    Result of appending events to the event store.

    Attributes:
        success: Whether the append was successful
        new_version: The aggregate version after appending
        global_position: The global position of the last appended event
        conflict: Whether there was a version conflict
    """

    success: bool
    new_version: int
    global_position: int = 0
    conflict: bool = False

    @classmethod
    def successful(cls, new_version: int, global_position: int = 0) -> "AppendResult":
        return cls(success=True, new_version=new_version, global_position=global_position)

    @classmethod
    def conflicted(cls, current_version: int) -> "AppendResult":
        return cls(success=False, new_version=current_version, conflict=True)


class ExpectedVersion:
    """
    Constants for expected version in append operations.

    - ANY: Don't check version (disable optimistic locking)
    - NO_STREAM: Expect the stream to not exist
    - STREAM_EXISTS: Expect the stream to exist
    """

    ANY: int = -1
    NO_STREAM: int = 0
    STREAM_EXISTS: int = -2


class EventStore(ABC):
    """
    Abstract base class for event stores.

    Concrete implementations:
    - InMemoryEventStore: For tests and single-process use
    - SQLiteEventStore: Durable storage via aiosqlite
    """

    @abstractmethod
    async def append_events(
        self,
        aggregate_id: UUID,
        aggregate_type: str,
        events: list[DomainEvent],
        expected_version: int,
    ) -> AppendResult:
        """
        Append events to an aggregate's event stream.

        Args:
            aggregate_id: ID of the aggregate
            aggregate_type: Type of aggregate (e.g., 'Order')
            events: Events to append
            expected_version: Expected current version, or an ExpectedVersion constant

        Raises:
            OptimisticLockError: If expected_version doesn't match current version
        """

    @abstractmethod
    async def get_events(
        self,
        aggregate_id: UUID,
        aggregate_type: str | None = None,
        from_version: int = 0,
    ) -> EventStream:
        """Get the events of an aggregate after ``from_version``."""

    @abstractmethod
    async def event_exists(self, event_id: UUID) -> bool:
        """Check whether an event with this id was stored."""

    async def get_stream_version(self, aggregate_id: UUID, aggregate_type: str) -> int:
        """Current version of a stream, 0 if it doesn't exist."""
        stream = await self.get_events(aggregate_id, aggregate_type)
        return stream.version


@runtime_checkable
class EventPublisher(Protocol):
    """Anything that can broadcast saved events (usually an EventBus)."""

    async def publish(self, events: list[DomainEvent]) -> None: ...


def check_expected_version(
    aggregate_id: UUID,
    expected_version: int,
    current_version: int,
) -> None:
    """
    Enforce an expected version against the stream's current version.

    Raises:
        OptimisticLockError: On mismatch
    """
    if expected_version == ExpectedVersion.ANY:
        return
    if expected_version == ExpectedVersion.STREAM_EXISTS:
        if current_version == 0:
            raise OptimisticLockError(aggregate_id, expected_version, current_version)
        return
    if current_version != expected_version:
        raise OptimisticLockError(aggregate_id, expected_version, current_version)


__all__ = [
    "AppendResult",
    "EventPublisher",
    "EventStore",
    "EventStream",
    "ExpectedVersion",
    "check_expected_version",
]
