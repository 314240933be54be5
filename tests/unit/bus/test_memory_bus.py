"""
Unit tests for InMemoryEventBus.

Tests cover:
- Typed, wildcard and subscriber-object handlers
- Sync handlers wrapped as async
- Handler failures isolated from the publisher
- Unsubscribing and statistics
"""

import pytest

from crewflow.bus.memory import InMemoryEventBus
from crewflow.domain.orders import OrderPaymentStatusChanged, OrderPlaced
from crewflow.events.base import DomainEvent
from tests.factories import placed_order


class CollectingSubscriber:
    def __init__(self) -> None:
        self.seen: list[DomainEvent] = []

    def subscribed_to(self) -> list[type[DomainEvent]]:
        return [OrderPlaced]

    async def handle(self, event: DomainEvent) -> None:
        self.seen.append(event)


class TestDispatch:
    """Tests for routing events to handlers."""

    @pytest.mark.asyncio
    async def test_typed_handler(self, event_bus: InMemoryEventBus) -> None:
        """Handlers only see the event type they subscribed to."""
        placed: list[DomainEvent] = []
        payments: list[DomainEvent] = []
        event_bus.subscribe(OrderPlaced, placed.append)
        event_bus.subscribe(OrderPaymentStatusChanged, payments.append)

        await event_bus.publish(placed_order().uncommitted_events)

        assert len(placed) == 1
        assert payments == []

    @pytest.mark.asyncio
    async def test_wildcard_and_subscriber(self, event_bus: InMemoryEventBus) -> None:
        """Wildcard handlers and subscriber objects both receive events."""
        everything: list[DomainEvent] = []
        subscriber = CollectingSubscriber()
        event_bus.subscribe_to_all_events(everything.append)
        event_bus.subscribe_all(subscriber)

        await event_bus.publish(placed_order().uncommitted_events)

        assert len(everything) == 1
        assert len(subscriber.seen) == 1
        assert event_bus.get_subscriber_count(OrderPlaced) == 1

    @pytest.mark.asyncio
    async def test_failing_handler_is_isolated(self, event_bus: InMemoryEventBus) -> None:
        """One failing handler neither stops others nor raises to the publisher."""
        seen: list[DomainEvent] = []

        async def broken(event: DomainEvent) -> None:
            raise ValueError("boom")

        event_bus.subscribe(OrderPlaced, broken)
        event_bus.subscribe(OrderPlaced, seen.append)

        await event_bus.publish(placed_order().uncommitted_events)

        assert len(seen) == 1
        stats = event_bus.get_stats()
        assert stats["handler_errors"] == 1
        assert stats["handlers_invoked"] == 1
        assert stats["events_published"] == 1


class TestSubscriptions:
    """Tests for managing subscriptions."""

    @pytest.mark.asyncio
    async def test_unsubscribe(self, event_bus: InMemoryEventBus) -> None:
        """An unsubscribed handler is no longer called."""
        seen: list[DomainEvent] = []
        handler = seen.append
        event_bus.subscribe(OrderPlaced, handler)
        assert event_bus.unsubscribe(OrderPlaced, handler)
        assert not event_bus.unsubscribe(OrderPlaced, handler)

        await event_bus.publish(placed_order().uncommitted_events)
        assert seen == []

    @pytest.mark.asyncio
    async def test_recording_is_opt_in(self) -> None:
        """Without record_events nothing is kept."""
        bus = InMemoryEventBus(enable_tracing=False)
        await bus.publish(placed_order().uncommitted_events)
        assert bus.published_events == []
        assert bus.get_stats()["events_published"] == 1
