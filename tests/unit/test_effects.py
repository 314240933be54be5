"""
Unit tests for workflow results and the effect dispatcher.

Tests cover:
- email() and notification() builders
- WorkflowResult.merge()
- EffectDispatcher delivery counts and failure isolation
"""

from uuid import uuid4

import pytest

from crewflow.effects import EffectDispatcher, EmailEffect, WorkflowResult, email, notification
from crewflow.testing import RecordingJobQueue
from crewflow.types import NotificationPriority


class FlakyQueue(RecordingJobQueue):
    """Fails every email, accepts notifications."""

    async def enqueue_email(self, to: list[str], subject: str, html: str) -> None:
        raise ConnectionError("queue down")


class TestBuilders:
    """Tests for effect builders."""

    def test_email_wraps_single_recipient(self) -> None:
        """A single address becomes a one-element list."""
        effect = email("crew@example.com", "Order Received", "<p>hi</p>")
        assert isinstance(effect, EmailEffect)
        assert effect.to == ["crew@example.com"]
        assert effect.kind == "email"

    def test_notification_defaults(self) -> None:
        """Notifications default to medium priority and empty data."""
        effect = notification(uuid4(), "order_update", "Order Confirmed", "Your order is confirmed")
        assert effect.priority == NotificationPriority.MEDIUM
        assert effect.data == {}

    def test_merge(self) -> None:
        """merge() appends nested effects and keeps the outer value."""
        outer = WorkflowResult("outer", [email("a@example.com", "A", "")])
        inner = WorkflowResult("inner", [email("b@example.com", "B", "")])
        merged = outer.merge(inner, WorkflowResult(None))
        assert merged is outer
        assert merged.value == "outer"
        assert [e.subject for e in merged.effects] == ["A", "B"]


class TestEffectDispatcher:
    """Tests for EffectDispatcher."""

    @pytest.mark.asyncio
    async def test_dispatches_all(self) -> None:
        """Every effect reaches the queue with its fields intact."""
        queue = RecordingJobQueue()
        dispatcher = EffectDispatcher(queue, enable_tracing=False)
        recipient = uuid4()
        delivered = await dispatcher.dispatch(
            [
                email(["a@example.com", "b@example.com"], "Order Received", "<p>x</p>"),
                notification(
                    recipient, "order", "New Order", "msg", priority=NotificationPriority.HIGH, data={"k": "v"}
                ),
            ]
        )
        assert delivered == 2
        assert queue.emails[0].to == ["a@example.com", "b@example.com"]
        sent = queue.notifications[0]
        assert sent.recipient_id == recipient
        assert sent.priority == NotificationPriority.HIGH
        assert sent.data == {"k": "v"}

    @pytest.mark.asyncio
    async def test_failures_are_swallowed(self) -> None:
        """A failing effect is skipped and the rest still go out."""
        queue = FlakyQueue()
        dispatcher = EffectDispatcher(queue, enable_tracing=False)
        delivered = await dispatcher.dispatch(
            [email("a@example.com", "A", ""), notification(uuid4(), "t", "T", "m")]
        )
        assert delivered == 1
        assert len(queue.notifications) == 1

    @pytest.mark.asyncio
    async def test_empty(self) -> None:
        """Nothing to dispatch delivers nothing."""
        assert await EffectDispatcher(RecordingJobQueue(), enable_tracing=False).dispatch([]) == 0
