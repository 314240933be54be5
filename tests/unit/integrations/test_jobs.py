"""
Unit tests for the job queues.

Tests cover:
- DirectJobQueue delivery and swallowed sender failures
- RedisJobQueue pushing JSON jobs onto the configured lists
- RedisJobQueue falling back to direct delivery without a connection
  or when a push fails
"""

import json
from uuid import uuid4

import pytest

from crewflow.config import RedisJobQueueConfig
from crewflow.integrations.jobs import DirectJobQueue, RedisJobQueue
from crewflow.testing import RecordingEmailSender, RecordingNotificationSender
from crewflow.types import NotificationPriority

CONFIG = RedisJobQueueConfig(enable_tracing=False)


class FakeRedis:
    """Records LPUSH calls; can be told to fail."""

    def __init__(self, fail: bool = False) -> None:
        self.pushed: list[tuple[str, dict]] = []
        self.fail = fail
        self.closed = False

    async def lpush(self, key: str, value: str) -> int:
        if self.fail:
            raise ConnectionError("redis down")
        self.pushed.append((key, json.loads(value)))
        return len(self.pushed)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def notification_sender() -> RecordingNotificationSender:
    return RecordingNotificationSender()


class TestDirectJobQueue:
    """Tests for DirectJobQueue."""

    @pytest.mark.asyncio
    async def test_delivers_immediately(
        self, email_sender: RecordingEmailSender, notification_sender: RecordingNotificationSender
    ) -> None:
        """Jobs go straight to the senders."""
        queue = DirectJobQueue(email_sender, notification_sender)
        await queue.enqueue_email(["a@example.com"], "Hello", "<p>hi</p>")
        await queue.enqueue_notification(uuid4(), "order", NotificationPriority.LOW, "T", "M")
        assert email_sender.sent[0].subject == "Hello"
        assert notification_sender.sent[0].data == {}

    @pytest.mark.asyncio
    async def test_sender_failure_is_swallowed(
        self, email_sender: RecordingEmailSender, notification_sender: RecordingNotificationSender
    ) -> None:
        """A failing sender is logged, not raised."""
        email_sender.fail_next("send_email")
        queue = DirectJobQueue(email_sender, notification_sender)
        await queue.enqueue_email(["a@example.com"], "Hello", "")
        assert email_sender.sent == []


class TestRedisJobQueue:
    """Tests for RedisJobQueue."""

    @pytest.mark.asyncio
    async def test_pushes_json_jobs(
        self, email_sender: RecordingEmailSender, notification_sender: RecordingNotificationSender
    ) -> None:
        """Jobs land on their own lists as JSON."""
        redis = FakeRedis()
        queue = RedisJobQueue(
            CONFIG, email_sender=email_sender, notification_sender=notification_sender, client=redis
        )
        recipient = uuid4()
        await queue.enqueue_email(["a@example.com"], "Order Received", "<p>x</p>")
        await queue.enqueue_notification(recipient, "order", NotificationPriority.HIGH, "New Order", "m", {"n": 1})

        (email_queue, email_job), (notification_queue, notification_job) = redis.pushed
        assert email_queue == "email-queue"
        assert email_job["type"] == "email"
        assert email_job["to"] == ["a@example.com"]
        assert notification_queue == "notification-queue"
        assert notification_job["recipient_id"] == str(recipient)
        assert notification_job["priority"] == "high"
        assert queue.get_stats() == {"enqueued": 2, "fallbacks": 0}
        assert email_sender.sent == []

    @pytest.mark.asyncio
    async def test_push_failure_falls_back(
        self, email_sender: RecordingEmailSender, notification_sender: RecordingNotificationSender
    ) -> None:
        """A failed push runs the job directly."""
        queue = RedisJobQueue(
            CONFIG,
            email_sender=email_sender,
            notification_sender=notification_sender,
            client=FakeRedis(fail=True),
        )
        await queue.enqueue_email(["a@example.com"], "Hello", "")
        assert email_sender.sent[0].subject == "Hello"
        assert queue.get_stats()["fallbacks"] == 1

    @pytest.mark.asyncio
    async def test_close_then_fallback(
        self, email_sender: RecordingEmailSender, notification_sender: RecordingNotificationSender
    ) -> None:
        """After close() the queue delivers directly."""
        redis = FakeRedis()
        queue = RedisJobQueue(
            CONFIG, email_sender=email_sender, notification_sender=notification_sender, client=redis
        )
        assert queue.is_connected
        await queue.close()
        assert redis.closed
        assert not queue.is_connected

        await queue.enqueue_notification(uuid4(), "order", NotificationPriority.MEDIUM, "T", "M")
        assert len(notification_sender.sent) == 1
        assert redis.pushed == []
