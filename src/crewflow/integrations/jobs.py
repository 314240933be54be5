"""
Job queue for email and notification side effects.

Jobs are best effort. ``RedisJobQueue`` pushes JSON jobs onto Redis lists
for workers to pick up; when Redis is unreachable it runs the job directly
through the supplied senders. A failure of that direct run is logged and
swallowed: a side effect never fails the operation that produced it.

Example:
    >>> queue = RedisJobQueue(
    ...     RedisJobQueueConfig(redis_url="redis://localhost:6379"),
    ...     email_sender=smtp_sender,
    ...     notification_sender=notification_store,
    ... )
    >>> await queue.connect()
    >>> await queue.enqueue_email(["crew@example.com"], "Order Received", "<p>...</p>")
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable
from uuid import UUID, uuid4

from crewflow.config import RedisJobQueueConfig
from crewflow.observability import Tracer, create_tracer
from crewflow.observability.attributes import (
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_SYSTEM,
)
from crewflow.observability.tracer import SpanKindEnum
from crewflow.types import NotificationPriority

# Optional Redis import - fail gracefully if not installed
try:
    import redis.asyncio as aioredis
    from redis.exceptions import RedisError

    REDIS_AVAILABLE = True
except ImportError:
    REDIS_AVAILABLE = False
    aioredis = None  # type: ignore[assignment]
    RedisError = Exception  # type: ignore[assignment, misc]

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)


class RedisNotAvailableError(ImportError):
    """Raised when the redis package is not installed."""

    def __init__(self) -> None:
        super().__init__("redis is required for RedisJobQueue. Install it with: pip install redis")


@runtime_checkable
class EmailSender(Protocol):
    async def send_email(self, to: list[str], subject: str, html: str) -> None: ...


@runtime_checkable
class NotificationSender(Protocol):
    async def create_notification(
        self,
        recipient_id: UUID,
        notification_type: str,
        priority: NotificationPriority,
        title: str,
        message: str,
        data: dict[str, Any],
    ) -> None: ...


@runtime_checkable
class JobQueue(Protocol):
    """Fire-and-forget sink for email and notification jobs."""

    async def enqueue_email(self, to: list[str], subject: str, html: str) -> None: ...

    async def enqueue_notification(
        self,
        recipient_id: UUID,
        notification_type: str,
        priority: NotificationPriority,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None: ...


def _email_job(to: list[str], subject: str, html: str) -> dict[str, Any]:
    return {
        "id": str(uuid4()),
        "type": "email",
        "to": to,
        "subject": subject,
        "html": html,
        "enqueued_at": datetime.now(UTC).isoformat(),
    }


def _notification_job(
    recipient_id: UUID,
    notification_type: str,
    priority: NotificationPriority,
    title: str,
    message: str,
    data: dict[str, Any],
) -> dict[str, Any]:
    return {
        "id": str(uuid4()),
        "type": "notification",
        "recipient_id": str(recipient_id),
        "notification_type": notification_type,
        "priority": priority.value,
        "title": title,
        "message": message,
        "data": data,
        "enqueued_at": datetime.now(UTC).isoformat(),
    }


class DirectJobQueue:
    """Runs every job immediately through the senders."""

    def __init__(self, email_sender: EmailSender, notification_sender: NotificationSender) -> None:
        self._email_sender = email_sender
        self._notification_sender = notification_sender

    async def enqueue_email(self, to: list[str], subject: str, html: str) -> None:
        try:
            await self._email_sender.send_email(to, subject, html)
        except Exception as e:
            logger.error(
                "Direct email delivery failed: %s",
                e,
                exc_info=True,
                extra={"subject": subject, "recipients": len(to)},
            )

    async def enqueue_notification(
        self,
        recipient_id: UUID,
        notification_type: str,
        priority: NotificationPriority,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        try:
            await self._notification_sender.create_notification(
                recipient_id, notification_type, priority, title, message, data or {}
            )
        except Exception as e:
            logger.error(
                "Direct notification delivery failed: %s",
                e,
                exc_info=True,
                extra={"recipient_id": str(recipient_id), "notification_type": notification_type},
            )


class RedisJobQueue:
    """
    Redis list-backed job queue with direct-execution fallback.

    Jobs are LPUSHed as JSON onto ``config.email_queue`` /
    ``config.notification_queue``.
    """

    def __init__(
        self,
        config: RedisJobQueueConfig | None = None,
        *,
        email_sender: EmailSender,
        notification_sender: NotificationSender,
        client: Redis | None = None,
        tracer: Tracer | None = None,
    ) -> None:
        """
        Args:
            config: Queue configuration
            email_sender: Used when Redis is unavailable
            notification_sender: Used when Redis is unavailable
            client: Pre-built redis.asyncio client (skips connect())
            tracer: Optional custom Tracer instance

        Raises:
            RedisNotAvailableError: If the redis package is not installed
        """
        if not REDIS_AVAILABLE and client is None:
            raise RedisNotAvailableError()
        self._config = config or RedisJobQueueConfig()
        self._redis = client
        self._fallback = DirectJobQueue(email_sender, notification_sender)
        self._tracer = tracer or create_tracer(__name__, self._config.enable_tracing)
        self._stats = {"enqueued": 0, "fallbacks": 0}

    @property
    def config(self) -> RedisJobQueueConfig:
        return self._config

    @property
    def is_connected(self) -> bool:
        return self._redis is not None

    def get_stats(self) -> dict[str, int]:
        return dict(self._stats)

    async def connect(self) -> None:
        """
        Connect to Redis.

        A failed connection is logged; jobs then run directly until a
        later connect() succeeds.
        """
        if self._redis is not None:
            return
        try:
            client = aioredis.from_url(  # type: ignore[no-untyped-call]
                self._config.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=self._config.socket_timeout,
                socket_connect_timeout=self._config.socket_connect_timeout,
            )
            await client.ping()
            self._redis = client
            logger.info("Connected job queue to Redis", extra={"redis_url": self._config.redis_url})
        except (RedisError, OSError) as e:
            logger.warning(
                "Job queue could not connect to Redis, jobs will run directly: %s",
                e,
                extra={"redis_url": self._config.redis_url},
            )

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            logger.info("Disconnected job queue from Redis")

    async def _push(self, queue: str, job: dict[str, Any]) -> bool:
        if self._redis is None:
            return False
        with self._tracer.span_with_kind(
            "crewflow.job_queue.enqueue",
            SpanKindEnum.PRODUCER,
            {ATTR_MESSAGING_SYSTEM: "redis", ATTR_MESSAGING_DESTINATION: queue},
        ):
            try:
                await self._redis.lpush(queue, json.dumps(job))
            except (RedisError, OSError) as e:
                logger.warning(
                    "Redis enqueue to %s failed, running job directly: %s",
                    queue,
                    e,
                    extra={"queue": queue, "job_id": job["id"]},
                )
                return False
        self._stats["enqueued"] += 1
        logger.debug("Enqueued %s job %s", job["type"], job["id"], extra={"queue": queue})
        return True

    async def enqueue_email(self, to: list[str], subject: str, html: str) -> None:
        if await self._push(self._config.email_queue, _email_job(to, subject, html)):
            return
        self._stats["fallbacks"] += 1
        await self._fallback.enqueue_email(to, subject, html)

    async def enqueue_notification(
        self,
        recipient_id: UUID,
        notification_type: str,
        priority: NotificationPriority,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        job = _notification_job(recipient_id, notification_type, priority, title, message, data or {})
        if await self._push(self._config.notification_queue, job):
            return
        self._stats["fallbacks"] += 1
        await self._fallback.enqueue_notification(
            recipient_id, notification_type, priority, title, message, data
        )


__all__ = [
    "DirectJobQueue",
    "EmailSender",
    "JobQueue",
    "NotificationSender",
    "REDIS_AVAILABLE",
    "RedisJobQueue",
    "RedisNotAvailableError",
]
