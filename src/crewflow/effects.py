"""
Outbox of best-effort side effects.

Workflow operations never talk to the job queue themselves. They return a
``WorkflowResult`` holding the new state and the emails and notifications
it implies; the caller hands ``result.effects`` to an ``EffectDispatcher``
once the state change is saved.

Example:
    >>> result = await orders.confirm_order(token)
    >>> await dispatcher.dispatch(result.effects)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Generic, Literal, TypeVar
from uuid import UUID

from pydantic import BaseModel, Field

from crewflow.integrations.jobs import JobQueue
from crewflow.observability import ATTR_EFFECT_COUNT, Tracer, create_tracer
from crewflow.types import NotificationPriority

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EmailEffect(BaseModel):
    kind: Literal["email"] = "email"
    to: list[str]
    subject: str
    html: str


class NotificationEffect(BaseModel):
    kind: Literal["notification"] = "notification"
    recipient_id: UUID
    notification_type: str
    priority: NotificationPriority = NotificationPriority.MEDIUM
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)


Effect = EmailEffect | NotificationEffect


@dataclass
class WorkflowResult(Generic[T]):
    """Value produced by a workflow operation plus its pending side effects."""

    value: T
    effects: list[Effect] = field(default_factory=list)

    def merge(self, *others: WorkflowResult[Any]) -> WorkflowResult[T]:
        """Append the effects of nested operations to this result."""
        for other in others:
            self.effects.extend(other.effects)
        return self


def email(to: str | list[str], subject: str, html: str) -> EmailEffect:
    return EmailEffect(to=[to] if isinstance(to, str) else list(to), subject=subject, html=html)


def notification(
    recipient_id: UUID,
    notification_type: str,
    title: str,
    message: str,
    *,
    priority: NotificationPriority = NotificationPriority.MEDIUM,
    data: dict[str, Any] | None = None,
) -> NotificationEffect:
    return NotificationEffect(
        recipient_id=recipient_id,
        notification_type=notification_type,
        priority=priority,
        title=title,
        message=message,
        data=data or {},
    )


class EffectDispatcher:
    """Sends effects to a job queue. Never raises."""

    def __init__(self, queue: JobQueue, *, tracer: Tracer | None = None, enable_tracing: bool = True) -> None:
        self._queue = queue
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def dispatch(self, effects: list[Effect]) -> int:
        """Enqueue every effect. Returns how many were accepted by the queue."""
        delivered = 0
        with self._tracer.span("crewflow.effects.dispatch", {ATTR_EFFECT_COUNT: len(effects)}):
            for effect in effects:
                try:
                    if isinstance(effect, EmailEffect):
                        await self._queue.enqueue_email(effect.to, effect.subject, effect.html)
                    else:
                        await self._queue.enqueue_notification(
                            effect.recipient_id,
                            effect.notification_type,
                            effect.priority,
                            effect.title,
                            effect.message,
                            effect.data,
                        )
                    delivered += 1
                except Exception as e:
                    logger.error(
                        "Failed to enqueue %s effect: %s",
                        effect.kind,
                        e,
                        exc_info=True,
                        extra={"effect_kind": effect.kind},
                    )
        return delivered


__all__ = [
    "Effect",
    "EffectDispatcher",
    "EmailEffect",
    "NotificationEffect",
    "WorkflowResult",
    "email",
    "notification",
]
