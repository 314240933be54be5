"""
Base classes for domain events.

Events are immutable records of things that have happened to an order,
booking, quote, invoice or shipment. They are the source of truth: every
status field and audit log is rebuilt by replaying them.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, Self
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)


class DomainEvent(BaseModel):
    """
    Base class for all domain events.

    ``event_type`` defaults to the class name, so subclasses only declare
    their ``aggregate_type`` and payload fields.

    Attributes:
        event_id: Unique identifier for this event instance
        event_type: Type name of the event (class name unless given)
        occurred_at: When the event occurred (UTC timestamp)
        aggregate_id: ID of the aggregate this event belongs to
        aggregate_type: Type of aggregate (e.g., 'Order')
        aggregate_version: Version of aggregate after this event
        actor_id: User or system that triggered this event
        correlation_id: ID linking related events across aggregates
        causation_id: ID of the event that caused this event
        metadata: Additional event metadata dictionary

    Example:
        >>> class OrderPlaced(DomainEvent):
        ...     aggregate_type: str = "Order"
        ...     customer_id: UUID
        ...
        >>> event = OrderPlaced(aggregate_id=uuid4(), customer_id=uuid4())
        >>> assert event.event_type == "OrderPlaced"
    """

    model_config = ConfigDict(frozen=True)

    event_id: UUID = Field(default_factory=uuid4, description="Unique event identifier")
    event_type: str = Field(default="", description="Type of event (class name if not set)")
    occurred_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When event occurred (UTC)",
    )

    aggregate_id: UUID = Field(..., description="ID of the aggregate this event belongs to")
    aggregate_type: str = Field(..., description="Type of aggregate (e.g., 'Order')")
    aggregate_version: int = Field(default=1, ge=1, description="Aggregate version after event")

    actor_id: str | None = Field(default=None, description="Who triggered this event")

    correlation_id: UUID = Field(default_factory=uuid4)
    causation_id: UUID | None = Field(default=None)

    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _ensure_event_type(cls, data: Any) -> Any:
        """Fill event_type with the class name when it is missing or empty."""
        if isinstance(data, dict) and not data.get("event_type"):
            data = dict(data)
            data["event_type"] = cls.__name__
        return data

    def __str__(self) -> str:
        return (
            f"{self.event_type}(event_id={self.event_id}, "
            f"aggregate_id={self.aggregate_id}, "
            f"version={self.aggregate_version})"
        )

    def with_causation(self, causing_event: DomainEvent) -> Self:
        """Copy this event, linking it to the event that caused it."""
        return self.model_copy(
            update={
                "causation_id": causing_event.event_id,
                "correlation_id": causing_event.correlation_id,
            }
        )

    def with_metadata(self, **kwargs: Any) -> Self:
        """Copy this event with additional metadata."""
        return self.model_copy(update={"metadata": {**self.metadata, **kwargs}})

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls.model_validate(data)
