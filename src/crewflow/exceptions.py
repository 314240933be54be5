"""Exceptions raised by the crewflow workflow engine.

Workflow errors carry a stable ``code`` that an HTTP layer can map to a
status code without inspecting messages. Infrastructure errors (optimistic
locking, missing aggregates, version mismatches) keep the shapes used by the
event store and repository.
"""

from typing import Any
from uuid import UUID


class CrewflowError(Exception):
    """Base exception for crewflow."""

    code: str = "crewflow_error"


# =============================================================================
# Workflow errors
# =============================================================================


class ValidationError(CrewflowError):
    """Raised when input is missing or malformed. Nothing was mutated."""

    code = "validation_error"

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class InvalidTokenError(ValidationError):
    """Raised when a confirmation token is unknown or has expired."""

    code = "invalid_token"

    def __init__(self, reason: str = "Invalid or expired confirmation token") -> None:
        super().__init__(reason, field="token")


class SignatureVerificationError(ValidationError):
    """Raised when an inbound webhook fails its authenticity check."""

    code = "invalid_signature"

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        super().__init__(f"{source} webhook signature rejected: {reason}", field="signature")


class NotFoundError(CrewflowError):
    """Raised when a referenced entity does not exist."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: Any) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class IllegalTransitionError(CrewflowError):
    """Raised when a state machine rejects a requested move."""

    code = "illegal_transition"

    def __init__(
        self,
        entity: str,
        current: str,
        requested: str,
        reason: str | None = None,
    ) -> None:
        self.entity = entity
        self.current = current
        self.requested = requested
        self.reason = reason
        suffix = f": {reason}" if reason else ""
        super().__init__(f"Cannot move {entity} from '{current}' to '{requested}'{suffix}")


class UnauthorizedError(CrewflowError):
    """Raised when an actor is not permitted to perform an action."""

    code = "unauthorized"

    def __init__(self, actor: Any, action: str) -> None:
        self.actor = actor
        self.action = action
        super().__init__(f"{actor} is not allowed to {action}")


class ExternalServiceError(CrewflowError):
    """
    Raised when a payment gateway, carrier or rate-source call fails.

    These are retryable and should be presented as "try again", never as
    "your request was invalid".
    """

    code = "external_service_error"
    retryable = True

    def __init__(self, service: str, operation: str, message: str) -> None:
        self.service = service
        self.operation = operation
        super().__init__(f"{service} {operation} failed: {message}")


class AlreadyProcessedError(CrewflowError):
    """Raised when a token was already used or an invoice already settled."""

    code = "already_processed"

    def __init__(self, entity: str, entity_id: Any, status: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.status = status
        super().__init__(f"{entity} {entity_id} already processed (status: {status})")


class ReconciliationError(CrewflowError):
    """Raised when a webhook cascade fails after partially applying."""

    code = "reconciliation_error"

    def __init__(self, source: str, reference: str, message: str) -> None:
        self.source = source
        self.reference = reference
        super().__init__(f"{source} reconciliation for {reference} incomplete: {message}")


# =============================================================================
# Event store / aggregate errors
# =============================================================================


class OptimisticLockError(CrewflowError):
    """Raised when there's a version conflict during event append."""

    code = "conflict"

    def __init__(self, aggregate_id: UUID, expected_version: int, actual_version: int) -> None:
        self.aggregate_id = aggregate_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Optimistic lock error for aggregate {aggregate_id}: "
            f"expected version {expected_version}, but current version is {actual_version}"
        )


class AggregateNotFoundError(NotFoundError):
    """Raised when an aggregate has no events."""

    def __init__(self, aggregate_id: UUID, aggregate_type: str | None = None) -> None:
        self.aggregate_id = aggregate_id
        self.aggregate_type = aggregate_type
        super().__init__(aggregate_type or "Aggregate", aggregate_id)


class EventVersionError(CrewflowError):
    """
    Raised when an event's aggregate_version is not current version + 1.

    Attributes:
        expected_version: The version that was expected (current version + 1)
        actual_version: The version found in the event
        event_id: ID of the event with invalid version
        aggregate_id: ID of the aggregate being updated
    """

    def __init__(
        self,
        expected_version: int,
        actual_version: int,
        event_id: UUID,
        aggregate_id: UUID,
    ) -> None:
        self.expected_version = expected_version
        self.actual_version = actual_version
        self.event_id = event_id
        self.aggregate_id = aggregate_id
        super().__init__(
            f"Event version mismatch for aggregate {aggregate_id}: "
            f"expected version {expected_version}, got {actual_version} "
            f"(event_id: {event_id})"
        )


class UnhandledEventError(CrewflowError):
    """Raised when a strict aggregate or projection receives an event it has no handler for."""

    def __init__(
        self,
        event_type: str,
        event_id: UUID,
        handler_class: str,
        available_handlers: list[str],
    ) -> None:
        self.event_type = event_type
        self.event_id = event_id
        self.handler_class = handler_class
        self.available_handlers = available_handlers
        handlers_str = ", ".join(available_handlers) if available_handlers else "none"
        super().__init__(
            f"No handler registered for event type '{event_type}' "
            f"in {handler_class}. Available handlers: {handlers_str}."
        )


__all__ = [
    "CrewflowError",
    "ValidationError",
    "InvalidTokenError",
    "SignatureVerificationError",
    "NotFoundError",
    "IllegalTransitionError",
    "UnauthorizedError",
    "ExternalServiceError",
    "AlreadyProcessedError",
    "ReconciliationError",
    "OptimisticLockError",
    "AggregateNotFoundError",
    "EventVersionError",
    "UnhandledEventError",
]
