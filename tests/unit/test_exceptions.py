"""
Unit tests for the exception hierarchy.

Tests cover:
- Stable error codes
- Messages and attributes
- Subclass relationships callers rely on
"""

from uuid import uuid4

import pytest

from crewflow.exceptions import (
    AggregateNotFoundError,
    AlreadyProcessedError,
    CrewflowError,
    ExternalServiceError,
    IllegalTransitionError,
    InvalidTokenError,
    NotFoundError,
    OptimisticLockError,
    ReconciliationError,
    SignatureVerificationError,
    UnauthorizedError,
    ValidationError,
)


@pytest.mark.parametrize(
    "error,code",
    [
        (ValidationError("bad"), "validation_error"),
        (InvalidTokenError(), "invalid_token"),
        (SignatureVerificationError("payment", "mismatch"), "invalid_signature"),
        (NotFoundError("order", 1), "not_found"),
        (IllegalTransitionError("order", "pending", "delivered"), "illegal_transition"),
        (UnauthorizedError("customer", "confirm"), "unauthorized"),
        (ExternalServiceError("payments", "create_invoice", "timeout"), "external_service_error"),
        (AlreadyProcessedError("invoice", "in_1", "paid"), "already_processed"),
        (ReconciliationError("payment", "in_1", "boom"), "reconciliation_error"),
        (OptimisticLockError(uuid4(), 1, 2), "conflict"),
    ],
)
def test_codes(error: CrewflowError, code: str) -> None:
    """Every workflow error carries a stable code."""
    assert isinstance(error, CrewflowError)
    assert error.code == code


class TestMessages:
    """Tests for messages and attributes."""

    def test_illegal_transition_message(self) -> None:
        error = IllegalTransitionError("order item", "delivered", "cancelled", reason="already delivered")
        assert str(error) == "Cannot move order item from 'delivered' to 'cancelled': already delivered"
        assert error.current == "delivered"
        assert error.requested == "cancelled"

    def test_illegal_transition_without_reason(self) -> None:
        assert str(IllegalTransitionError("booking", "pending", "completed")) == (
            "Cannot move booking from 'pending' to 'completed'"
        )

    def test_invalid_token_field(self) -> None:
        """Token errors point at the token field."""
        error = InvalidTokenError("Confirmation token has expired")
        assert error.field == "token"
        assert str(error) == "Confirmation token has expired"

    def test_external_service_is_retryable(self) -> None:
        error = ExternalServiceError("carrier", "buy_label", "rate expired")
        assert error.retryable
        assert error.service == "carrier"
        assert "buy_label" in str(error)


class TestHierarchy:
    """Tests for subclass relationships."""

    def test_token_and_signature_errors_are_validation_errors(self) -> None:
        assert issubclass(InvalidTokenError, ValidationError)
        assert issubclass(SignatureVerificationError, ValidationError)

    def test_aggregate_not_found_is_not_found(self) -> None:
        """Repository misses surface as ordinary NotFoundErrors."""
        aggregate_id = uuid4()
        error = AggregateNotFoundError(aggregate_id, "Booking")
        assert isinstance(error, NotFoundError)
        assert error.entity == "Booking"
        assert error.entity_id == aggregate_id
