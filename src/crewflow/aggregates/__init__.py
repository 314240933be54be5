"""Event-sourced aggregate base classes and repository."""

from crewflow.aggregates.base import AggregateRoot, DeclarativeAggregate
from crewflow.aggregates.repository import AggregateRepository

__all__ = ["AggregateRepository", "AggregateRoot", "DeclarativeAggregate"]
