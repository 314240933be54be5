"""Event bus for distributing saved events to projections."""

from crewflow.bus.interface import EventBus, EventHandlerFunc, EventSubscriber
from crewflow.bus.memory import InMemoryEventBus

__all__ = ["EventBus", "EventHandlerFunc", "EventSubscriber", "InMemoryEventBus"]
