"""Event handler decorators and adapters."""

from crewflow.handlers.adapter import HandlerAdapter, get_handler_name
from crewflow.handlers.decorators import collect_handlers, get_handled_event_type, handles

__all__ = [
    "HandlerAdapter",
    "collect_handlers",
    "get_handled_event_type",
    "get_handler_name",
    "handles",
]
