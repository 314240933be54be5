"""
Handler adapter for normalizing event handlers.

The event bus accepts objects with a ``handle()`` method as well as bare
functions, sync or async. ``HandlerAdapter`` turns all of them into one
async callable.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from crewflow.events.base import DomainEvent

AsyncHandlerFunc = Callable[[DomainEvent], Awaitable[None]]


def get_handler_name(handler: Any) -> str:
    """Get a descriptive name for a handler for logging."""
    if hasattr(handler, "__class__") and handler.__class__.__name__ not in ("function", "method"):
        return str(handler.__class__.__name__)
    elif hasattr(handler, "__name__"):
        return str(handler.__name__)
    return repr(handler)


class HandlerAdapter:
    """
    Adapter that normalizes event handlers to a consistent async interface.

    Attributes:
        original: The original unwrapped handler
        name: Descriptive name for logging
    """

    def __init__(self, handler: Any) -> None:
        """
        Raises:
            TypeError: If handler doesn't have handle() method and isn't callable
        """
        self._original = handler
        self._name = get_handler_name(handler)
        self._async_handler = self._normalize(handler)

    def _normalize(self, handler: Any) -> AsyncHandlerFunc:
        target = handler.handle if hasattr(handler, "handle") else handler
        if not callable(target):
            raise TypeError(
                f"Handler must have a handle() method or be callable, got {type(handler)}"
            )
        if asyncio.iscoroutinefunction(target):
            return target  # type: ignore[no-any-return]

        async def async_wrapper(event: DomainEvent) -> None:
            result = target(event)
            if asyncio.iscoroutine(result):
                await result

        return async_wrapper

    @property
    def original(self) -> Any:
        return self._original

    @property
    def name(self) -> str:
        return self._name

    async def handle(self, event: DomainEvent) -> None:
        await self._async_handler(event)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, HandlerAdapter):
            return self._original is other._original
        return self._original is other

    def __hash__(self) -> int:
        return id(self._original)

    def __repr__(self) -> str:
        return f"HandlerAdapter({self._name})"


__all__ = ["AsyncHandlerFunc", "HandlerAdapter", "get_handler_name"]
