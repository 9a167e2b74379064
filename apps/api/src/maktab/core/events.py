"""
In-Process Event Bus

Lightweight publish/subscribe for domain events. Handlers run as
background tasks so a slow or failing subscriber never blocks or fails
the operation that published the event.

Usage:
    from maktab.core.events import event_bus

    async def on_rejected(event: ApplicationRejected) -> None:
        ...

    event_bus.subscribe(ApplicationRejected, on_rejected)
    event_bus.publish(ApplicationRejected(...))
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], Awaitable[None]]


class EventBus:
    """Fire-and-forget dispatcher keyed on event class."""

    def __init__(self) -> None:
        self._handlers: dict[type, list[EventHandler]] = defaultdict(list)
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, event_type: type, handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)

    def clear(self) -> None:
        self._handlers.clear()

    def publish(self, event: Any) -> None:
        """Schedule every handler subscribed to the event's type."""
        handlers = self._handlers.get(type(event), [])
        for handler in handlers:
            task = asyncio.create_task(self._run(handler, event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, handler: EventHandler, event: Any) -> None:
        try:
            await handler(event)
        except Exception as e:
            logger.error(
                f"Event handler {getattr(handler, '__name__', handler)} failed "
                f"for {type(event).__name__}: {e}",
                exc_info=True,
            )

    async def drain(self) -> None:
        """Wait for in-flight handlers. Called at shutdown and in tests."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


# Global event bus instance
event_bus = EventBus()
