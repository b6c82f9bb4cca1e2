"""Event Bus — async pub/sub for swarm and evolution events.

Topics are dotted ("swarm.route_miss", "evolution.candidate_merged") and
subscriptions may use fnmatch wildcards: "evolution.*" or "*".
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
from collections import defaultdict, deque
from datetime import datetime
from typing import Any, Callable, Awaitable

from pydantic import BaseModel, Field

from teamelites.types import new_id

_logger = logging.getLogger(__name__)

EventHandler = Callable[["Event"], Awaitable[None]]


class Event(BaseModel):
    """A swarm event."""

    id: str = Field(default_factory=new_id)
    topic: str
    data: dict[str, Any] = Field(default_factory=dict)
    source: str = ""
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class EventBus:
    """Async pub/sub event bus with wildcard topic matching.

    A failing handler is logged and never reaches the emitter, so
    observers cannot break routing or evolution.
    """

    def __init__(self, history_limit: int = 500) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)
        self._history: deque[Event] = deque(maxlen=history_limit)

    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        self._subscribers[pattern].append(handler)

    def unsubscribe(self, pattern: str, handler: EventHandler) -> None:
        handlers = self._subscribers.get(pattern, [])
        if handler in handlers:
            handlers.remove(handler)

    async def emit(self, topic: str, data: dict | None = None, source: str = "") -> Event:
        """Record the event and await every subscriber whose pattern matches."""
        event = Event(topic=topic, data=data or {}, source=source)
        self._history.append(event)

        handlers = [
            handler
            for pattern, subscribed in self._subscribers.items()
            if fnmatch.fnmatch(topic, pattern)
            for handler in subscribed
        ]
        if handlers:
            results = await asyncio.gather(
                *(handler(event) for handler in handlers), return_exceptions=True,
            )
            for handler, result in zip(handlers, results):
                if isinstance(result, Exception):
                    _logger.warning(
                        "Handler %s for %s failed: %s",
                        getattr(handler, "__qualname__", handler), topic, result,
                    )

        return event

    def history(self, topic_filter: str = "*", limit: int = 50) -> list[Event]:
        """Recent events, newest first."""
        matched = [e for e in reversed(self._history) if fnmatch.fnmatch(e.topic, topic_filter)]
        return matched[:limit]

    @property
    def subscriber_count(self) -> int:
        return sum(len(h) for h in self._subscribers.values())
