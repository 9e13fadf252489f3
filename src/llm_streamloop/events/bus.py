"""Pub/sub notification of loop events to outside observers."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any, Callable

from llm_streamloop.types import EventType, LoopEvent

_logger = logging.getLogger(__name__)

ALL_EVENTS = "*"

Handler = Callable[[LoopEvent], Any]


class EventBus:
    """Fan ``LoopEvent``s out to sync or async handlers.

    Handlers subscribe to one event type (an ``EventType`` or its string
    value) or to ``ALL_EVENTS``.  A failing handler is logged and never
    affects the emitter or the other handlers.  One bus may observe
    several loops at once.
    """

    def __init__(self) -> None:
        self._subscribers: defaultdict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: EventType | str, handler: Handler) -> None:
        self._subscribers[_topic(event_type)].append(handler)

    def unsubscribe(self, event_type: EventType | str, handler: Handler) -> None:
        """Drop *handler*; a handler that was never subscribed is ignored."""
        subscribers = self._subscribers.get(_topic(event_type))
        if subscribers and handler in subscribers:
            subscribers.remove(handler)

    def clear(self) -> None:
        self._subscribers.clear()

    async def emit(self, event: LoopEvent) -> None:
        targets = [
            *self._subscribers.get(event.type.value, ()),
            *self._subscribers.get(ALL_EVENTS, ()),
        ]
        if targets:
            await asyncio.gather(*(_deliver(handler, event) for handler in targets))


def _topic(event_type: EventType | str) -> str:
    return event_type.value if isinstance(event_type, EventType) else str(event_type)


async def _deliver(handler: Handler, event: LoopEvent) -> None:
    try:
        outcome = handler(event)
        if inspect.isawaitable(outcome):
            await outcome
    except Exception:
        _logger.exception("Event handler %r failed on %s", handler, event.type.value)
