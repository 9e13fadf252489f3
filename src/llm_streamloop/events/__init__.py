"""Event notification for llm-streamloop."""

from llm_streamloop.events.bus import ALL_EVENTS, EventBus

__all__ = ["ALL_EVENTS", "EventBus"]
