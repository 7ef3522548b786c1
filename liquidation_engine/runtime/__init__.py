"""
Runtime utilities for the liquidation engine.

Provides:
- Event bus for internal pub/sub
"""

from liquidation_engine.runtime.event_bus import (
    Event,
    EventBus,
    EventType,
    get_event_bus,
    reset_event_bus,
)

__all__ = [
    "Event",
    "EventBus",
    "EventType",
    "get_event_bus",
    "reset_event_bus",
]
