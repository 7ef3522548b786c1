"""
Event bus for the liquidation workflow.

Components publish what happened to a request (status changes, quotes,
reservations, settlement) and observers such as notifications or
back-office tooling subscribe. The bus keeps a bounded history so the
recent events for a request can be inspected without a subscriber.
"""

import asyncio
from collections import deque
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from liquidation_engine.logging import get_logger

logger = get_logger(__name__)


class EventType(str, Enum):
    """Things that happen to a liquidation or to the engine."""

    ENGINE_STARTED = "engine.started"
    ENGINE_STOPPED = "engine.stopped"

    LIQUIDATION_CREATED = "liquidation.created"
    LIQUIDATION_STATUS_CHANGED = "liquidation.status_changed"
    LIQUIDATION_CANCEL_REQUESTED = "liquidation.cancel_requested"

    COMPLIANCE_CHECK_COMPLETED = "compliance.check_completed"
    COMPLIANCE_REVIEW_REQUIRED = "compliance.review_required"
    COMPLIANCE_CHECK_OVERRIDDEN = "compliance.check_overridden"

    QUOTE_CREATED = "quote.created"
    QUOTE_CONSUMED = "quote.consumed"

    LIQUIDITY_RESERVED = "liquidity.reserved"
    LIQUIDITY_RELEASED = "liquidity.released"
    NO_LIQUIDITY = "liquidity.unavailable"

    TRANSACTION_FAILED = "transaction.failed"
    TRANSACTION_COMPLETED = "transaction.completed"
    TRANSACTION_REVERSED = "transaction.reversed"

    SWEEP_COMPLETED = "system.sweep_completed"
    ERROR = "system.error"

    @property
    def category(self) -> str:
        return self.value.split(".", 1)[0]


@dataclass
class Event:
    """A published event, optionally tied to a liquidation request."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    request_id: UUID | None = None
    id: UUID = field(default_factory=uuid4)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "type": self.type.value,
            "request_id": str(self.request_id) if self.request_id else None,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }


EventHandler = Callable[[Event], Coroutine[Any, Any, None]]


class EventBus:
    """
    Async pub/sub keyed by event type.

    Subscribing with ``None`` receives every event. Handlers run
    concurrently; one that raises is logged and the rest still run.
    """

    def __init__(self, history_size: int = 500) -> None:
        # None holds the wildcard subscribers
        self._subscribers: dict[EventType | None, list[EventHandler]] = {}
        self._history: deque[Event] = deque(maxlen=history_size)
        self._lock = asyncio.Lock()

    async def subscribe(self, event_type: EventType | None, handler: EventHandler) -> None:
        async with self._lock:
            self._subscribers.setdefault(event_type, []).append(handler)

    async def unsubscribe(self, event_type: EventType | None, handler: EventHandler) -> None:
        async with self._lock:
            handlers = self._subscribers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    async def publish(self, event: Event) -> None:
        async with self._lock:
            self._history.append(event)
            targets = [*self._subscribers.get(event.type, []), *self._subscribers.get(None, [])]

        if not targets:
            return

        outcomes = await asyncio.gather(*(handler(event) for handler in targets), return_exceptions=True)
        for handler, outcome in zip(targets, outcomes, strict=True):
            if isinstance(outcome, Exception):
                logger.error(
                    "Handler %s failed on %s for request %s: %s",
                    getattr(handler, "__qualname__", handler),
                    event.type.value,
                    event.request_id,
                    outcome,
                )

    def recent(
        self,
        request_id: UUID | None = None,
        event_type: EventType | None = None,
        limit: int = 50,
    ) -> list[Event]:
        """Most recent events, oldest first, optionally for one request or type."""
        matched = [
            event
            for event in self._history
            if (request_id is None or event.request_id == request_id)
            and (event_type is None or event.type == event_type)
        ]
        return matched[-limit:]

    async def clear(self) -> None:
        """Drop all subscribers and history."""
        async with self._lock:
            self._subscribers.clear()
            self._history.clear()


_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Reset the global event bus (for testing)."""
    global _event_bus
    _event_bus = None
