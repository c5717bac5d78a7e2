# src/mindcore/events.py
"""
Observer channel for MindCore lifecycle notifications.

The orchestrator reports what it does (sessions, retains, degradation
changes, sync results) and every non-fatal error through an
:class:`EventDispatcher`. Listeners are either objects with an
``on_event(event)`` method or plain callables. Delivery is synchronous
and in subscription order; a listener that raises is logged and skipped,
and never affects other listeners or the operation that emitted the event.

Usage:
    def on_event(event: MindEvent) -> None:
        if event.type is EventType.DEGRADED_CHANGE:
            print("degraded" if event.data["degraded"] else "online")

    mind.subscribe(on_event, {EventType.DEGRADED_CHANGE})
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Protocol, Union, runtime_checkable

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Notifications emitted by the orchestrator."""

    READY = "ready"

    # Session lifecycle
    SESSION_STARTED = "session:started"
    SESSION_ENDED = "session:ended"
    SESSION_SKIPPED = "session:skipped"

    # Memory operations
    MEMORY_RECALLED = "memory:recalled"
    MEMORY_RETAINED = "memory:retained"
    OPINION_FORMED = "opinion:formed"

    # Connectivity and offline queue
    DEGRADED_CHANGE = "degraded:change"
    OFFLINE_STORED = "offline:stored"
    OFFLINE_SYNCED = "offline:synced"
    FEEDBACK_QUEUED = "feedback:queued"
    FEEDBACK_SYNCED = "feedback:synced"

    ERROR = "error"


@dataclass
class MindEvent:
    """A single notification."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    error: BaseException | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "data": self.data,
            "error": str(self.error) if self.error else None,
            "timestamp": self.timestamp.isoformat(),
        }


@runtime_checkable
class MindEventListener(Protocol):
    """Object-style listener."""

    def on_event(self, event: MindEvent) -> None:
        ...


Listener = Union[MindEventListener, Callable[[MindEvent], None]]


@dataclass(eq=False)
class _Subscription:
    listener: Listener
    types: frozenset[EventType] | None

    def wants(self, event_type: EventType) -> bool:
        return self.types is None or event_type in self.types

    def deliver(self, event: MindEvent) -> None:
        if isinstance(self.listener, MindEventListener):
            self.listener.on_event(event)
        else:
            self.listener(event)


class EventDispatcher:
    """Fan-out of :class:`MindEvent` records to subscribed listeners."""

    def __init__(self) -> None:
        self._subscriptions: list[_Subscription] = []

    def subscribe(self, listener: Listener, event_types: Iterable[EventType] | None = None) -> Callable[[], None]:
        """
        Register a listener, optionally for a subset of event types.

        Returns:
            A callable that removes this subscription.
        """
        sub = _Subscription(listener, frozenset(event_types) if event_types is not None else None)
        self._subscriptions.append(sub)

        def unsubscribe() -> None:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

        return unsubscribe

    def emit(self, event_type: EventType, data: dict[str, Any] | None = None, error: BaseException | None = None) -> MindEvent:
        event = MindEvent(type=event_type, data=data or {}, error=error)
        for sub in list(self._subscriptions):
            if not sub.wants(event_type):
                continue
            try:
                sub.deliver(event)
            except Exception as e:
                logger.warning(f"Event listener failed on {event_type.value}: {e}", exc_info=True)
        return event

    def emit_error(self, error: BaseException, operation: str) -> MindEvent:
        return self.emit(EventType.ERROR, {"operation": operation}, error=error)

    @property
    def listener_count(self) -> int:
        return len(self._subscriptions)
