"""
In-process publish/subscribe bus for swarm events.

One EventBus is constructed by the composition root and passed to every
component that emits or observes events. History is bounded: once it grows
past MAX_HISTORY entries only the newest PRUNED_HISTORY are kept.
"""

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


logger = logging.getLogger(__name__)

MAX_HISTORY = 1000
PRUNED_HISTORY = 500

ALL_EVENTS = "*"


class EventType(Enum):
    SWARM_STARTED = "swarm.started"
    SWARM_PAUSED = "swarm.paused"
    SWARM_RESUMED = "swarm.resumed"
    SWARM_COMPLETED = "swarm.completed"
    SWARM_FAILED = "swarm.failed"
    AGENT_REGISTERED = "agent.registered"
    AGENT_UNREGISTERED = "agent.unregistered"
    AGENT_HEARTBEAT = "agent.heartbeat"
    TASK_STARTED = "task.started"
    TASK_COMPLETED = "task.completed"
    TASK_FAILED = "task.failed"
    TASK_CANCELLED = "task.cancelled"


@dataclass
class SwarmEvent:
    """A single event on the bus."""

    type: EventType
    source: str
    payload: dict[str, Any] = field(default_factory=dict)
    correlation_id: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "type": self.type.value,
            "source": self.source,
            "correlation_id": self.correlation_id,
            "payload": self.payload,
        }


EventHandler = Callable[[SwarmEvent], None]


class EventBus:
    """Subscribe/emit by event type with a bounded history."""

    def __init__(self, max_history: int = MAX_HISTORY, pruned_history: int = PRUNED_HISTORY):
        self.max_history = max_history
        self.pruned_history = pruned_history
        self._handlers: dict[EventType | str, list[EventHandler]] = {}
        self._history: list[SwarmEvent] = []

    def on(self, event_type: EventType | str, handler: EventHandler) -> None:
        """Subscribe a handler. Pass "*" to receive every event."""
        self._handlers.setdefault(event_type, []).append(handler)

    def off(self, event_type: EventType | str, handler: EventHandler) -> bool:
        """Unsubscribe a handler. Returns False if it was not subscribed."""
        handlers = self._handlers.get(event_type, [])
        if handler not in handlers:
            return False
        handlers.remove(handler)
        return True

    def emit(
        self,
        event_type: EventType,
        source: str,
        payload: dict[str, Any] | None = None,
        correlation_id: str | None = None,
    ) -> SwarmEvent:
        """
        Record an event and deliver it to subscribers.

        A handler that raises is logged and skipped; emit never fails because
        of a subscriber.
        """
        event = SwarmEvent(
            type=event_type,
            source=source,
            payload=dict(payload or {}),
            correlation_id=correlation_id,
        )
        self._history.append(event)
        if len(self._history) > self.max_history:
            self._history = self._history[-self.pruned_history:]

        for handler in [*self._handlers.get(event_type, []), *self._handlers.get(ALL_EVENTS, [])]:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event_type.value)
        return event

    def filter_events(self, predicate: Callable[[SwarmEvent], bool]) -> list[SwarmEvent]:
        return [e for e in self._history if predicate(e)]

    def correlate_events(self, correlation_id: str) -> list[SwarmEvent]:
        """All retained events sharing a correlation id, oldest first."""
        return self.filter_events(lambda e: e.correlation_id == correlation_id)

    @property
    def history(self) -> list[SwarmEvent]:
        return list(self._history)

    def clear(self) -> None:
        self._history.clear()
