"""
Aegrid Resilience v1.0 — Module 3: Event Bus
============================================
Fire-and-forget publish/subscribe for engine notifications.

Handlers subscribe to one EventType or to "*" for everything. A handler
that raises is logged and skipped; the emitter never sees the error.

Usage:
    bus = EventBus()
    bus.subscribe(EventType.STATE_CHANGE, lambda evt: print(evt.data))
    bus.emit(EventType.STATE_CHANGE, {"mode": "ELEVATED"}, source="engine")
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Union

from .models import EventType, new_id, utcnow

logger = logging.getLogger(__name__)

WILDCARD = "*"


@dataclass
class ResilienceEvent:
    id:        str
    type:      EventType
    data:      dict[str, Any]
    source:    str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id":        self.id,
            "type":      self.type.value,
            "data":      self.data,
            "source":    self.source,
            "timestamp": self.timestamp.isoformat(),
        }


Handler = Callable[[ResilienceEvent], Any]


class EventBus:
    """In-process event dispatch with a bounded history."""

    def __init__(self, history_size: int = 500):
        self._handlers: dict[str, list[Handler]] = {}
        self._history: deque[ResilienceEvent] = deque(maxlen=history_size)
        self._lock = threading.Lock()
        self._stats = {"emitted": 0, "delivered": 0, "handler_errors": 0}

    def subscribe(self, event_type: Union[EventType, str], handler: Handler) -> None:
        key = _key(event_type)
        with self._lock:
            self._handlers.setdefault(key, []).append(handler)

    def unsubscribe(self, event_type: Union[EventType, str], handler: Handler) -> bool:
        key = _key(event_type)
        with self._lock:
            handlers = self._handlers.get(key, [])
            if handler in handlers:
                handlers.remove(handler)
                return True
        return False

    def emit(self, event_type: EventType, data: dict[str, Any] | None = None,
             source: str = "resilience-engine") -> ResilienceEvent:
        event = ResilienceEvent(
            id=new_id("evt"), type=event_type, data=data or {}, source=source,
        )
        with self._lock:
            self._history.append(event)
            targets = list(self._handlers.get(event_type.value, []))
            targets += self._handlers.get(WILDCARD, [])
            self._stats["emitted"] += 1

        for handler in targets:
            try:
                handler(event)
                self._stats["delivered"] += 1
            except Exception as exc:
                self._stats["handler_errors"] += 1
                logger.error("Event handler failed for %s: %s", event_type.value, exc)
        return event

    def history(self, event_type: EventType | None = None, limit: int = 50) -> list[ResilienceEvent]:
        with self._lock:
            events = list(self._history)
        if event_type is not None:
            events = [e for e in events if e.type == event_type]
        return events[-limit:]

    def get_stats(self) -> dict:
        with self._lock:
            subscribers = sum(len(h) for h in self._handlers.values())
        return {**self._stats, "subscribers": subscribers, "history": len(self._history)}


def _key(event_type: Union[EventType, str]) -> str:
    return event_type.value if isinstance(event_type, EventType) else str(event_type)
