"""
In-process event bus.

The facade publishes lifecycle events; transports and live dashboards
subscribe.  A failing listener is logged and skipped so one subscriber
cannot break the write that triggered the event.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

Listener = Callable[[dict[str, Any]], None]


class EventKind:
    OBSERVATION_CREATED = "observation:created"
    OBSERVATION_UPDATED = "observation:updated"
    OBSERVATION_DELETED = "observation:deleted"
    SESSION_STARTED = "session:started"
    SESSION_ENDED = "session:ended"
    SUMMARY_CREATED = "summary:created"
    PENDING_ENQUEUED = "pending:enqueued"
    PENDING_PROCESSED = "pending:processed"
    CONFIG_CHANGED = "config:changed"

    ALL = (
        OBSERVATION_CREATED, OBSERVATION_UPDATED, OBSERVATION_DELETED,
        SESSION_STARTED, SESSION_ENDED, SUMMARY_CREATED,
        PENDING_ENQUEUED, PENDING_PROCESSED, CONFIG_CHANGED,
    )


class EventBus:
    """Synchronous publish/subscribe keyed by event kind."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, kind: str, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unsubscribes it."""
        with self._lock:
            self._listeners[kind].append(listener)

        def _unsubscribe() -> None:
            self.unsubscribe(kind, listener)

        return _unsubscribe

    def unsubscribe(self, kind: str, listener: Listener) -> None:
        with self._lock:
            listeners = self._listeners.get(kind, [])
            if listener in listeners:
                listeners.remove(listener)

    def emit(self, kind: str, payload: dict[str, Any]) -> int:
        """Deliver *payload* to every listener of *kind*; returns how many ran."""
        with self._lock:
            listeners = list(self._listeners.get(kind, []))
        delivered = 0
        for listener in listeners:
            try:
                listener(payload)
                delivered += 1
            except Exception as exc:
                logger.warning("[EventBus] Listener for %s failed: %s", kind, exc)
        return delivered

    def listener_count(self, kind: str) -> int:
        with self._lock:
            return len(self._listeners.get(kind, []))
