"""Event bus for pipeline observability.

The orchestrator emits plain dict events; front ends subscribe to render
progress. Each orchestrator owns its own bus, so two pipelines never see each
other's events.
"""

import logging
import threading
import time
from typing import Callable, List

logger = logging.getLogger(__name__)

Listener = Callable[[dict], None]


class EventBus:

    def __init__(self):
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    def add_listener(self, fn: Listener):
        """Subscribe to all pipeline events."""
        with self._lock:
            self._listeners.append(fn)

    def remove_listener(self, fn: Listener):
        """Unsubscribe."""
        with self._lock:
            try:
                self._listeners.remove(fn)
            except ValueError:
                pass

    def emit(self, event: dict):
        """Broadcast an event to every registered listener.

        A listener that raises is logged and skipped.
        """
        event.setdefault("timestamp", time.time())
        with self._lock:
            listeners = list(self._listeners)
        for fn in listeners:
            try:
                fn(event)
            except Exception:
                logger.exception("Event listener %r failed on %s event", fn, event.get("type"))
