from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

SYNC_STATE_CHANGED = "sync_state_changed"
SYNC_FAILED_PERMANENTLY = "sync_failed_permanently"
CONTENT_REFRESHED = "content_refreshed"
CONTENT_REFRESH_FAILED = "content_refresh_failed"
ALL_TOPICS = "*"

Event = dict[str, Any]
Handler = Callable[[Event], None]


class EventBus:
    """In-process pub/sub for sync and content notifications.

    Handlers run on the publishing thread; a failing handler is logged and
    never interrupts the publisher.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        with self._lock:
            self._subscribers[topic].append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                handlers = self._subscribers.get(topic, [])
                if handler in handlers:
                    handlers.remove(handler)

        return _unsubscribe

    def publish(self, topic: str, **fields: Any) -> None:
        event: Event = {"topic": topic, **fields}
        with self._lock:
            handlers = [*self._subscribers.get(topic, []), *self._subscribers.get(ALL_TOPICS, [])]
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("event handler failed for topic %s", topic)


class EventRecorder:
    """Collects published events; handy for observability hooks and tests."""

    def __init__(self, bus: EventBus, topic: str = ALL_TOPICS) -> None:
        self.events: list[Event] = []
        self._lock = threading.Lock()
        self._cond = threading.Condition(self._lock)
        bus.subscribe(topic, self._record)

    def _record(self, event: Event) -> None:
        with self._cond:
            self.events.append(event)
            self._cond.notify_all()

    def of(self, topic: str) -> list[Event]:
        with self._lock:
            return [event for event in self.events if event["topic"] == topic]

    def wait_for(self, predicate: Callable[[Event], bool], timeout: float) -> Event | None:
        with self._cond:
            found = self._cond.wait_for(
                lambda: next((e for e in self.events if predicate(e)), None) is not None,
                timeout=timeout,
            )
            if not found:
                return None
            return next(e for e in self.events if predicate(e))
