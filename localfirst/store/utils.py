from __future__ import annotations

import datetime as dt
import threading
import time
from urllib.parse import quote

RECORD_PREFIX = "record:"
QUEUE_PREFIX = "queue:"
CONTENT_PREFIX = "content:"
HISTORY_PREFIX = "history:"
META_PREFIX = "meta:"


def record_key(collection: str, record_id: str) -> str:
    return f"{RECORD_PREFIX}{collection}:{record_id}"


def collection_prefix(collection: str) -> str:
    return f"{RECORD_PREFIX}{collection}:"


def queue_key(collection: str, record_id: str) -> str:
    return f"{QUEUE_PREFIX}{collection}:{record_id}"


def content_key(key: str) -> str:
    return f"{CONTENT_PREFIX}{key}"


def history_prefix(collection: str, record_id: str) -> str:
    # Ids may contain ":", so quote them to keep one record's entries apart.
    return f"{HISTORY_PREFIX}{collection}:{quote(record_id, safe='')}:"


def meta_key(name: str) -> str:
    return f"{META_PREFIX}{name}"


def validate_segment(value: str, *, name: str) -> str:
    # Collections are separated from ids by ":" in keys.
    if not value or not value.strip():
        raise ValueError(f"{name} is required")
    if name == "collection" and ":" in value:
        raise ValueError("collection must not contain ':'")
    return value


def now_iso() -> str:
    return dt.datetime.now(dt.UTC).isoformat()


class MonotonicClock:
    """Wall-clock seconds that never go backwards within a process.

    Last-writer-wins needs timestamps comparable across devices, so this
    starts from ``time.time()`` but clamps to strictly increasing values.
    """

    def __init__(self, source=time.time) -> None:
        self._source = source
        self._last = 0.0
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            value = float(self._source())
            if value <= self._last:
                value = self._last + 1e-6
            self._last = value
            return value
