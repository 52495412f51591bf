from __future__ import annotations

from ._store import LocalStore
from .records import RecordStore
from .types import ContentBundle, ContentResult, Record, SyncQueueItem, TickResult

__all__ = [
    "ContentBundle",
    "ContentResult",
    "LocalStore",
    "Record",
    "RecordStore",
    "SyncQueueItem",
    "TickResult",
]
