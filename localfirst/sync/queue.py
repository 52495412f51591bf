from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from typing import Any

from ..errors import PERMANENT, TRANSIENT
from ..store import LocalStore
from ..store.types import (
    OP_CREATE,
    OP_DELETE,
    OP_UPDATE,
    OPERATIONS,
    QUEUE_DEAD_LETTERED,
    QUEUE_PENDING,
    SyncQueueItem,
)
from ..store.utils import QUEUE_PREFIX, queue_key, validate_segment
from . import backoff

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 8
SEQ_META = "queue_seq"


def _coalesce_operation(existing: str, incoming: str) -> str:
    if incoming == OP_DELETE:
        return OP_DELETE
    if existing == OP_CREATE:
        return OP_CREATE
    if existing == OP_DELETE:
        # Re-created after a pending delete; the remote still has the old copy.
        return OP_UPDATE
    return incoming


class SyncQueue:
    """Durable queue of record mutations awaiting a remote push.

    Items live in the LocalStore under ``queue:{collection}:{id}``, one per
    record, so a restart rebuilds exactly the same queue.
    """

    def __init__(
        self,
        store: LocalStore,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_base_s: float = backoff.DEFAULT_BASE_S,
        backoff_cap_s: float = backoff.DEFAULT_CAP_S,
        clock: Callable[[], float] = time.time,
        rand: Callable[[], float] | None = None,
    ):
        self.store = store
        self.max_attempts = max_attempts
        self.backoff_base_s = backoff_base_s
        self.backoff_cap_s = backoff_cap_s
        self._clock = clock
        self._rand = rand
        self._lock = threading.RLock()
        self._listeners: list[Callable[[SyncQueueItem], None]] = []

    def add_listener(self, listener: Callable[[SyncQueueItem], None]) -> None:
        self._listeners.append(listener)

    def enqueue(self, collection: str, record_id: str, operation: str) -> SyncQueueItem:
        validate_segment(collection, name="collection")
        validate_segment(record_id, name="record_id")
        if operation not in OPERATIONS:
            raise ValueError(f"unknown operation: {operation}")
        now = self._clock()
        with self._lock:
            item = self._load(queue_key(collection, record_id))
            if item is None:
                item = SyncQueueItem(
                    collection=collection,
                    record_id=record_id,
                    operation=operation,
                    enqueued_at=now,
                    seq=self._next_seq(),
                    next_retry_at=now,
                )
            else:
                # Coalesce: keep original order and attempt count, retry immediately.
                item.operation = _coalesce_operation(item.operation, operation)
                item.next_retry_at = now
                item.generation += 1
                if item.status == QUEUE_DEAD_LETTERED:
                    logger.info("reviving dead-lettered item %s on new mutation", item.item_id)
                    item.status = QUEUE_PENDING
            self._save(item)
        self._notify(item)
        return item

    def get(self, item_id: str) -> SyncQueueItem | None:
        return self._load(f"{QUEUE_PREFIX}{item_id}")

    def items(self) -> list[SyncQueueItem]:
        items: list[SyncQueueItem] = []
        for key, raw in self.store.scan(QUEUE_PREFIX):
            items.append(SyncQueueItem.from_dict(LocalStore.decode_json(key, raw)))
        items.sort(key=lambda item: (item.enqueued_at, item.seq))
        return items

    def pending(self) -> list[SyncQueueItem]:
        return [item for item in self.items() if item.status == QUEUE_PENDING]

    def dead_letters(self) -> list[SyncQueueItem]:
        return [item for item in self.items() if item.status == QUEUE_DEAD_LETTERED]

    def dequeue_ready(self, now: float | None = None) -> list[SyncQueueItem]:
        """Pending items whose retry time has arrived, oldest enqueue first.

        Items are not removed; callers ``ack`` or ``fail`` each one.
        """

        now = self._clock() if now is None else now
        return [item for item in self.pending() if item.next_retry_at <= now]

    def ack(self, item_id: str, *, generation: int | None = None) -> bool:
        """Remove a delivered item.

        With ``generation`` the item is only removed if no newer mutation
        coalesced into it while the push was in flight.
        """

        with self._lock:
            item = self.get(item_id)
            if item is None:
                return False
            if generation is not None and item.generation != generation:
                logger.debug("ack skipped for %s: newer mutation pending", item_id)
                return False
            return self.store.delete(queue_key(item.collection, item.record_id))

    def fail(
        self,
        item_id: str,
        classification: str,
        *,
        detail: str | None = None,
        now: float | None = None,
    ) -> SyncQueueItem | None:
        if classification not in {TRANSIENT, PERMANENT}:
            raise ValueError(f"unknown failure classification: {classification}")
        now = self._clock() if now is None else now
        with self._lock:
            item = self.get(item_id)
            if item is None:
                return None
            item.attempt_count += 1
            item.last_error = classification
            item.last_error_detail = detail
            if classification == PERMANENT:
                item.status = QUEUE_DEAD_LETTERED
            elif item.attempt_count > self.max_attempts:
                item.status = QUEUE_DEAD_LETTERED
            else:
                delay_kwargs: dict[str, Any] = {
                    "base_s": self.backoff_base_s,
                    "cap_s": self.backoff_cap_s,
                    "previous_s": item.backoff_s,
                }
                if self._rand is not None:
                    delay_kwargs["rand"] = self._rand
                delay = backoff.backoff_delay(item.attempt_count, **delay_kwargs)
                item.backoff_s = delay
                item.next_retry_at = now + delay
            if item.status == QUEUE_DEAD_LETTERED:
                logger.warning(
                    "dead-lettered %s after %s attempt(s): %s",
                    item_id,
                    item.attempt_count,
                    detail or classification,
                )
            self._save(item)
            return item

    def requeue(self, item_id: str) -> SyncQueueItem | None:
        """Manually resubmit a dead-lettered item with a fresh retry budget."""

        with self._lock:
            item = self.get(item_id)
            if item is None:
                return None
            item.status = QUEUE_PENDING
            item.attempt_count = 0
            item.backoff_s = 0.0
            item.next_retry_at = self._clock()
            self._save(item)
        self._notify(item)
        return item

    def _notify(self, item: SyncQueueItem) -> None:
        for listener in list(self._listeners):
            try:
                listener(item)
            except Exception:
                logger.exception("sync queue listener failed")

    def next_wake_at(self, exclude: Iterable[str] = ()) -> float | None:
        skip = set(exclude)
        times = [item.next_retry_at for item in self.pending() if item.item_id not in skip]
        return min(times) if times else None

    def counts(self, now: float | None = None) -> dict[str, int]:
        now = self._clock() if now is None else now
        counts = {"pending": 0, "ready": 0, "dead_lettered": 0}
        for item in self.items():
            if item.status == QUEUE_DEAD_LETTERED:
                counts["dead_lettered"] += 1
                continue
            counts["pending"] += 1
            if item.next_retry_at <= now:
                counts["ready"] += 1
        return counts

    def _next_seq(self) -> int:
        meta = self.store.get_meta(SEQ_META)
        seq = int(meta.get("value") or 0) + 1
        self.store.update_meta(SEQ_META, value=seq)
        return seq

    def _load(self, key: str) -> SyncQueueItem | None:
        data = self.store.get_json(key)
        if data is None:
            return None
        return SyncQueueItem.from_dict(data)

    def _save(self, item: SyncQueueItem) -> None:
        self.store.put_json(queue_key(item.collection, item.record_id), item.to_dict())
