from __future__ import annotations

import contextlib
import logging
import threading
from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING

from ..events import SYNC_STATE_CHANGED, EventBus
from .types import (
    OP_CREATE,
    OP_DELETE,
    OP_UPDATE,
    SYNC_CLEAN,
    SYNC_CONFLICT,
    SYNC_PENDING_PULL,
    SYNC_PENDING_PUSH,
    SYNC_STATES,
    Record,
)
from .utils import (
    RECORD_PREFIX,
    MonotonicClock,
    collection_prefix,
    queue_key,
    record_key,
    validate_segment,
)

if TYPE_CHECKING:
    from ..sync.queue import SyncQueue
    from ._store import LocalStore

logger = logging.getLogger(__name__)


class RecordStore:
    """Versioned records on top of the LocalStore.

    Local writes are synchronous and never consult the network: the record
    is persisted, then a queue item is enqueued for the sync worker.
    """

    def __init__(
        self,
        store: LocalStore,
        queue: SyncQueue,
        *,
        events: EventBus | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self.store = store
        self.queue = queue
        self.events = events
        self._clock = clock or MonotonicClock()
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @contextlib.contextmanager
    def locked(self, collection: str, record_id: str) -> Iterator[None]:
        key = record_key(collection, record_id)
        with self._locks_guard:
            lock = self._locks.setdefault(key, threading.RLock())
        with lock:
            yield

    def load(self, collection: str, record_id: str) -> Record | None:
        data = self.store.get_json(record_key(collection, record_id))
        if data is None:
            return None
        return Record.from_dict(data)

    def read(self, collection: str, record_id: str) -> bytes | None:
        record = self.load(collection, record_id)
        if record is None or record.deleted:
            return None
        return record.payload

    def list(self, collection: str, *, include_deleted: bool = False) -> list[Record]:
        validate_segment(collection, name="collection")
        records = []
        for key, raw in self.store.scan(collection_prefix(collection)):
            record = Record.from_dict(self.store.decode_json(key, raw))
            if record.deleted and not include_deleted:
                continue
            records.append(record)
        return records

    def all_records(self) -> Iterator[Record]:
        for key, raw in self.store.scan(RECORD_PREFIX):
            yield Record.from_dict(self.store.decode_json(key, raw))

    def write(self, collection: str, record_id: str, payload: bytes) -> Record:
        validate_segment(collection, name="collection")
        validate_segment(record_id, name="record_id")
        with self.locked(collection, record_id):
            existing = self.load(collection, record_id)
            if existing is None:
                record = Record(
                    collection=collection,
                    id=record_id,
                    payload=bytes(payload),
                    local_version=1,
                    last_modified_at=self._clock(),
                    sync_state=SYNC_PENDING_PUSH,
                )
                operation = OP_CREATE
            else:
                record = existing.copy(
                    payload=bytes(payload),
                    local_version=existing.local_version + 1,
                    last_modified_at=self._clock(),
                    sync_state=SYNC_PENDING_PUSH,
                    deleted=False,
                )
                operation = OP_CREATE if existing.remote_version is None else OP_UPDATE
            self._save(record)
            self.queue.enqueue(collection, record_id, operation)
        self._state_changed(existing, record)
        return record

    def remove(self, collection: str, record_id: str) -> Record | None:
        """Tombstone a record and queue the delete for the remote."""

        with self.locked(collection, record_id):
            existing = self.load(collection, record_id)
            if existing is None or existing.deleted:
                return None
            record = existing.copy(
                payload=b"",
                local_version=existing.local_version + 1,
                last_modified_at=self._clock(),
                sync_state=SYNC_PENDING_PUSH,
                deleted=True,
            )
            self._save(record)
            self.queue.enqueue(collection, record_id, OP_DELETE)
        self._state_changed(existing, record)
        return record

    def purge(self, collection: str, record_id: str, *, expected_version: int) -> bool:
        """Drop a tombstone the remote never held (or no longer holds)."""

        with self.locked(collection, record_id):
            current = self.load(collection, record_id)
            if current is None or not current.deleted:
                return False
            if current.local_version != expected_version:
                return False
            self.store.delete(record_key(collection, record_id))
        self._state_changed(current, current.copy(sync_state=SYNC_CLEAN))
        return True

    def set_state(self, collection: str, record_id: str, state: str) -> Record | None:
        if state not in SYNC_STATES:
            raise ValueError(f"unknown sync state: {state}")
        with self.locked(collection, record_id):
            existing = self.load(collection, record_id)
            if existing is None or existing.sync_state == state:
                return existing
            record = existing.copy(sync_state=state)
            self._save(record)
        self._state_changed(existing, record)
        return record

    def apply_resolution(self, local: Record, winner: Record) -> Record | None:
        """Adopt the remote winner of a conflict as the next local version.

        Returns ``None`` when the record changed locally since ``local`` was
        read; the newer write is then pushed on a later pass instead.
        """

        with self.locked(local.collection, local.id):
            current = self.load(local.collection, local.id)
            if current is None or current.local_version != local.local_version:
                return None
            record = current.copy(
                payload=winner.payload,
                deleted=winner.deleted,
                local_version=current.local_version + 1,
                last_modified_at=winner.last_modified_at,
                sync_state=SYNC_PENDING_PUSH,
            )
            self._save(record)
        self._state_changed(current, record)
        return record

    def mark_synced(
        self, collection: str, record_id: str, *, accepted_version: int, pushed_version: int
    ) -> Record | None:
        """Record a remote acknowledgement for the push of ``pushed_version``."""

        with self.locked(collection, record_id):
            current = self.load(collection, record_id)
            if current is None:
                return None
            if current.local_version != pushed_version:
                # A newer local write landed mid-push; it stays pending.
                record = current.copy(remote_version=accepted_version)
                if record.local_version <= accepted_version:
                    record.local_version = accepted_version + 1
                self._save(record)
                return record
            if current.deleted:
                self.store.delete(record_key(collection, record_id))
                record = current.copy(
                    remote_version=accepted_version,
                    local_version=max(current.local_version, accepted_version),
                    sync_state=SYNC_CLEAN,
                )
                self._state_changed(current, record)
                return record
            if accepted_version < current.local_version:
                logger.warning(
                    "remote accepted %s:%s at version %s below local version %s",
                    collection,
                    record_id,
                    accepted_version,
                    current.local_version,
                )
            record = current.copy(
                local_version=max(current.local_version, accepted_version),
                remote_version=accepted_version,
                sync_state=SYNC_CLEAN,
            )
            self._save(record)
        self._state_changed(current, record)
        return record

    def apply_remote(self, remote: Record) -> Record | None:
        """Adopt a newer remote copy for a record with no local changes pending."""

        collection, record_id = remote.collection, remote.id
        remote_version = int(remote.remote_version or 0)
        with self.locked(collection, record_id):
            current = self.load(collection, record_id)
            if current is not None:
                if current.sync_state not in {SYNC_CLEAN, SYNC_PENDING_PULL}:
                    return None
                if remote_version <= int(current.remote_version or 0):
                    if current.sync_state == SYNC_PENDING_PULL:
                        record = current.copy(sync_state=SYNC_CLEAN)
                        self._save(record)
                        self._state_changed(current, record)
                        return record
                    return current
            version = max(remote_version, (current.local_version + 1) if current else 1)
            record = Record(
                collection=collection,
                id=record_id,
                payload=remote.payload,
                local_version=version,
                remote_version=remote_version,
                last_modified_at=remote.last_modified_at,
                sync_state=SYNC_CLEAN if version == remote_version else SYNC_PENDING_PUSH,
            )
            self._save(record)
            if record.sync_state == SYNC_PENDING_PUSH:
                self.queue.enqueue(collection, record_id, OP_UPDATE)
        self._state_changed(current, record)
        return record

    def reconcile_queue(self) -> int:
        """Re-enqueue dirty records whose queue item is missing.

        Covers a crash between persisting a record and enqueueing it.
        """

        restored = 0
        for record in list(self.all_records()):
            if record.sync_state not in {SYNC_PENDING_PUSH, SYNC_CONFLICT}:
                continue
            if self.store.get(queue_key(record.collection, record.id)) is not None:
                continue
            if record.deleted:
                operation = OP_DELETE
            elif record.remote_version is None:
                operation = OP_CREATE
            else:
                operation = OP_UPDATE
            self.queue.enqueue(record.collection, record.id, operation)
            restored += 1
        if restored:
            logger.info("re-enqueued %s record(s) missing a queue item", restored)
        return restored

    def _save(self, record: Record) -> None:
        self.store.put_json(record_key(record.collection, record.id), record.to_dict())

    def _state_changed(self, before: Record | None, after: Record) -> None:
        if self.events is None:
            return
        if before is not None and before.sync_state == after.sync_state:
            return
        self.events.publish(
            SYNC_STATE_CHANGED,
            collection=after.collection,
            record_id=after.id,
            sync_state=after.sync_state,
        )
