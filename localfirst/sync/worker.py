from __future__ import annotations

import logging
import threading
import time
import traceback
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from pathlib import Path
from typing import Any, TypeVar

from ..errors import (
    PERMANENT,
    TRANSIENT,
    LocalIOError,
    PermanentRemoteError,
    RemoteConflictError,
    RemoteError,
    TransientRemoteError,
)
from ..events import SYNC_FAILED_PERMANENTLY, EventBus
from ..gate import FeatureGate
from ..store import Record, RecordStore, SyncQueueItem, TickResult
from ..store.types import SYNC_CLEAN, SYNC_CONFLICT, SYNC_PENDING_PULL, SYNC_PENDING_PUSH
from ..store.utils import now_iso
from .adapters import RemoteBackend
from .conflicts import ConflictResolver
from .queue import SyncQueue

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_POLL_INTERVAL_S = 30.0
DEFAULT_TIMEOUT_S = 10.0
WORKER_META = "sync_worker"
MIN_SLEEP_S = 0.05


def default_log_path() -> Path:
    return Path.home() / ".localfirst" / "sync-worker.log"


class RemoteSyncWorker:
    """Background loop that drains the SyncQueue into a remote backend.

    Wakes on enqueue, on foreground/reconnect signals and every
    ``poll_interval_s``. Remote errors never propagate out of a tick: they
    become queue state and events.
    """

    def __init__(
        self,
        records: RecordStore,
        queue: SyncQueue,
        backend: RemoteBackend,
        gate: FeatureGate,
        *,
        resolver: ConflictResolver | None = None,
        events: EventBus | None = None,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        clock: Callable[[], float] = time.time,
        log_path: Path | None = None,
        max_concurrent_calls: int = 4,
    ):
        self.records = records
        self.queue = queue
        self.backend = backend
        self.gate = gate
        self.resolver = resolver or ConflictResolver()
        self.events = events
        self.poll_interval_s = poll_interval_s
        self.timeout_s = timeout_s
        self._clock = clock
        self._log_path = log_path
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent_calls, thread_name_prefix="localfirst-remote"
        )
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._tick_lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._abandoned_lock = threading.Lock()
        self._abandoned: dict[str, Future] = {}

    # lifecycle

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="localfirst-sync", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        self._executor.shutdown(wait=False, cancel_futures=True)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def wake(self, *_: Any) -> None:
        self._wake.set()

    notify_foreground = wake

    def _run(self) -> None:
        while not self._stop.is_set():
            self._wake.clear()
            self._tick_safely()
            if self._stop.is_set():
                break
            self._wake.wait(self._sleep_interval())

    def _sleep_interval(self) -> float:
        if not self.gate.remote_allowed():
            return self.poll_interval_s
        next_at = self.queue.next_wake_at(exclude=self.busy_items())
        if next_at is None:
            return self.poll_interval_s
        delay = next_at - self._clock()
        return min(self.poll_interval_s, max(MIN_SLEEP_S, delay))

    def _tick_safely(self) -> None:
        try:
            self.run_once()
            self._record_ok()
        except Exception as exc:
            tb = traceback.format_exc()
            logger.exception("sync tick failed")
            try:
                self._record_error(str(exc), tb)
            except LocalIOError:
                logger.warning("could not persist sync worker error state")
            self._append_log(tb)

    # tick

    def run_once(self, now: float | None = None) -> TickResult:
        """Drain every ready queue item once. Safe to call from a CLI."""

        with self._tick_lock:
            result = TickResult()
            if not self.gate.remote_allowed():
                result.skipped = "remote_disabled"
                logger.debug("sync tick skipped: remote access disabled")
                return result
            now = self._clock() if now is None else now
            for item in self.queue.dequeue_ready(now):
                if self._stop.is_set():
                    break
                if self._is_busy(item.item_id):
                    # A timed-out call for this record is still running.
                    result.deferred += 1
                    logger.debug("deferring %s until its previous remote call finishes", item.item_id)
                    continue
                self._sync_item(item, result)
            if result.failed:
                result.ok = False
            logger.debug("sync tick finished: %s", result.to_dict())
            return result

    def _sync_item(self, item: SyncQueueItem, result: TickResult) -> None:
        record = self.records.load(item.collection, item.record_id)
        if record is None:
            self.queue.ack(item.item_id, generation=item.generation)
            return
        try:
            self._push(item, record, result)
        except PermanentRemoteError as exc:
            self._fail(item, PERMANENT, str(exc), result)
        except RemoteError as exc:
            self._fail(item, TRANSIENT, str(exc), result)
        except LocalIOError:
            raise
        except Exception as exc:
            logger.exception("unexpected error syncing %s", item.item_id)
            self._fail(item, TRANSIENT, f"{exc.__class__.__name__}: {exc}", result)

    def _push(self, item: SyncQueueItem, record: Record, result: TickResult) -> None:
        collection, record_id = item.collection, item.record_id
        for attempt in range(2):
            remote = self._call(item.item_id, self.backend.fetch_record, collection, record_id)
            resolved = self._reconcile(record, remote, result)
            if resolved is None:
                # A newer local write arrived; its coalesced item handles it.
                return
            record = resolved
            expected = remote.remote_version if remote is not None else None
            if remote is not None and record.local_version <= int(remote.remote_version or 0):
                if record.payload == remote.payload and record.deleted == remote.deleted:
                    # Remote won outright; nothing left to push.
                    self._synced(item, record, int(remote.remote_version or 0), result, pulled=True)
                    return
            try:
                if record.deleted:
                    if remote is None:
                        self.records.purge(
                            collection, record_id, expected_version=record.local_version
                        )
                        self.queue.ack(item.item_id, generation=item.generation)
                        result.deleted += 1
                        return
                    accepted = self._call(
                        item.item_id,
                        self.backend.delete_record,
                        collection,
                        record_id,
                        expected,
                        local_version=record.local_version,
                    )
                else:
                    accepted = self._call(
                        item.item_id,
                        self.backend.push_record,
                        collection,
                        record_id,
                        record.payload,
                        expected,
                        modified_at=record.last_modified_at,
                        local_version=record.local_version,
                    )
            except RemoteConflictError:
                if attempt > 0:
                    raise
                logger.info("push conflict on %s; refetching", item.item_id)
                reloaded = self.records.load(collection, record_id)
                if reloaded is None:
                    self.queue.ack(item.item_id, generation=item.generation)
                    return
                record = reloaded
                continue
            self._synced(item, record, accepted, result)
            return

    def _reconcile(self, record: Record, remote: Record | None, result: TickResult) -> Record | None:
        known = int(record.remote_version or 0)
        if remote is None or int(remote.remote_version or 0) <= known:
            return record
        result.conflicts += 1
        self.records.set_state(record.collection, record.id, SYNC_CONFLICT)
        winner = self.resolver.resolve(record, remote)
        if winner is record:
            self.records.set_state(record.collection, record.id, SYNC_PENDING_PUSH)
            return self.records.load(record.collection, record.id)
        return self.records.apply_resolution(record, remote)

    def _synced(
        self,
        item: SyncQueueItem,
        record: Record,
        accepted: int,
        result: TickResult,
        *,
        pulled: bool = False,
    ) -> None:
        self.records.mark_synced(
            item.collection,
            item.record_id,
            accepted_version=accepted,
            pushed_version=record.local_version,
        )
        self.queue.ack(item.item_id, generation=item.generation)
        if pulled:
            result.pulled += 1
        elif record.deleted:
            result.deleted += 1
        else:
            result.pushed += 1

    def _fail(self, item: SyncQueueItem, classification: str, detail: str, result: TickResult) -> None:
        result.failed += 1
        result.errors.append(f"{item.item_id}: {detail}")
        updated = self.queue.fail(item.item_id, classification, detail=detail)
        if classification == TRANSIENT:
            logger.warning("transient sync failure for %s: %s", item.item_id, detail)
        if updated is None or not updated.dead_lettered:
            return
        result.dead_lettered += 1
        if self.events is not None:
            self.events.publish(
                SYNC_FAILED_PERMANENTLY,
                collection=item.collection,
                record_id=item.record_id,
                reason=detail,
                classification=classification,
                attempt_count=updated.attempt_count,
            )

    def _call(self, item_id: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            future = self._executor.submit(fn, *args, **kwargs)
        except RuntimeError as exc:
            raise TransientRemoteError("sync worker is shutting down") from exc
        try:
            return future.result(timeout=self.timeout_s)
        except FuturesTimeoutError as exc:
            if not future.cancel():
                self._track_abandoned(item_id, future)
            raise TransientRemoteError(f"remote call timed out after {self.timeout_s}s") from exc

    def busy_items(self) -> list[str]:
        """Items whose timed-out remote call has not returned yet."""

        with self._abandoned_lock:
            return sorted(key for key, future in self._abandoned.items() if not future.done())

    def _is_busy(self, item_id: str) -> bool:
        with self._abandoned_lock:
            future = self._abandoned.get(item_id)
        return future is not None and not future.done()

    def _track_abandoned(self, item_id: str, future: Future) -> None:
        with self._abandoned_lock:
            self._abandoned[item_id] = future
        future.add_done_callback(lambda done: self._release_abandoned(item_id, done))

    def _release_abandoned(self, item_id: str, future: Future) -> None:
        with self._abandoned_lock:
            if self._abandoned.get(item_id) is future:
                del self._abandoned[item_id]
        logger.debug("abandoned remote call for %s finished", item_id)
        self.wake()

    # pulls

    def pull_record(self, collection: str, record_id: str) -> Record | None:
        """Fetch the remote copy of a clean record and adopt it if newer."""

        if not self.gate.remote_allowed():
            return self.records.load(collection, record_id)
        current = self.records.load(collection, record_id)
        item_id = f"{collection}:{record_id}"
        if self._is_busy(item_id) or (current is not None and current.sync_state != SYNC_CLEAN):
            return current
        if current is not None:
            self.records.set_state(collection, record_id, SYNC_PENDING_PULL)
        try:
            remote = self._call(item_id, self.backend.fetch_record, collection, record_id)
        except RemoteError as exc:
            logger.warning("pull failed for %s:%s: %s", collection, record_id, exc)
            if current is not None:
                self.records.set_state(collection, record_id, SYNC_CLEAN)
            return self.records.load(collection, record_id)
        if remote is None:
            if current is not None:
                self.records.set_state(collection, record_id, SYNC_CLEAN)
            return self.records.load(collection, record_id)
        applied = self.records.apply_remote(remote)
        return applied or self.records.load(collection, record_id)

    # observability

    def status(self) -> dict[str, Any]:
        state = self.records.store.get_meta(WORKER_META)
        state["running"] = self.running
        state["queue"] = self.queue.counts()
        return state

    def _record_ok(self) -> None:
        self.records.store.update_meta(WORKER_META, last_ok_at=now_iso())

    def _record_error(self, error: str, traceback_text: str) -> None:
        self.records.store.update_meta(
            WORKER_META,
            last_error=error,
            last_traceback=traceback_text,
            last_error_at=now_iso(),
        )

    def _append_log(self, message: str) -> None:
        log_path = self._log_path or default_log_path()
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            with log_path.open("a", encoding="utf-8", errors="ignore") as handle:
                handle.write(f"\n[{now_iso()}]\n{message}\n")
        except OSError:
            logger.debug("could not append to %s", log_path)
