from __future__ import annotations

import logging
from pathlib import Path

from . import db
from .config import LocalFirstConfig, load_config
from .content import HttpContentSource, NullContentSource, RemoteContentCache
from .content.sources import ContentSource
from .events import EventBus
from .gate import ConnectivityMonitor, FeatureGate
from .store import LocalStore, RecordStore
from .sync import (
    ConflictResolver,
    HttpRemoteBackend,
    NullRemoteBackend,
    RemoteBackend,
    RemoteSyncWorker,
    SyncQueue,
)

logger = logging.getLogger(__name__)


class LocalFirstRuntime:
    """Owns one instance of every component and wires them together."""

    def __init__(
        self,
        store: LocalStore,
        records: RecordStore,
        queue: SyncQueue,
        worker: RemoteSyncWorker,
        content: RemoteContentCache,
        gate: FeatureGate,
        events: EventBus,
        connectivity: ConnectivityMonitor,
    ):
        self.store = store
        self.records = records
        self.queue = queue
        self.worker = worker
        self.content = content
        self.gate = gate
        self.events = events
        self.connectivity = connectivity
        self._closed = False

    @classmethod
    def from_config(
        cls,
        cfg: LocalFirstConfig | None = None,
        *,
        db_path: Path | str | None = None,
        backend: RemoteBackend | None = None,
        content_source: ContentSource | None = None,
        gate: FeatureGate | None = None,
        connectivity: ConnectivityMonitor | None = None,
        keep_conflict_history: bool = False,
    ) -> LocalFirstRuntime:
        cfg = cfg or load_config()
        if backend is None:
            backend = (
                HttpRemoteBackend(cfg.remote_url, timeout_s=cfg.remote_timeout_s)
                if cfg.remote_url
                else NullRemoteBackend()
            )
        if content_source is None:
            content_source = (
                HttpContentSource(cfg.content_url, timeout_s=cfg.remote_timeout_s)
                if cfg.content_url
                else NullContentSource()
            )
        connectivity = connectivity or ConnectivityMonitor()
        sync_gate = gate or FeatureGate(capability=backend.is_available, connectivity=connectivity)
        content_gate = gate or FeatureGate(
            capability=content_source.is_available, connectivity=connectivity
        )

        store = LocalStore(db_path or cfg.db_path or db.DEFAULT_DB_PATH)
        events = EventBus()
        queue = SyncQueue(
            store,
            max_attempts=cfg.sync_max_attempts,
            backoff_base_s=cfg.sync_backoff_base_s,
            backoff_cap_s=cfg.sync_backoff_cap_s,
        )
        records = RecordStore(store, queue, events=events)
        worker = RemoteSyncWorker(
            records,
            queue,
            backend,
            sync_gate,
            resolver=ConflictResolver(store, keep_history=keep_conflict_history),
            events=events,
            poll_interval_s=cfg.sync_poll_interval_s,
            timeout_s=cfg.remote_timeout_s,
        )
        content = RemoteContentCache(
            store,
            content_source,
            content_gate,
            events=events,
            ttl_s=cfg.content_ttl_s,
            timeout_s=cfg.remote_timeout_s,
        )
        queue.add_listener(worker.wake)
        connectivity.add_listener(lambda online: worker.wake() if online else None)
        return cls(store, records, queue, worker, content, sync_gate, events, connectivity)

    def start(self) -> None:
        restored = self.records.reconcile_queue()
        if restored:
            logger.info("restored %s queue item(s) on startup", restored)
        self.worker.start()

    def notify_foreground(self) -> None:
        self.worker.notify_foreground()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.content.close()
        self.worker.stop()
        self.store.close()

    def __enter__(self) -> LocalFirstRuntime:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
