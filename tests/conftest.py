from __future__ import annotations

import os
import threading
from pathlib import Path

import pytest

from localfirst.events import EventBus
from localfirst.gate import FeatureGate, StaticFlag
from localfirst.store import LocalStore, RecordStore
from localfirst.store.utils import MonotonicClock
from localfirst.sync import InMemoryRemoteBackend, RemoteSyncWorker, SyncQueue


@pytest.fixture(autouse=True)
def _isolate_localfirst_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for key in list(os.environ):
        if key.startswith("LOCALFIRST_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("LOCALFIRST_CONFIG", str(tmp_path / "config.json"))


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self.now

    def advance(self, seconds: float) -> float:
        with self._lock:
            self.now += seconds
            return self.now


class SyncHarness:
    """One client's components over a single database file."""

    def __init__(self, db_path: Path, backend, *, enabled: bool = True, clock=None, **worker_kwargs):
        self.clock = clock or FakeClock()
        self.flag = StaticFlag(enabled)
        self.store = LocalStore(db_path)
        self.events = EventBus()
        self.queue = SyncQueue(self.store, clock=self.clock, rand=lambda: 0.5)
        self.records = RecordStore(
            self.store, self.queue, events=self.events, clock=MonotonicClock(self.clock)
        )
        self.backend = backend
        self.worker = RemoteSyncWorker(
            self.records,
            self.queue,
            backend,
            FeatureGate(self.flag),
            events=self.events,
            clock=self.clock,
            log_path=db_path.parent / "sync-worker.log",
            **worker_kwargs,
        )

    def close(self) -> None:
        self.worker.stop()
        self.store.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path: Path):
    local = LocalStore(tmp_path / "local.sqlite")
    yield local
    local.close()


@pytest.fixture
def backend() -> InMemoryRemoteBackend:
    return InMemoryRemoteBackend()


@pytest.fixture
def make_harness(tmp_path: Path, backend: InMemoryRemoteBackend, clock: FakeClock):
    created: list[SyncHarness] = []

    def _make(name: str = "client", **kwargs) -> SyncHarness:
        kwargs.setdefault("clock", clock)
        h = SyncHarness(tmp_path / f"{name}.sqlite", kwargs.pop("backend", backend), **kwargs)
        created.append(h)
        return h

    yield _make
    for h in created:
        h.close()


@pytest.fixture
def harness(make_harness) -> SyncHarness:
    return make_harness()
