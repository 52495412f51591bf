from __future__ import annotations

from pathlib import Path

from localfirst.config import LocalFirstConfig
from localfirst.content import HttpContentSource, InMemoryContentSource, NullContentSource
from localfirst.events import SYNC_STATE_CHANGED, EventRecorder
from localfirst.gate import FeatureGate, StaticFlag
from localfirst.runtime import LocalFirstRuntime
from localfirst.store.types import FRESHNESS_FRESH, SYNC_CLEAN
from localfirst.sync import HttpRemoteBackend, InMemoryRemoteBackend, NullRemoteBackend


def _config(tmp_path: Path, **overrides) -> LocalFirstConfig:
    return LocalFirstConfig(db_path=str(tmp_path / "runtime.sqlite"), **overrides)


def test_null_adapters_without_urls(tmp_path: Path) -> None:
    with LocalFirstRuntime.from_config(_config(tmp_path)) as runtime:
        assert isinstance(runtime.worker.backend, NullRemoteBackend)
        assert isinstance(runtime.content.source, NullContentSource)
        assert runtime.gate.remote_allowed() is False


def test_http_adapters_when_urls_configured(tmp_path: Path) -> None:
    cfg = _config(
        tmp_path,
        remote_url="https://sync.example",
        content_url="https://content.example",
        remote_timeout_s=2.0,
    )
    with LocalFirstRuntime.from_config(cfg) as runtime:
        assert isinstance(runtime.worker.backend, HttpRemoteBackend)
        assert runtime.worker.backend.timeout_s == 2.0
        assert isinstance(runtime.content.source, HttpContentSource)


def test_config_values_reach_components(tmp_path: Path) -> None:
    cfg = _config(tmp_path, sync_max_attempts=3, sync_poll_interval_s=5.0, content_ttl_s=42)
    with LocalFirstRuntime.from_config(cfg) as runtime:
        assert runtime.queue.max_attempts == 3
        assert runtime.worker.poll_interval_s == 5.0
        assert runtime.content.ttl_s == 42


def test_writes_sync_in_background(tmp_path: Path) -> None:
    backend = InMemoryRemoteBackend()
    flag = StaticFlag(True)
    runtime = LocalFirstRuntime.from_config(
        _config(tmp_path), backend=backend, gate=FeatureGate(flag)
    )
    recorder = EventRecorder(runtime.events, SYNC_STATE_CHANGED)
    try:
        runtime.start()
        runtime.records.write("notes", "a", b"hello")
        event = recorder.wait_for(lambda e: e["sync_state"] == SYNC_CLEAN, timeout=5)
    finally:
        runtime.close()

    assert event is not None
    assert backend.snapshot()[("notes", "a")].payload == b"hello"


def test_reconnect_wakes_worker(tmp_path: Path) -> None:
    with LocalFirstRuntime.from_config(_config(tmp_path)) as runtime:
        runtime.connectivity.set_online(False)
        runtime.worker._wake.clear()

        runtime.connectivity.set_online(True)

        assert runtime.worker._wake.is_set()


def test_content_cache_wired_to_store(tmp_path: Path) -> None:
    source = InMemoryContentSource({"motd": b"hello"})
    runtime = LocalFirstRuntime.from_config(
        _config(tmp_path), content_source=source, gate=FeatureGate(StaticFlag(True))
    )
    try:
        runtime.content.refresh_now("motd")
        result = runtime.content.get("motd")
    finally:
        runtime.close()

    assert result.freshness == FRESHNESS_FRESH
    assert result.payload == b"hello"


def test_close_is_idempotent(tmp_path: Path) -> None:
    runtime = LocalFirstRuntime.from_config(_config(tmp_path))
    runtime.close()
    runtime.close()
