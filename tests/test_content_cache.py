from __future__ import annotations

import threading

import pytest

from localfirst.content import InMemoryContentSource, RemoteContentCache
from localfirst.errors import TransientRemoteError
from localfirst.events import CONTENT_REFRESH_FAILED, CONTENT_REFRESHED, EventBus, EventRecorder
from localfirst.gate import FeatureGate, StaticFlag
from localfirst.store import ContentBundle, LocalStore
from localfirst.store.types import (
    FRESHNESS_FRESH,
    FRESHNESS_OFFLINE_FALLBACK,
    FRESHNESS_STALE,
    FRESHNESS_UNAVAILABLE,
)
from localfirst.store.utils import content_key


class BlockingSource(InMemoryContentSource):
    def __init__(self, contents: dict[str, bytes]) -> None:
        super().__init__(contents)
        self.release = threading.Event()

    def fetch_revision(self, key: str) -> str:
        self.release.wait(5)
        return super().fetch_revision(key)


class HangingSource(InMemoryContentSource):
    """Never answers for one key until released."""

    def __init__(self, contents: dict[str, bytes], *, hang_on: str) -> None:
        super().__init__(contents)
        self.hang_on = hang_on
        self.release = threading.Event()

    def fetch_revision(self, key: str) -> str:
        if key == self.hang_on:
            self.release.wait(5)
        return super().fetch_revision(key)


class BrokenSource:
    def is_available(self) -> bool:
        return True

    def fetch_revision(self, key: str) -> str:
        raise TransientRemoteError("content host unreachable")

    def fetch_payload(self, key: str, revision: str) -> bytes:
        raise TransientRemoteError("content host unreachable")


@pytest.fixture
def flag() -> StaticFlag:
    return StaticFlag(True)


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def make_cache(store: LocalStore, flag: StaticFlag, events: EventBus, clock):
    caches: list[RemoteContentCache] = []

    def _make(source, **kwargs) -> RemoteContentCache:
        cache = RemoteContentCache(
            store, source, FeatureGate(flag), events=events, ttl_s=60, clock=clock, **kwargs
        )
        caches.append(cache)
        return cache

    yield _make
    for cache in caches:
        cache.close()


def _seed(store: LocalStore, payload: bytes, *, revision: str, fetched_at: float) -> None:
    bundle = ContentBundle(
        content_key="motd", content_hash=revision, fetched_at=fetched_at, ttl=60, payload=payload
    )
    store.put_json(content_key("motd"), bundle.to_dict())


def test_missing_bundle_is_unavailable_while_disabled(make_cache, flag) -> None:
    flag.enabled = False
    source = InMemoryContentSource({"motd": b"hello"})
    cache = make_cache(source)

    result = cache.get("motd")

    assert result.freshness == FRESHNESS_UNAVAILABLE
    assert result.payload is None
    assert not result.available
    assert cache.pending() == []
    assert source.revision_calls == 0


def test_missing_bundle_returns_immediately_then_arrives(make_cache, events) -> None:
    recorder = EventRecorder(events, CONTENT_REFRESHED)
    source = BlockingSource({"motd": b"hello"})
    cache = make_cache(source)

    first = cache.get("motd")
    assert first.freshness == FRESHNESS_UNAVAILABLE
    source.release.set()

    event = recorder.wait_for(lambda e: e["content_key"] == "motd", timeout=5)
    assert event is not None
    assert event["revision_id"] == InMemoryContentSource.revision_for(b"hello")
    second = cache.get("motd")
    assert second.freshness == FRESHNESS_FRESH
    assert second.payload == b"hello"


def test_refreshes_are_deduplicated_per_key(make_cache, events) -> None:
    recorder = EventRecorder(events, CONTENT_REFRESHED)
    source = BlockingSource({"motd": b"hello"})
    cache = make_cache(source)

    for _ in range(3):
        cache.get("motd")
    assert cache.pending() == ["motd"]
    source.release.set()

    assert recorder.wait_for(lambda e: True, timeout=5) is not None
    assert source.revision_calls == 1


def test_fresh_bundle_is_served_without_network(make_cache, clock) -> None:
    source = InMemoryContentSource({"motd": b"hello"})
    cache = make_cache(source)
    cache.refresh_now("motd")
    clock.advance(60)

    result = cache.get("motd")

    assert result.freshness == FRESHNESS_FRESH
    assert cache.pending() == []
    assert source.revision_calls == 1


def test_unchanged_revision_extends_fetched_at(make_cache, clock, events) -> None:
    recorder = EventRecorder(events, CONTENT_REFRESHED)
    source = InMemoryContentSource({"motd": b"hello"})
    cache = make_cache(source)
    cache.refresh_now("motd")
    clock.advance(120)

    result = cache.get("motd")

    assert result.freshness == FRESHNESS_STALE
    assert result.payload == b"hello"
    assert recorder.wait_for(lambda e: e["changed"] is False, timeout=5) is not None
    assert cache.cached("motd").fetched_at == clock.now
    assert source.payload_calls == 1


def test_changed_revision_replaces_bundle(make_cache, clock) -> None:
    source = InMemoryContentSource({"motd": b"hello"})
    cache = make_cache(source)
    cache.refresh_now("motd")
    revision = source.publish("motd", b"updated")
    clock.advance(120)

    bundle = cache.refresh_now("motd")

    assert bundle.content_hash == revision
    assert cache.get("motd").payload == b"updated"
    assert cache.get("motd").freshness == FRESHNESS_FRESH


def test_stale_bundle_is_offline_fallback_when_gate_denies(make_cache, store, flag, clock) -> None:
    _seed(store, b"cached", revision="r1", fetched_at=clock.now - 10_000)
    flag.enabled = False
    source = InMemoryContentSource({"motd": b"newer"})
    cache = make_cache(source)

    result = cache.get("motd")

    assert result.freshness == FRESHNESS_OFFLINE_FALLBACK
    assert result.payload == b"cached"
    assert source.revision_calls == 0
    assert cache.refresh_now("motd") is None


def test_refresh_failure_keeps_cached_copy(make_cache, store, clock, events) -> None:
    recorder = EventRecorder(events, CONTENT_REFRESH_FAILED)
    _seed(store, b"cached", revision="r1", fetched_at=clock.now - 10_000)
    cache = make_cache(BrokenSource())

    first = cache.get("motd")
    event = recorder.wait_for(lambda e: e["content_key"] == "motd", timeout=5)
    second = cache.get("motd")

    assert first.freshness == FRESHNESS_STALE
    assert event is not None
    assert "unreachable" in event["reason"]
    assert second.freshness == FRESHNESS_OFFLINE_FALLBACK
    assert second.payload == b"cached"
    meta = store.get_meta("content_cache")
    assert meta["failures"] >= 1
    assert "motd" in meta["errors"]


def test_refresh_now_surfaces_remote_errors(make_cache) -> None:
    cache = make_cache(BrokenSource())

    with pytest.raises(TransientRemoteError):
        cache.refresh_now("motd")
    assert cache.get("motd", refresh=False).freshness == FRESHNESS_UNAVAILABLE


def test_closed_cache_schedules_nothing(make_cache) -> None:
    source = InMemoryContentSource({"motd": b"hello"})
    cache = make_cache(source)
    cache.close()

    result = cache.get("motd")

    assert result.freshness == FRESHNESS_UNAVAILABLE
    assert cache.pending() == []
    assert source.revision_calls == 0


def test_bundle_staleness_boundary() -> None:
    bundle = ContentBundle(content_key="k", content_hash="r", fetched_at=100.0, ttl=60.0, payload=b"")

    assert not bundle.is_stale(160.0)
    assert bundle.is_stale(160.5)


def test_hung_source_times_out_without_blocking_other_keys(make_cache, store, events) -> None:
    failed = EventRecorder(events, CONTENT_REFRESH_FAILED)
    refreshed = EventRecorder(events, CONTENT_REFRESHED)
    source = HangingSource({"motd": b"hello", "news": b"extra"}, hang_on="motd")
    cache = make_cache(source, timeout_s=0.05)
    try:
        cache.get("motd")
        cache.get("news")

        news = refreshed.wait_for(lambda e: e["content_key"] == "news", timeout=5)
        assert news is not None
        timed_out = failed.wait_for(lambda e: e["content_key"] == "motd", timeout=5)
        assert timed_out is not None
        assert "timed out" in timed_out["reason"]
        assert cache.get("news", refresh=False).freshness == FRESHNESS_FRESH
        assert "motd" in store.get_meta("content_cache")["errors"]
    finally:
        source.release.set()
