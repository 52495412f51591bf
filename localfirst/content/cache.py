from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Any, TypeVar

from ..errors import RemoteError, TransientRemoteError
from ..events import CONTENT_REFRESH_FAILED, CONTENT_REFRESHED, EventBus
from ..gate import FeatureGate
from ..store import ContentBundle, ContentResult, LocalStore
from ..store.types import (
    FRESHNESS_FRESH,
    FRESHNESS_OFFLINE_FALLBACK,
    FRESHNESS_STALE,
    FRESHNESS_UNAVAILABLE,
)
from ..store.utils import content_key as store_key
from ..store.utils import now_iso
from .sources import ContentSource

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL_S = 3600.0
DEFAULT_TIMEOUT_S = 10.0
CACHE_META = "content_cache"


class RemoteContentCache:
    """Serves cached content bundles and revalidates them in the background.

    ``get`` only ever reads the LocalStore. Stale or missing bundles are
    refreshed on a single background thread when the gate allows it.
    """

    def __init__(
        self,
        store: LocalStore,
        source: ContentSource,
        gate: FeatureGate,
        *,
        events: EventBus | None = None,
        ttl_s: float = DEFAULT_TTL_S,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.source = source
        self.gate = gate
        self.events = events
        self.ttl_s = float(ttl_s)
        self.timeout_s = float(timeout_s)
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="localfirst-content")
        self._source_executor = ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="localfirst-content-remote"
        )
        self._lock = threading.Lock()
        self._inflight: dict[str, Future] = {}
        self._failed: set[str] = set()
        self._closed = False

    def get(
        self, content_key: str, *, ttl_s: float | None = None, refresh: bool = True
    ) -> ContentResult:
        """Best local copy right now. With ``refresh`` a stale or missing bundle
        is revalidated in the background when the gate allows it."""

        if not content_key:
            raise ValueError("content_key is required")
        bundle = self.cached(content_key)
        allowed = self.gate.remote_allowed()
        if bundle is None:
            if allowed and refresh:
                self._schedule(content_key, ttl_s)
            return ContentResult(payload=None, freshness=FRESHNESS_UNAVAILABLE)
        if not bundle.is_stale(self._clock()):
            return _result(bundle, FRESHNESS_FRESH)
        if not allowed:
            return _result(bundle, FRESHNESS_OFFLINE_FALLBACK)
        if refresh:
            self._schedule(content_key, ttl_s)
        with self._lock:
            failed = content_key in self._failed
        return _result(bundle, FRESHNESS_OFFLINE_FALLBACK if failed else FRESHNESS_STALE)

    def cached(self, content_key: str) -> ContentBundle | None:
        data = self.store.get_json(store_key(content_key))
        if data is None:
            return None
        return ContentBundle.from_dict(data)

    def refresh_now(self, content_key: str, *, ttl_s: float | None = None) -> ContentBundle | None:
        """Revalidate synchronously; returns ``None`` when remote access is off.

        Remote failures are recorded like background ones and then re-raised.
        """

        if not self.gate.remote_allowed():
            return None
        try:
            return self._refresh(content_key, ttl_s)
        except RemoteError as exc:
            self._record_failure(content_key, exc)
            raise

    def pending(self) -> list[str]:
        with self._lock:
            return sorted(self._inflight)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._inflight.clear()
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._source_executor.shutdown(wait=False, cancel_futures=True)

    def _schedule(self, content_key: str, ttl_s: float | None) -> None:
        with self._lock:
            if self._closed or content_key in self._inflight:
                return
            try:
                future = self._executor.submit(self._refresh_task, content_key, ttl_s)
            except RuntimeError:
                logger.debug("content cache closed; refresh for %s dropped", content_key)
                return
            self._inflight[content_key] = future
        logger.debug("scheduled content refresh for %s", content_key)

    def _refresh_task(self, content_key: str, ttl_s: float | None) -> None:
        try:
            if not self.gate.remote_allowed():
                return
            self._refresh(content_key, ttl_s)
        except RemoteError as exc:
            logger.warning("content refresh failed for %s: %s", content_key, exc)
            self._record_failure(content_key, exc)
        except Exception as exc:
            logger.exception("unexpected content refresh failure for %s", content_key)
            self._record_failure(content_key, exc)
        finally:
            with self._lock:
                self._inflight.pop(content_key, None)

    def _refresh(self, content_key: str, ttl_s: float | None) -> ContentBundle:
        ttl = self.ttl_s if ttl_s is None else float(ttl_s)
        revision = self._call(self.source.fetch_revision, content_key)
        current = self.cached(content_key)
        if current is not None and current.content_hash == revision:
            bundle = ContentBundle(
                content_key=content_key,
                content_hash=revision,
                fetched_at=self._clock(),
                ttl=ttl,
                payload=current.payload,
            )
            changed = False
        else:
            payload = self._call(self.source.fetch_payload, content_key, revision)
            bundle = ContentBundle(
                content_key=content_key,
                content_hash=revision,
                fetched_at=self._clock(),
                ttl=ttl,
                payload=payload,
            )
            changed = True
        self.store.put_json(store_key(content_key), bundle.to_dict())
        with self._lock:
            self._failed.discard(content_key)
        self.store.update_meta(CACHE_META, last_ok_at=now_iso())
        logger.debug("content %s refreshed at revision %s (changed=%s)", content_key, revision, changed)
        if self.events is not None:
            self.events.publish(
                CONTENT_REFRESHED,
                content_key=content_key,
                revision_id=revision,
                changed=changed,
            )
        return bundle

    def _call(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            future = self._source_executor.submit(fn, *args)
        except RuntimeError as exc:
            raise TransientRemoteError("content cache is closed") from exc
        try:
            return future.result(timeout=self.timeout_s)
        except FuturesTimeoutError as exc:
            future.cancel()
            raise TransientRemoteError(f"content fetch timed out after {self.timeout_s}s") from exc

    def _record_failure(self, content_key: str, exc: Exception) -> None:
        with self._lock:
            self._failed.add(content_key)
        meta = self.store.get_meta(CACHE_META)
        errors = dict(meta.get("errors") or {})
        errors[content_key] = {"error": str(exc), "at": now_iso()}
        self.store.update_meta(
            CACHE_META,
            errors=errors,
            failures=int(meta.get("failures") or 0) + 1,
        )
        if self.events is not None:
            self.events.publish(CONTENT_REFRESH_FAILED, content_key=content_key, reason=str(exc))


def _result(bundle: ContentBundle, freshness: str) -> ContentResult:
    return ContentResult(
        payload=bundle.payload,
        freshness=freshness,
        content_hash=bundle.content_hash,
        fetched_at=bundle.fetched_at,
    )
