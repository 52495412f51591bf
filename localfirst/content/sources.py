from __future__ import annotations

import hashlib
import threading
from typing import Protocol

from ..errors import PermanentRemoteError, TransientRemoteError
from ..store.types import decode_payload
from ..sync import http_client


class ContentSource(Protocol):
    """Read-mostly versioned content, addressed by key and revision id."""

    def is_available(self) -> bool: ...

    def fetch_revision(self, content_key: str) -> str: ...

    def fetch_payload(self, content_key: str, revision_id: str) -> bytes: ...


class NullContentSource:
    def is_available(self) -> bool:
        return False

    def fetch_revision(self, content_key: str) -> str:
        raise PermanentRemoteError("no content source configured")

    def fetch_payload(self, content_key: str, revision_id: str) -> bytes:
        raise PermanentRemoteError("no content source configured")


class InMemoryContentSource:
    """Content held in process; revision ids are sha256 digests of the payload."""

    def __init__(self, contents: dict[str, bytes] | None = None) -> None:
        self._lock = threading.Lock()
        self._contents: dict[str, bytes] = dict(contents or {})
        self.revision_calls = 0
        self.payload_calls = 0

    def publish(self, content_key: str, payload: bytes) -> str:
        with self._lock:
            self._contents[content_key] = bytes(payload)
        return self.revision_for(payload)

    @staticmethod
    def revision_for(payload: bytes) -> str:
        return hashlib.sha256(payload).hexdigest()

    def is_available(self) -> bool:
        return True

    def fetch_revision(self, content_key: str) -> str:
        with self._lock:
            self.revision_calls += 1
            payload = self._contents.get(content_key)
        if payload is None:
            raise PermanentRemoteError(f"unknown content key: {content_key}")
        return self.revision_for(payload)

    def fetch_payload(self, content_key: str, revision_id: str) -> bytes:
        with self._lock:
            self.payload_calls += 1
            payload = self._contents.get(content_key)
        if payload is None:
            raise PermanentRemoteError(f"unknown content key: {content_key}")
        if self.revision_for(payload) != revision_id:
            raise TransientRemoteError(f"revision {revision_id} superseded for {content_key}")
        return payload


class HttpContentSource:
    """``GET {base}/v1/content/{key}/revision`` and ``GET {base}/v1/content/{key}?revision=``."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: float = 10.0,
        headers: dict[str, str] | None = None,
    ):
        self.base_url = http_client.build_base_url(base_url or "")
        self.timeout_s = timeout_s
        self.headers = dict(headers or {})

    def is_available(self) -> bool:
        return bool(self.base_url)

    def _url(self, content_key: str) -> str:
        return f"{self.base_url}/v1/content/{http_client.path_segment(content_key)}"

    def fetch_revision(self, content_key: str) -> str:
        payload = http_client.call_json(
            "GET",
            f"{self._url(content_key)}/revision",
            action="content revision",
            headers=self.headers,
            timeout_s=self.timeout_s,
        )
        revision = (payload or {}).get("revision")
        if not isinstance(revision, str) or not revision:
            raise PermanentRemoteError("content revision missing from response")
        return revision

    def fetch_payload(self, content_key: str, revision_id: str) -> bytes:
        payload = http_client.call_json(
            "GET",
            f"{self._url(content_key)}?revision={http_client.path_segment(revision_id)}",
            action="content fetch",
            headers=self.headers,
            timeout_s=self.timeout_s,
        )
        body = payload or {}
        if body.get("revision") not in (None, revision_id):
            raise TransientRemoteError("content revision changed during fetch")
        return decode_payload(body.get("payload_b64"))
