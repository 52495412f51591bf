from __future__ import annotations

import threading
from typing import Protocol

from ..errors import PermanentRemoteError, RemoteConflictError
from ..store.types import SYNC_CLEAN, Record, decode_payload, encode_payload
from . import http_client


class RemoteBackend(Protocol):
    """Document-style remote store the sync worker mirrors records into.

    ``push_record`` and ``delete_record`` return the version the remote
    accepted. Implementations assign a version no lower than
    ``local_version`` so a synced record's local and remote versions agree.
    Failures raise ``TransientRemoteError``, ``PermanentRemoteError`` or
    ``RemoteConflictError``.
    """

    def is_available(self) -> bool: ...

    def fetch_record(self, collection: str, record_id: str) -> Record | None: ...

    def push_record(
        self,
        collection: str,
        record_id: str,
        payload: bytes,
        expected_remote_version: int | None,
        *,
        modified_at: float,
        local_version: int,
    ) -> int: ...

    def delete_record(
        self,
        collection: str,
        record_id: str,
        expected_remote_version: int | None,
        *,
        local_version: int,
    ) -> int: ...


class NullRemoteBackend:
    """Stand-in when no remote is configured; never available."""

    def is_available(self) -> bool:
        return False

    def fetch_record(self, collection: str, record_id: str) -> Record | None:
        raise PermanentRemoteError("no remote backend configured")

    def push_record(
        self,
        collection: str,
        record_id: str,
        payload: bytes,
        expected_remote_version: int | None,
        *,
        modified_at: float,
        local_version: int,
    ) -> int:
        raise PermanentRemoteError("no remote backend configured")

    def delete_record(
        self,
        collection: str,
        record_id: str,
        expected_remote_version: int | None,
        *,
        local_version: int,
    ) -> int:
        raise PermanentRemoteError("no remote backend configured")


class InMemoryRemoteBackend:
    """Process-local remote with optimistic version checks.

    Used by tests and for running the stack without a server.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[tuple[str, str], Record] = {}
        # Versions survive deletes so a recreated record keeps counting up.
        self._versions: dict[tuple[str, str], int] = {}

    def is_available(self) -> bool:
        return True

    def fetch_record(self, collection: str, record_id: str) -> Record | None:
        with self._lock:
            record = self._records.get((collection, record_id))
            return record.copy() if record is not None else None

    def push_record(
        self,
        collection: str,
        record_id: str,
        payload: bytes,
        expected_remote_version: int | None,
        *,
        modified_at: float,
        local_version: int,
    ) -> int:
        key = (collection, record_id)
        with self._lock:
            current = self._records.get(key)
            current_version = current.remote_version if current is not None else None
            if current_version != expected_remote_version:
                raise RemoteConflictError(remote_version=current_version)
            version = max(self._versions.get(key, 0) + 1, local_version)
            self._versions[key] = version
            self._records[key] = Record(
                collection=collection,
                id=record_id,
                payload=bytes(payload),
                local_version=version,
                remote_version=version,
                last_modified_at=modified_at,
                sync_state=SYNC_CLEAN,
            )
            return version

    def delete_record(
        self,
        collection: str,
        record_id: str,
        expected_remote_version: int | None,
        *,
        local_version: int,
    ) -> int:
        key = (collection, record_id)
        with self._lock:
            current = self._records.get(key)
            current_version = current.remote_version if current is not None else None
            if current_version != expected_remote_version:
                raise RemoteConflictError(remote_version=current_version)
            version = max(self._versions.get(key, 0) + 1, local_version)
            self._versions[key] = version
            self._records.pop(key, None)
            return version

    def put_remote(self, record: Record) -> None:
        """Simulate a write made by another client."""

        key = (record.collection, record.id)
        with self._lock:
            version = int(record.remote_version or self._versions.get(key, 0) + 1)
            self._versions[key] = max(self._versions.get(key, 0), version)
            self._records[key] = record.copy(
                remote_version=version, local_version=version, sync_state=SYNC_CLEAN
            )

    def snapshot(self) -> dict[tuple[str, str], Record]:
        with self._lock:
            return {key: record.copy() for key, record in self._records.items()}


class HttpRemoteBackend:
    """JSON-over-HTTP remote.

    Layout: ``{base}/v1/records/{collection}/{id}`` supports GET, PUT and
    DELETE; bodies carry ``payload_b64``, ``version`` and ``modified_at``.
    """

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

    def _url(self, collection: str, record_id: str) -> str:
        return (
            f"{self.base_url}/v1/records/"
            f"{http_client.path_segment(collection)}/{http_client.path_segment(record_id)}"
        )

    def fetch_record(self, collection: str, record_id: str) -> Record | None:
        payload = http_client.call_json(
            "GET",
            self._url(collection, record_id),
            action="record fetch",
            headers=self.headers,
            timeout_s=self.timeout_s,
            allow_not_found=True,
        )
        if payload is None or payload.get("deleted"):
            return None
        version = payload.get("version")
        if not isinstance(version, int):
            raise PermanentRemoteError("record fetch returned no version")
        return Record(
            collection=collection,
            id=record_id,
            payload=decode_payload(payload.get("payload_b64")),
            local_version=version,
            remote_version=version,
            last_modified_at=float(payload.get("modified_at") or 0.0),
            sync_state=SYNC_CLEAN,
        )

    def push_record(
        self,
        collection: str,
        record_id: str,
        payload: bytes,
        expected_remote_version: int | None,
        *,
        modified_at: float,
        local_version: int,
    ) -> int:
        response = http_client.call_json(
            "PUT",
            self._url(collection, record_id),
            action="record push",
            body={
                "payload_b64": encode_payload(payload),
                "expected_version": expected_remote_version,
                "version": local_version,
                "modified_at": modified_at,
            },
            headers=self.headers,
            timeout_s=self.timeout_s,
        )
        return self._accepted_version(response, action="record push")

    def delete_record(
        self,
        collection: str,
        record_id: str,
        expected_remote_version: int | None,
        *,
        local_version: int,
    ) -> int:
        response = http_client.call_json(
            "DELETE",
            self._url(collection, record_id),
            action="record delete",
            body={"expected_version": expected_remote_version, "version": local_version},
            headers=self.headers,
            timeout_s=self.timeout_s,
        )
        return self._accepted_version(response, action="record delete")

    @staticmethod
    def _accepted_version(response: dict | None, *, action: str) -> int:
        version = (response or {}).get("version")
        if not isinstance(version, int):
            raise PermanentRemoteError(f"{action} returned no version")
        return version
