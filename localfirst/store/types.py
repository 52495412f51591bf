from __future__ import annotations

import base64
from dataclasses import dataclass, field, replace
from typing import Any

SYNC_CLEAN = "clean"
SYNC_PENDING_PUSH = "pending_push"
SYNC_PENDING_PULL = "pending_pull"
SYNC_CONFLICT = "conflict"
SYNC_STATES = (SYNC_CLEAN, SYNC_PENDING_PUSH, SYNC_PENDING_PULL, SYNC_CONFLICT)

OP_CREATE = "create"
OP_UPDATE = "update"
OP_DELETE = "delete"
OPERATIONS = (OP_CREATE, OP_UPDATE, OP_DELETE)

QUEUE_PENDING = "pending"
QUEUE_DEAD_LETTERED = "dead_lettered"

FRESHNESS_FRESH = "fresh"
FRESHNESS_STALE = "stale"
FRESHNESS_OFFLINE_FALLBACK = "offline_fallback"
FRESHNESS_UNAVAILABLE = "unavailable"


def encode_payload(payload: bytes) -> str:
    return base64.b64encode(payload).decode("ascii")


def decode_payload(value: Any) -> bytes:
    if not value:
        return b""
    return base64.b64decode(str(value))


@dataclass
class Record:
    collection: str
    id: str
    payload: bytes
    local_version: int = 0
    remote_version: int | None = None
    last_modified_at: float = 0.0
    sync_state: str = SYNC_PENDING_PUSH
    deleted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "collection": self.collection,
            "id": self.id,
            "payload": encode_payload(self.payload),
            "local_version": self.local_version,
            "remote_version": self.remote_version,
            "last_modified_at": self.last_modified_at,
            "sync_state": self.sync_state,
            "deleted": self.deleted,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Record:
        remote_version = data.get("remote_version")
        return cls(
            collection=str(data["collection"]),
            id=str(data["id"]),
            payload=decode_payload(data.get("payload")),
            local_version=int(data.get("local_version") or 0),
            remote_version=int(remote_version) if remote_version is not None else None,
            last_modified_at=float(data.get("last_modified_at") or 0.0),
            sync_state=str(data.get("sync_state") or SYNC_PENDING_PUSH),
            deleted=bool(data.get("deleted")),
        )

    def copy(self, **changes: Any) -> Record:
        return replace(self, **changes)


@dataclass
class SyncQueueItem:
    collection: str
    record_id: str
    operation: str
    enqueued_at: float
    seq: int
    attempt_count: int = 0
    next_retry_at: float = 0.0
    last_error: str | None = None
    last_error_detail: str | None = None
    status: str = QUEUE_PENDING
    # Bumped on every coalesced mutation so an in-flight push can tell it went stale.
    generation: int = 1
    backoff_s: float = 0.0

    @property
    def item_id(self) -> str:
        return f"{self.collection}:{self.record_id}"

    @property
    def dead_lettered(self) -> bool:
        return self.status == QUEUE_DEAD_LETTERED

    def to_dict(self) -> dict[str, Any]:
        return {
            "collection": self.collection,
            "record_id": self.record_id,
            "operation": self.operation,
            "enqueued_at": self.enqueued_at,
            "seq": self.seq,
            "attempt_count": self.attempt_count,
            "next_retry_at": self.next_retry_at,
            "last_error": self.last_error,
            "last_error_detail": self.last_error_detail,
            "status": self.status,
            "generation": self.generation,
            "backoff_s": self.backoff_s,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncQueueItem:
        return cls(
            collection=str(data["collection"]),
            record_id=str(data["record_id"]),
            operation=str(data["operation"]),
            enqueued_at=float(data["enqueued_at"]),
            seq=int(data["seq"]),
            attempt_count=int(data.get("attempt_count") or 0),
            next_retry_at=float(data.get("next_retry_at") or 0.0),
            last_error=data.get("last_error"),
            last_error_detail=data.get("last_error_detail"),
            status=str(data.get("status") or QUEUE_PENDING),
            generation=int(data.get("generation") or 1),
            backoff_s=float(data.get("backoff_s") or 0.0),
        )


@dataclass
class ContentBundle:
    content_key: str
    content_hash: str
    fetched_at: float
    ttl: float
    payload: bytes

    def is_stale(self, now: float) -> bool:
        return now > self.fetched_at + self.ttl

    def to_dict(self) -> dict[str, Any]:
        return {
            "content_key": self.content_key,
            "content_hash": self.content_hash,
            "fetched_at": self.fetched_at,
            "ttl": self.ttl,
            "payload": encode_payload(self.payload),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContentBundle:
        return cls(
            content_key=str(data["content_key"]),
            content_hash=str(data["content_hash"]),
            fetched_at=float(data["fetched_at"]),
            ttl=float(data["ttl"]),
            payload=decode_payload(data.get("payload")),
        )


@dataclass(frozen=True)
class ContentResult:
    payload: bytes | None
    freshness: str
    content_hash: str | None = None
    fetched_at: float | None = None

    @property
    def available(self) -> bool:
        return self.payload is not None


@dataclass
class TickResult:
    ok: bool = True
    skipped: str | None = None
    pushed: int = 0
    pulled: int = 0
    deleted: int = 0
    conflicts: int = 0
    failed: int = 0
    dead_lettered: int = 0
    deferred: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "skipped": self.skipped,
            "pushed": self.pushed,
            "pulled": self.pulled,
            "deleted": self.deleted,
            "conflicts": self.conflicts,
            "failed": self.failed,
            "dead_lettered": self.dead_lettered,
            "deferred": self.deferred,
            "errors": list(self.errors),
        }
