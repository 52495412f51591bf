from __future__ import annotations

import pytest

from localfirst.store import LocalStore, Record
from localfirst.store.types import SYNC_CLEAN
from localfirst.sync import ConflictResolver


def _local(payload: bytes, *, at: float, version: int = 2, deleted: bool = False) -> Record:
    return Record(
        collection="notes",
        id="a",
        payload=payload,
        local_version=version,
        remote_version=1,
        last_modified_at=at,
        deleted=deleted,
    )


def _remote(payload: bytes, *, at: float, version: int = 3) -> Record:
    return Record(
        collection="notes",
        id="a",
        payload=payload,
        local_version=version,
        remote_version=version,
        last_modified_at=at,
        sync_state=SYNC_CLEAN,
    )


def test_newer_timestamp_wins() -> None:
    resolver = ConflictResolver()
    local = _local(b"mine", at=200.0)
    remote = _remote(b"theirs", at=100.0)

    assert resolver.resolve(local, remote) is local
    assert resolver.resolve(_local(b"mine", at=50.0), remote) is remote


def test_timestamp_tie_falls_back_to_version() -> None:
    resolver = ConflictResolver()
    local = _local(b"mine", at=100.0, version=5)
    remote = _remote(b"theirs", at=100.0, version=3)

    assert resolver.resolve(local, remote) is local
    assert resolver.resolve(_local(b"mine", at=100.0, version=2), remote) is remote


def test_full_tie_is_deterministic_in_both_directions() -> None:
    resolver = ConflictResolver()
    local = _local(b"bbb", at=100.0, version=3)
    remote = _remote(b"aaa", at=100.0, version=3)
    swapped_local = _local(b"aaa", at=100.0, version=3)
    swapped_remote = _remote(b"bbb", at=100.0, version=3)

    assert resolver.resolve(local, remote).payload == b"bbb"
    assert resolver.resolve(swapped_local, swapped_remote).payload == b"bbb"
    assert resolver.resolve(local, remote).payload == resolver.resolve(local, remote).payload


def test_live_record_beats_tombstone_on_tie() -> None:
    resolver = ConflictResolver()
    local = _local(b"", at=100.0, version=3, deleted=True)
    remote = _remote(b"theirs", at=100.0, version=3)

    assert resolver.resolve(local, remote) is remote


def test_identical_inputs_keep_remote() -> None:
    resolver = ConflictResolver()
    local = _local(b"same", at=100.0, version=3)
    remote = _remote(b"same", at=100.0, version=3)

    assert resolver.resolve(local, remote) is remote


def test_loser_history_is_opt_in(store: LocalStore) -> None:
    ConflictResolver(store).resolve(_local(b"mine", at=1.0), _remote(b"theirs", at=2.0))
    assert ConflictResolver(store).history("notes", "a") == []

    resolver = ConflictResolver(store, keep_history=True)
    resolver.resolve(_local(b"mine", at=1.0), _remote(b"theirs", at=2.0))
    resolver.resolve(_local(b"again", at=5.0), _remote(b"theirs", at=2.0))

    history = resolver.history("notes", "a")
    assert [entry["winner"] for entry in history] == ["remote", "local"]
    assert history[0]["payload"] == "bWluZQ=="


def test_history_requires_store() -> None:
    with pytest.raises(ValueError):
        ConflictResolver(keep_history=True)


def test_history_is_kept_per_record_when_ids_share_a_prefix(store: LocalStore) -> None:
    resolver = ConflictResolver(store, keep_history=True)
    mine = _local(b"mine", at=1.0).copy(collection="c", id="b:c")
    theirs = _remote(b"theirs", at=2.0).copy(collection="c", id="b:c")
    resolver.resolve(mine, theirs)

    assert resolver.history("c", "b") == []
    assert [entry["id"] for entry in resolver.history("c", "b:c")] == ["b:c"]

    resolver.resolve(mine.copy(id="b"), theirs.copy(id="b"))

    assert [entry["id"] for entry in resolver.history("c", "b")] == ["b"]
    assert [entry["id"] for entry in resolver.history("c", "b:c")] == ["b:c"]
