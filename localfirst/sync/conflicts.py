from __future__ import annotations

import logging

from ..errors import ConflictDetected
from ..store import LocalStore, Record
from ..store.utils import history_prefix

logger = logging.getLogger(__name__)


def _clock_tuple(last_modified_at: float, version: int | None) -> tuple[float, int]:
    return (float(last_modified_at or 0.0), int(version or 0))


def _tiebreak_key(record: Record) -> tuple[int, bytes, str]:
    return (0 if record.deleted else 1, bytes(record.payload), record.id)


class ConflictResolver:
    """Last-writer-wins reconciliation of a local and a remote record.

    Ordering: ``last_modified_at``, then version magnitude (the local
    record's ``local_version`` against the remote's ``remote_version``),
    then a stable byte ordering of the contents. Identical inputs always
    yield the same winner, which is one of the two records passed in.
    """

    def __init__(self, store: LocalStore | None = None, *, keep_history: bool = False):
        if keep_history and store is None:
            raise ValueError("keep_history requires a store")
        self.store = store
        self.keep_history = keep_history

    def resolve(self, local: Record, remote: Record) -> Record:
        local_clock = _clock_tuple(local.last_modified_at, local.local_version)
        remote_clock = _clock_tuple(remote.last_modified_at, remote.remote_version)
        if local_clock != remote_clock:
            winner = local if local_clock > remote_clock else remote
        elif _tiebreak_key(local) != _tiebreak_key(remote):
            winner = local if _tiebreak_key(local) > _tiebreak_key(remote) else remote
        else:
            # Same content at the same clock: keep the remote copy.
            winner = remote
        loser = remote if winner is local else local
        detected = ConflictDetected(local.collection, local.id, "local" if winner is local else "remote")
        logger.info("%s", detected)
        if self.keep_history:
            self._record_loser(loser, winner="local" if winner is local else "remote")
        return winner

    def history(self, collection: str, record_id: str) -> list[dict]:
        if self.store is None:
            return []
        prefix = history_prefix(collection, record_id)
        return [self.store.decode_json(key, raw) for key, raw in self.store.scan(prefix)]

    def _record_loser(self, loser: Record, *, winner: str) -> None:
        assert self.store is not None
        prefix = history_prefix(loser.collection, loser.id)
        index = self.store.count(prefix) + 1
        entry = loser.to_dict()
        entry["winner"] = winner
        self.store.put_json(f"{prefix}{index:08d}", entry)
