from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from .. import db
from ..errors import LocalIOError
from .utils import meta_key, now_iso

logger = logging.getLogger(__name__)


class LocalStore:
    """Durable key/value persistence shared by every other component.

    Every ``put`` commits before returning, so a value is either fully
    written or not visible at all. Access is serialized by one lock.
    """

    SCAN_PAGE_SIZE = 200

    def __init__(self, db_path: Path | str = db.DEFAULT_DB_PATH):
        self.db_path = Path(db_path).expanduser()
        self._lock = threading.RLock()
        try:
            self.conn = db.connect(self.db_path, check_same_thread=False)
            db.initialize_schema(self.conn)
        except (sqlite3.Error, OSError) as exc:
            raise LocalIOError(f"failed to open store at {self.db_path}: {exc}") from exc

    def put(self, key: str, value: bytes) -> None:
        if not key:
            raise ValueError("key is required")
        with self._lock:
            try:
                self.conn.execute(
                    """
                    INSERT INTO kv(key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, sqlite3.Binary(bytes(value)), now_iso()),
                )
                self.conn.commit()
            except sqlite3.Error as exc:
                self._rollback()
                raise LocalIOError(f"put failed for {key}: {exc}") from exc

    def get(self, key: str) -> bytes | None:
        with self._lock:
            try:
                row = self.conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
            except sqlite3.Error as exc:
                raise LocalIOError(f"get failed for {key}: {exc}") from exc
        if row is None:
            return None
        return bytes(row["value"])

    def delete(self, key: str) -> bool:
        with self._lock:
            try:
                cur = self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))
                self.conn.commit()
            except sqlite3.Error as exc:
                self._rollback()
                raise LocalIOError(f"delete failed for {key}: {exc}") from exc
        return cur.rowcount > 0

    def scan(self, prefix: str = "") -> Iterator[tuple[str, bytes]]:
        """Yield ``(key, value)`` pairs under ``prefix`` in key order.

        Pages are fetched lazily by last-seen key, so the iterator tolerates
        concurrent writes and a fresh call always restarts from the top.
        """

        last_key: str | None = None
        while True:
            rows = self._scan_page(prefix, last_key)
            if not rows:
                return
            for row in rows:
                key = str(row["key"])
                yield key, bytes(row["value"])
                last_key = key
            if len(rows) < self.SCAN_PAGE_SIZE:
                return

    def _scan_page(self, prefix: str, after: str | None) -> list[sqlite3.Row]:
        clauses = ["substr(key, 1, ?) = ?"]
        params: list[Any] = [len(prefix), prefix]
        if after is None:
            clauses.append("key >= ?")
            params.append(prefix)
        else:
            clauses.append("key > ?")
            params.append(after)
        params.append(self.SCAN_PAGE_SIZE)
        with self._lock:
            try:
                return self.conn.execute(
                    f"""
                    SELECT key, value FROM kv
                    WHERE {" AND ".join(clauses)}
                    ORDER BY key
                    LIMIT ?
                    """,
                    params,
                ).fetchall()
            except sqlite3.Error as exc:
                raise LocalIOError(f"scan failed for prefix {prefix!r}: {exc}") from exc

    def count(self, prefix: str = "") -> int:
        with self._lock:
            try:
                row = self.conn.execute(
                    "SELECT COUNT(*) AS n FROM kv WHERE substr(key, 1, ?) = ?",
                    (len(prefix), prefix),
                ).fetchone()
            except sqlite3.Error as exc:
                raise LocalIOError(f"count failed for prefix {prefix!r}: {exc}") from exc
        return int(row["n"] or 0)

    def put_json(self, key: str, data: dict[str, Any]) -> None:
        self.put(key, db.to_json(data).encode("utf-8"))

    def get_json(self, key: str) -> dict[str, Any] | None:
        raw = self.get(key)
        if raw is None:
            return None
        return self.decode_json(key, raw)

    @staticmethod
    def decode_json(key: str, raw: bytes) -> dict[str, Any]:
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise LocalIOError(f"corrupt entry at {key}") from exc
        if not isinstance(data, dict):
            raise LocalIOError(f"corrupt entry at {key}")
        return data

    def get_meta(self, name: str) -> dict[str, Any]:
        raw = self.get(meta_key(name))
        data = db.from_json(raw)
        return data if isinstance(data, dict) else {}

    def update_meta(self, name: str, **values: Any) -> dict[str, Any]:
        with self._lock:
            data = self.get_meta(name)
            data.update(values)
            self.put_json(meta_key(name), data)
        return data

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    def __enter__(self) -> LocalStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _rollback(self) -> None:
        try:
            self.conn.rollback()
        except sqlite3.Error:
            logger.warning("rollback failed after store error", exc_info=True)
