from __future__ import annotations

import datetime as dt
import json
from collections.abc import Callable
from typing import Any

from .store import RecordStore

SETTINGS_COLLECTION = "settings"
STREAKS_COLLECTION = "streaks"


class SettingsRepository:
    """JSON settings stored as one record per key.

    Writes land locally first; reads always see the latest local value.
    """

    def __init__(self, records: RecordStore, *, collection: str = SETTINGS_COLLECTION):
        self.records = records
        self.collection = collection

    def get(self, key: str, default: Any = None) -> Any:
        raw = self.records.read(self.collection, key)
        if raw is None:
            return default
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return default

    def set(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False, sort_keys=True).encode("utf-8")
        self.records.write(self.collection, key, payload)

    def delete(self, key: str) -> bool:
        return self.records.remove(self.collection, key) is not None

    def all(self) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for record in self.records.list(self.collection):
            try:
                values[record.id] = json.loads(record.payload.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError):
                continue
        return values


def _today() -> dt.date:
    return dt.date.today()


class StreakCounter:
    """Consecutive-day counter, e.g. for daily practice reminders."""

    def __init__(
        self,
        records: RecordStore,
        *,
        collection: str = STREAKS_COLLECTION,
        today: Callable[[], dt.date] = _today,
    ):
        self.records = records
        self.collection = collection
        self._today = today

    def current(self, name: str) -> int:
        state = self._load(name)
        if state is None:
            return 0
        last_day = dt.date.fromisoformat(state["last_day"])
        if (self._today() - last_day).days > 1:
            return 0
        return int(state["count"])

    def record_activity(self, name: str) -> int:
        """Count today for ``name``; repeated calls on one day are no-ops."""

        today = self._today()
        state = self._load(name)
        if state is None:
            count = 1
        else:
            last_day = dt.date.fromisoformat(state["last_day"])
            gap = (today - last_day).days
            if gap <= 0:
                return int(state["count"])
            count = int(state["count"]) + 1 if gap == 1 else 1
        payload = {"count": count, "last_day": today.isoformat()}
        self.records.write(self.collection, name, json.dumps(payload, sort_keys=True).encode("utf-8"))
        return count

    def _load(self, name: str) -> dict[str, Any] | None:
        raw = self.records.read(self.collection, name)
        if raw is None:
            return None
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None
        if not isinstance(data, dict) or "last_day" not in data:
            return None
        return data
