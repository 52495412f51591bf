from __future__ import annotations

import json
import os
import warnings
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/localfirst/config.json").expanduser()

CONFIG_ENV_OVERRIDES = {
    "db_path": "LOCALFIRST_DB_PATH",
    "remote_enabled": "LOCALFIRST_REMOTE_ENABLED",
    "remote_url": "LOCALFIRST_REMOTE_URL",
    "content_url": "LOCALFIRST_CONTENT_URL",
    "sync_poll_interval_s": "LOCALFIRST_SYNC_POLL_INTERVAL_S",
    "remote_timeout_s": "LOCALFIRST_REMOTE_TIMEOUT_S",
    "sync_max_attempts": "LOCALFIRST_SYNC_MAX_ATTEMPTS",
    "sync_backoff_base_s": "LOCALFIRST_SYNC_BACKOFF_BASE_S",
    "sync_backoff_cap_s": "LOCALFIRST_SYNC_BACKOFF_CAP_S",
    "content_ttl_s": "LOCALFIRST_CONTENT_TTL_S",
}

_INT_KEYS = {"sync_max_attempts", "content_ttl_s"}
_FLOAT_KEYS = {
    "sync_poll_interval_s",
    "remote_timeout_s",
    "sync_backoff_base_s",
    "sync_backoff_cap_s",
}
_BOOL_KEYS = {"remote_enabled"}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("LOCALFIRST_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
    return config_path


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class LocalFirstConfig:
    db_path: str | None = None
    # Remote sync and content fetches stay off until explicitly enabled.
    remote_enabled: bool = False
    remote_url: str | None = None
    content_url: str | None = None
    sync_poll_interval_s: float = 30.0
    remote_timeout_s: float = 10.0
    sync_max_attempts: int = 8
    sync_backoff_base_s: float = 1.0
    sync_backoff_cap_s: float = 300.0
    content_ttl_s: int = 3600

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in {"1", "true", "yes", "on"}:
        return True
    if value.lower() in {"0", "false", "off", "no"}:
        return False
    return default


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _parse_float(value: object, default: float, *, key: str) -> float:
    if value is None:
        return default
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return _parse_bool(value, default)
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def _coerce_value(cfg: LocalFirstConfig, key: str, value: Any) -> Any:
    current = getattr(cfg, key)
    if key in _INT_KEYS:
        return _parse_int(value, current, key=key)
    if key in _FLOAT_KEYS:
        return _parse_float(value, current, key=key)
    if key in _BOOL_KEYS:
        return _coerce_bool(value, current, key=key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def load_config(path: Path | None = None) -> LocalFirstConfig:
    cfg = LocalFirstConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text() or "{}")
        except json.JSONDecodeError:
            data = {}
        if isinstance(data, dict):
            cfg = _apply_dict(cfg, data)
    cfg = _apply_dict(cfg, get_env_overrides())
    return cfg


def _apply_dict(cfg: LocalFirstConfig, data: dict[str, Any]) -> LocalFirstConfig:
    for key, value in data.items():
        if not hasattr(cfg, key) or key == "to_dict":
            continue
        setattr(cfg, key, _coerce_value(cfg, key, value))
    return cfg


def coerce_config_value(key: str, value: str) -> Any:
    """Parse a CLI-provided string for ``key`` into the stored JSON type."""

    cfg = LocalFirstConfig()
    if not hasattr(cfg, key) or key == "to_dict":
        raise ValueError(f"unknown config key: {key}")
    if key in _BOOL_KEYS:
        parsed = _parse_bool(value, default=None)  # type: ignore[arg-type]
        if parsed is None:
            raise ValueError(f"invalid bool for {key}: {value!r}")
        return parsed
    if key in _INT_KEYS:
        try:
            return int(value)
        except ValueError as exc:
            raise ValueError(f"invalid int for {key}: {value!r}") from exc
    if key in _FLOAT_KEYS:
        try:
            return float(value)
        except ValueError as exc:
            raise ValueError(f"invalid float for {key}: {value!r}") from exc
    return value
