from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from .config import load_config

logger = logging.getLogger(__name__)


def _config_flag() -> bool:
    return bool(load_config().remote_enabled)


class ConnectivityMonitor:
    """Holds the latest reachability signal reported by the host app.

    ``online`` is ``None`` until something reports; listeners fire on every
    transition so a reconnect can wake the sync worker.
    """

    def __init__(self, online: bool | None = None) -> None:
        self._online = online
        self._lock = threading.Lock()
        self._listeners: list[Callable[[bool], None]] = []

    @property
    def online(self) -> bool | None:
        with self._lock:
            return self._online

    def add_listener(self, listener: Callable[[bool], None]) -> None:
        with self._lock:
            self._listeners.append(listener)

    def set_online(self, online: bool) -> None:
        with self._lock:
            changed = self._online != online
            self._online = online
            listeners = list(self._listeners)
        if not changed:
            return
        logger.info("connectivity changed: %s", "online" if online else "offline")
        for listener in listeners:
            try:
                listener(online)
            except Exception:
                logger.exception("connectivity listener failed")


class FeatureGate:
    """Single authority on whether remote sync or fetch may run right now.

    Every call re-evaluates the config flag, the optional capability check
    and the optional connectivity signal, so runtime toggles apply on the
    next check.
    """

    def __init__(
        self,
        flag: Callable[[], bool] = _config_flag,
        *,
        capability: Callable[[], bool] | None = None,
        connectivity: ConnectivityMonitor | None = None,
    ):
        self._flag = flag
        self._capability = capability
        self._connectivity = connectivity

    def remote_allowed(self) -> bool:
        try:
            if not self._flag():
                return False
        except Exception:
            logger.warning("remote flag evaluation failed; treating as disabled", exc_info=True)
            return False
        if self._capability is not None:
            try:
                if not self._capability():
                    return False
            except Exception:
                logger.warning("remote capability check failed", exc_info=True)
                return False
        if self._connectivity is not None and self._connectivity.online is False:
            return False
        return True


class StaticFlag:
    """Mutable in-process flag, for hosts that toggle remote access directly."""

    def __init__(self, enabled: bool = False) -> None:
        self.enabled = enabled

    def __call__(self) -> bool:
        return self.enabled
