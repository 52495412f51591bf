from __future__ import annotations

import json
from pathlib import Path

import pytest

from localfirst.gate import ConnectivityMonitor, FeatureGate, StaticFlag


def test_default_flag_is_off(tmp_path: Path) -> None:
    assert FeatureGate().remote_allowed() is False


def test_config_toggle_applies_on_next_check(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    gate = FeatureGate()

    config_path.write_text(json.dumps({"remote_enabled": True}))
    assert gate.remote_allowed() is True

    config_path.write_text(json.dumps({"remote_enabled": False}))
    assert gate.remote_allowed() is False


def test_env_override_enables_remote(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOCALFIRST_REMOTE_ENABLED", "1")

    assert FeatureGate().remote_allowed() is True


def test_capability_check_can_deny() -> None:
    assert FeatureGate(StaticFlag(True), capability=lambda: False).remote_allowed() is False
    assert FeatureGate(StaticFlag(True), capability=lambda: True).remote_allowed() is True


def test_failing_checks_deny() -> None:
    def boom() -> bool:
        raise RuntimeError("sdk not initialized")

    assert FeatureGate(boom).remote_allowed() is False
    assert FeatureGate(StaticFlag(True), capability=boom).remote_allowed() is False


def test_connectivity_signal() -> None:
    monitor = ConnectivityMonitor()
    gate = FeatureGate(StaticFlag(True), connectivity=monitor)

    assert gate.remote_allowed() is True
    monitor.set_online(False)
    assert gate.remote_allowed() is False
    monitor.set_online(True)
    assert gate.remote_allowed() is True


def test_connectivity_listeners_fire_on_transitions_only() -> None:
    monitor = ConnectivityMonitor(online=True)
    seen: list[bool] = []
    monitor.add_listener(seen.append)

    monitor.set_online(True)
    monitor.set_online(False)
    monitor.set_online(False)
    monitor.set_online(True)

    assert seen == [False, True]
