from __future__ import annotations

import json
import threading

import typer
from rich import print


def sync_once_cmd(*, runtime_from_path, db_path: str | None) -> None:
    """Run a single sync pass in the foreground."""

    runtime = runtime_from_path(db_path)
    try:
        result = runtime.worker.run_once()
    finally:
        runtime.close()
    if result.skipped:
        print(f"[yellow]Sync skipped: {result.skipped}[/yellow]")
        raise typer.Exit(code=1)
    print(
        f"pushed={result.pushed} pulled={result.pulled} deleted={result.deleted} "
        f"conflicts={result.conflicts} failed={result.failed} "
        f"dead_lettered={result.dead_lettered} deferred={result.deferred}"
    )
    for error in result.errors:
        print(f"- {error}")
    if not result.ok:
        raise typer.Exit(code=1)


def sync_daemon_cmd(
    *,
    runtime_from_path,
    db_path: str | None,
    stop_event: threading.Event | None = None,
) -> None:
    """Run the background sync worker until interrupted."""

    runtime = runtime_from_path(db_path)
    if not runtime.gate.remote_allowed():
        runtime.close()
        print(
            "[yellow]Remote sync is disabled or unavailable "
            "(enable via `localfirst config set remote_enabled true` and set remote_url).[/yellow]"
        )
        raise typer.Exit(code=1)
    stop = stop_event or threading.Event()
    try:
        runtime.start()
        print(f"Sync worker running (poll every {runtime.worker.poll_interval_s}s)")
        while not stop.wait(1.0):
            pass
    except KeyboardInterrupt:
        print("Stopping sync worker")
    finally:
        runtime.close()


def sync_status_cmd(*, runtime_from_path, load_config, db_path: str | None, as_json: bool) -> None:
    config = load_config()
    runtime = runtime_from_path(db_path)
    try:
        status = runtime.worker.status()
        allowed = runtime.gate.remote_allowed()
    finally:
        runtime.close()
    status.pop("last_traceback", None)
    if as_json:
        payload = {
            "remote_enabled": config.remote_enabled,
            "remote_url": config.remote_url,
            "remote_allowed": allowed,
            **status,
        }
        print(json.dumps(payload, indent=2))
        return
    print("[bold]Sync[/bold]")
    print(f"- Enabled: {config.remote_enabled}")
    print(f"- Remote: {config.remote_url or 'not configured'}")
    print(f"- Remote allowed now: {allowed}")
    queue = status["queue"]
    print(f"- Queue: {queue['pending']} pending, {queue['dead_lettered']} dead-lettered")
    if status.get("last_ok_at"):
        print(f"- Last ok: {status['last_ok_at']}")
    if status.get("last_error"):
        print(f"- Last error: {status['last_error']} ({status.get('last_error_at')})")
