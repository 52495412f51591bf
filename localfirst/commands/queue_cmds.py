from __future__ import annotations

import datetime as dt

import typer
from rich import print

from localfirst.commands.common import split_item_id


def _format_ts(value: float) -> str:
    return dt.datetime.fromtimestamp(value, dt.UTC).isoformat(timespec="seconds")


def queue_status_cmd(*, runtime_from_path, db_path: str | None, verbose: bool) -> None:
    """Show pending and dead-lettered sync queue items."""

    runtime = runtime_from_path(db_path)
    try:
        counts = runtime.queue.counts()
        items = runtime.queue.items() if verbose else []
    finally:
        runtime.close()
    print("[bold]Sync queue[/bold]")
    print(f"- Pending: {counts['pending']} (ready {counts['ready']})")
    print(f"- Dead-lettered: {counts['dead_lettered']}")
    for item in items:
        error = f" | {item.last_error}: {item.last_error_detail}" if item.last_error else ""
        print(
            f"{item.item_id}|{item.operation}|{item.status}|attempts={item.attempt_count}"
            f"|next={_format_ts(item.next_retry_at)}{error}"
        )


def queue_dead_cmd(*, runtime_from_path, db_path: str | None) -> None:
    runtime = runtime_from_path(db_path)
    try:
        items = runtime.queue.dead_letters()
    finally:
        runtime.close()
    if not items:
        print("No dead-lettered items")
        return
    for item in items:
        print(
            f"{item.item_id}|{item.operation}|attempts={item.attempt_count}"
            f"|{item.last_error}|{item.last_error_detail or ''}"
        )


def queue_requeue_cmd(*, runtime_from_path, db_path: str | None, item_id: str) -> None:
    """Give a dead-lettered item a fresh retry budget."""

    collection, record_id = split_item_id(item_id)
    runtime = runtime_from_path(db_path)
    try:
        item = runtime.queue.requeue(f"{collection}:{record_id}")
    finally:
        runtime.close()
    if item is None:
        print(f"[yellow]No queue item {item_id}[/yellow]")
        raise typer.Exit(code=1)
    print(f"[green]Requeued {item.item_id}[/green]")
