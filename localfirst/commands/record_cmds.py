from __future__ import annotations

import typer
from rich import print

from localfirst.errors import LocalIOError


def put_cmd(*, runtime_from_path, db_path: str | None, collection: str, record_id: str, value: str) -> None:
    """Write a record locally and queue it for sync."""

    runtime = runtime_from_path(db_path)
    try:
        record = runtime.records.write(collection, record_id, value.encode("utf-8"))
    except (ValueError, LocalIOError) as exc:
        print(f"[red]Write failed: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        runtime.close()
    print(f"Stored {record.collection}:{record.id} (v{record.local_version}, {record.sync_state})")


def get_cmd(
    *, runtime_from_path, db_path: str | None, collection: str, record_id: str, show_meta: bool
) -> None:
    runtime = runtime_from_path(db_path)
    try:
        record = runtime.records.load(collection, record_id)
    finally:
        runtime.close()
    if record is None or record.deleted:
        print(f"[yellow]No record {collection}:{record_id}[/yellow]")
        raise typer.Exit(code=1)
    print(record.payload.decode("utf-8", errors="replace"))
    if show_meta:
        print(
            f"- local_version={record.local_version} remote_version={record.remote_version} "
            f"state={record.sync_state}"
        )


def delete_cmd(*, runtime_from_path, db_path: str | None, collection: str, record_id: str) -> None:
    runtime = runtime_from_path(db_path)
    try:
        record = runtime.records.remove(collection, record_id)
    finally:
        runtime.close()
    if record is None:
        print(f"[yellow]No record {collection}:{record_id}[/yellow]")
        raise typer.Exit(code=1)
    print(f"Deleted {collection}:{record_id} (pending sync)")


def list_cmd(
    *, runtime_from_path, db_path: str | None, collection: str, include_deleted: bool
) -> None:
    runtime = runtime_from_path(db_path)
    try:
        records = runtime.records.list(collection, include_deleted=include_deleted)
    finally:
        runtime.close()
    if not records:
        print(f"No records in {collection}")
        return
    for record in records:
        suffix = " (deleted)" if record.deleted else ""
        print(
            f"{record.id}|{record.sync_state}|local={record.local_version}"
            f"|remote={record.remote_version}{suffix}"
        )
