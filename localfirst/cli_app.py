from __future__ import annotations

import logging
import os

import typer
from rich import print

from . import __version__
from .commands.common import read_config_or_exit, runtime_from_path, write_config_or_exit
from .commands.config_cmds import config_set_cmd, config_show_cmd
from .commands.content_cmds import content_get_cmd, content_refresh_cmd
from .commands.queue_cmds import queue_dead_cmd, queue_requeue_cmd, queue_status_cmd
from .commands.record_cmds import delete_cmd, get_cmd, list_cmd, put_cmd
from .commands.sync_cmds import sync_daemon_cmd, sync_once_cmd, sync_status_cmd
from .config import coerce_config_value, get_config_path, load_config
from .runtime import LocalFirstRuntime

app = typer.Typer(help="localfirst: local-first records with background remote sync")
queue_app = typer.Typer(help="Inspect and repair the sync queue")
sync_app = typer.Typer(help="Run and inspect remote sync")
content_app = typer.Typer(help="Cached remote content")
config_app = typer.Typer(help="Show and edit configuration")
app.add_typer(queue_app, name="queue")
app.add_typer(sync_app, name="sync")
app.add_typer(content_app, name="content")
app.add_typer(config_app, name="config")


@app.callback()
def _main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    level = logging.DEBUG if verbose else os.environ.get("LOCALFIRST_LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _runtime(db_path: str | None) -> LocalFirstRuntime:
    return runtime_from_path(db_path)


@app.command()
def put(
    collection: str,
    record_id: str,
    value: str,
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Write a record locally; it syncs in the background."""

    put_cmd(
        runtime_from_path=_runtime,
        db_path=db_path,
        collection=collection,
        record_id=record_id,
        value=value,
    )


@app.command()
def get(
    collection: str,
    record_id: str,
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    show_meta: bool = typer.Option(False, "--meta", help="Also print versions and sync state"),
) -> None:
    """Print a record's payload."""

    get_cmd(
        runtime_from_path=_runtime,
        db_path=db_path,
        collection=collection,
        record_id=record_id,
        show_meta=show_meta,
    )


@app.command()
def delete(
    collection: str,
    record_id: str,
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Delete a record locally and queue the remote delete."""

    delete_cmd(runtime_from_path=_runtime, db_path=db_path, collection=collection, record_id=record_id)


@app.command("list")
def list_records(
    collection: str,
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    include_deleted: bool = typer.Option(False, "--include-deleted", help="Show tombstones"),
) -> None:
    """List records in a collection with their sync state."""

    list_cmd(
        runtime_from_path=_runtime,
        db_path=db_path,
        collection=collection,
        include_deleted=include_deleted,
    )


@queue_app.command("status")
def queue_status(
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    verbose: bool = typer.Option(False, "--verbose", help="List every queue item"),
) -> None:
    """Show sync queue counts."""

    queue_status_cmd(runtime_from_path=_runtime, db_path=db_path, verbose=verbose)


@queue_app.command("dead")
def queue_dead(db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    """List dead-lettered items."""

    queue_dead_cmd(runtime_from_path=_runtime, db_path=db_path)


@queue_app.command("requeue")
def queue_requeue(
    item_id: str = typer.Argument(..., help="Queue item id (collection:record_id)"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Resubmit a dead-lettered item."""

    queue_requeue_cmd(runtime_from_path=_runtime, db_path=db_path, item_id=item_id)


@sync_app.command("once")
def sync_once(db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    """Run a single sync pass."""

    sync_once_cmd(runtime_from_path=_runtime, db_path=db_path)


@sync_app.command("daemon")
def sync_daemon(db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    """Run the sync worker in the foreground."""

    sync_daemon_cmd(runtime_from_path=_runtime, db_path=db_path)


@sync_app.command("status")
def sync_status(
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Show sync configuration and worker health."""

    sync_status_cmd(
        runtime_from_path=_runtime,
        load_config=load_config,
        db_path=db_path,
        as_json=as_json,
    )


@content_app.command("get")
def content_get(
    content_key: str,
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Print the cached copy of a content bundle."""

    content_get_cmd(runtime_from_path=_runtime, db_path=db_path, content_key=content_key)


@content_app.command("refresh")
def content_refresh(
    content_key: str,
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Revalidate a content bundle against the remote now."""

    content_refresh_cmd(runtime_from_path=_runtime, db_path=db_path, content_key=content_key)


@config_app.command("show")
def config_show() -> None:
    """Print the effective configuration."""

    config_show_cmd(load_config=load_config, get_config_path=get_config_path)


@config_app.command("set")
def config_set(key: str, value: str) -> None:
    """Persist one config value."""

    config_set_cmd(
        read_config_or_exit=read_config_or_exit,
        write_config_or_exit=write_config_or_exit,
        coerce_config_value=coerce_config_value,
        key=key,
        value=value,
    )


def main() -> None:
    app()


@app.command("version")
def version() -> None:
    """Print version."""

    print(__version__)
