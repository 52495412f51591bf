from __future__ import annotations

from typing import Any

import typer
from rich import print

from localfirst.config import load_config, read_config_file, write_config_file
from localfirst.runtime import LocalFirstRuntime


def runtime_from_path(db_path: str | None) -> LocalFirstRuntime:
    return LocalFirstRuntime.from_config(load_config(), db_path=db_path)


def read_config_or_exit() -> dict[str, Any]:
    try:
        return read_config_file()
    except ValueError as exc:
        print(f"[red]Invalid config file: {exc}[/red]")
        raise typer.Exit(code=1) from exc


def write_config_or_exit(data: dict[str, Any]) -> None:
    try:
        write_config_file(data)
    except OSError as exc:
        print(f"[red]Failed to write config: {exc}[/red]")
        raise typer.Exit(code=1) from exc


def split_item_id(item_id: str) -> tuple[str, str]:
    collection, sep, record_id = item_id.partition(":")
    if not sep or not collection or not record_id:
        print(f"[red]Invalid queue item id: {item_id} (expected collection:id)[/red]")
        raise typer.Exit(code=1)
    return collection, record_id
