from __future__ import annotations

import json

import typer
from rich import print


def config_show_cmd(*, load_config, get_config_path) -> None:
    """Print the effective config (file plus environment overrides)."""

    print(f"# {get_config_path()}")
    print(json.dumps(load_config().to_dict(), indent=2))


def config_set_cmd(
    *,
    read_config_or_exit,
    write_config_or_exit,
    coerce_config_value,
    key: str,
    value: str,
) -> None:
    try:
        parsed = coerce_config_value(key, value)
    except ValueError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    data = read_config_or_exit()
    data[key] = parsed
    write_config_or_exit(data)
    print(f"[green]Set {key} = {json.dumps(parsed)}[/green]")
