from __future__ import annotations

import typer
from rich import print

from localfirst.errors import RemoteError


def content_get_cmd(*, runtime_from_path, db_path: str | None, content_key: str) -> None:
    """Print the cached bundle for a key without touching the network."""

    runtime = runtime_from_path(db_path)
    try:
        result = runtime.content.get(content_key, refresh=False)
    finally:
        runtime.close()
    if not result.available:
        print(f"[yellow]{content_key} is not available yet (run `localfirst content refresh`)[/yellow]")
        raise typer.Exit(code=1)
    print(f"- Revision: {result.content_hash}")
    print(f"- Freshness: {result.freshness}")
    print((result.payload or b"").decode("utf-8", errors="replace"))


def content_refresh_cmd(*, runtime_from_path, db_path: str | None, content_key: str) -> None:
    runtime = runtime_from_path(db_path)
    try:
        bundle = runtime.content.refresh_now(content_key)
    except RemoteError as exc:
        print(f"[red]Refresh failed: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        runtime.close()
    if bundle is None:
        print("[yellow]Remote access is disabled; cached copy left as is[/yellow]")
        raise typer.Exit(code=1)
    print(f"[green]{content_key} at revision {bundle.content_hash}[/green]")
