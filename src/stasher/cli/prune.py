"""stasher prune: delete old snapshots and unreferenced objects.

Removes, in order:
  - snapshot rows older than the retention horizon
  - objects no longer referenced by any remaining snapshot (any path)
  - semantic index records of the deleted snapshots

Usage:
  stasher prune --days 30
  stasher prune --days 7 --yes
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from stasher.cli.common import console, engine_errors, history_exists, load_or_exit, open_engine
from stasher.cli.errors import err_no_history


def prune_cmd(
    days: Annotated[
        int | None,
        typer.Option("--days", "-d", min=0, help="Keep snapshots newer than N days (default: retention.days)."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
    root: Annotated[
        Path,
        typer.Option("--root", "-r", help="Tracked root. Defaults to current directory."),
    ] = Path("."),
) -> None:
    """Delete history older than the retention horizon."""
    root = root.resolve()
    if not history_exists(root):
        console.print(err_no_history(str(root)))
        raise typer.Exit(1)

    horizon = days if days is not None else load_or_exit(root).retention.days
    console.print(f"\nPrune snapshots older than [bold]{horizon}[/] day(s) in {root}")
    if not yes:
        if not typer.confirm("Confirm prune?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

    with open_engine(root) as engine:
        with engine_errors():
            result = engine.prune(horizon)

    console.print(
        f"\n[green]✓[/] Pruned: {result.snapshots_deleted} snapshot(s), "
        f"{result.objects_deleted} object(s) deleted"
    )
