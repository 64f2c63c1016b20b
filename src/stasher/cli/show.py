"""stasher show: list the snapshots of a file, or show one of them."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape
from rich.syntax import Syntax
from rich.table import Table

from stasher.cli.common import console, engine_errors, history_exists, open_engine
from stasher.cli.errors import err_no_history, err_path_not_tracked
from stasher.db.models import Snapshot


def format_timestamp(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def show_cmd(
    file: Annotated[str, typer.Argument(help="File path (relative to the tracked root).")],
    snapshot: Annotated[
        str | None,
        typer.Option("--snapshot", "-s", help="Snapshot id or prefix: show its diff."),
    ] = None,
    content: Annotated[
        bool,
        typer.Option("--content", help="With --snapshot: print the full content instead of the diff."),
    ] = False,
    limit: Annotated[
        int | None,
        typer.Option("--limit", "-n", min=1, help="Show at most N snapshots."),
    ] = None,
    root: Annotated[
        Path,
        typer.Option("--root", "-r", help="Tracked root. Defaults to current directory."),
    ] = Path("."),
) -> None:
    """Show history for a file."""
    root = root.resolve()
    if not history_exists(root):
        console.print(err_no_history(str(root)))
        raise typer.Exit(1)

    with open_engine(root) as engine:
        if snapshot is None:
            with engine_errors():
                snapshots = engine.list_snapshots(file, limit=limit)
            if not snapshots:
                console.print(err_path_not_tracked(file))
                raise typer.Exit(1)
            _print_table(file, snapshots)
            return

        with engine_errors(snapshot):
            snap = engine.resolve_snapshot(file, snapshot)
            data = engine.read_snapshot(snap) if content else b""

    console.print(
        f"[bold]{escape(snap.file_path)}[/]  snapshot {snap.id}  "
        f"[dim]{format_timestamp(snap.timestamp)}[/]  "
        f"[green]+{snap.lines_added}[/] [red]-{snap.lines_removed}[/]"
    )
    if content:
        console.print(escape(data.decode("utf-8", errors="replace")), highlight=False)
    else:
        console.print(Syntax(snap.diff_patch, "diff", background_color="default"))


def _print_table(file: str, snapshots: list[Snapshot]) -> None:
    table = Table(title=f"History of {escape(file)} ({len(snapshots)} snapshots)")
    table.add_column("Snapshot")
    table.add_column("Time")
    table.add_column("+", justify="right", style="green")
    table.add_column("−", justify="right", style="red")
    table.add_column("Hash", style="dim")
    for s in snapshots:
        table.add_row(
            s.id[:8],
            format_timestamp(s.timestamp),
            str(s.lines_added),
            str(s.lines_removed),
            s.content_hash[:12],
        )
    console.print(table)
