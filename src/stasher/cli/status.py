"""stasher status: storage paths and history counts."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape
from rich.panel import Panel

from stasher.cli.common import console, engine_errors, history_exists, open_engine
from stasher.history.engine import METADATA_DB, OBJECTS_DIR, VECTORS_DB


def status_cmd(
    root: Annotated[
        Path,
        typer.Option("--root", "-r", help="Tracked root. Defaults to current directory."),
    ] = Path("."),
) -> None:
    """Show history status: storage, sessions, snapshots, objects, index."""
    root = root.resolve()
    if not history_exists(root):
        console.print(
            Panel(
                "[yellow]No history found.[/]\n"
                "  Run:  stasher daemon",
                title="[bold]Stasher[/]",
                expand=False,
            )
        )
        return

    with open_engine(root) as engine:
        with engine_errors():
            stats = engine.stats()
            storage = engine.storage_dir
            model = engine.config.embedding.model

    lines = [
        f"Root:       [bold]{escape(str(root))}[/]",
        f"Storage:    {escape(str(storage))} ({_size_mb(storage):.1f} MB)",
        f"Sessions:   {stats['sessions']}",
        f"Files:      {stats['tracked_files']}",
        f"Snapshots:  [bold]{stats['snapshots']:,}[/]",
        f"Objects:    {stats['objects']:,}",
        f"Index:      {stats['index_records']:,} records  [dim]({escape(model)})[/]",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Stasher[/]", expand=False))


def _size_mb(storage: Path) -> float:
    total = 0
    for name in (METADATA_DB, VECTORS_DB):
        db = storage / name
        if db.exists():
            total += db.stat().st_size
    objects = storage / OBJECTS_DIR
    if objects.is_dir():
        total += sum(p.stat().st_size for p in objects.iterdir() if p.is_file())
    return total / (1024 * 1024)
