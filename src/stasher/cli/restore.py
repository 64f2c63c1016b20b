"""stasher restore: restore a file to a previous version."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape

from stasher.cli.common import console, engine_errors, history_exists, open_engine
from stasher.cli.errors import err_no_history


def restore_cmd(
    file: Annotated[str, typer.Argument(help="File path (relative to the tracked root).")],
    snapshot: Annotated[
        str | None,
        typer.Option("--snapshot", "-s", help="Snapshot id or prefix (default: most recent)."),
    ] = None,
    root: Annotated[
        Path,
        typer.Option("--root", "-r", help="Tracked root. Defaults to current directory."),
    ] = Path("."),
) -> None:
    """Restore a file to a previous version."""
    root = root.resolve()
    if not history_exists(root):
        console.print(err_no_history(str(root)))
        raise typer.Exit(1)

    console.print(f"Restoring {escape(file)} …")
    with open_engine(root) as engine:
        with engine_errors(snapshot):
            restored = engine.restore(file, snapshot)

    console.print(f"[green]✓[/] Restored {escape(restored.file_path)} to snapshot {restored.id[:8]}.")
