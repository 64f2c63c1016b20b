"""stasher daemon: record every file, then watch and record each change.

Ctrl-C stops the watcher, lets the write in progress finish, and closes the
session.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from stasher.cli.common import console, open_engine
from stasher.cli.errors import warn_index_unavailable
from stasher.daemon.runner import StasherDaemon
from stasher.errors import EmbeddingFailure
from stasher.search.embedder import validate_api_key


def daemon_cmd(
    root: Annotated[
        Path,
        typer.Option("--root", "-r", help="Directory to track. Defaults to current directory."),
    ] = Path("."),
    no_sync: Annotated[
        bool,
        typer.Option("--no-sync", help="Skip the initial scan of existing files."),
    ] = False,
) -> None:
    """Start the background daemon that records file history."""
    root = root.resolve()
    console.print(f"Initializing history in [bold]{root}[/] …")

    with open_engine(root, start_session=True, background_index=None) as engine:
        try:
            validate_api_key(engine.config.embedding.model)
        except EmbeddingFailure as exc:
            console.print(warn_index_unavailable(str(exc)))

        daemon = StasherDaemon(engine, sync_first=not no_sync)
        console.print(f"Monitoring changes in [bold]{root}[/]  (Ctrl-C to stop)")
        try:
            asyncio.run(daemon.run())
        except KeyboardInterrupt:
            pass

        console.print(
            f"\n[green]✓[/] Stopped. {daemon.recorded} snapshot(s) recorded"
            + (f", [red]{daemon.failed} failed[/]" if daemon.failed else "")
        )
