"""stasher ask: search history using natural language."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape

from stasher.cli.common import console, engine_errors, history_exists, open_engine
from stasher.cli.errors import err_no_api_key, err_no_history
from stasher.errors import EmbeddingFailure
from stasher.search.embedder import validate_api_key

_SNIPPET_LINES = 5


def ask_cmd(
    query: Annotated[str, typer.Argument(help="What you are looking for, in plain words.")],
    limit: Annotated[
        int | None,
        typer.Option("--limit", "-n", min=1, help="Maximum results (default: search.limit)."),
    ] = None,
    root: Annotated[
        Path,
        typer.Option("--root", "-r", help="Tracked root. Defaults to current directory."),
    ] = Path("."),
) -> None:
    """Search history using natural language."""
    root = root.resolve()
    if not history_exists(root):
        console.print(err_no_history(str(root)))
        raise typer.Exit(1)

    console.print(f'Searching for: "{escape(query)}" …')
    with open_engine(root) as engine:
        try:
            validate_api_key(engine.config.embedding.model)
        except EmbeddingFailure:
            console.print(err_no_api_key(engine.config.embedding.model))
            raise typer.Exit(1)

        with engine_errors():
            results = engine.search(query, limit)

    if not results:
        console.print("No relevant history found.")
        return

    console.print(f"Found {len(results)} relevant snapshot(s):")
    for i, hit in enumerate(results, start=1):
        console.print(
            f"\n[bold][{i}][/] {escape(hit.file_path)}  "
            f"[dim]snapshot {hit.snapshot_id[:8]} · score {hit.score:.3f}[/]"
        )
        snippet = "\n".join(hit.content.splitlines()[:_SNIPPET_LINES])
        console.print(escape(snippet), highlight=False)
