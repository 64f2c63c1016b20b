"""Rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause, including the file and operation)
  2. The exact action the user should take to fix it

Usage:
    from stasher.cli.errors import err_path_not_tracked
    console.print(err_path_not_tracked("src/app.py"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from rich.markup import escape

from stasher.search.embedder import PROVIDER_ENV, provider_of


def err_no_history(storage: str) -> str:
    """Nothing has been recorded under this root yet."""
    return (
        f"[red]Error:[/] No history found at '{escape(storage)}'.\n"
        "  Run:  stasher daemon   (records every file, then watches for changes)"
    )


def err_path_not_tracked(path: str) -> str:
    return (
        f"[red]Error:[/] No snapshots recorded for '{escape(path)}'.\n"
        "  Check the path is relative to the tracked root, or run  stasher status"
    )


def err_snapshot_mismatch(path: str, snapshot: str, detail: str) -> str:
    return (
        f"[red]Error:[/] Cannot use snapshot '{escape(snapshot)}' for '{escape(path)}'.\n"
        f"  {escape(detail)}\n"
        f"  Run:  stasher show {escape(path)}   to list its snapshots."
    )


def err_integrity(path: str, detail: str) -> str:
    """A snapshot points at an object that no longer exists."""
    return (
        f"[red]Error:[/] History for '{escape(path)}' is damaged.\n"
        f"  {escape(detail)}\n"
        "  The object store was modified outside stasher. Pick an older snapshot:\n"
        f"    stasher show {escape(path)}"
    )


def err_untracked(path: str) -> str:
    return (
        f"[red]Error:[/] '{escape(path)}' is outside the tracked root.\n"
        "  Pass --root or run the command from the tracked directory."
    )


def err_operation(operation: str, path: str | None, detail: str) -> str:
    """Generic I/O or store failure."""
    target = f" on '{escape(path)}'" if path else ""
    return f"[red]Error:[/] {escape(operation)} failed{target}.\n  {escape(detail)}"


def err_config(detail: str) -> str:
    return (
        f"[red]Error:[/] Invalid configuration.\n  {escape(detail)}\n"
        "  Fix stasher.yaml or ~/.config/stasher/config.yaml."
    )


def err_no_api_key(model: str) -> str:
    """No API key for the embedding provider."""
    provider = provider_of(model)
    env_var = PROVIDER_ENV.get(provider) or f"{provider.upper()}_API_KEY"
    return (
        f"[red]Error:[/] No API key for '{escape(provider)}' (embedding model '{escape(model)}').\n"
        f"  Set:  export {env_var}=...\n"
        "  Or use a local model:  embedding.model: ollama/nomic-embed-text"
    )


def warn_index_unavailable(detail: str) -> str:
    """Semantic indexing will not work; history is still recorded."""
    return (
        f"[yellow]Warning:[/] Semantic search indexing unavailable: {escape(detail)}\n"
        "  Snapshots are still recorded; 'stasher ask' will miss them."
    )
