"""Shared helpers for CLI commands: open the engine, map errors to exits."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer
from rich.console import Console

from stasher.cli.errors import (
    err_config,
    err_integrity,
    err_operation,
    err_path_not_tracked,
    err_snapshot_mismatch,
    err_untracked,
)
from stasher.config import ConfigError, StasherConfig, load_config
from stasher.errors import (
    IntegrityViolation,
    PathNotTracked,
    SnapshotMismatch,
    StasherError,
    UntrackedPath,
)
from stasher.history.engine import Stasher

console = Console()


def load_or_exit(root: Path) -> StasherConfig:
    try:
        return load_config(root)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc


@contextmanager
def engine_errors(snapshot: str | None = None) -> Iterator[None]:
    """Translate engine exceptions into actionable messages + exit code 1."""
    try:
        yield
    except PathNotTracked as exc:
        console.print(err_path_not_tracked(exc.path or ""))
        raise typer.Exit(1) from exc
    except SnapshotMismatch as exc:
        console.print(err_snapshot_mismatch(exc.path or "", snapshot or "", str(exc)))
        raise typer.Exit(1) from exc
    except IntegrityViolation as exc:
        console.print(err_integrity(exc.path or "", str(exc)))
        raise typer.Exit(1) from exc
    except UntrackedPath as exc:
        console.print(err_untracked(exc.path or ""))
        raise typer.Exit(1) from exc
    except StasherError as exc:
        console.print(err_operation(exc.operation or "operation", exc.path, str(exc)))
        raise typer.Exit(1) from exc


@contextmanager
def open_engine(
    root: Path,
    *,
    start_session: bool = False,
    background_index: bool | None = False,
) -> Iterator[Stasher]:
    """Open the engine for *root*, closing it when the command ends."""
    cfg = load_or_exit(root)
    with engine_errors():
        engine = Stasher.open(
            root,
            cfg,
            start_session=start_session,
            background_index=background_index,
        )
    try:
        yield engine
    finally:
        engine.close()


def history_exists(root: Path) -> bool:
    cfg = load_or_exit(root)
    return (root / cfg.storage.dir).is_dir()
