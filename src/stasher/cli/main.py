"""Stasher CLI entry point."""

from __future__ import annotations

import logging
from typing import Annotated

import typer

from stasher.cli.ask import ask_cmd
from stasher.cli.daemon import daemon_cmd
from stasher.cli.prune import prune_cmd
from stasher.cli.restore import restore_cmd
from stasher.cli.show import show_cmd
from stasher.cli.status import status_cmd
from stasher.history.engine import get_version
from stasher.logging import configure_logging


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"stasher {get_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="stasher",
    help=(
        "Stasher: local-first development history tracker.\n\n"
        "  stasher daemon   Record every change to files under the current directory.\n"
        "  stasher ask      Find past versions by meaning."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Debug logging to stderr."),
    ] = False,
) -> None:
    """Stasher: local-first development history tracker."""
    configure_logging(logging.DEBUG if verbose else logging.INFO)


app.command("daemon")(daemon_cmd)
app.command("ask")(ask_cmd)
app.command("show")(show_cmd)
app.command("restore")(restore_cmd)
app.command("prune")(prune_cmd)
app.command("status")(status_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed Stasher version."""
    typer.echo(f"stasher {get_version()}")


if __name__ == "__main__":
    app()
