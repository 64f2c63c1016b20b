"""Tests for stasher prune."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from stasher.cli.main import app
from stasher.history.engine import Stasher, now_ms

runner = CliRunner()

_DAY_MS = 86_400_000


@pytest.fixture
def history(root: Path, project_yaml, fake_embed):
    """One 40-day-old snapshot and one fresh one."""
    with Stasher.open(root) as engine:
        old = root / "old.txt"
        old.write_text("ancient\n", encoding="utf-8")
        with patch("stasher.history.engine.now_ms", return_value=now_ms() - 40 * _DAY_MS):
            engine.record_change(old)
        new = root / "new.txt"
        new.write_text("fresh\n", encoding="utf-8")
        engine.record_change(new)


def _snapshot_count(root: Path) -> int:
    with Stasher.open(root, start_session=False) as engine:
        return engine.stats()["snapshots"]


def test_prune_asks_confirmation(root: Path, history) -> None:
    result = runner.invoke(app, ["prune", "--days", "30", "--root", str(root)], input="n\n")
    assert result.exit_code == 0
    assert "Cancelled" in result.output
    assert _snapshot_count(root) == 2


def test_prune_yes_skips_confirmation(root: Path, history) -> None:
    result = runner.invoke(app, ["prune", "--days", "30", "--yes", "--root", str(root)])
    assert result.exit_code == 0, result.output
    assert "1 snapshot(s)" in result.output
    assert _snapshot_count(root) == 1


def test_prune_defaults_to_configured_retention(root: Path, history) -> None:
    result = runner.invoke(app, ["prune", "--yes", "--root", str(root)])
    assert result.exit_code == 0, result.output
    assert "30" in result.output
    assert _snapshot_count(root) == 1


def test_prune_rejects_negative_days(root: Path, history) -> None:
    result = runner.invoke(app, ["prune", "--days", "-1", "--yes", "--root", str(root)])
    assert result.exit_code != 0


def test_prune_without_history(tmp_path: Path) -> None:
    result = runner.invoke(app, ["prune", "--yes", "--root", str(tmp_path)])
    assert result.exit_code == 1
    assert "No history found" in result.output
