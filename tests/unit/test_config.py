"""Tests for the stasher config loader."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from stasher.config import ConfigError, StasherConfig, load_config


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_yaml(path: Path, data: dict) -> None:
    path.write_text(yaml.dump(data), encoding="utf-8")


@pytest.fixture
def missing_global(tmp_path: Path) -> Path:
    return tmp_path / "nonexistent" / "config.yaml"


# ---------------------------------------------------------------------------
# Defaults: no config files present
# ---------------------------------------------------------------------------


def test_load_config_defaults_no_files(tmp_path: Path, missing_global: Path) -> None:
    cfg = load_config(tmp_path, global_config_path=missing_global)

    assert cfg.storage.dir == ".stasher"
    assert cfg.embedding.model == "ollama/nomic-embed-text"
    assert cfg.embedding.dimensions == 768
    assert cfg.retention.days == 30
    assert cfg.search.limit == 5
    assert cfg.watch.queue_size == 100
    assert ".git" in cfg.watch.ignore_dirs
    assert cfg.index.background is True


def test_defaults_match_dataclass(tmp_path: Path, missing_global: Path) -> None:
    assert load_config(tmp_path, global_config_path=missing_global) == StasherConfig()


# ---------------------------------------------------------------------------
# Layering
# ---------------------------------------------------------------------------


def test_global_overrides_defaults(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"embedding": {"model": "openai/text-embedding-3-small", "dimensions": 1536}})

    cfg = load_config(tmp_path, global_config_path=global_cfg)
    assert cfg.embedding.model == "openai/text-embedding-3-small"
    assert cfg.embedding.dimensions == 1536
    assert cfg.retention.days == 30


def test_global_empty_file(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    global_cfg.write_text("# nothing here\n", encoding="utf-8")
    assert load_config(tmp_path, global_config_path=global_cfg).search.limit == 5


def test_project_overrides_global(tmp_path: Path) -> None:
    global_cfg = tmp_path / "global.yaml"
    _write_yaml(global_cfg, {"retention": {"days": 90}, "search": {"limit": 20}})
    _write_yaml(tmp_path / "stasher.yaml", {"retention": {"days": 7}})

    cfg = load_config(tmp_path, global_config_path=global_cfg)
    assert cfg.retention.days == 7
    assert cfg.search.limit == 20


def test_project_watch_lists(tmp_path: Path, missing_global: Path) -> None:
    _write_yaml(
        tmp_path / "stasher.yaml",
        {"watch": {"ignore_dirs": ["build"], "ignore_patterns": ["*.log"], "poll_interval": 0.5}},
    )
    cfg = load_config(tmp_path, global_config_path=missing_global)
    assert cfg.watch.ignore_dirs == ["build"]
    assert cfg.watch.ignore_patterns == ["*.log"]
    assert cfg.watch.poll_interval == pytest.approx(0.5)
    assert cfg.watch.queue_size == 100


def test_env_overrides_project(tmp_path: Path, missing_global: Path, monkeypatch) -> None:
    _write_yaml(tmp_path / "stasher.yaml", {"retention": {"days": 7}})
    monkeypatch.setenv("STASHER_RETENTION_DAYS", "3")
    monkeypatch.setenv("STASHER_EMBEDDING_MODEL", "ollama/mxbai-embed-large")
    monkeypatch.setenv("STASHER_EMBEDDING_DIMENSIONS", "1024")

    cfg = load_config(tmp_path, global_config_path=missing_global)
    assert cfg.retention.days == 3
    assert cfg.embedding.model == "ollama/mxbai-embed-large"
    assert cfg.embedding.dimensions == 1024


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def test_global_api_key_rejected(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"embedding": {"api_key": "sk-secret"}})
    with pytest.raises(ConfigError, match="api_key"):
        load_config(tmp_path, global_config_path=global_cfg)


def test_unknown_section_warns(tmp_path: Path, missing_global: Path) -> None:
    _write_yaml(tmp_path / "stasher.yaml", {"mystery": {"x": 1}})
    with pytest.warns(UserWarning, match="mystery"):
        load_config(tmp_path, global_config_path=missing_global)


@pytest.mark.parametrize("data", [
    {"retention": {"days": -1}},
    {"search": {"limit": 0}},
    {"embedding": {"dimensions": 0}},
    {"watch": {"queue_size": 0}},
    {"watch": {"poll_interval": 0}},
    {"storage": {"dir": "/var/tmp/history"}},
    {"storage": {"dir": "../elsewhere"}},
    {"retention": {"days": "thirty"}},
    {"watch": {"ignore_dirs": "build"}},
])
def test_invalid_values_rejected(tmp_path: Path, missing_global: Path, data: dict) -> None:
    _write_yaml(tmp_path / "stasher.yaml", data)
    with pytest.raises(ConfigError):
        load_config(tmp_path, global_config_path=missing_global)


def test_bad_env_integer_rejected(tmp_path: Path, missing_global: Path, monkeypatch) -> None:
    monkeypatch.setenv("STASHER_RETENTION_DAYS", "soon")
    with pytest.raises(ConfigError, match="STASHER_RETENTION_DAYS"):
        load_config(tmp_path, global_config_path=missing_global)
