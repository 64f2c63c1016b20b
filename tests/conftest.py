"""Shared pytest fixtures."""

from __future__ import annotations

import math
import re
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import structlog
import yaml

from stasher.config import EmbeddingCfg, IndexCfg, StasherConfig
from stasher.db.connection import Database
from stasher.db.schema import initialize, initialize_index
from stasher.history.engine import Stasher

TEST_MODEL = "ollama/test-embed"
TEST_DIMS = 4

# Keyword → dimension. Words outside every group add a little weight to dim 2.
_KEYWORD_DIMS: dict[str, int] = {
    "database": 0,
    "migration": 0,
    "schema": 0,
    "change": 0,
    "coffee": 1,
    "recipe": 1,
}


def keyword_embedding(text: str) -> list[float]:
    """Deterministic unit vector built from keyword counts."""
    vec = [0.0] * TEST_DIMS
    for word in re.findall(r"[a-z]+", text.lower()):
        dim = _KEYWORD_DIMS.get(word)
        if dim is None:
            vec[2] += 0.1
        else:
            vec[dim] += 1.0
    vec[3] = 0.01
    norm = math.sqrt(sum(v * v for v in vec))
    return [v / norm for v in vec]


def _fake_litellm_embedding(model, input, **kwargs):  # noqa: A002
    return SimpleNamespace(data=[{"embedding": keyword_embedding(input[0])}])


@pytest.fixture(autouse=True)
def _isolate_environment(tmp_path, monkeypatch):
    """No user config, no STASHER_* env, fresh structlog config per test."""
    monkeypatch.setattr("stasher.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global" / "config.yaml")
    for var in ("STASHER_EMBEDDING_MODEL", "STASHER_EMBEDDING_DIMENSIONS", "STASHER_RETENTION_DAYS"):
        monkeypatch.delenv(var, raising=False)
    yield
    structlog.reset_defaults()


@pytest.fixture
def fake_embed():
    """Patch litellm.embedding with the keyword embedder; yields the mock."""
    with patch("stasher.search.embedder.litellm.embedding", side_effect=_fake_litellm_embedding) as mock:
        yield mock


@pytest.fixture
def tmp_db(tmp_path):
    """File-based metadata DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / "metadata.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def tmp_index_db(tmp_path):
    """File-based vectors DB in tmp_path with the index schema initialized."""
    db = Database(tmp_path / "vectors.db")
    conn = db.connect()
    initialize_index(conn)
    yield conn
    conn.close()


@pytest.fixture
def cfg() -> StasherConfig:
    return StasherConfig(
        embedding=EmbeddingCfg(model=TEST_MODEL, dimensions=TEST_DIMS),
        index=IndexCfg(background=False),
    )


@pytest.fixture
def root(tmp_path) -> Path:
    project = tmp_path / "project"
    project.mkdir()
    return project


@pytest.fixture
def engine(root, cfg, fake_embed):
    """Open engine over an empty project root with inline indexing."""
    stasher = Stasher.open(root, cfg, background_index=False)
    yield stasher
    stasher.close()


@pytest.fixture
def project_yaml(root) -> Path:
    """stasher.yaml pinning the test embedding model, for code that loads config from disk."""
    path = root / "stasher.yaml"
    path.write_text(
        yaml.dump(
            {
                "embedding": {"model": TEST_MODEL, "dimensions": TEST_DIMS},
                "index": {"background": False},
            }
        ),
        encoding="utf-8",
    )
    return path
