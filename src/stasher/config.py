"""Stasher configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (STASHER_EMBEDDING_MODEL, STASHER_EMBEDDING_DIMENSIONS,
                             STASHER_RETENTION_DAYS)
  3. Per-project stasher.yaml  (at the tracked root)
  4. Global ~/.config/stasher/config.yaml  (model defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".config" / "stasher"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
PROJECT_CONFIG_NAME: str = "stasher.yaml"

# Fields that suggest an API key; forbidden in global config.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["storage", "embedding", "watch", "retention", "search", "index"]
)

_DEFAULT_IGNORE_DIRS: tuple[str, ...] = (
    ".git",
    ".stasher",
    "target",
    "node_modules",
    "__pycache__",
    ".venv",
)
_DEFAULT_IGNORE_PATTERNS: tuple[str, ...] = ("*.pyc", "*.swp", "*~", ".DS_Store")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class StorageCfg:
    """Where history lives, relative to the tracked root (stasher.yaml: storage:)."""

    dir: str = ".stasher"


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (stasher.yaml: embedding:).

    Attributes:
        model: LiteLLM embedding model string (provider/model format).
        dimensions: Vector length the model returns.
        max_chars: Content is truncated to this many characters before embedding.
        num_retries: LiteLLM retries on transient errors.
    """

    model: str = "ollama/nomic-embed-text"
    dimensions: int = 768
    max_chars: int = 8_000
    num_retries: int = 3


@dataclass
class WatchCfg:
    """Watcher and change filtering (stasher.yaml: watch:)."""

    poll_interval: float = 1.0
    queue_size: int = 100
    ignore_dirs: list[str] = field(default_factory=lambda: list(_DEFAULT_IGNORE_DIRS))
    ignore_patterns: list[str] = field(default_factory=lambda: list(_DEFAULT_IGNORE_PATTERNS))
    max_file_bytes: int = 5 * 1024 * 1024


@dataclass
class RetentionCfg:
    """Default prune horizon (stasher.yaml: retention:)."""

    days: int = 30


@dataclass
class SearchCfg:
    """Semantic search defaults (stasher.yaml: search:)."""

    limit: int = 5


@dataclass
class IndexCfg:
    """Semantic index behaviour (stasher.yaml: index:).

    Attributes:
        background: Embed on a worker thread instead of inline with the write.
    """

    background: bool = True


@dataclass
class StasherConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    storage: StorageCfg = field(default_factory=StorageCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    watch: WatchCfg = field(default_factory=WatchCfg)
    retention: RetentionCfg = field(default_factory=RetentionCfg)
    search: SearchCfg = field(default_factory=SearchCfg)
    index: IndexCfg = field(default_factory=IndexCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' (ignored).",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: StasherConfig) -> None:
    if cfg.embedding.dimensions < 1:
        raise ConfigError(f"embedding.dimensions must be >= 1, got {cfg.embedding.dimensions}")
    if cfg.embedding.max_chars < 1:
        raise ConfigError(f"embedding.max_chars must be >= 1, got {cfg.embedding.max_chars}")
    if cfg.watch.queue_size < 1:
        raise ConfigError(f"watch.queue_size must be >= 1, got {cfg.watch.queue_size}")
    if cfg.watch.poll_interval <= 0:
        raise ConfigError(f"watch.poll_interval must be > 0, got {cfg.watch.poll_interval}")
    if cfg.retention.days < 0:
        raise ConfigError(f"retention.days must be >= 0, got {cfg.retention.days}")
    if cfg.search.limit < 1:
        raise ConfigError(f"search.limit must be >= 1, got {cfg.search.limit}")
    storage = Path(cfg.storage.dir)
    if storage.is_absolute() or ".." in storage.parts:
        raise ConfigError(
            f"storage.dir must be a relative path inside the tracked root: '{cfg.storage.dir}'"
        )


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _str_list(raw: Any, default: list[str], key: str) -> list[str]:
    if raw is None:
        return list(default)
    if not isinstance(raw, list):
        raise ConfigError(f"{key} must be a list of strings, got {type(raw).__name__}")
    return [str(item) for item in raw]


def _cfg_from_dict(data: dict[str, Any]) -> StasherConfig:
    """Build a *StasherConfig* from a merged raw YAML dict."""
    cfg = StasherConfig()

    try:
        if "storage" in data:
            s = data["storage"] or {}
            cfg.storage = StorageCfg(dir=str(s.get("dir", cfg.storage.dir)))

        if "embedding" in data:
            e = data["embedding"] or {}
            cfg.embedding = EmbeddingCfg(
                model=str(e.get("model", cfg.embedding.model)),
                dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
                max_chars=int(e.get("max_chars", cfg.embedding.max_chars)),
                num_retries=int(e.get("num_retries", cfg.embedding.num_retries)),
            )

        if "watch" in data:
            w = data["watch"] or {}
            cfg.watch = WatchCfg(
                poll_interval=float(w.get("poll_interval", cfg.watch.poll_interval)),
                queue_size=int(w.get("queue_size", cfg.watch.queue_size)),
                ignore_dirs=_str_list(w.get("ignore_dirs"), cfg.watch.ignore_dirs, "watch.ignore_dirs"),
                ignore_patterns=_str_list(
                    w.get("ignore_patterns"), cfg.watch.ignore_patterns, "watch.ignore_patterns"
                ),
                max_file_bytes=int(w.get("max_file_bytes", cfg.watch.max_file_bytes)),
            )

        if "retention" in data:
            r = data["retention"] or {}
            cfg.retention = RetentionCfg(days=int(r.get("days", cfg.retention.days)))

        if "search" in data:
            q = data["search"] or {}
            cfg.search = SearchCfg(limit=int(q.get("limit", cfg.search.limit)))

        if "index" in data:
            i = data["index"] or {}
            cfg.index = IndexCfg(background=bool(i.get("background", cfg.index.background)))
    except (TypeError, ValueError) as exc:
        if isinstance(exc, ConfigError):
            raise
        raise ConfigError(f"Invalid config value: {exc}") from exc

    return cfg


def _apply_env_overrides(cfg: StasherConfig) -> StasherConfig:
    """Apply STASHER_* environment variable overrides (layer 2)."""
    if model := os.environ.get("STASHER_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if dims := os.environ.get("STASHER_EMBEDDING_DIMENSIONS"):
        try:
            cfg.embedding.dimensions = int(dims)
        except ValueError as exc:
            raise ConfigError(f"STASHER_EMBEDDING_DIMENSIONS must be an integer: '{dims}'") from exc
    if days := os.environ.get("STASHER_RETENTION_DAYS"):
        try:
            cfg.retention.days = int(days)
        except ValueError as exc:
            raise ConfigError(f"STASHER_RETENTION_DAYS must be an integer: '{days}'") from exc
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    root: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> StasherConfig:
    """Load and return a merged *StasherConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        root: Tracked root to search for *stasher.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *StasherConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains API-key-like fields or any
            value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = root if root is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    _validate(cfg)
    return cfg
