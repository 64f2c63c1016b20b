"""Domain models for the metadata and index databases."""

from __future__ import annotations

import json
from dataclasses import dataclass, field


@dataclass
class Session:
    id: str
    start_time: int  # epoch milliseconds
    end_time: int | None = None
    meta: str = field(default_factory=lambda: "{}")

    @property
    def meta_dict(self) -> dict:
        return json.loads(self.meta)

    @property
    def is_open(self) -> bool:
        return self.end_time is None


@dataclass(frozen=True)
class Snapshot:
    """One recorded version of one file. Never mutated after insert."""

    id: str
    session_id: str
    file_path: str  # relative to the tracked root, POSIX separators
    timestamp: int  # epoch milliseconds
    diff_patch: str
    content_hash: str
    lines_added: int
    lines_removed: int


@dataclass
class IndexRecord:
    snapshot_id: str
    file_path: str
    content: str
    embedding_model: str
    indexed_at: str | None = None
    rowid: int | None = None  # set after insert; keys the vec table
