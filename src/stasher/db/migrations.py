"""Forward-only migration runner for the metadata and index databases.

Vec tables (vec_snapshots_*) are NOT migration-managed; use ensure_vec_table().
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_METADATA_V1_SQL = """
CREATE TABLE IF NOT EXISTS sessions (
    id          TEXT PRIMARY KEY,
    start_time  INTEGER NOT NULL,
    end_time    INTEGER,
    meta        TEXT NOT NULL DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS snapshots (
    id              TEXT PRIMARY KEY,
    session_id      TEXT NOT NULL REFERENCES sessions(id),
    file_path       TEXT NOT NULL,
    timestamp       INTEGER NOT NULL,
    diff_patch      TEXT NOT NULL,
    content_hash    TEXT NOT NULL,
    lines_added     INTEGER NOT NULL,
    lines_removed   INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_snapshots_file ON snapshots(file_path);
"""

# Prune recomputes the referenced hash set on every run.
_METADATA_V2_SQL = """
CREATE INDEX IF NOT EXISTS idx_snapshots_hash ON snapshots(content_hash);
CREATE INDEX IF NOT EXISTS idx_snapshots_timestamp ON snapshots(timestamp);
"""

_INDEX_V1_SQL = """
CREATE TABLE IF NOT EXISTS index_records (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    snapshot_id     TEXT NOT NULL,
    file_path       TEXT NOT NULL,
    content         TEXT NOT NULL,
    embedding_model TEXT NOT NULL,
    indexed_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_index_records_snapshot ON index_records(snapshot_id);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
METADATA_MIGRATIONS: list[tuple[int, str]] = [
    (1, _METADATA_V1_SQL),
    (2, _METADATA_V2_SQL),
]

INDEX_MIGRATIONS: list[tuple[int, str]] = [
    (1, _INDEX_V1_SQL),
]


def current_version(conn: sqlite3.Connection) -> int:
    """Return the highest applied migration version (0 for a fresh database)."""
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] if row[0] is not None else 0


def run_migrations(
    conn: sqlite3.Connection,
    migrations: list[tuple[int, str]] = METADATA_MIGRATIONS,
) -> None:
    """Apply all pending *migrations* in ascending version order.

    Idempotent: safe to call on a database at any version.
    Vec tables are NOT managed here; use ensure_vec_table() instead.
    """
    current = current_version(conn)

    for version, sql in migrations:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
