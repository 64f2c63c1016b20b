"""Database schema initialization."""

from __future__ import annotations

import sqlite3

from stasher.db.migrations import INDEX_MIGRATIONS, METADATA_MIGRATIONS, run_migrations

METADATA_VERSION = METADATA_MIGRATIONS[-1][0]
INDEX_VERSION = INDEX_MIGRATIONS[-1][0]


def initialize(conn: sqlite3.Connection) -> None:
    """Initialize the metadata schema (sessions, snapshots). Idempotent."""
    run_migrations(conn, METADATA_MIGRATIONS)


def initialize_index(conn: sqlite3.Connection) -> None:
    """Initialize the semantic index schema (index_records). Idempotent."""
    run_migrations(conn, INDEX_MIGRATIONS)
