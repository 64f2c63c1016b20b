"""Tests for the Database connection layer."""

from __future__ import annotations

import sqlite3
import threading

from stasher.db.connection import Database


def test_connect_creates_file(tmp_path):
    db_path = tmp_path / "metadata.db"
    conn = Database(db_path).connect()
    conn.close()
    assert db_path.exists()


def test_connect_creates_parent_dir(tmp_path):
    db_path = tmp_path / ".stasher" / "nested" / "vectors.db"
    conn = Database(db_path).connect()
    conn.close()
    assert db_path.exists()


def test_sqlite_vec_loads(tmp_path):
    conn = Database(tmp_path / "vectors.db").connect()
    version = conn.execute("SELECT vec_version()").fetchone()[0]
    conn.close()
    assert version.startswith("v")


def test_foreign_keys_enabled(tmp_path):
    conn = Database(tmp_path / "metadata.db").connect()
    result = conn.execute("PRAGMA foreign_keys").fetchone()[0]
    conn.close()
    assert result == 1


def test_wal_journal_mode(tmp_path):
    conn = Database(tmp_path / "metadata.db").connect()
    mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
    conn.close()
    assert mode == "wal"


def test_row_factory_is_row(tmp_path):
    conn = Database(tmp_path / "metadata.db").connect()
    row = conn.execute("SELECT 1 AS one").fetchone()
    conn.close()
    assert isinstance(row, sqlite3.Row)
    assert row["one"] == 1


def test_connection_usable_from_other_thread(tmp_path):
    conn = Database(tmp_path / "metadata.db").connect()
    result = []

    def worker():
        result.append(conn.execute("SELECT 42").fetchone()[0])

    t = threading.Thread(target=worker)
    t.start()
    t.join()
    conn.close()
    assert result == [42]


def test_context_manager_closes(tmp_path):
    db = Database(tmp_path / "metadata.db")
    with db as conn:
        conn.execute("CREATE TABLE t (x INTEGER)")
    assert db._conn is None
