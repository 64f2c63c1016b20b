"""Repository pattern for the metadata and index databases.

Repository wraps metadata.db (sessions, snapshots); IndexRepository wraps
vectors.db (index records + per-model vec tables). Both take an open
connection owned by the caller.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager

from stasher.db.models import IndexRecord, Session, Snapshot

_SNAPSHOT_COLUMNS = (
    "id, session_id, file_path, timestamp, diff_patch, content_hash, lines_added, lines_removed"
)


class Repository:
    """Data access layer for sessions and snapshots.

    Snapshots of one path are ordered by ``timestamp`` with the insertion
    rowid breaking ties, so two writes inside the same millisecond still
    come back in the order they were recorded.

    Inside write_transaction() the per-method commits are deferred to the
    end of the block.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the metadata schema
                initialised (see stasher.db.schema.initialize).
        """
        self._conn = conn
        self._in_write = False

    def _commit(self) -> None:
        if not self._in_write:
            self._conn.commit()

    @contextmanager
    def write_transaction(self) -> Iterator[None]:
        """Hold the database write lock for the whole block.

        ``BEGIN IMMEDIATE`` takes the lock up front, so another process
        opening the same metadata.db waits (busy_timeout) instead of
        interleaving its own read-then-write. Commits on success, rolls back
        on any exception.
        """
        if self._in_write:
            yield
            return
        if self._conn.in_transaction:
            self._conn.commit()
        self._conn.execute("BEGIN IMMEDIATE")
        self._in_write = True
        try:
            yield
        except BaseException:
            self._conn.rollback()
            raise
        else:
            self._conn.commit()
        finally:
            self._in_write = False

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def add_session(self, session: Session) -> None:
        """Insert a new session record."""
        self._conn.execute(
            "INSERT INTO sessions (id, start_time, end_time, meta) VALUES (?, ?, ?, ?)",
            (session.id, session.start_time, session.end_time, session.meta),
        )
        self._commit()

    def close_session(self, session_id: str, end_time: int) -> bool:
        """Set ``end_time`` on an open session.

        Returns:
            True if the session was open and is now closed, False if it was
            unknown or already closed.
        """
        cur = self._conn.execute(
            "UPDATE sessions SET end_time = ? WHERE id = ? AND end_time IS NULL",
            (end_time, session_id),
        )
        self._commit()
        return cur.rowcount == 1

    def get_session(self, session_id: str) -> Session | None:
        row = self._conn.execute(
            "SELECT id, start_time, end_time, meta FROM sessions WHERE id = ?",
            (session_id,),
        ).fetchone()
        return _row_to_session(row) if row else None

    def list_sessions(self) -> list[Session]:
        """Return all sessions, most recent first."""
        rows = self._conn.execute(
            "SELECT id, start_time, end_time, meta FROM sessions ORDER BY start_time DESC, rowid DESC"
        ).fetchall()
        return [_row_to_session(r) for r in rows]

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def add_snapshot(self, snapshot: Snapshot) -> None:
        """Insert a snapshot row and commit."""
        self._conn.execute(
            f"INSERT INTO snapshots ({_SNAPSHOT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                snapshot.id,
                snapshot.session_id,
                snapshot.file_path,
                snapshot.timestamp,
                snapshot.diff_patch,
                snapshot.content_hash,
                snapshot.lines_added,
                snapshot.lines_removed,
            ),
        )
        self._commit()

    def get_snapshot(self, snapshot_id: str) -> Snapshot | None:
        row = self._conn.execute(
            f"SELECT {_SNAPSHOT_COLUMNS} FROM snapshots WHERE id = ?", (snapshot_id,)
        ).fetchone()
        return _row_to_snapshot(row) if row else None

    def latest_snapshot(self, file_path: str) -> Snapshot | None:
        """Return the most recent snapshot of *file_path*, or None."""
        row = self._conn.execute(
            f"""
            SELECT {_SNAPSHOT_COLUMNS} FROM snapshots
            WHERE file_path = ?
            ORDER BY timestamp DESC, rowid DESC
            LIMIT 1
            """,
            (file_path,),
        ).fetchone()
        return _row_to_snapshot(row) if row else None

    def list_snapshots(self, file_path: str, limit: int | None = None) -> list[Snapshot]:
        """Return snapshots of *file_path*, most recent first."""
        sql = (
            f"SELECT {_SNAPSHOT_COLUMNS} FROM snapshots WHERE file_path = ? "
            "ORDER BY timestamp DESC, rowid DESC"
        )
        params: tuple = (file_path,)
        if limit is not None:
            sql += " LIMIT ?"
            params = (file_path, limit)
        return [_row_to_snapshot(r) for r in self._conn.execute(sql, params).fetchall()]

    def tracked_paths(self) -> list[str]:
        """Return every path with at least one snapshot, sorted."""
        rows = self._conn.execute(
            "SELECT DISTINCT file_path FROM snapshots ORDER BY file_path"
        ).fetchall()
        return [r[0] for r in rows]

    def count_snapshots(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM snapshots").fetchone()[0]

    def count_sessions(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM sessions").fetchone()[0]

    def delete_snapshots_before(self, cutoff: int) -> list[str]:
        """Delete every snapshot with ``timestamp < cutoff``.

        Returns:
            The ids of the deleted snapshots.
        """
        ids = [
            r[0]
            for r in self._conn.execute(
                "SELECT id FROM snapshots WHERE timestamp < ?", (cutoff,)
            ).fetchall()
        ]
        if ids:
            self._conn.execute("DELETE FROM snapshots WHERE timestamp < ?", (cutoff,))
        self._commit()
        return ids

    def referenced_hashes(self) -> set[str]:
        """Return every content hash referenced by any snapshot, across all paths."""
        rows = self._conn.execute("SELECT DISTINCT content_hash FROM snapshots").fetchall()
        return {r[0] for r in rows}


class IndexRepository:
    """Data access layer for the semantic index (vectors.db)."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open connection (see stasher.db.schema.initialize_index)."""
        self._conn = conn

    def add_record(self, record: IndexRecord) -> int:
        """Insert an index record. Returns the new rowid."""
        cur = self._conn.execute(
            """
            INSERT INTO index_records (snapshot_id, file_path, content, embedding_model)
            VALUES (?, ?, ?, ?)
            """,
            (record.snapshot_id, record.file_path, record.content, record.embedding_model),
        )
        self._conn.commit()
        return cur.lastrowid

    def add_embedding(self, table: str, rowid: int, embedding: list[float]) -> None:
        """Insert an embedding into a vec table with explicit rowid = record rowid."""
        self._conn.execute(
            f"INSERT INTO {table}(rowid, embedding) VALUES (?, ?)",
            (rowid, json.dumps(embedding)),
        )
        self._conn.commit()

    def delete_record(self, rowid: int) -> None:
        """Remove a record that never got its embedding."""
        self._conn.execute("DELETE FROM index_records WHERE id = ?", (rowid,))
        self._conn.commit()

    def get_record(self, rowid: int) -> IndexRecord | None:
        row = self._conn.execute(
            """
            SELECT id, snapshot_id, file_path, content, embedding_model, indexed_at
            FROM index_records WHERE id = ?
            """,
            (rowid,),
        ).fetchone()
        return _row_to_record(row) if row else None

    def search_vec(
        self, table: str, embedding: list[float], limit: int = 10
    ) -> list[tuple[IndexRecord, float]]:
        """Nearest-neighbour search. Returns (record, distance) sorted by distance."""
        vec_rows = self._conn.execute(
            f"SELECT rowid, distance FROM {table} WHERE embedding MATCH ? AND k = ? ORDER BY distance",
            (json.dumps(embedding), limit),
        ).fetchall()

        results: list[tuple[IndexRecord, float]] = []
        for vec_row in vec_rows:
            record = self.get_record(vec_row["rowid"])
            if record is not None:
                results.append((record, vec_row["distance"]))
        return results

    def count_records(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM index_records").fetchone()[0]

    def delete_by_snapshot_ids(self, snapshot_ids: list[str]) -> int:
        """Delete index records (and their vectors in every vec table) for *snapshot_ids*.

        Returns:
            Number of index records deleted.
        """
        if not snapshot_ids:
            return 0

        rowids: list[int] = []
        # Stay well under SQLite's bound-parameter limit.
        for start in range(0, len(snapshot_ids), 500):
            batch = snapshot_ids[start:start + 500]
            placeholders = ",".join("?" * len(batch))
            rowids.extend(
                r[0]
                for r in self._conn.execute(
                    f"SELECT id FROM index_records WHERE snapshot_id IN ({placeholders})",
                    batch,
                ).fetchall()
            )
        if not rowids:
            return 0

        vec_tables = [
            r[0]
            for r in self._conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name LIKE 'vec_snapshots_%'"
            ).fetchall()
        ]
        for start in range(0, len(rowids), 500):
            batch = rowids[start:start + 500]
            placeholders = ",".join("?" * len(batch))
            for table in vec_tables:
                self._conn.execute(
                    f"DELETE FROM [{table}] WHERE rowid IN ({placeholders})",  # noqa: S608
                    batch,
                )
            self._conn.execute(
                f"DELETE FROM index_records WHERE id IN ({placeholders})", batch
            )
        self._conn.commit()
        return len(rowids)


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_session(row: sqlite3.Row) -> Session:
    return Session(
        id=row["id"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        meta=row["meta"],
    )


def _row_to_snapshot(row: sqlite3.Row) -> Snapshot:
    return Snapshot(
        id=row["id"],
        session_id=row["session_id"],
        file_path=row["file_path"],
        timestamp=row["timestamp"],
        diff_patch=row["diff_patch"],
        content_hash=row["content_hash"],
        lines_added=row["lines_added"],
        lines_removed=row["lines_removed"],
    )


def _row_to_record(row: sqlite3.Row) -> IndexRecord:
    return IndexRecord(
        rowid=row["id"],
        snapshot_id=row["snapshot_id"],
        file_path=row["file_path"],
        content=row["content"],
        embedding_model=row["embedding_model"],
        indexed_at=row["indexed_at"],
    )
