"""Tests for the metadata and index repositories."""

from __future__ import annotations

import sqlite3

import pytest

from stasher.db.connection import Database
from stasher.db.models import IndexRecord, Session, Snapshot
from stasher.db.repository import IndexRepository, Repository
from stasher.db.vectors import ensure_vec_table


@pytest.fixture
def repo(tmp_db):
    r = Repository(tmp_db)
    r.add_session(Session(id="sess-1", start_time=1_000))
    return r


@pytest.fixture
def index_repo(tmp_index_db):
    return IndexRepository(tmp_index_db)


def _snap(id="snap-1", path="a.txt", ts=1_000, hash="h1", added=1, removed=0):
    return Snapshot(
        id=id,
        session_id="sess-1",
        file_path=path,
        timestamp=ts,
        diff_patch="",
        content_hash=hash,
        lines_added=added,
        lines_removed=removed,
    )


# ------------------------------------------------------------------
# Sessions
# ------------------------------------------------------------------

def test_get_session(repo):
    session = repo.get_session("sess-1")
    assert session is not None
    assert session.start_time == 1_000
    assert session.is_open


def test_get_session_not_found(repo):
    assert repo.get_session("nonexistent") is None


def test_close_session_sets_end_time(repo):
    assert repo.close_session("sess-1", 2_000) is True
    session = repo.get_session("sess-1")
    assert session.end_time == 2_000
    assert not session.is_open


def test_close_session_twice_returns_false(repo):
    repo.close_session("sess-1", 2_000)
    assert repo.close_session("sess-1", 3_000) is False
    assert repo.get_session("sess-1").end_time == 2_000


def test_session_meta_round_trip(repo):
    repo.add_session(Session(id="sess-2", start_time=5, meta='{"host": "box"}'))
    assert repo.get_session("sess-2").meta_dict == {"host": "box"}


def test_list_sessions_most_recent_first(repo):
    repo.add_session(Session(id="sess-2", start_time=2_000))
    assert [s.id for s in repo.list_sessions()] == ["sess-2", "sess-1"]


# ------------------------------------------------------------------
# Snapshots
# ------------------------------------------------------------------

def test_add_and_get_snapshot(repo):
    repo.add_snapshot(_snap())
    result = repo.get_snapshot("snap-1")
    assert result == _snap()


def test_latest_snapshot_none_for_unknown_path(repo):
    assert repo.latest_snapshot("nope.txt") is None


def test_latest_snapshot_by_timestamp(repo):
    repo.add_snapshot(_snap(id="old", ts=1_000))
    repo.add_snapshot(_snap(id="new", ts=2_000, hash="h2"))
    assert repo.latest_snapshot("a.txt").id == "new"


def test_same_millisecond_ordered_by_insertion(repo):
    repo.add_snapshot(_snap(id="first", ts=1_000))
    repo.add_snapshot(_snap(id="second", ts=1_000, hash="h2"))
    assert repo.latest_snapshot("a.txt").id == "second"
    assert [s.id for s in repo.list_snapshots("a.txt")] == ["second", "first"]


def test_list_snapshots_is_per_path(repo):
    repo.add_snapshot(_snap(id="a1", path="a.txt"))
    repo.add_snapshot(_snap(id="b1", path="b.txt"))
    assert [s.id for s in repo.list_snapshots("a.txt")] == ["a1"]


def test_list_snapshots_limit(repo):
    for i in range(5):
        repo.add_snapshot(_snap(id=f"s{i}", ts=1_000 + i, hash=f"h{i}"))
    result = repo.list_snapshots("a.txt", limit=2)
    assert [s.id for s in result] == ["s4", "s3"]


def test_tracked_paths_sorted_distinct(repo):
    repo.add_snapshot(_snap(id="1", path="b.txt"))
    repo.add_snapshot(_snap(id="2", path="a.txt"))
    repo.add_snapshot(_snap(id="3", path="b.txt", hash="h2", ts=2_000))
    assert repo.tracked_paths() == ["a.txt", "b.txt"]


def test_counts(repo):
    repo.add_snapshot(_snap(id="1"))
    repo.add_snapshot(_snap(id="2", hash="h2", ts=2_000))
    assert repo.count_snapshots() == 2
    assert repo.count_sessions() == 1


def test_delete_snapshots_before(repo):
    repo.add_snapshot(_snap(id="old", ts=1_000, hash="h-old"))
    repo.add_snapshot(_snap(id="new", ts=5_000, hash="h-new"))
    deleted = repo.delete_snapshots_before(3_000)
    assert deleted == ["old"]
    assert repo.get_snapshot("old") is None
    assert repo.get_snapshot("new") is not None


def test_delete_snapshots_before_nothing_to_delete(repo):
    repo.add_snapshot(_snap(ts=5_000))
    assert repo.delete_snapshots_before(1_000) == []
    assert repo.count_snapshots() == 1


def test_referenced_hashes_across_paths(repo):
    repo.add_snapshot(_snap(id="1", path="a.txt", hash="shared"))
    repo.add_snapshot(_snap(id="2", path="b.txt", hash="shared"))
    repo.add_snapshot(_snap(id="3", path="b.txt", hash="other", ts=2_000))
    assert repo.referenced_hashes() == {"shared", "other"}


# ------------------------------------------------------------------
# Write transactions
# ------------------------------------------------------------------

def _other_connection(tmp_path):
    conn = Database(tmp_path / "metadata.db").connect()
    conn.execute("PRAGMA busy_timeout = 0")
    return conn


def test_write_transaction_commits_at_end(repo, tmp_path):
    other = _other_connection(tmp_path)
    try:
        with repo.write_transaction():
            repo.add_snapshot(_snap(id="inside"))
            assert other.execute("SELECT COUNT(*) FROM snapshots").fetchone()[0] == 0
        assert other.execute("SELECT COUNT(*) FROM snapshots").fetchone()[0] == 1
    finally:
        other.close()


def test_write_transaction_rolls_back_on_error(repo):
    with pytest.raises(RuntimeError):
        with repo.write_transaction():
            repo.add_snapshot(_snap(id="lost"))
            raise RuntimeError("boom")
    assert repo.get_snapshot("lost") is None
    repo.add_snapshot(_snap(id="after"))
    assert repo.count_snapshots() == 1


def test_write_transaction_locks_out_other_writers(repo, tmp_path):
    other = _other_connection(tmp_path)
    try:
        with repo.write_transaction():
            with pytest.raises(sqlite3.OperationalError, match="locked"):
                other.execute("BEGIN IMMEDIATE")
        other.execute("BEGIN IMMEDIATE")
        other.rollback()
    finally:
        other.close()


def test_write_transaction_nests(repo):
    with repo.write_transaction():
        with repo.write_transaction():
            repo.add_snapshot(_snap(id="1"))
        repo.add_snapshot(_snap(id="2", hash="h2", ts=2_000))
    assert repo.count_snapshots() == 2


# ------------------------------------------------------------------
# Index records
# ------------------------------------------------------------------

def _record(snapshot_id="snap-1", content="hello"):
    return IndexRecord(
        snapshot_id=snapshot_id, file_path="a.txt", content=content, embedding_model="ollama/test"
    )


def test_add_record_returns_rowid(index_repo):
    rowid = index_repo.add_record(_record())
    assert rowid >= 1
    record = index_repo.get_record(rowid)
    assert record.snapshot_id == "snap-1"
    assert record.rowid == rowid
    assert record.indexed_at is not None


def test_search_vec_nearest_first(index_repo, tmp_index_db):
    table = ensure_vec_table(tmp_index_db, "ollama_test", 2)
    near = index_repo.add_record(_record("near"))
    far = index_repo.add_record(_record("far"))
    index_repo.add_embedding(table, near, [1.0, 0.0])
    index_repo.add_embedding(table, far, [0.0, 1.0])

    results = index_repo.search_vec(table, [0.9, 0.1], limit=2)
    assert [r.snapshot_id for r, _ in results] == ["near", "far"]
    assert results[0][1] < results[1][1]


def test_search_vec_limit_caps_neighbours(index_repo, tmp_index_db):
    table = ensure_vec_table(tmp_index_db, "ollama_test", 2)
    for name, vec in (("a", [1.0, 0.0]), ("b", [0.7, 0.7]), ("c", [0.0, 1.0])):
        index_repo.add_embedding(table, index_repo.add_record(_record(name)), vec)

    results = index_repo.search_vec(table, [1.0, 0.0], limit=1)
    assert [r.snapshot_id for r, _ in results] == ["a"]


def test_delete_by_snapshot_ids(index_repo, tmp_index_db):
    table = ensure_vec_table(tmp_index_db, "ollama_test", 2)
    keep = index_repo.add_record(_record("keep"))
    drop = index_repo.add_record(_record("drop"))
    index_repo.add_embedding(table, keep, [1.0, 0.0])
    index_repo.add_embedding(table, drop, [0.0, 1.0])

    assert index_repo.delete_by_snapshot_ids(["drop", "unknown"]) == 1
    assert index_repo.count_records() == 1
    results = index_repo.search_vec(table, [0.0, 1.0], limit=5)
    assert [r.snapshot_id for r, _ in results] == ["keep"]


def test_delete_by_snapshot_ids_empty(index_repo):
    assert index_repo.delete_by_snapshot_ids([]) == 0
