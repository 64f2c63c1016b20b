"""Tests for the content-addressed object store."""

from __future__ import annotations

import hashlib

import pytest

from stasher.errors import ObjectNotFound
from stasher.objects import ObjectStore, hash_content


@pytest.fixture
def store(tmp_path):
    return ObjectStore(tmp_path / "objects")


def test_hash_is_sha256_hex():
    assert hash_content(b"abc") == hashlib.sha256(b"abc").hexdigest()


def test_put_returns_hash_and_get_returns_bytes(store):
    h = store.put(b"hello\n")
    assert h == hash_content(b"hello\n")
    assert store.get(h) == b"hello\n"


def test_put_is_idempotent(store):
    h1 = store.put(b"same")
    h2 = store.put(b"same")
    assert h1 == h2
    assert store.count() == 1


def test_put_empty_content(store):
    h = store.put(b"")
    assert store.get(h) == b""


def test_get_missing_raises_not_found(store):
    with pytest.raises(ObjectNotFound):
        store.get(hash_content(b"never stored"))


def test_get_rejects_non_hash_name(store):
    with pytest.raises(ValueError):
        store.get("../etc/passwd")


def test_exists(store):
    h = store.put(b"x")
    assert store.exists(h)
    assert not store.exists(hash_content(b"y"))


def test_delete_missing_is_noop(store):
    store.delete(hash_content(b"never stored"))


def test_iter_skips_temp_files(store):
    h = store.put(b"data")
    (store.objects_dir / ".obj.partial").write_bytes(b"junk")
    assert list(store) == [h]


def test_no_temp_files_left_after_put(store):
    store.put(b"data")
    assert [p.name for p in store.objects_dir.iterdir()] == [hash_content(b"data")]


def test_sweep_deletes_unreferenced(store):
    keep = store.put(b"keep")
    drop = store.put(b"drop")
    (store.objects_dir / ".obj.stale").write_bytes(b"junk")

    assert store.sweep({keep}) == 1
    assert store.exists(keep)
    assert not store.exists(drop)
    assert not (store.objects_dir / ".obj.stale").exists()


def test_sweep_empty_keep_set_deletes_all(store):
    store.put(b"a")
    store.put(b"b")
    assert store.sweep(set()) == 2
    assert store.count() == 0
