"""Versioning engine: record, restore, list, search, prune.

Owns the write path into all three stores:

  metadata.db   sessions + snapshots (source of truth for history)
  objects/      content-addressed blobs, one per distinct content
  vectors.db    semantic index (best-effort, may lag)

Every operation that reads-then-writes history runs under one re-entrant
lock, so the "compare latest hash, then insert" step of record_change can
never interleave with another write or with prune's sweep. The same steps
also run inside a BEGIN IMMEDIATE transaction on metadata.db, which extends
that guarantee to engines in other processes sharing the root.

Write order inside record_change is object first, then metadata row: a
committed snapshot row never points at a missing object. A crash between the
two leaves an unreferenced object that the next prune removes.
"""

from __future__ import annotations

import importlib.metadata
import json
import os
import socket
import sqlite3
import tempfile
import threading
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import NamedTuple

import structlog

from stasher.config import StasherConfig, load_config
from stasher.db.connection import Database
from stasher.db.models import Session, Snapshot
from stasher.db.repository import Repository
from stasher.db.schema import initialize, initialize_index
from stasher.errors import (
    IntegrityViolation,
    IoFailure,
    ObjectNotFound,
    PathNotTracked,
    SnapshotMismatch,
    StasherError,
    StoreFailure,
)
from stasher.history.diff import DiffResult, diff_bytes
from stasher.history.paths import PathFilter
from stasher.objects import ObjectStore, hash_content
from stasher.search.embedder import Embedder
from stasher.search.index import SearchHit, SemanticIndex

logger = structlog.get_logger(__name__)

METADATA_DB = "metadata.db"
VECTORS_DB = "vectors.db"
OBJECTS_DIR = "objects"

_MS_PER_DAY = 86_400_000


class PruneResult(NamedTuple):
    snapshots_deleted: int
    objects_deleted: int


def get_version() -> str:
    try:
        return importlib.metadata.version("stasher")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def _decode(content: bytes) -> str | None:
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        return None


@contextmanager
def _store_errors(operation: str, path: str | None = None) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        target = f" of '{path}'" if path else ""
        raise StoreFailure(
            f"{operation}{target} failed: {exc}", path=path, operation=operation
        ) from exc


def _atomic_write(target: Path, content: bytes) -> None:
    """Replace *target* with *content* via temp file + rename, keeping its mode."""
    target.parent.mkdir(parents=True, exist_ok=True)
    mode = target.stat().st_mode if target.exists() else None
    fd, tmp_path = tempfile.mkstemp(dir=str(target.parent), prefix=f".{target.name}.")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(tmp_path, mode)
        Path(tmp_path).replace(target)
    except BaseException:
        Path(tmp_path).unlink(missing_ok=True)
        raise


class Stasher:
    """The versioning engine for one tracked root.

    Build with :meth:`open`; use as a context manager or call :meth:`close`
    so the session gets its end time.
    """

    def __init__(
        self,
        root: Path,
        config: StasherConfig,
        metadata_conn: sqlite3.Connection,
        index_conn: sqlite3.Connection,
        objects: ObjectStore,
        index: SemanticIndex,
    ) -> None:
        self.root = Path(root)
        self.config = config
        self.paths = PathFilter(self.root, config.storage.dir, config.watch)
        self.objects = objects
        self.index = index
        self.repo = Repository(metadata_conn)
        self._conn = metadata_conn
        self._index_conn = index_conn
        self._lock = threading.RLock()
        self._session: Session | None = None
        self._closed = False

    @classmethod
    def open(
        cls,
        root: Path | str,
        config: StasherConfig | None = None,
        *,
        embedder: Embedder | None = None,
        background_index: bool | None = None,
        start_session: bool = True,
    ) -> Stasher:
        """Open (creating if needed) the history store under *root*.

        Args:
            root: Tracked root directory.
            config: Loaded config; read from *root* when omitted.
            embedder: Embedder override (tests inject fakes here).
            background_index: Override ``index.background`` from the config.
            start_session: Start a session now. Read-only callers pass False;
                a session is then started lazily on the first write.

        Raises:
            StoreFailure: A database could not be opened or migrated.
            IoFailure: The storage directory could not be created.
        """
        root = Path(root).resolve()
        cfg = config if config is not None else load_config(root)
        storage = root / cfg.storage.dir
        try:
            storage.mkdir(parents=True, exist_ok=True)
            objects = ObjectStore(storage / OBJECTS_DIR)
        except OSError as exc:
            raise IoFailure(
                f"Cannot create storage directory {storage}: {exc}",
                path=str(storage),
                operation="open",
            ) from exc

        try:
            metadata_conn = Database(storage / METADATA_DB).connect()
            initialize(metadata_conn)
            index_conn = Database(storage / VECTORS_DB).connect()
            initialize_index(index_conn)
        except sqlite3.Error as exc:
            raise StoreFailure(
                f"Cannot open history databases in {storage}: {exc}",
                path=str(storage),
                operation="open",
            ) from exc

        background = cfg.index.background if background_index is None else background_index
        index = SemanticIndex(index_conn, embedder or Embedder(cfg.embedding), background=background)
        engine = cls(root, cfg, metadata_conn, index_conn, objects, index)
        if start_session:
            engine.start_session()
        return engine

    @property
    def storage_dir(self) -> Path:
        return self.root / self.config.storage.dir

    @property
    def session(self) -> Session | None:
        return self._session

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start_session(self) -> Session:
        """Start the session this engine run records into (once per engine)."""
        with self._lock:
            if self._session is not None:
                return self._session
            session = Session(
                id=str(uuid.uuid4()),
                start_time=now_ms(),
                meta=json.dumps(
                    {
                        "root": str(self.root),
                        "host": socket.gethostname(),
                        "pid": os.getpid(),
                        "version": get_version(),
                    }
                ),
            )
            try:
                self.repo.add_session(session)
            except sqlite3.Error as exc:
                raise StoreFailure(
                    f"Failed to start session: {exc}", operation="start_session"
                ) from exc
            self._session = session
            logger.info("session_started", session_id=session.id, root=str(self.root))
            return session

    def close(self) -> None:
        """Close the session and the stores. Safe to call twice.

        Waits for a snapshot write already holding the lock; queued index
        work is abandoned.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self.index.close(wait=False)
            if self._session is not None:
                end = now_ms()
                try:
                    self.repo.close_session(self._session.id, end)
                    self._session.end_time = end
                    logger.info("session_closed", session_id=self._session.id)
                except sqlite3.Error as exc:
                    logger.warning("session_close_failed", session_id=self._session.id, error=str(exc))
            self._conn.close()
            self._index_conn.close()

    def __enter__(self) -> Stasher:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def should_index(self, path: Path | str) -> bool:
        """Predicate the watcher must honour before emitting a change event."""
        return self.paths.should_index(path)

    def record_change(self, path: Path | str) -> Snapshot | None:
        """Record the current content of *path* if it differs from its latest snapshot.

        Returns:
            The new Snapshot, or None when the content hash is unchanged.

        Raises:
            UntrackedPath: *path* is outside the tracked root.
            IoFailure: The file could not be read or its object not stored.
            StoreFailure: The snapshot row could not be written.
        """
        rel = self.paths.relative(path)
        absolute = self.paths.absolute(rel)

        with self._lock:
            try:
                content = absolute.read_bytes()
            except OSError as exc:
                raise IoFailure(
                    f"Failed to read '{rel}' for record_change: {exc}",
                    path=rel,
                    operation="record_change",
                ) from exc
            new_hash = hash_content(content)

            try:
                session = self.start_session()
                # Lookup, object write and insert hold the database write lock
                # so a prune in another process cannot sweep the object between them.
                with self.repo.write_transaction():
                    recorded = self._record_locked(rel, content, new_hash, session)
            except (sqlite3.Error, ValueError) as exc:
                raise StoreFailure(
                    f"Failed to record snapshot of '{rel}': {exc}",
                    path=rel,
                    operation="record_change",
                ) from exc

        if recorded is None:
            logger.debug("snapshot_skipped", path=rel, reason="unchanged")
            return None
        snapshot, diff = recorded

        logger.info(
            "snapshot_recorded",
            path=rel,
            snapshot_id=snapshot.id,
            hash=new_hash[:12],
            added=diff.lines_added,
            removed=diff.lines_removed,
        )

        text = _decode(content)
        if text is None:
            logger.debug("index_skipped", path=rel, snapshot_id=snapshot.id, reason="binary")
        else:
            self.index.submit(snapshot.id, rel, text)
        return snapshot

    def _record_locked(
        self, rel: str, content: bytes, new_hash: str, session: Session
    ) -> tuple[Snapshot, DiffResult] | None:
        latest = self.repo.latest_snapshot(rel)
        if latest is not None and latest.content_hash == new_hash:
            return None

        old_content = b""
        if latest is not None:
            try:
                old_content = self.objects.get(latest.content_hash)
            except (ObjectNotFound, IoFailure) as exc:
                # Degraded: diff against empty instead of failing the write.
                logger.warning(
                    "previous_object_unreadable",
                    path=rel,
                    snapshot_id=latest.id,
                    hash=latest.content_hash,
                    error=str(exc),
                )

        diff = diff_bytes(old_content, content, rel)

        try:
            self.objects.put(content)
        except IoFailure as exc:
            raise IoFailure(
                f"Failed to store content of '{rel}': {exc}",
                path=rel,
                operation="record_change",
            ) from exc

        timestamp = now_ms()
        if latest is not None:
            timestamp = max(timestamp, latest.timestamp)
        snapshot = Snapshot(
            id=str(uuid.uuid4()),
            session_id=session.id,
            file_path=rel,
            timestamp=timestamp,
            diff_patch=diff.patch,
            content_hash=new_hash,
            lines_added=diff.lines_added,
            lines_removed=diff.lines_removed,
        )
        self.repo.add_snapshot(snapshot)
        return snapshot, diff

    def sync_all(self) -> int:
        """Record every indexable file under the root as if it had just changed.

        Per-file failures are logged and skipped.

        Returns:
            Number of new snapshots written.
        """
        recorded = 0
        failed = 0
        for path in self.paths.walk():
            try:
                if self.record_change(path) is not None:
                    recorded += 1
            except StasherError as exc:
                failed += 1
                logger.warning(
                    "sync_failed",
                    path=exc.path or str(path),
                    operation=exc.operation or "sync_all",
                    error=str(exc),
                )
        logger.info("sync_complete", recorded=recorded, failed=failed)
        return recorded

    # ------------------------------------------------------------------
    # Reading history
    # ------------------------------------------------------------------

    def list_snapshots(self, path: Path | str, limit: int | None = None) -> list[Snapshot]:
        """Snapshots of *path*, most recent first ([] for an unknown path)."""
        rel = self.paths.relative(path)
        with self._lock:
            try:
                return self.repo.list_snapshots(rel, limit=limit)
            except sqlite3.Error as exc:
                raise StoreFailure(
                    f"Failed to list snapshots of '{rel}': {exc}",
                    path=rel,
                    operation="list_snapshots",
                ) from exc

    def get_snapshot(self, snapshot_id: str) -> Snapshot | None:
        with self._lock, _store_errors("get_snapshot"):
            return self.repo.get_snapshot(snapshot_id)

    def tracked_paths(self) -> list[str]:
        with self._lock, _store_errors("tracked_paths"):
            return self.repo.tracked_paths()

    def resolve_snapshot(self, path: Path | str, snapshot_id: str | None = None) -> Snapshot:
        """Find the snapshot of *path* named by *snapshot_id* (full id or unique prefix).

        Without an id the most recent snapshot is returned.

        Raises:
            PathNotTracked: *path* has no snapshots.
            SnapshotMismatch: The id is unknown, ambiguous, or belongs to another path.
        """
        rel = self.paths.relative(path)
        with self._lock, _store_errors("resolve_snapshot", rel):
            latest = self.repo.latest_snapshot(rel)
            if latest is None:
                raise PathNotTracked(
                    f"No snapshots recorded for '{rel}'", path=rel, operation="resolve_snapshot"
                )
            if snapshot_id is None:
                return latest

            exact = self.repo.get_snapshot(snapshot_id)
            if exact is not None:
                if exact.file_path != rel:
                    raise SnapshotMismatch(
                        f"Snapshot {snapshot_id} belongs to '{exact.file_path}', not '{rel}'",
                        path=rel,
                        operation="resolve_snapshot",
                    )
                return exact

            matches = [s for s in self.repo.list_snapshots(rel) if s.id.startswith(snapshot_id)]
        if len(matches) == 1:
            return matches[0]
        if not matches:
            raise SnapshotMismatch(
                f"No snapshot '{snapshot_id}' exists for '{rel}'",
                path=rel,
                operation="resolve_snapshot",
            )
        raise SnapshotMismatch(
            f"Snapshot prefix '{snapshot_id}' is ambiguous for '{rel}' ({len(matches)} matches)",
            path=rel,
            operation="resolve_snapshot",
        )

    def read_snapshot(self, snapshot: Snapshot) -> bytes:
        """Return the full content captured by *snapshot*.

        Raises:
            IntegrityViolation: The referenced object is missing.
        """
        try:
            return self.objects.get(snapshot.content_hash)
        except ObjectNotFound as exc:
            raise IntegrityViolation(
                f"Snapshot {snapshot.id} of '{snapshot.file_path}' references missing "
                f"object {snapshot.content_hash}",
                path=snapshot.file_path,
                operation="read_snapshot",
            ) from exc

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def restore(self, path: Path | str, snapshot_id: str | None = None) -> Snapshot:
        """Overwrite the live file with the content of a snapshot.

        Args:
            path: File to restore (absolute or relative to the root).
            snapshot_id: Snapshot id or unique prefix; latest when omitted.

        Returns:
            The snapshot that was restored.

        Raises:
            PathNotTracked: *path* has no snapshots.
            SnapshotMismatch: *snapshot_id* is unknown or belongs to another path.
            IntegrityViolation: The snapshot's object is missing.
            IoFailure: The live file could not be written.
        """
        with self._lock:
            snapshot = self.resolve_snapshot(path, snapshot_id)
            content = self.read_snapshot(snapshot)
            target = self.paths.absolute(snapshot.file_path)
            try:
                _atomic_write(target, content)
            except OSError as exc:
                raise IoFailure(
                    f"Failed to write '{snapshot.file_path}' during restore: {exc}",
                    path=snapshot.file_path,
                    operation="restore",
                ) from exc
        logger.info("file_restored", path=snapshot.file_path, snapshot_id=snapshot.id)
        return snapshot

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, query: str, limit: int | None = None) -> list[SearchHit]:
        """Semantic search over indexed snapshot content, nearest first."""
        return self.index.search(query, limit or self.config.search.limit)

    # ------------------------------------------------------------------
    # Prune / GC
    # ------------------------------------------------------------------

    def prune(self, days: int | None = None) -> PruneResult:
        """Delete snapshots older than *days* and sweep unreferenced objects.

        The referenced-hash set is computed after the delete, across all
        paths, and the whole pass holds the engine lock and the database write
        lock, so no snapshot can be recorded, in this process or another,
        between the recompute and the sweep.

        Index records of deleted snapshots are removed afterwards on a
        best-effort basis.

        Raises:
            ValueError: *days* is negative.
            StoreFailure: The metadata database rejected the delete.
        """
        horizon = self.config.retention.days if days is None else days
        if horizon < 0:
            raise ValueError(f"days must be >= 0, got {horizon}")
        cutoff = now_ms() - horizon * _MS_PER_DAY

        with self._lock, _store_errors("prune"), self.repo.write_transaction():
            deleted_ids = self.repo.delete_snapshots_before(cutoff)
            referenced = self.repo.referenced_hashes()
            objects_deleted = self.objects.sweep(referenced)

        index_deleted = 0
        try:
            index_deleted = self.index.delete_snapshots(deleted_ids)
        except StoreFailure as exc:
            logger.warning("index_prune_failed", operation="prune", error=str(exc))

        logger.info(
            "prune_complete",
            days=horizon,
            snapshots_deleted=len(deleted_ids),
            objects_deleted=objects_deleted,
            index_records_deleted=index_deleted,
        )
        return PruneResult(len(deleted_ids), objects_deleted)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def stats(self) -> dict[str, int]:
        with self._lock, _store_errors("stats"):
            return {
                "sessions": self.repo.count_sessions(),
                "snapshots": self.repo.count_snapshots(),
                "tracked_files": len(self.repo.tracked_paths()),
                "objects": self.objects.count(),
                "index_records": self.index.count(),
            }
