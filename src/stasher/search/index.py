"""Semantic index over snapshot content (sqlite-vec + LiteLLM embeddings).

The index is a best-effort overlay, not a source of truth:
  - index() is not idempotent; indexing the same snapshot twice stores two rows
  - submit() never raises; failures are logged as warnings and dropped
  - search() on a store where nothing was ever indexed returns []

Scores are ``1 / (1 + distance)`` so higher means closer.
"""

from __future__ import annotations

import sqlite3
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass

import structlog

from stasher.db.models import IndexRecord
from stasher.db.repository import IndexRepository
from stasher.db.vectors import ensure_vec_table, model_to_slug, vec_table_exists, vec_table_name
from stasher.errors import StoreFailure
from stasher.search.embedder import Embedder

logger = structlog.get_logger(__name__)


@dataclass
class SearchHit:
    """A search result, nearest first.

    Attributes:
        snapshot_id: Snapshot the indexed content belongs to.
        file_path: Path relative to the tracked root.
        content: Full content captured at that snapshot.
        score: Similarity in (0, 1]; higher = more relevant.
    """

    snapshot_id: str
    file_path: str
    content: str
    score: float


class SemanticIndex:
    """Embeds snapshot content and answers nearest-neighbour queries.

    Args:
        conn: Open connection to vectors.db with the index schema initialised.
        embedder: Shared embedder (serialises model calls).
        background: Run submit() work on a single worker thread.
    """

    def __init__(self, conn: sqlite3.Connection, embedder: Embedder, background: bool = False) -> None:
        self._conn = conn
        self._repo = IndexRepository(conn)
        self._embedder = embedder
        self._lock = threading.Lock()
        self._table = vec_table_name(model_to_slug(embedder.model))
        self._executor: ThreadPoolExecutor | None = (
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="stasher-index") if background else None
        )
        self._pending: set[Future] = set()

    @property
    def table(self) -> str:
        return self._table

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def index(self, snapshot_id: str, file_path: str, content: str) -> int:
        """Embed *content* and insert an index record. Returns the record rowid.

        Raises:
            EmbeddingFailure: The embedding call failed.
            StoreFailure: vectors.db rejected the insert.
        """
        embedding = self._embedder.embed(content)
        with self._lock:
            try:
                table = ensure_vec_table(
                    self._conn, model_to_slug(self._embedder.model), self._embedder.dimensions
                )
                rowid = self._repo.add_record(
                    IndexRecord(
                        snapshot_id=snapshot_id,
                        file_path=file_path,
                        content=content,
                        embedding_model=self._embedder.model,
                    )
                )
                try:
                    self._repo.add_embedding(table, rowid, embedding)
                except sqlite3.Error:
                    self._repo.delete_record(rowid)
                    raise
            except sqlite3.Error as exc:
                raise StoreFailure(
                    f"Failed to index snapshot {snapshot_id}: {exc}",
                    path=file_path,
                    operation="index",
                ) from exc
        logger.debug("snapshot_indexed", snapshot_id=snapshot_id, path=file_path, rowid=rowid)
        return rowid

    def submit(self, snapshot_id: str, file_path: str, content: str) -> None:
        """Fire-and-forget index(); inline or on the worker thread."""
        if self._executor is None:
            self._index_quietly(snapshot_id, file_path, content)
            return
        try:
            future = self._executor.submit(self._index_quietly, snapshot_id, file_path, content)
        except RuntimeError:
            # Executor already shut down: the engine is closing.
            logger.warning("index_skipped", snapshot_id=snapshot_id, path=file_path, reason="shutdown")
            return
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _index_quietly(self, snapshot_id: str, file_path: str, content: str) -> None:
        try:
            self.index(snapshot_id, file_path, content)
        except Exception as exc:
            logger.warning(
                "index_failed",
                snapshot_id=snapshot_id,
                path=file_path,
                operation="index",
                error=str(exc),
            )

    def delete_snapshots(self, snapshot_ids: list[str]) -> int:
        """Drop index records belonging to *snapshot_ids*. Returns rows removed."""
        with self._lock:
            try:
                return self._repo.delete_by_snapshot_ids(snapshot_ids)
            except sqlite3.Error as exc:
                raise StoreFailure(
                    f"Failed to remove index records: {exc}", operation="index_delete"
                ) from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def search(self, query: str, limit: int = 5) -> list[SearchHit]:
        """Return up to *limit* hits for *query*, nearest first.

        Raises:
            EmbeddingFailure: The query could not be embedded.
            StoreFailure: vectors.db rejected the query.
        """
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        with self._lock:
            if not vec_table_exists(self._conn, self._table):
                return []

        query_embedding = self._embedder.embed(query)
        with self._lock:
            try:
                results = self._repo.search_vec(self._table, query_embedding, limit=limit)
            except sqlite3.Error as exc:
                raise StoreFailure(f"Search failed: {exc}", operation="search") from exc

        return [
            SearchHit(
                snapshot_id=record.snapshot_id,
                file_path=record.file_path,
                content=record.content,
                score=1.0 / (1.0 + float(distance)),
            )
            for record, distance in results
        ]

    def count(self) -> int:
        with self._lock:
            return self._repo.count_records()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until queued submissions finish. Returns False on timeout."""
        with self._lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait_futures(pending, timeout=timeout)
        return not not_done

    def close(self, wait: bool = False) -> None:
        """Stop the worker. Queued work is cancelled unless *wait* is True."""
        if self._executor is not None:
            self._executor.shutdown(wait=wait, cancel_futures=not wait)
