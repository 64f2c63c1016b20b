"""Stasher database layer."""

from stasher.db.connection import Database
from stasher.db.migrations import INDEX_MIGRATIONS, METADATA_MIGRATIONS, run_migrations
from stasher.db.models import IndexRecord, Session, Snapshot
from stasher.db.repository import Repository
from stasher.db.schema import initialize, initialize_index
from stasher.db.vectors import ensure_vec_table, model_to_slug, vec_table_name

__all__ = [
    "Database",
    "IndexRecord",
    "Repository",
    "Session",
    "Snapshot",
    "initialize",
    "initialize_index",
    "run_migrations",
    "METADATA_MIGRATIONS",
    "INDEX_MIGRATIONS",
    "ensure_vec_table",
    "model_to_slug",
    "vec_table_name",
]
