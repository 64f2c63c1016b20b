"""Stasher exception hierarchy.

Every error carries the path and the operation it was raised from so the CLI
can print an actionable message without re-deriving context.
"""

from __future__ import annotations


class StasherError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, *, path: str | None = None, operation: str | None = None) -> None:
        super().__init__(message)
        self.path = path
        self.operation = operation


class IoFailure(StasherError):
    """Reading or writing a tracked file or a stored object failed."""


class StoreFailure(StasherError):
    """The metadata or index database rejected an operation."""


class NotFound(StasherError):
    """Something the caller asked for does not exist."""


class PathNotTracked(NotFound):
    """The path has no recorded snapshots."""


class ObjectNotFound(NotFound):
    """No object is stored under the requested hash."""


class SnapshotMismatch(StasherError):
    """The snapshot id does not exist or belongs to a different path."""


class IntegrityViolation(StasherError):
    """A snapshot references an object that is missing from the object store."""


class UntrackedPath(StasherError):
    """The path lies outside the tracked root."""


class EmbeddingFailure(StasherError):
    """The embedding model failed or returned a vector of the wrong size."""
