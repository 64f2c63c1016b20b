"""Content-addressed object store.

Every distinct file content is stored exactly once, as a file named by the
SHA-256 hex digest of its bytes. Snapshots of any path that share content
share the object, which is the whole deduplication story: identical bytes
always hash to the identical name.
"""

from __future__ import annotations

import hashlib
import os
import tempfile
from collections.abc import Iterator
from pathlib import Path

import structlog

from stasher.errors import IoFailure, ObjectNotFound

logger = structlog.get_logger(__name__)

_HASH_LEN = 64
_TMP_PREFIX = ".obj."


def hash_content(content: bytes) -> str:
    """Return the SHA-256 hex digest used as the object key for *content*."""
    return hashlib.sha256(content).hexdigest()


def _is_object_name(name: str) -> bool:
    return len(name) == _HASH_LEN and all(c in "0123456789abcdef" for c in name)


class ObjectStore:
    """Flat directory of immutable blobs, one file per content hash.

    Args:
        objects_dir: Directory holding the objects (created if missing).
    """

    def __init__(self, objects_dir: Path) -> None:
        self.objects_dir = Path(objects_dir)
        self.objects_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, content_hash: str) -> Path:
        if not _is_object_name(content_hash):
            raise ValueError(f"Not a content hash: '{content_hash}'")
        return self.objects_dir / content_hash

    def put(self, content: bytes) -> str:
        """Store *content* under its hash and return the hash.

        Idempotent: if the object already exists nothing is written. New
        objects are written to a temp file and renamed into place, so an
        object name never points at a partial write.

        Raises:
            IoFailure: The object could not be written.
        """
        content_hash = hash_content(content)
        target = self._path(content_hash)
        if target.exists():
            return content_hash

        try:
            fd, tmp_path = tempfile.mkstemp(dir=str(self.objects_dir), prefix=_TMP_PREFIX)
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(content)
                    f.flush()
                    os.fsync(f.fileno())
                Path(tmp_path).replace(target)
            except BaseException:
                Path(tmp_path).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise IoFailure(
                f"Failed to write object {content_hash}: {exc}",
                operation="object_put",
            ) from exc

        logger.debug("object_written", hash=content_hash, size=len(content))
        return content_hash

    def get(self, content_hash: str) -> bytes:
        """Return the bytes stored under *content_hash*.

        Raises:
            ObjectNotFound: No object with that hash exists.
            IoFailure: The object exists but could not be read.
        """
        target = self._path(content_hash)
        try:
            return target.read_bytes()
        except FileNotFoundError as exc:
            raise ObjectNotFound(
                f"Object {content_hash} not found in {self.objects_dir}",
                operation="object_get",
            ) from exc
        except OSError as exc:
            raise IoFailure(
                f"Failed to read object {content_hash}: {exc}",
                operation="object_get",
            ) from exc

    def exists(self, content_hash: str) -> bool:
        return self._path(content_hash).is_file()

    def delete(self, content_hash: str) -> None:
        """Remove an object unconditionally.

        The caller must already have checked that no snapshot references it.
        Deleting a missing object is a no-op.
        """
        try:
            self._path(content_hash).unlink(missing_ok=True)
        except OSError as exc:
            raise IoFailure(
                f"Failed to delete object {content_hash}: {exc}",
                operation="object_delete",
            ) from exc

    def __iter__(self) -> Iterator[str]:
        """Yield the hash of every stored object (temp files are skipped)."""
        with os.scandir(self.objects_dir) as entries:
            for entry in entries:
                if entry.is_file() and _is_object_name(entry.name):
                    yield entry.name

    def count(self) -> int:
        return sum(1 for _ in self)

    def sweep(self, keep: set[str]) -> int:
        """Delete every object whose hash is not in *keep*.

        Leftover temp files from interrupted writes are removed too.

        Returns:
            Number of objects deleted (temp files not counted).
        """
        deleted = 0
        for content_hash in list(self):
            if content_hash not in keep:
                self.delete(content_hash)
                deleted += 1
        with os.scandir(self.objects_dir) as entries:
            stale = [e.path for e in entries if e.is_file() and e.name.startswith(_TMP_PREFIX)]
        for tmp in stale:
            Path(tmp).unlink(missing_ok=True)
        return deleted
