"""Path normalisation and the should_index() predicate for the tracked tree."""

from __future__ import annotations

import fnmatch
import os
from collections.abc import Iterator
from pathlib import Path, PurePosixPath

from stasher.config import WatchCfg
from stasher.errors import UntrackedPath


class PathFilter:
    """Decides which files under *root* are tracked.

    A path is indexable when it is a regular file inside the root, no
    component lies in the storage directory or an ignored directory, its
    name does not match an ignore glob, and it is no larger than the size cap.

    Args:
        root: Tracked root (resolved to an absolute path).
        storage_dir: Storage directory name relative to root (always ignored).
        watch: Watch section of the config.
    """

    def __init__(self, root: Path, storage_dir: str, watch: WatchCfg) -> None:
        self.root = Path(root).resolve()
        self._storage_parts = PurePosixPath(Path(storage_dir).as_posix()).parts
        self._ignore_dirs = set(watch.ignore_dirs)
        self._ignore_patterns = list(watch.ignore_patterns)
        self._max_bytes = watch.max_file_bytes

    def relative(self, path: Path | str) -> str:
        """Return *path* relative to the root with POSIX separators.

        Relative inputs are taken as relative to the root.

        Raises:
            UntrackedPath: *path* resolves outside the root, or its name is
                not valid UTF-8.
        """
        p = Path(path)
        absolute = p if p.is_absolute() else self.root / p
        absolute = Path(os.path.normpath(absolute))
        try:
            rel = absolute.relative_to(self.root)
        except ValueError:
            # Symlinked roots: retry against the resolved form.
            try:
                rel = absolute.resolve().relative_to(self.root)
            except ValueError as exc:
                raise UntrackedPath(
                    f"'{path}' is outside the tracked root {self.root}",
                    path=str(path),
                    operation="resolve_path",
                ) from exc
        if not rel.parts:
            raise UntrackedPath(
                f"'{path}' is the tracked root itself, not a file",
                path=str(path),
                operation="resolve_path",
            )
        rel_path = rel.as_posix()
        try:
            rel_path.encode("utf-8")
        except UnicodeEncodeError as exc:
            # os.walk hands back undecodable bytes as surrogate escapes.
            shown = rel_path.encode("utf-8", "surrogateescape").decode("utf-8", "replace")
            raise UntrackedPath(
                f"'{shown}' has a file name that is not valid UTF-8",
                path=shown,
                operation="resolve_path",
            ) from exc
        return rel_path

    def absolute(self, rel_path: str) -> Path:
        return self.root / rel_path

    def _dir_ignored(self, parts: tuple[str, ...]) -> bool:
        n = len(self._storage_parts)
        if n and parts[:n] == self._storage_parts:
            return True
        return any(part in self._ignore_dirs for part in parts)

    def is_ignored(self, rel_path: str) -> bool:
        """Name-based check only (no filesystem access)."""
        parts = PurePosixPath(rel_path).parts
        if self._dir_ignored(parts[:-1]):
            return True
        name = parts[-1]
        return any(
            fnmatch.fnmatch(name, pattern) or fnmatch.fnmatch(rel_path, pattern)
            for pattern in self._ignore_patterns
        )

    def should_index(self, path: Path | str) -> bool:
        """True if a change to *path* should be recorded."""
        try:
            rel = self.relative(path)
        except UntrackedPath:
            return False
        if self.is_ignored(rel):
            return False
        absolute = self.absolute(rel)
        try:
            if absolute.is_symlink() or not absolute.is_file():
                return False
            return absolute.stat().st_size <= self._max_bytes
        except OSError:
            return False

    def walk(self) -> Iterator[Path]:
        """Yield every indexable file under the root, pruning ignored directories."""
        for dirpath, dirnames, filenames in os.walk(self.root):
            current = Path(dirpath)
            rel_dir = current.relative_to(self.root)
            kept = []
            for d in sorted(dirnames):
                if self._dir_ignored((rel_dir / d).parts):
                    continue
                kept.append(d)
            dirnames[:] = kept
            for name in sorted(filenames):
                candidate = current / name
                if self.should_index(candidate):
                    yield candidate
