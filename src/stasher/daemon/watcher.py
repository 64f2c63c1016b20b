"""Polling file watcher for the tracked root."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)

# (mtime_ns, size); either changing counts as a modification.
_Stamp = tuple[int, int]


class PollingWatcher:
    """Watches the tracked tree for changes and reports them from its own thread.

    Uses polling to detect new and modified files. Deletions are not
    reported; history of a deleted file stays available for restore.

    Args:
        list_files: Returns the files to watch (already filtered by should_index).
        on_change: Callback invoked with the absolute path of a changed file.
            It may block; the next poll waits for it.
        poll_interval: Seconds between scans.
    """

    def __init__(
        self,
        list_files: Callable[[], Iterable[Path]],
        on_change: Callable[[Path], None],
        poll_interval: float = 1.0,
    ) -> None:
        self._list_files = list_files
        self._on_change = on_change
        self._poll_interval = poll_interval
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._stamps: dict[Path, _Stamp] = {}

    def start(self) -> None:
        """Take a baseline scan and start the watcher in a daemon thread."""
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._stamps = self._scan()
        self._thread = threading.Thread(target=self._poll_loop, name="stasher-watcher", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the watcher thread."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _scan(self) -> dict[Path, _Stamp]:
        stamps: dict[Path, _Stamp] = {}
        for path in self._list_files():
            try:
                st = path.stat()
            except OSError:
                continue  # vanished between listing and stat
            stamps[path] = (st.st_mtime_ns, st.st_size)
        return stamps

    def poll_once(self) -> list[Path]:
        """Scan once, report changes, and return the changed paths."""
        current = self._scan()
        changed = [
            path for path, stamp in current.items() if self._stamps.get(path) != stamp
        ]
        self._stamps = current
        for path in changed:
            if self._stop_event.is_set():
                break
            logger.debug("file_changed", path=str(path))
            self._on_change(path)
        return changed

    def _poll_loop(self) -> None:
        while not self._stop_event.wait(self._poll_interval):
            try:
                self.poll_once()
            except Exception as exc:
                logger.warning("poll_error", error=str(exc))
