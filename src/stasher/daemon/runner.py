"""Daemon: bridge watcher events into a single async consumer.

The watcher thread hands paths across a bounded asyncio.Queue. put() is
driven with run_coroutine_threadsafe(...).result(), so a burst of saves
blocks the watcher instead of growing memory. One consumer task records
changes sequentially, each write on a worker thread and shielded from
cancellation so shutdown never interrupts a write midway.
"""

from __future__ import annotations

import asyncio
from concurrent.futures import CancelledError as FutureCancelledError
from pathlib import Path

import structlog

from stasher.daemon.watcher import PollingWatcher
from stasher.errors import StasherError
from stasher.history.engine import Stasher

logger = structlog.get_logger(__name__)

_STOP = object()


class StasherDaemon:
    """Watch the engine's root and record every change until stopped.

    Args:
        engine: Open engine; the daemon does not close it.
        sync_first: Run ``sync_all()`` before watching.
    """

    def __init__(self, engine: Stasher, sync_first: bool = True) -> None:
        self.engine = engine
        self.sync_first = sync_first
        self.recorded = 0
        self.failed = 0
        self._queue: asyncio.Queue | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._watcher: PollingWatcher | None = None

    # ------------------------------------------------------------------
    # Producer side (watcher thread)
    # ------------------------------------------------------------------

    def _enqueue_from_thread(self, path: Path) -> None:
        """Blocking hand-off from the watcher thread; waits while the queue is full."""
        if self._loop is None or self._queue is None or self._loop.is_closed():
            return
        future = asyncio.run_coroutine_threadsafe(self._queue.put(path), self._loop)
        try:
            future.result()
        except (FutureCancelledError, RuntimeError):
            # Loop is shutting down; the event is dropped.
            logger.debug("event_dropped", path=str(path))

    # ------------------------------------------------------------------
    # Consumer side (event loop)
    # ------------------------------------------------------------------

    def _handle_event(self, path: Path) -> None:
        if not self.engine.should_index(path):
            return
        try:
            snapshot = self.engine.record_change(path)
        except StasherError as exc:
            self.failed += 1
            logger.error(
                "daemon_event_failed",
                path=exc.path or str(path),
                operation=exc.operation or "record_change",
                error=str(exc),
            )
            return
        except Exception as exc:
            # One bad event must not take the consumer down.
            self.failed += 1
            logger.error(
                "daemon_event_failed",
                path=str(path),
                operation="record_change",
                error=repr(exc),
                exc_info=True,
            )
            return
        if snapshot is not None:
            self.recorded += 1

    async def _consume(self) -> None:
        assert self._queue is not None
        while True:
            item = await self._queue.get()
            try:
                if item is _STOP:
                    return
                work = asyncio.ensure_future(asyncio.to_thread(self._handle_event, item))
                try:
                    await asyncio.shield(work)
                except asyncio.CancelledError:
                    # Let a write that already started finish before stopping.
                    await work
                    raise
            finally:
                self._queue.task_done()

    async def run(self, stop: asyncio.Event | None = None) -> None:
        """Run until *stop* is set or the task is cancelled."""
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self.engine.config.watch.queue_size)

        # Baseline before the initial sync: a save landing mid-sync is then
        # either recorded by the sync or reported by the first poll.
        self._watcher = PollingWatcher(
            self.engine.paths.walk,
            self._enqueue_from_thread,
            poll_interval=self.engine.config.watch.poll_interval,
        )
        await asyncio.to_thread(self._watcher.start)
        consumer = asyncio.create_task(self._consume())
        try:
            if self.sync_first:
                synced = await asyncio.to_thread(self.engine.sync_all)
                self.recorded += synced
            logger.info("daemon_started", root=str(self.engine.root))

            if stop is None:
                await consumer
            else:
                stopper = asyncio.create_task(stop.wait())
                done, _ = await asyncio.wait(
                    {consumer, stopper}, return_when=asyncio.FIRST_COMPLETED
                )
                if stopper in done:
                    await self._drain_and_stop(consumer)
                else:
                    stopper.cancel()
        finally:
            await asyncio.to_thread(self._watcher.stop)
            if not consumer.done():
                consumer.cancel()
                try:
                    await consumer
                except asyncio.CancelledError:
                    pass
            logger.info("daemon_stopped", recorded=self.recorded, failed=self.failed)

    async def _drain_and_stop(self, consumer: asyncio.Task) -> None:
        """Stop the watcher, then let the consumer finish what is already queued."""
        assert self._watcher is not None and self._queue is not None
        await asyncio.to_thread(self._watcher.stop)
        await self._queue.put(_STOP)
        await consumer
