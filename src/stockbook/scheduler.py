"""Periodic background upload of ledger snapshots.

One asyncio task per session fires ``RemoteSyncClient.upload()`` every
``interval_secs``. Each upload runs as its own task, so a slow upload
never delays the next tick and uploads may overlap.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from stockbook.constants import SYNC_INTERVAL_SECS

if TYPE_CHECKING:
    from stockbook.ledger import Ledger
    from stockbook.sync_client import RemoteSyncClient, SyncResult

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Fixed-interval uploader.

    - By default every tick uploads, changed or not.
    - With ``skip_unchanged=True`` (and a ledger to read ``revision`` from)
      a tick is skipped only when nothing changed since the last
      *successful* upload; failures never advance that mark.
    - ``stop()`` ends the loop, waits for in-flight uploads and, if the
      ledger changed since the last success, uploads once more.
    """

    def __init__(
        self,
        client: RemoteSyncClient,
        interval_secs: float = SYNC_INTERVAL_SECS,
        ledger: Ledger | None = None,
        skip_unchanged: bool = False,
    ) -> None:
        self._client = client
        self._interval = interval_secs
        self._ledger = ledger
        self._skip_unchanged = skip_unchanged and ledger is not None
        self._task: asyncio.Task[None] | None = None
        self._in_flight: set[asyncio.Task[None]] = set()
        self._last_uploaded_revision: int | None = None
        self._last_success_at: str | None = None
        self._cycles = 0
        self._skipped = 0
        self._successes = 0
        self._failures = 0

    # -- dirty tracking -------------------------------------------------------

    @property
    def has_unsynced_changes(self) -> bool:
        if self._ledger is None:
            return True
        return self._last_uploaded_revision != self._ledger.revision

    # -- uploads --------------------------------------------------------------

    def tick(self) -> asyncio.Task[None] | None:
        """Start one upload now. Returns None when the tick was skipped."""
        if self._skip_unchanged and not self.has_unsynced_changes:
            self._skipped += 1
            return None
        task = asyncio.create_task(self._run_upload())
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def _run_upload(self) -> None:
        try:
            result: SyncResult = await self._client.upload()
        except Exception:
            self._failures += 1
            logger.exception("Scheduled upload raised unexpectedly.")
            return

        if not result.success:
            self._failures += 1
            logger.warning("Scheduled upload failed (%s): %s", result.kind, result.reason)
            return

        self._successes += 1
        if result.reference is not None:
            self._last_success_at = result.reference.date
        if result.revision is not None:
            # Overlapping uploads may finish out of order; keep the newest.
            if self._last_uploaded_revision is None or result.revision > self._last_uploaded_revision:
                self._last_uploaded_revision = result.revision

    # -- lifecycle ------------------------------------------------------------

    async def start(self) -> None:
        """Start the periodic upload task (idempotent)."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._loop())

    async def _loop(self) -> None:
        logger.info("Sync scheduler started (interval=%ss).", self._interval)
        try:
            while True:
                await asyncio.sleep(self._interval)
                self._cycles += 1
                started = self.tick()
                if started is None and self._cycles % 10 == 0:
                    # Heartbeat every 10 cycles even when idle
                    logger.info(
                        "Sync scheduler heartbeat: cycle %d, skipped %d, "
                        "successes %d, failures %d.",
                        self._cycles, self._skipped, self._successes, self._failures,
                    )
        except asyncio.CancelledError:
            pass

    async def stop(self, flush: bool = True) -> None:
        """Cancel the loop, drain in-flight uploads, optionally upload once more."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)
        if flush and self.has_unsynced_changes:
            await self._run_upload()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def health(self) -> dict[str, object]:
        """Return scheduler metrics for monitoring."""
        return {
            "running": self.running,
            "interval_secs": self._interval,
            "cycles": self._cycles,
            "skipped": self._skipped,
            "successes": self._successes,
            "failures": self._failures,
            "in_flight": self.in_flight,
            "last_success_at": self._last_success_at,
            "last_uploaded_revision": self._last_uploaded_revision,
            "unsynced_changes": self.has_unsynced_changes,
        }
