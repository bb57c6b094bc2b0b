"""
Periodic sync scheduler running inside the API server's event loop.
"""

import asyncio
import logging
from typing import Optional

from bibsync.models import SyncResult
from bibsync.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


class SyncScheduler:
    """
    Runs a sync pass every ``interval_seconds``, or earlier when triggered.

    Passes never overlap, whether started by the timer or by ``run_pass()``.
    """

    def __init__(self, engine: SyncEngine, interval_seconds: float = 300.0):
        self.engine = engine
        self.interval_seconds = interval_seconds
        self._lock = asyncio.Lock()
        self._wake = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def start(self) -> None:
        """Start the background loop. Must be called from a running event loop."""
        if self.running:
            return
        self._wake.clear()
        self._task = asyncio.create_task(self._loop(), name="bibsync-sync-scheduler")
        logger.info(f"Sync scheduler started (every {self.interval_seconds}s)")

    def trigger(self) -> None:
        """Wake the loop so the next pass starts now."""
        self._wake.set()

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Sync scheduler stopped")

    async def run_pass(self, due_only: bool = False) -> SyncResult:
        """Run one pass now, waiting for any pass already in progress."""
        async with self._lock:
            return await self.engine.run_pass(due_only=due_only)

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_pass(due_only=True)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Scheduled sync pass failed: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()
