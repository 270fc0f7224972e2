"""Background scheduler that drains the sync queue.

The LIMS pushes change notifications, but notifications can be missed and
queued outbound work needs retrying, so the scheduler periodically runs
SampleSyncService.process_queue.

Usage:
    # In FastAPI startup
    scheduler = get_sync_scheduler()
    await scheduler.start()

    # In FastAPI shutdown
    await scheduler.stop()
"""

import asyncio
import contextlib
import logging

from samplesync.core.config import settings
from samplesync.integrations.sample_sync import get_sample_sync_service

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Runs the sync queue on a fixed interval.

    A failing run is logged and the loop carries on with the next one.
    """

    def __init__(self, interval_seconds: int = 600) -> None:
        """Initialize the sync scheduler.

        Args:
            interval_seconds: Seconds between queue runs (default 10 minutes).
        """
        self._interval_seconds = interval_seconds
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background scheduler. No-op if already running."""
        if self._running:
            logger.debug("Sync scheduler already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._scheduler_loop())
        logger.info(
            "Sync scheduler started",
            extra={"interval_seconds": self._interval_seconds},
        )

    async def stop(self) -> None:
        """Stop the background scheduler and wait for the loop to exit."""
        if not self._running:
            logger.debug("Sync scheduler not running")
            return

        self._running = False

        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

        logger.info("Sync scheduler stopped")

    async def _scheduler_loop(self) -> None:
        while self._running:
            try:
                await self._run_once()
            except Exception:
                # a failed run must not end the loop
                logger.exception("Error in scheduler loop")

            await asyncio.sleep(self._interval_seconds)

    async def _run_once(self) -> None:
        """Process one batch of the sync queue."""
        try:
            result = await get_sample_sync_service().process_queue()
        except Exception:
            logger.exception("Failed to process sync queue")
            return

        if result["processed"] or result["failed"]:
            logger.info(
                "Completed scheduled queue run",
                extra={"processed": result["processed"], "failed": result["failed"]},
            )


# Singleton instance
_sync_scheduler: SyncScheduler | None = None


def get_sync_scheduler() -> SyncScheduler:
    """Get or create the sync scheduler singleton.

    Returns:
        The shared SyncScheduler instance.
    """
    global _sync_scheduler
    if _sync_scheduler is None:
        _sync_scheduler = SyncScheduler(interval_seconds=settings.SYNC_INTERVAL_MINUTES * 60)
    return _sync_scheduler
