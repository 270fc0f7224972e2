"""Tests for the sync queue scheduler."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from samplesync.integrations.sync_scheduler import SyncScheduler, get_sync_scheduler


@pytest.fixture
def sync_scheduler() -> SyncScheduler:
    """Create a fresh sync scheduler for each test."""
    # Reset singleton for clean tests
    import samplesync.integrations.sync_scheduler

    samplesync.integrations.sync_scheduler._sync_scheduler = None
    return SyncScheduler(interval_seconds=1)


def _service(result: dict | None = None, error: Exception | None = None) -> MagicMock:
    service = MagicMock()
    service.process_queue = AsyncMock(
        return_value=result or {"processed": 0, "failed": 0, "errors": []},
        side_effect=error,
    )
    return service


class TestSyncSchedulerSingleton:
    """Tests for get_sync_scheduler singleton."""

    def test_get_sync_scheduler_singleton(self) -> None:
        import samplesync.integrations.sync_scheduler

        samplesync.integrations.sync_scheduler._sync_scheduler = None

        scheduler1 = get_sync_scheduler()
        scheduler2 = get_sync_scheduler()
        assert scheduler1 is scheduler2

    def test_interval_comes_from_settings(self) -> None:
        import samplesync.integrations.sync_scheduler as module

        module._sync_scheduler = None
        with patch.object(module.settings, "SYNC_INTERVAL_MINUTES", 5):
            scheduler = get_sync_scheduler()

        assert scheduler._interval_seconds == 300
        module._sync_scheduler = None


class TestSyncSchedulerStartStop:
    """Tests for start and stop lifecycle methods."""

    @pytest.mark.asyncio
    async def test_scheduler_start_sets_running_state(self, sync_scheduler: SyncScheduler) -> None:
        with patch(
            "samplesync.integrations.sync_scheduler.get_sample_sync_service",
            return_value=_service(),
        ):
            assert not sync_scheduler.running
            await sync_scheduler.start()
            assert sync_scheduler.running
            await sync_scheduler.stop()

    @pytest.mark.asyncio
    async def test_scheduler_start_when_already_running(self, sync_scheduler: SyncScheduler) -> None:
        """Calling start twice keeps the original task."""
        with patch(
            "samplesync.integrations.sync_scheduler.get_sample_sync_service",
            return_value=_service(),
        ):
            await sync_scheduler.start()
            original_task = sync_scheduler._task

            await sync_scheduler.start()

            assert sync_scheduler._task is original_task
            await sync_scheduler.stop()

    @pytest.mark.asyncio
    async def test_scheduler_stop_when_not_running(self, sync_scheduler: SyncScheduler) -> None:
        # Should not raise
        await sync_scheduler.stop()
        assert not sync_scheduler.running

    @pytest.mark.asyncio
    async def test_scheduler_stop_cancels_task(self, sync_scheduler: SyncScheduler) -> None:
        with patch(
            "samplesync.integrations.sync_scheduler.get_sample_sync_service",
            return_value=_service(),
        ):
            await sync_scheduler.start()
            assert sync_scheduler._task is not None

            await sync_scheduler.stop()

            assert sync_scheduler._task.done()
            assert not sync_scheduler.running

    @pytest.mark.asyncio
    async def test_loop_runs_queue_on_start(self, sync_scheduler: SyncScheduler) -> None:
        service = _service()
        with patch(
            "samplesync.integrations.sync_scheduler.get_sample_sync_service",
            return_value=service,
        ):
            await sync_scheduler.start()
            await asyncio.sleep(0.05)
            await sync_scheduler.stop()

        service.process_queue.assert_awaited()


class TestRunOnce:
    """Tests for a single scheduled queue run."""

    @pytest.mark.asyncio
    async def test_run_once_processes_queue(self, sync_scheduler: SyncScheduler) -> None:
        service = _service({"processed": 2, "failed": 1, "errors": ["Sample x: bad"]})
        with patch(
            "samplesync.integrations.sync_scheduler.get_sample_sync_service",
            return_value=service,
        ):
            await sync_scheduler._run_once()

        service.process_queue.assert_awaited_once_with()

    @pytest.mark.asyncio
    async def test_run_once_swallows_errors(
        self, sync_scheduler: SyncScheduler, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A failing run is logged and does not stop the scheduler."""
        service = _service(error=RuntimeError("database unavailable"))
        with patch(
            "samplesync.integrations.sync_scheduler.get_sample_sync_service",
            return_value=service,
        ):
            await sync_scheduler._run_once()

        assert "Failed to process sync queue" in caplog.text
