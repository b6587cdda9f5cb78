# SPDX-License-Identifier: Apache-2.0
"""
Unit tests for SyncScheduler.

Tests automatic calendar synchronization scheduling, retry logic,
and error handling.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from core.calendar.constants import Provider
from core.calendar.signals import Signal
from core.calendar.sync_scheduler import SYNC_JOB_ID, SyncScheduler


class MockSyncManager:
    """Mock sync manager for testing."""

    def __init__(self):
        self.sync_completed = Signal()
        self.sync_all = MagicMock(return_value=True)
        self.sync_platform = MagicMock(return_value=True)
        self.wait_for_completion = AsyncMock()
        self.last_cycle_providers = []
        self.last_cycle_errors = {}
        self.is_syncing = False

    def finish_cycle(self, providers, errors=None):
        """Simulate the end of a sync cycle."""
        self.last_cycle_providers = list(providers)
        self.last_cycle_errors = dict(errors or {})
        self.sync_completed.emit()


@pytest.fixture
def mock_sync_manager():
    """Create mock sync manager."""
    return MockSyncManager()


@pytest.fixture
def idle_scheduler(mock_sync_manager):
    """Create a SyncScheduler that is never started."""
    return SyncScheduler(mock_sync_manager, interval_minutes=15)


@pytest_asyncio.fixture
async def sync_scheduler(mock_sync_manager):
    """Create SyncScheduler instance, stopped on the test loop."""
    scheduler = SyncScheduler(mock_sync_manager, interval_minutes=15)
    yield scheduler
    if scheduler.is_running:
        scheduler.stop()


class TestSyncSchedulerInitialization:
    """Test SyncScheduler initialization."""

    def test_init_default_interval(self, mock_sync_manager):
        """Test initialization with default interval."""
        scheduler = SyncScheduler(mock_sync_manager)
        assert scheduler.sync_manager is mock_sync_manager
        assert scheduler.interval_minutes == 15
        assert not scheduler.is_running
        assert scheduler.retry_state == {}

    def test_init_custom_interval(self, mock_sync_manager):
        """Test initialization with custom interval."""
        scheduler = SyncScheduler(mock_sync_manager, interval_minutes=30)
        assert scheduler.interval_minutes == 30

    def test_subscribes_to_cycle_completion(self, mock_sync_manager):
        SyncScheduler(mock_sync_manager)
        assert mock_sync_manager.sync_completed.receiver_count == 1


class TestSyncSchedulerLifecycle:
    """Test scheduler lifecycle management."""

    @pytest.mark.asyncio
    async def test_start_scheduler(self, sync_scheduler):
        """Test starting the scheduler."""
        sync_scheduler.start()

        assert sync_scheduler.is_running
        assert sync_scheduler.scheduler.get_job(SYNC_JOB_ID) is not None
        assert sync_scheduler.get_next_sync_time() is not None

    @pytest.mark.asyncio
    async def test_start_already_running(self, sync_scheduler):
        """Starting twice keeps a single job."""
        sync_scheduler.start()
        sync_scheduler.start()

        assert sync_scheduler.is_running
        assert len(sync_scheduler.scheduler.get_jobs()) == 1

    @pytest.mark.asyncio
    async def test_stop_scheduler(self, sync_scheduler):
        """Test stopping the scheduler."""
        sync_scheduler.start()
        sync_scheduler.stop()

        assert not sync_scheduler.is_running
        assert sync_scheduler.get_next_sync_time() is None

    def test_stop_not_running(self, idle_scheduler):
        """Stopping an idle scheduler is a no-op."""
        idle_scheduler.stop()
        assert not idle_scheduler.is_running

    def test_set_interval_when_idle(self, idle_scheduler):
        idle_scheduler.set_interval(45)
        assert idle_scheduler.interval_minutes == 45

    @pytest.mark.asyncio
    async def test_set_interval_reschedules(self, sync_scheduler):
        sync_scheduler.start()

        sync_scheduler.set_interval(5)

        job = sync_scheduler.scheduler.get_job(SYNC_JOB_ID)
        assert job.trigger.interval.total_seconds() == 300


class TestSyncCycleExecution:
    """Test the scheduled job body."""

    @pytest.mark.asyncio
    async def test_run_sync_cycle_waits(self, sync_scheduler, mock_sync_manager):
        await sync_scheduler._run_sync_cycle()

        mock_sync_manager.sync_all.assert_called_once_with()
        mock_sync_manager.wait_for_completion.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_run_sync_cycle_skips_when_busy(self, sync_scheduler, mock_sync_manager):
        mock_sync_manager.sync_all.return_value = False

        await sync_scheduler._run_sync_cycle()

        mock_sync_manager.wait_for_completion.assert_not_awaited()


class TestRetryLogic:
    """Test per-provider exponential backoff."""

    @pytest.mark.asyncio
    async def test_failure_schedules_retry(self, sync_scheduler, mock_sync_manager):
        sync_scheduler.start()

        mock_sync_manager.finish_cycle(
            [Provider.GOOGLE, Provider.OUTLOOK], {Provider.GOOGLE: "HTTP 503"}
        )

        assert sync_scheduler.retry_state == {Provider.GOOGLE: {"attempts": 1}}
        job = sync_scheduler.scheduler.get_job(f"{SYNC_JOB_ID}_retry_google")
        assert job is not None
        assert job.args == (Provider.GOOGLE,)

    @pytest.mark.asyncio
    async def test_backoff_doubles(self, sync_scheduler, mock_sync_manager):
        sync_scheduler.start()
        delays = []
        original_add_job = sync_scheduler.scheduler.add_job

        def capture(*args, **kwargs):
            trigger = kwargs.get("trigger")
            if kwargs.get("id", "").startswith(f"{SYNC_JOB_ID}_retry"):
                delays.append(trigger.run_date)
            return original_add_job(*args, **kwargs)

        sync_scheduler.scheduler.add_job = capture
        for _ in range(3):
            mock_sync_manager.finish_cycle([Provider.APPLE], {Provider.APPLE: "down"})

        gaps = [
            round((later - earlier).total_seconds() / 60)
            for earlier, later in zip(delays, delays[1:])
        ]
        assert len(delays) == 3
        assert gaps == [1, 2]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, sync_scheduler, mock_sync_manager):
        sync_scheduler.start()

        for _ in range(4):
            mock_sync_manager.finish_cycle([Provider.GOOGLE], {Provider.GOOGLE: "down"})

        assert Provider.GOOGLE not in sync_scheduler.retry_state

    @pytest.mark.asyncio
    async def test_success_clears_retry_state(self, sync_scheduler, mock_sync_manager):
        sync_scheduler.start()
        mock_sync_manager.finish_cycle([Provider.GOOGLE], {Provider.GOOGLE: "down"})

        mock_sync_manager.finish_cycle([Provider.GOOGLE])

        assert sync_scheduler.retry_state == {}
        assert sync_scheduler.scheduler.get_job(f"{SYNC_JOB_ID}_retry_google") is None

    def test_no_retry_when_not_running(self, idle_scheduler, mock_sync_manager):
        mock_sync_manager.finish_cycle([Provider.GOOGLE], {Provider.GOOGLE: "down"})

        assert idle_scheduler.retry_state == {}

    @pytest.mark.asyncio
    async def test_retry_sync_calls_sync_platform(self, sync_scheduler, mock_sync_manager):
        await sync_scheduler._retry_sync(Provider.OUTLOOK)

        mock_sync_manager.sync_platform.assert_called_once_with(Provider.OUTLOOK)

    @pytest.mark.asyncio
    async def test_retry_postponed_while_cycle_running(self, sync_scheduler, mock_sync_manager):
        sync_scheduler.start()
        mock_sync_manager.finish_cycle([Provider.GOOGLE], {Provider.GOOGLE: "down"})
        retry_job_id = f"{SYNC_JOB_ID}_retry_google"
        sync_scheduler.scheduler.remove_job(retry_job_id)
        mock_sync_manager.is_syncing = True

        await sync_scheduler._retry_sync(Provider.GOOGLE)

        mock_sync_manager.sync_platform.assert_not_called()
        assert sync_scheduler.retry_state == {Provider.GOOGLE: {"attempts": 1}}
        job = sync_scheduler.scheduler.get_job(retry_job_id)
        assert job is not None
        assert job.args == (Provider.GOOGLE,)


class TestSchedulerStatus:
    """Test status reporting."""

    def test_status_idle(self, idle_scheduler):
        status = idle_scheduler.get_status()

        assert status["is_running"] is False
        assert status["interval_minutes"] == 15
        assert status["next_sync_time"] is None
        assert status["retrying"] == {}

    @pytest.mark.asyncio
    async def test_status_running_with_retry(self, sync_scheduler, mock_sync_manager):
        sync_scheduler.start()
        mock_sync_manager.finish_cycle([Provider.APPLE], {Provider.APPLE: "down"})

        status = sync_scheduler.get_status()

        assert status["is_running"] is True
        assert status["active_jobs"] == 2
        assert status["retrying"] == {"apple": 1}
