# SPDX-License-Identifier: Apache-2.0
#
# Copyright (c) 2024-2025 CalendarHub Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Calendar Sync Scheduler for CalendarHub.

Manages automatic periodic synchronization of external calendars.
"""

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Dict, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config.constants import (
    DEFAULT_SYNC_INTERVAL_MINUTES,
    SYNC_RETRY_BASE_DELAY_MINUTES,
    SYNC_RETRY_MAX_ATTEMPTS,
)
from utils.time_utils import now_utc

if TYPE_CHECKING:
    from core.calendar.constants import Provider
    from core.calendar.sync_manager import SyncManager

logger = logging.getLogger("calendarhub.calendar.sync_scheduler")

SYNC_JOB_ID = "calendar_sync"


class SyncScheduler:
    """
    Manages automatic periodic synchronization of external calendars.

    Uses APScheduler's asyncio scheduler to run sync cycles at regular
    intervals. Providers that fail during a cycle are retried on their own
    with exponential backoff (1min, 2min, 4min), at most three times.
    """

    def __init__(
        self,
        sync_manager: 'SyncManager',
        interval_minutes: int = DEFAULT_SYNC_INTERVAL_MINUTES,
        max_retry_attempts: int = SYNC_RETRY_MAX_ATTEMPTS,
        retry_base_delay_minutes: int = SYNC_RETRY_BASE_DELAY_MINUTES,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        """
        Initialize the sync scheduler.

        Args:
            sync_manager: SyncManager whose cycles are scheduled
            interval_minutes: Sync interval in minutes (default: 15)
            max_retry_attempts: Retries per provider before giving up
            retry_base_delay_minutes: Delay before the first retry
            scheduler: Optional APScheduler instance (tests)
        """
        self.sync_manager = sync_manager
        self.interval_minutes = interval_minutes
        self.max_retry_attempts = max_retry_attempts
        self.retry_base_delay_minutes = retry_base_delay_minutes
        self.scheduler = scheduler or AsyncIOScheduler()
        self.is_running = False

        # Track retry attempts for each provider
        # Format: {provider: {'attempts': int}}
        self.retry_state: Dict['Provider', Dict] = {}

        sync_manager.sync_completed.connect(self._on_sync_completed)

        logger.info("SyncScheduler initialized with %smin interval", interval_minutes)

    def start(self):
        """
        Start the automatic sync scheduler.

        Must be called from within the running event loop.
        """
        if self.is_running:
            logger.warning("Scheduler is already running")
            return

        try:
            self.scheduler.add_job(
                func=self._run_sync_cycle,
                trigger=IntervalTrigger(minutes=self.interval_minutes),
                id=SYNC_JOB_ID,
                name="Calendar Sync Job",
                replace_existing=True,
                max_instances=1,  # Prevent overlapping syncs
                coalesce=True,
            )

            self.scheduler.start()
            self.is_running = True
            logger.info("Sync scheduler started")

        except Exception as e:
            logger.error("Failed to start scheduler: %s", e)
            raise

    def stop(self):
        """
        Stop the automatic sync scheduler and drop pending retries.
        """
        if not self.is_running:
            logger.warning("Scheduler is not running")
            return

        try:
            self.scheduler.remove_all_jobs()
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            self.retry_state.clear()
            logger.info("Sync scheduler stopped")

        except Exception as e:
            logger.error("Failed to stop scheduler: %s", e)
            raise

    def set_interval(self, minutes: int) -> None:
        """Change the sync interval, rescheduling the job when running."""
        self.interval_minutes = minutes
        if not self.is_running:
            logger.info("Sync interval set to %smin (scheduler idle)", minutes)
            return

        self.scheduler.reschedule_job(SYNC_JOB_ID, trigger=IntervalTrigger(minutes=minutes))
        logger.info("Sync interval changed to %smin", minutes)

    async def _run_sync_cycle(self):
        """
        Run one full sync cycle and wait for it to finish.

        Called by the scheduler at regular intervals.
        """
        logger.info("Starting scheduled calendar sync")
        if not self.sync_manager.sync_all():
            logger.info("Sync already in progress; skipping scheduled run")
            return
        await self.sync_manager.wait_for_completion()

    def _on_sync_completed(self):
        """Update retry state from the cycle that just finished."""
        errors = self.sync_manager.last_cycle_errors
        for provider in self.sync_manager.last_cycle_providers:
            if provider in errors:
                self._handle_sync_failure(provider)
            elif provider in self.retry_state:
                logger.info(
                    "Clearing retry state for %s after successful sync", provider.value
                )
                del self.retry_state[provider]
                self._remove_retry_job(provider)

    def _handle_sync_failure(self, provider: 'Provider'):
        """
        Handle sync failure with exponential backoff retry logic.

        Implements retry with exponential backoff (1min, 2min, 4min).
        Retries are only scheduled while the scheduler is running.

        Args:
            provider: Provider that failed
        """
        if not self.is_running:
            logger.debug("Scheduler not running; no retry for %s", provider.value)
            return

        if provider not in self.retry_state:
            self.retry_state[provider] = {"attempts": 0}

        self.retry_state[provider]["attempts"] += 1
        attempts = self.retry_state[provider]["attempts"]

        if attempts > self.max_retry_attempts:
            logger.error(
                "Maximum retry attempts (%s) reached for %s. "
                "Giving up until next scheduled sync.",
                self.max_retry_attempts, provider.value
            )
            # Reset retry state so next scheduled sync will try again
            del self.retry_state[provider]
            return

        # 2^0=1, 2^1=2, 2^2=4 times the base delay
        self._schedule_retry(provider, self.retry_base_delay_minutes * 2 ** (attempts - 1))

    def _schedule_retry(self, provider: 'Provider', delay_minutes: int) -> None:
        attempts = self.retry_state[provider]["attempts"]
        run_time = now_utc() + timedelta(minutes=delay_minutes)

        try:
            self.scheduler.add_job(
                func=self._retry_sync,
                args=[provider],
                trigger=DateTrigger(run_date=run_time),
                id=self._retry_job_id(provider),
                name=f"Retry Sync for {provider.value} "
                     f"(attempt {attempts}/{self.max_retry_attempts})",
                replace_existing=True,
            )
            logger.info(
                "Scheduled retry %s/%s for %s in %s minute(s) at %s",
                attempts, self.max_retry_attempts, provider.value,
                delay_minutes, run_time.strftime('%H:%M:%S')
            )
        except Exception as e:
            logger.error("Failed to schedule retry for %s: %s", provider.value, e)

    async def _retry_sync(self, provider: 'Provider'):
        """
        Retry syncing a specific provider.

        Must run on the event loop thread. The outcome arrives through
        ``sync_completed`` like any other cycle.
        """
        attempts = self.retry_state.get(provider, {}).get("attempts", 0)
        logger.info(
            "Retrying sync for %s (attempt %s/%s)",
            provider.value, attempts, self.max_retry_attempts
        )
        if self.sync_manager.is_syncing:
            # Same attempt again once the running cycle is out of the way
            logger.info("Sync in progress; postponing retry for %s", provider.value)
            if self.is_running and provider in self.retry_state:
                self._schedule_retry(provider, self.retry_base_delay_minutes)
            return
        if not self.sync_manager.sync_platform(provider):
            logger.warning("Retry for %s could not start", provider.value)

    def _remove_retry_job(self, provider: 'Provider') -> None:
        try:
            self.scheduler.remove_job(self._retry_job_id(provider))
        except JobLookupError:
            pass  # Already fired

    @staticmethod
    def _retry_job_id(provider: 'Provider') -> str:
        return f"{SYNC_JOB_ID}_retry_{provider.value}"

    def get_next_sync_time(self) -> Optional[str]:
        """
        Get the next scheduled sync time.

        Returns:
            ISO format timestamp of next sync, or None if not scheduled
        """
        if not self.is_running:
            return None

        job = self.scheduler.get_job(SYNC_JOB_ID)
        if job and job.next_run_time:
            return job.next_run_time.isoformat()
        return None

    def get_status(self) -> dict:
        """
        Get the current status of the scheduler.

        Returns:
            Dictionary with scheduler status information
        """
        return {
            "is_running": self.is_running,
            "interval_minutes": self.interval_minutes,
            "next_sync_time": self.get_next_sync_time(),
            "active_jobs": len(self.scheduler.get_jobs()),
            "retrying": {
                provider.value: state["attempts"]
                for provider, state in self.retry_state.items()
            },
        }
