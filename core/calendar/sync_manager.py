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
Sync Manager for CalendarHub.

Drives fetch cycles across every registered provider adapter and merges
the results into the calendar manager.
"""

import asyncio
import logging
from datetime import datetime
from functools import partial
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from config.constants import (
    DEFAULT_FETCH_WINDOW_MONTHS,
    DEFAULT_SYNC_INTERVAL_MINUTES,
    SYNC_PROGRESS_DISPATCHED,
    SYNC_PROGRESS_EVENTS_RECEIVED,
    SYNC_PROGRESS_TASKS_RECEIVED,
    SYNC_RETRY_BASE_DELAY_MINUTES,
    SYNC_RETRY_MAX_ATTEMPTS,
)
from core.base_manager import BaseManager
from core.calendar.constants import FetchKind, Provider, SyncStatus
from core.calendar.exceptions import NotAuthenticatedError, SyncError
from core.calendar.signals import Signal
from core.calendar.sync_scheduler import SyncScheduler
from utils.time_utils import fetch_window, local_today, now_utc

if TYPE_CHECKING:
    from core.calendar.manager import CalendarManager
    from engines.calendar_sync.base import CalendarSyncAdapter


logger = logging.getLogger('calendarhub.calendar.sync_manager')


class SyncManager(BaseManager):
    """
    Orchestrates synchronization cycles.

    A cycle dispatches one events fetch and one tasks fetch per eligible
    adapter and counts their results down; the cycle completes exactly
    once, when every dispatched operation has reported (success or error).
    Results are delivered through task done-callbacks on the event loop,
    so the calendar manager is only ever mutated from the loop thread.

    Cycles cannot be cancelled once dispatched. Logging an adapter out
    mid-cycle still lets its outstanding operations report.
    """

    def __init__(
        self,
        calendar_manager: 'CalendarManager',
        fetch_window_months: int = DEFAULT_FETCH_WINDOW_MONTHS,
        auto_sync_interval_minutes: int = DEFAULT_SYNC_INTERVAL_MINUTES,
        scheduler: Optional[SyncScheduler] = None,
        today_provider: Callable[[], Any] = local_today,
        retry_max_attempts: int = SYNC_RETRY_MAX_ATTEMPTS,
        retry_base_delay_minutes: int = SYNC_RETRY_BASE_DELAY_MINUTES,
    ):
        """
        Initialize the sync manager.

        Args:
            calendar_manager: Store that receives merged results
            fetch_window_months: Months before and after today to fetch
            auto_sync_interval_minutes: Interval for the recurring sync
            scheduler: Optional pre-built scheduler (tests)
            today_provider: Returns today's local date
            retry_max_attempts: Per-provider retries after a failed cycle
            retry_base_delay_minutes: Delay before the first retry
        """
        super().__init__("SyncManager", logger_name=logger.name)
        self.calendar_manager = calendar_manager
        self.fetch_window_months = fetch_window_months
        self._today = today_provider

        self._adapters: Dict[Provider, 'CalendarSyncAdapter'] = {}
        self._auth_slots: Dict[Provider, Callable[[bool], None]] = {}

        self._syncing = False
        self._pending = 0
        self._cycle_id = 0
        self._cycle_providers: List[Provider] = []
        self._cycle_errors: Dict[Provider, str] = {}
        self._last_sync_time: Optional[datetime] = None
        self._idle = asyncio.Event()
        self._idle.set()

        self.sync_started = Signal(name="sync_started")
        self.sync_progress = Signal(Provider, int, name="sync_progress")
        self.sync_completed = Signal(name="sync_completed")
        self.sync_error = Signal(Provider, str, name="sync_error")
        self.syncing_changed = Signal(bool, name="syncing_changed")
        self.last_sync_time_changed = Signal(datetime, name="last_sync_time_changed")
        self.auth_state_changed = Signal(Provider, bool, name="auth_state_changed")

        self.scheduler = scheduler or SyncScheduler(
            self,
            interval_minutes=auto_sync_interval_minutes,
            max_retry_attempts=retry_max_attempts,
            retry_base_delay_minutes=retry_base_delay_minutes,
        )

        logger.info("SyncManager initialized")

    def initialize(self) -> bool:
        self._mark_initialized()
        return True

    # ------------------------------------------------------------------
    # Adapter registry
    # ------------------------------------------------------------------

    def register_adapter(self, adapter: 'CalendarSyncAdapter') -> None:
        """
        Register an adapter, replacing any adapter for the same provider.

        The replaced adapter's subscriptions are removed before the new
        adapter is attached.
        """
        provider = adapter.provider
        existing = self._adapters.get(provider)
        if existing is adapter:
            return
        if existing is not None:
            self._detach(provider, existing)
            logger.info("Replacing adapter for %s", provider.value)

        slot = partial(self._on_adapter_auth_changed, provider)
        adapter.auth_state_changed.connect(slot)
        self._auth_slots[provider] = slot
        self._adapters[provider] = adapter
        logger.info("Registered adapter for %s", provider.value)

    def unregister_adapter(self, provider: Provider) -> bool:
        adapter = self._adapters.pop(provider, None)
        if adapter is None:
            return False
        self._detach(provider, adapter)
        logger.info("Unregistered adapter for %s", provider.value)
        return True

    def get_adapter(self, provider: Provider) -> Optional['CalendarSyncAdapter']:
        return self._adapters.get(provider)

    def get_registered_providers(self) -> List[Provider]:
        return list(self._adapters)

    def _detach(self, provider: Provider, adapter: 'CalendarSyncAdapter') -> None:
        slot = self._auth_slots.pop(provider, None)
        if slot is not None:
            adapter.auth_state_changed.disconnect(slot)

    def _on_adapter_auth_changed(self, provider: Provider, authenticated: bool) -> None:
        self.auth_state_changed.emit(provider, authenticated)

    # ------------------------------------------------------------------
    # Sync cycles
    # ------------------------------------------------------------------

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    @property
    def last_sync_time(self) -> Optional[datetime]:
        return self._last_sync_time

    @property
    def last_cycle_errors(self) -> Dict[Provider, str]:
        """First error reported per provider during the latest cycle."""
        return dict(self._cycle_errors)

    @property
    def last_cycle_providers(self) -> List[Provider]:
        return list(self._cycle_providers)

    @property
    def sync_status(self) -> str:
        """SyncStatus of the current or most recent cycle."""
        if self._syncing:
            return SyncStatus.SYNCING
        if self._last_sync_time is None:
            return SyncStatus.IDLE
        if not self._cycle_errors:
            return SyncStatus.SUCCESS
        if set(self._cycle_errors) >= set(self._cycle_providers):
            return SyncStatus.FAILED
        return SyncStatus.PARTIAL

    def sync_all(self) -> bool:
        """
        Start a cycle over every authenticated adapter.

        Must be called with a running event loop when any adapter is
        authenticated.

        Returns:
            False if a cycle is already running
        """
        if self._syncing:
            logger.debug("Sync already in progress; ignoring sync_all")
            return False

        eligible = [
            adapter for adapter in self._adapters.values() if adapter.is_authenticated()
        ]
        skipped = len(self._adapters) - len(eligible)
        if skipped:
            logger.info("Skipping %s unauthenticated adapter(s)", skipped)

        self._start_cycle(eligible)
        return True

    def sync_platform(self, provider: Provider) -> bool:
        """
        Start a cycle for a single provider.

        A missing or unauthenticated adapter reports ``sync_error`` and
        leaves the syncing state untouched.
        """
        if self._syncing:
            logger.debug("Sync already in progress; ignoring sync_platform(%s)", provider.value)
            return False

        adapter = self._adapters.get(provider)
        if adapter is None:
            reason = SyncError(
                f"No adapter registered for {provider.value}", [provider.value]
            ).reason
            logger.warning(reason)
            self.sync_error.emit(provider, reason)
            return False

        if not adapter.is_authenticated():
            reason = NotAuthenticatedError(provider.value).reason
            logger.warning("Cannot sync %s: %s", provider.value, reason)
            self.sync_error.emit(provider, reason)
            return False

        self._start_cycle([adapter])
        return True

    async def wait_for_completion(self) -> None:
        """Wait until no cycle is running."""
        await self._idle.wait()

    def _start_cycle(self, adapters: List['CalendarSyncAdapter']) -> None:
        if adapters:
            asyncio.get_running_loop()  # raises RuntimeError outside the event loop
        self._cycle_id += 1
        self._syncing = True
        self._idle.clear()
        self._cycle_providers = [adapter.provider for adapter in adapters]
        self._cycle_errors = {}
        self._pending = 2 * len(adapters)

        logger.info(
            "Starting sync cycle %s for %s",
            self._cycle_id,
            ", ".join(p.value for p in self._cycle_providers) or "no providers"
        )
        self.syncing_changed.emit(True)
        self.sync_started.emit()

        if not adapters:
            self._complete_cycle()
            return

        start_date, end_date = fetch_window(self._today(), self.fetch_window_months)
        logger.debug("Fetch window: %s to %s", start_date, end_date)

        cycle_id = self._cycle_id
        for adapter in adapters:
            self.sync_progress.emit(adapter.provider, SYNC_PROGRESS_DISPATCHED)
            for task in (adapter.fetch_events(start_date, end_date), adapter.fetch_tasks()):
                task.add_done_callback(partial(self._on_fetch_done, cycle_id, adapter.provider))

    def _on_fetch_done(self, cycle_id: int, provider: Provider, task: asyncio.Task) -> None:
        if cycle_id != self._cycle_id or not self._syncing:
            logger.warning("Ignoring result from stale sync cycle %s", cycle_id)
            return

        try:
            self._handle_result(provider, task)
        finally:
            self._pending -= 1
            if self._pending <= 0:
                self._complete_cycle()

    def _handle_result(self, provider: Provider, task: asyncio.Task) -> None:
        if task.cancelled():
            self._record_error(provider, "Fetch cancelled")
            return

        error = task.exception()
        if error is not None:
            # Adapters report failures as results; reaching here is a bug
            logger.error("Fetch task for %s raised: %s", provider.value, error)
            self._record_error(provider, str(error) or type(error).__name__)
            return

        result = task.result()
        if result.error is not None:
            self._record_error(provider, result.error)
            return

        if result.kind == FetchKind.EVENTS:
            merged = sum(1 for event in result.items if self.calendar_manager.upsert_event(event))
            logger.info("Merged %s/%s events from %s", merged, len(result.items), provider.value)
            self.sync_progress.emit(provider, SYNC_PROGRESS_EVENTS_RECEIVED)
        else:
            merged = sum(1 for task_item in result.items if self.calendar_manager.upsert_task(task_item))
            logger.info("Merged %s/%s tasks from %s", merged, len(result.items), provider.value)
            self.sync_progress.emit(provider, SYNC_PROGRESS_TASKS_RECEIVED)

    def _record_error(self, provider: Provider, reason: str) -> None:
        logger.error("Sync error for %s: %s", provider.value, reason)
        self._cycle_errors.setdefault(provider, reason)
        self.sync_error.emit(provider, reason)

    def _complete_cycle(self) -> None:
        self._syncing = False
        self._pending = 0
        self._last_sync_time = now_utc()
        self._idle.set()

        logger.info(
            "Sync cycle %s completed with %s failing provider(s)",
            self._cycle_id, len(self._cycle_errors)
        )
        self.last_sync_time_changed.emit(self._last_sync_time)
        self.syncing_changed.emit(False)
        self.sync_completed.emit()

    # ------------------------------------------------------------------
    # Auto sync
    # ------------------------------------------------------------------

    def set_auto_sync_interval(self, minutes: int) -> None:
        if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes < 1:
            raise ValueError("Auto sync interval must be a positive number of minutes")
        self.scheduler.set_interval(minutes)

    def set_auto_sync_enabled(self, enabled: bool) -> None:
        if enabled:
            self.scheduler.start()
        else:
            self.scheduler.stop()

    @property
    def auto_sync_enabled(self) -> bool:
        return self.scheduler.is_running

    def cleanup(self) -> None:
        super().cleanup()
        self.scheduler.stop()

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status.update({
            "is_syncing": self._syncing,
            "sync_status": self.sync_status,
            "pending_operations": self._pending,
            "last_sync_time": self._last_sync_time.isoformat() if self._last_sync_time else None,
            "providers": {
                provider.value: adapter.is_authenticated()
                for provider, adapter in self._adapters.items()
            },
            "last_cycle_errors": {
                provider.value: reason for provider, reason in self._cycle_errors.items()
            },
            "scheduler": self.scheduler.get_status(),
        })
        return status
