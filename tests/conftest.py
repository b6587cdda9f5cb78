# SPDX-License-Identifier: Apache-2.0
"""
Pytest configuration for CalendarHub tests.
"""

from datetime import datetime, timezone

import pytest

from core.calendar.constants import Provider
from core.calendar.models import CalendarEvent, Task
from utils.time_utils import LOCAL_TIMEZONE_ENV


@pytest.fixture(autouse=True)
def utc_local_timezone(monkeypatch):
    """Pin the local zone so date arithmetic is deterministic."""
    monkeypatch.setenv(LOCAL_TIMEZONE_ENV, "UTC")


@pytest.fixture
def make_event():
    """Factory for valid events with sensible defaults."""

    def _make_event(event_id="evt-1", provider=Provider.GOOGLE, **overrides):
        values = {
            "id": event_id,
            "title": "Team sync",
            "start_time": datetime(2024, 6, 10, 9, 0, tzinfo=timezone.utc),
            "end_time": datetime(2024, 6, 10, 10, 0, tzinfo=timezone.utc),
            "provider": provider,
        }
        values.update(overrides)
        return CalendarEvent(**values)

    return _make_event


@pytest.fixture
def make_task():
    """Factory for valid tasks with sensible defaults."""

    def _make_task(task_id="task-1", provider=Provider.GOOGLE, **overrides):
        values = {
            "id": task_id,
            "title": "Write report",
            "provider": provider,
        }
        values.update(overrides)
        return Task(**values)

    return _make_task
