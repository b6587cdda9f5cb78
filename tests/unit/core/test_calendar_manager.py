# SPDX-License-Identifier: Apache-2.0
"""
Unit tests for CalendarManager.

Tests identity-keyed CRUD, upsert convergence, date range queries,
change notifications and repository write-through.
"""

from datetime import date, datetime, timezone
from unittest.mock import MagicMock, Mock

import pytest

from core.calendar.constants import Provider
from core.calendar.manager import CalendarManager
from core.calendar.models import SearchCriteria
from data.storage.calendar_repository import InMemoryCalendarRepository


@pytest.fixture
def manager():
    """Create a CalendarManager without persistence."""
    return CalendarManager()


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestEventCrud:
    """Test event add/update/remove semantics."""

    def test_add_twice_returns_true_then_false(self, manager, make_event):
        """Adding the same identity twice only inserts once."""
        event = make_event()

        assert manager.add_event(event) is True
        assert manager.add_event(event) is False
        assert len(manager.get_all_events()) == 1

    def test_same_id_different_provider_are_distinct(self, manager, make_event):
        """Identity is (id, provider), not id alone."""
        assert manager.add_event(make_event("shared", Provider.GOOGLE))
        assert manager.add_event(make_event("shared", Provider.OUTLOOK))

        assert len(manager.get_all_events()) == 2

    def test_add_invalid_event_rejected(self, manager, make_event):
        """Events without id, title or start are never stored."""
        assert manager.add_event(make_event(event_id="")) is False
        assert manager.add_event(make_event(title="")) is False
        assert manager.add_event(make_event(start_time=None)) is False
        assert manager.get_all_events() == []

    def test_update_missing_event_returns_false(self, manager, make_event):
        """Update never inserts."""
        assert manager.update_event(make_event()) is False
        assert manager.get_all_events() == []

    def test_update_replaces_event(self, manager, make_event):
        """Update replaces the stored entity with the same identity."""
        manager.add_event(make_event(title="Old"))

        assert manager.update_event(make_event(title="New")) is True
        assert manager.get_event("evt-1", Provider.GOOGLE).title == "New"

    def test_remove_event(self, manager, make_event):
        """Removing is by identity and reports whether anything went."""
        manager.add_event(make_event())

        assert manager.remove_event("evt-1", Provider.OUTLOOK) is False
        assert manager.remove_event("evt-1", Provider.GOOGLE) is True
        assert manager.remove_event("evt-1", Provider.GOOGLE) is False
        assert manager.get_event("evt-1", Provider.GOOGLE) is None

    def test_upsert_converges(self, manager, make_event):
        """Repeated upserts leave one entity equal to the last write."""
        assert manager.upsert_event(make_event(title="First")) is True
        assert manager.upsert_event(make_event(title="Second")) is True
        assert manager.upsert_event(make_event(title="Second")) is True

        events = manager.get_all_events()
        assert len(events) == 1
        assert events[0].title == "Second"

    def test_returned_events_are_copies(self, manager, make_event):
        """Mutating a returned event does not change the store."""
        original = make_event(attendees=["a@example.com"])
        manager.add_event(original)
        original.title = "Changed by caller"

        fetched = manager.get_event("evt-1", Provider.GOOGLE)
        fetched.attendees.append("b@example.com")

        stored = manager.get_event("evt-1", Provider.GOOGLE)
        assert stored.title == "Team sync"
        assert stored.attendees == ["a@example.com"]


class TestEventQueries:
    """Test date range, provider and keyword queries."""

    def test_date_range_containment(self, manager, make_event):
        """A June event is found in June and not in July."""
        manager.add_event(make_event(
            start_time=_utc(2024, 6, 15, 10),
            end_time=_utc(2024, 6, 15, 11),
        ))

        june = manager.get_events_by_date_range(date(2024, 6, 1), date(2024, 6, 30))
        july = manager.get_events_by_date_range(date(2024, 7, 1), date(2024, 7, 31))

        assert [event.id for event in june] == ["evt-1"]
        assert july == []

    def test_multi_day_event_overlaps_range(self, manager, make_event):
        """An event spanning the range boundary is included."""
        manager.add_event(make_event(
            start_time=_utc(2024, 6, 29, 9),
            end_time=_utc(2024, 7, 2, 9),
        ))

        assert len(manager.get_events_by_date_range(date(2024, 7, 1), date(2024, 7, 31))) == 1

    def test_all_day_end_is_exclusive(self, manager, make_event):
        """A single all-day event on June 30 does not leak into July."""
        manager.add_event(make_event(
            start_time=_utc(2024, 6, 30),
            end_time=_utc(2024, 7, 1),
            is_all_day=True,
        ))

        assert manager.get_events_by_date_range(date(2024, 7, 1), date(2024, 7, 31)) == []
        assert len(manager.get_events_by_date_range(date(2024, 6, 30), date(2024, 6, 30))) == 1

    def test_get_events_by_provider(self, manager, make_event):
        manager.add_event(make_event("g", Provider.GOOGLE))
        manager.add_event(make_event("o", Provider.OUTLOOK))

        outlook = manager.get_events_by_provider(Provider.OUTLOOK)

        assert [event.id for event in outlook] == ["o"]

    def test_search_matches_location_case_insensitively(self, manager, make_event):
        """'conference' matches the location 'Conference Room A'."""
        manager.add_event(make_event(location="Conference Room A"))
        manager.add_event(make_event("evt-2", title="Lunch"))

        results = manager.search_events("conference")

        assert [event.id for event in results] == ["evt-1"]

    def test_search_ignores_attendees(self, manager, make_event):
        """The store keyword search covers title, description and location only."""
        manager.add_event(make_event(attendees=["conference@example.com"]))

        assert manager.search_events("conference") == []

    def test_empty_search_returns_everything(self, manager, make_event):
        manager.add_event(make_event("a"))
        manager.add_event(make_event("b"))

        assert len(manager.search_events("")) == 2

    def test_advanced_search_filters_by_provider(self, manager, make_event):
        manager.add_event(make_event("g", Provider.GOOGLE))
        manager.add_event(make_event("a", Provider.APPLE))

        results = manager.advanced_search(SearchCriteria(providers={Provider.APPLE}))

        assert [event.key for event in results] == [("a", Provider.APPLE)]


class TestTaskOperations:
    """Test task CRUD and queries."""

    def test_add_twice_returns_true_then_false(self, manager, make_task):
        task = make_task()

        assert manager.add_task(task) is True
        assert manager.add_task(task) is False

    def test_upsert_task_converges(self, manager, make_task):
        manager.upsert_task(make_task(priority=1))
        manager.upsert_task(make_task(priority=4))

        tasks = manager.get_all_tasks()
        assert len(tasks) == 1
        assert tasks[0].priority == 4

    def test_tasks_by_date_range_excludes_undated(self, manager, make_task):
        manager.add_task(make_task("dated", due_date=_utc(2024, 6, 12)))
        manager.add_task(make_task("undated"))

        results = manager.get_tasks_by_date_range(date(2024, 6, 1), date(2024, 6, 30))

        assert [task.id for task in results] == ["dated"]

    def test_tasks_by_due_date(self, manager, make_task):
        manager.add_task(make_task("a", due_date=_utc(2024, 6, 12, 17)))
        manager.add_task(make_task("b", due_date=_utc(2024, 6, 13, 17)))

        assert [task.id for task in manager.get_tasks_by_due_date(date(2024, 6, 12))] == ["a"]

    def test_tasks_and_events_share_local_dates(self, manager, make_event, make_task, monkeypatch):
        monkeypatch.setenv("CALENDARHUB_LOCAL_TIMEZONE", "Asia/Tokyo")
        late = _utc(2024, 6, 14, 23)
        manager.add_event(make_event("e", start_time=late, end_time=late))
        manager.add_task(make_task("t", due_date=late))
        manager.add_task(make_task("d", due_date=_utc(2024, 6, 15), due_is_all_day=True))
        day = date(2024, 6, 15)

        assert [event.id for event in manager.get_events_by_date_range(day, day)] == ["e"]
        assert sorted(task.id for task in manager.get_tasks_by_date_range(day, day)) == ["d", "t"]
        assert sorted(task.id for task in manager.get_tasks_by_due_date(day)) == ["d", "t"]
        assert manager.get_tasks_by_due_date(date(2024, 6, 14)) == []

    def test_set_task_completed(self, manager, make_task):
        manager.add_task(make_task())
        updated = Mock()
        manager.task_updated.connect(updated)

        assert manager.set_task_completed("task-1", Provider.GOOGLE, True) is True
        assert manager.get_task("task-1", Provider.GOOGLE).is_completed is True
        updated.assert_called_once()

    def test_set_task_completed_missing(self, manager):
        assert manager.set_task_completed("nope", Provider.GOOGLE, True) is False

    def test_search_tasks_by_tag(self, manager, make_task):
        manager.add_task(make_task(tags=["Finance"]))

        assert len(manager.search_tasks("finance")) == 1

    def test_remove_task(self, manager, make_task):
        manager.add_task(make_task())
        removed = Mock()
        manager.task_removed.connect(removed)

        assert manager.remove_task("task-1", Provider.GOOGLE) is True
        removed.assert_called_once_with("task-1", Provider.GOOGLE)


class TestNotifications:
    """Test change signals."""

    def test_add_emits_added_and_data_changed(self, manager, make_event):
        added = Mock()
        changed = Mock()
        manager.event_added.connect(added)
        manager.data_changed.connect(changed)

        manager.add_event(make_event())

        added.assert_called_once()
        assert added.call_args[0][0].id == "evt-1"
        changed.assert_called_once_with()

    def test_rejected_add_emits_nothing(self, manager, make_event):
        manager.add_event(make_event())
        changed = Mock()
        manager.data_changed.connect(changed)

        manager.add_event(make_event())

        changed.assert_not_called()

    def test_upsert_existing_emits_updated(self, manager, make_event):
        manager.add_event(make_event())
        added = Mock()
        updated = Mock()
        manager.event_added.connect(added)
        manager.event_updated.connect(updated)

        manager.upsert_event(make_event(title="Renamed"))

        added.assert_not_called()
        updated.assert_called_once()

    def test_remove_emits_identity(self, manager, make_event):
        manager.add_event(make_event())
        removed = Mock()
        manager.event_removed.connect(removed)

        manager.remove_event("evt-1", Provider.GOOGLE)

        removed.assert_called_once_with("evt-1", Provider.GOOGLE)

    def test_clear_emits_once(self, manager, make_event):
        manager.add_event(make_event())
        changed = Mock()
        manager.data_changed.connect(changed)

        manager.clear()
        manager.clear()

        assert manager.get_all_events() == []
        changed.assert_called_once()


class TestPersistence:
    """Test repository write-through and loading."""

    def test_mutations_write_through(self, make_event, make_task):
        repository = InMemoryCalendarRepository()
        manager = CalendarManager(repository)

        manager.add_event(make_event())
        manager.add_task(make_task())
        assert repository.event_count == 1
        assert repository.task_count == 1

        manager.remove_event("evt-1", Provider.GOOGLE)
        assert repository.event_count == 0

    def test_load_replaces_contents(self, make_event):
        repository = InMemoryCalendarRepository()
        repository.save_event(make_event("persisted"))
        manager = CalendarManager(repository)
        manager.add_event(make_event("transient"))
        repository.delete_event("transient", Provider.GOOGLE)
        changed = Mock()
        manager.data_changed.connect(changed)

        assert manager.load() is True

        assert [event.id for event in manager.get_all_events()] == ["persisted"]
        changed.assert_called_once_with()

    def test_initialize_loads_repository(self, make_task):
        repository = InMemoryCalendarRepository()
        repository.save_task(make_task())
        manager = CalendarManager(repository)

        assert manager.initialize() is True
        assert manager.is_initialized
        assert len(manager.get_all_tasks()) == 1

    def test_load_failure_keeps_state(self, make_event):
        repository = MagicMock()
        repository.load_events.side_effect = OSError("disk gone")
        manager = CalendarManager(repository)
        manager.add_event(make_event())

        assert manager.load() is False
        assert len(manager.get_all_events()) == 1

    def test_repository_error_does_not_roll_back(self, make_event):
        repository = MagicMock()
        repository.save_event.side_effect = OSError("read-only")
        manager = CalendarManager(repository)

        assert manager.add_event(make_event()) is True
        assert len(manager.get_all_events()) == 1

    def test_load_without_repository(self, manager):
        assert manager.load() is False

    def test_status_reports_counts(self, manager, make_event):
        manager.add_event(make_event())

        status = manager.get_status()

        assert status["event_count"] == 1
        assert status["task_count"] == 0
        assert status["persistent"] is False
