# SPDX-License-Identifier: Apache-2.0
"""
Unit tests for SearchEngine.
"""

from datetime import date, datetime, timezone

import pytest

from core.calendar.constants import Provider
from core.calendar.manager import CalendarManager
from core.calendar.models import SearchCriteria
from core.calendar.search import SearchEngine, filter_tasks, sort_tasks


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def manager():
    return CalendarManager()


@pytest.fixture
def engine(manager):
    return SearchEngine(manager)


class TestKeywordSearch:
    """Test keyword search over events and tasks."""

    def test_events_sorted_by_start(self, manager, engine, make_event):
        manager.add_event(make_event("late", title="Review", start_time=_utc(2024, 6, 20, 9)))
        manager.add_event(make_event("early", title="Review", start_time=_utc(2024, 6, 5, 9)))

        results = engine.search_events("review")

        assert [event.id for event in results] == ["early", "late"]

    def test_events_match_attendees(self, manager, engine, make_event):
        """Unlike the store search, the engine also matches attendees."""
        manager.add_event(make_event(attendees=["alice@example.com"]))

        assert len(engine.search_events("ALICE")) == 1

    def test_location_match(self, manager, engine, make_event):
        manager.add_event(make_event(location="Conference Room A"))

        assert len(engine.search_events("conference")) == 1

    def test_empty_query_returns_all(self, manager, engine, make_event):
        manager.add_event(make_event("a"))
        manager.add_event(make_event("b"))

        assert len(engine.search_events("")) == 2

    def test_tasks_follow_ordering(self, manager, engine, make_task):
        manager.add_task(make_task("done", title="Report A", is_completed=True, priority=1))
        manager.add_task(make_task("p3", title="Report B", priority=3))
        manager.add_task(make_task("p1-late", title="Report C", priority=1, due_date=_utc(2024, 6, 20)))
        manager.add_task(make_task("p1-early", title="Report D", priority=1, due_date=_utc(2024, 6, 1)))
        manager.add_task(make_task("p1-undated", title="Report E", priority=1))

        results = engine.search_tasks("report")

        assert [task.id for task in results] == [
            "p1-early", "p1-late", "p1-undated", "p3", "done",
        ]

    def test_search_all(self, manager, engine, make_event, make_task):
        manager.add_event(make_event(title="Budget review"))
        manager.add_task(make_task(title="Prepare budget"))
        manager.add_task(make_task("other", title="Something else"))

        events, tasks = engine.search_all("budget")

        assert len(events) == 1
        assert [task.id for task in tasks] == ["task-1"]


class TestAdvancedSearch:
    """Test criteria-based filtering."""

    def test_empty_criteria_returns_all_events(self, manager, engine, make_event):
        manager.add_event(make_event("a"))
        manager.add_event(make_event("b", Provider.OUTLOOK))

        assert len(engine.advanced_search_events(SearchCriteria())) == 2

    def test_date_range_and_provider(self, manager, engine, make_event):
        manager.add_event(make_event("june-g", Provider.GOOGLE, start_time=_utc(2024, 6, 3, 9), end_time=_utc(2024, 6, 3, 10)))
        manager.add_event(make_event("june-o", Provider.OUTLOOK, start_time=_utc(2024, 6, 4, 9), end_time=_utc(2024, 6, 4, 10)))
        manager.add_event(make_event("july-g", Provider.GOOGLE, start_time=_utc(2024, 7, 3, 9), end_time=_utc(2024, 7, 3, 10)))

        criteria = SearchCriteria(
            start_date=date(2024, 6, 1),
            end_date=date(2024, 6, 30),
            providers={Provider.GOOGLE},
        )

        assert [event.id for event in engine.advanced_search_events(criteria)] == ["june-g"]

    def test_owner_filter(self, manager, engine, make_event):
        manager.add_event(make_event("mine", owner_id="me@example.com"))
        manager.add_event(make_event("theirs", owner_id="them@example.com"))

        results = engine.advanced_search_events(SearchCriteria(owners={"me@example.com"}))

        assert [event.id for event in results] == ["mine"]

    def test_completed_tasks_excluded_by_default(self, manager, engine, make_task):
        manager.add_task(make_task("open"))
        manager.add_task(make_task("done", is_completed=True))

        default = engine.advanced_search_tasks(SearchCriteria())
        included = engine.advanced_search_tasks(SearchCriteria(include_completed=True))

        assert [task.id for task in default] == ["open"]
        assert {task.id for task in included} == {"open", "done"}

    def test_undated_tasks_pass_date_filter(self, make_task):
        tasks = [
            make_task("in", due_date=_utc(2024, 6, 10)),
            make_task("out", due_date=_utc(2024, 8, 10)),
            make_task("undated"),
        ]
        criteria = SearchCriteria(start_date=date(2024, 6, 1), end_date=date(2024, 6, 30))

        results = sort_tasks(filter_tasks(tasks, criteria))

        assert [task.id for task in results] == ["in", "undated"]

    def test_date_filter_needs_both_bounds(self, manager, engine, make_event):
        manager.add_event(make_event(start_time=_utc(2024, 1, 1, 9), end_time=_utc(2024, 1, 1, 10)))

        criteria = SearchCriteria(start_date=date(2024, 6, 1))

        assert len(engine.advanced_search_events(criteria)) == 1


class TestConvenienceSearches:
    """Test the date range and provider shortcuts."""

    def test_by_date_range_with_query(self, manager, engine, make_event):
        manager.add_event(make_event("standup", title="Standup", start_time=_utc(2024, 6, 3, 9), end_time=_utc(2024, 6, 3, 10)))
        manager.add_event(make_event("lunch", title="Lunch", start_time=_utc(2024, 6, 3, 12), end_time=_utc(2024, 6, 3, 13)))

        results = engine.search_events_by_date_range(date(2024, 6, 1), date(2024, 6, 30), "stand")

        assert [event.id for event in results] == ["standup"]

    def test_by_provider_defaults_to_all(self, manager, engine, make_event):
        manager.add_event(make_event("g", Provider.GOOGLE))
        manager.add_event(make_event("a", Provider.APPLE))

        assert len(engine.search_events_by_provider("")) == 2
        assert [e.id for e in engine.search_events_by_provider("", {Provider.APPLE})] == ["a"]
