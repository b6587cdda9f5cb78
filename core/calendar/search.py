# SPDX-License-Identifier: Apache-2.0
"""
Search and filtering over the calendar manager.

Read-only; results are copies sorted by start time (events) or by the task
ordering (incomplete first, then priority, then due date).
"""

import logging
from datetime import date
from typing import TYPE_CHECKING, Iterable, List, Optional, Set, Tuple

from core.calendar.constants import Provider
from core.calendar.models import CalendarEvent, SearchCriteria, Task

if TYPE_CHECKING:
    from core.calendar.manager import CalendarManager


logger = logging.getLogger('calendarhub.calendar.search')


def sort_events(events: Iterable[CalendarEvent]) -> List[CalendarEvent]:
    return sorted(events, key=lambda event: event.start_time)


def sort_tasks(tasks: Iterable[Task]) -> List[Task]:
    return sorted(tasks, key=lambda task: task.sort_key())


def filter_events(events: Iterable[CalendarEvent], criteria: SearchCriteria) -> List[CalendarEvent]:
    """Apply keyword, date range, provider and owner filters in that order."""
    results = []
    for event in events:
        if not event.matches_keyword(criteria.keyword):
            continue
        if criteria.has_date_range and not event.overlaps(criteria.start_date, criteria.end_date):
            continue
        if criteria.providers and event.provider not in criteria.providers:
            continue
        if criteria.owners and event.owner_id not in criteria.owners:
            continue
        results.append(event)
    return results


def filter_tasks(tasks: Iterable[Task], criteria: SearchCriteria) -> List[Task]:
    """
    Completed tasks go first unless requested, then the event filter order.

    Tasks without a due date pass the date range filter.
    """
    results = []
    for task in tasks:
        if task.is_completed and not criteria.include_completed:
            continue
        if not task.matches_keyword(criteria.keyword):
            continue
        if criteria.has_date_range and task.due_date is not None:
            due = task.due_day()
            if not criteria.start_date <= due <= criteria.end_date:
                continue
        if criteria.providers and task.provider not in criteria.providers:
            continue
        if criteria.owners and task.owner_id not in criteria.owners:
            continue
        results.append(task)
    return results


class SearchEngine:
    """Stateless query layer holding only a reference to the manager."""

    def __init__(self, calendar_manager: 'CalendarManager'):
        self.calendar_manager = calendar_manager

    def search_events(self, query: str) -> List[CalendarEvent]:
        """Keyword over title, description, location and attendees."""
        events = self.calendar_manager.get_all_events()
        return sort_events(event for event in events if event.matches_keyword(query))

    def search_tasks(self, query: str) -> List[Task]:
        """Keyword over title, description and tags."""
        tasks = self.calendar_manager.get_all_tasks()
        return sort_tasks(task for task in tasks if task.matches_keyword(query))

    def advanced_search_events(self, criteria: SearchCriteria) -> List[CalendarEvent]:
        return sort_events(filter_events(self.calendar_manager.get_all_events(), criteria))

    def advanced_search_tasks(self, criteria: SearchCriteria) -> List[Task]:
        return sort_tasks(filter_tasks(self.calendar_manager.get_all_tasks(), criteria))

    def search_events_by_date_range(
        self,
        start_date: date,
        end_date: date,
        query: str = "",
    ) -> List[CalendarEvent]:
        events = self.calendar_manager.get_events_by_date_range(start_date, end_date)
        return sort_events(event for event in events if event.matches_keyword(query))

    def search_events_by_provider(
        self,
        query: str,
        providers: Optional[Set[Provider]] = None,
    ) -> List[CalendarEvent]:
        """An empty or missing provider set means every provider."""
        criteria = SearchCriteria(keyword=query, providers=set(providers or ()))
        return self.advanced_search_events(criteria)

    def search_all(self, query: str) -> Tuple[List[CalendarEvent], List[Task]]:
        logger.debug("Searching all entities for %r", query)
        return self.search_events(query), self.search_tasks(query)
