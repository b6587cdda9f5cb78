"""
Calendar Manager for CalendarHub.

Aggregate store for events and tasks from every provider. Entities are
keyed by (id, provider); callers always receive copies.
"""

import logging
from datetime import date
from typing import TYPE_CHECKING, Dict, List, Optional

from core.base_manager import BaseManager
from core.calendar.constants import Provider
from core.calendar.exceptions import DuplicateIdentityError
from core.calendar.models import CalendarEvent, IdentityKey, SearchCriteria, Task
from core.calendar.search import filter_events
from core.calendar.signals import Signal


logger = logging.getLogger('calendarhub.calendar.manager')


if TYPE_CHECKING:
    from data.storage.calendar_repository import CalendarRepository


class CalendarManager(BaseManager):
    """
    Manages the unified set of calendar events and tasks.

    Responsibilities:
    - Identity-keyed add/update/remove/upsert for events and tasks
    - Date range, provider and keyword queries
    - Change notifications and optional write-through persistence
    """

    def __init__(self, repository: Optional['CalendarRepository'] = None):
        """
        Initialize the calendar manager.

        Args:
            repository: Optional persistence collaborator; successful
                        mutations are written through to it
        """
        super().__init__("CalendarManager", logger_name=logger.name)
        self.repository = repository
        self._events: Dict[IdentityKey, CalendarEvent] = {}
        self._tasks: Dict[IdentityKey, Task] = {}

        self.event_added = Signal(CalendarEvent, name="event_added")
        self.event_updated = Signal(CalendarEvent, name="event_updated")
        self.event_removed = Signal(str, Provider, name="event_removed")
        self.task_added = Signal(Task, name="task_added")
        self.task_updated = Signal(Task, name="task_updated")
        self.task_removed = Signal(str, Provider, name="task_removed")
        self.data_changed = Signal(name="data_changed")

        logger.info("CalendarManager initialized")

    def initialize(self) -> bool:
        """Load persisted entities when a repository is configured."""
        if self.repository is not None and not self.load():
            return False
        self._mark_initialized()
        return True

    def load(self) -> bool:
        """
        Replace the in-memory contents with the repository's.

        Returns:
            True on success; on failure the current contents are kept
        """
        if self.repository is None:
            logger.warning("No repository configured; nothing to load")
            return False

        try:
            events = self.repository.load_events()
            tasks = self.repository.load_tasks()
        except Exception as e:
            self._handle_error("load", e)
            return False

        self._events = {event.key: event.copy() for event in events if event.is_valid()}
        self._tasks = {task.key: task.copy() for task in tasks if task.is_valid()}
        logger.info(
            "Loaded %s events and %s tasks from repository",
            len(self._events), len(self._tasks)
        )
        self.data_changed.emit()
        return True

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def get_all_events(self) -> List[CalendarEvent]:
        return [event.copy() for event in self._events.values()]

    def get_event(self, event_id: str, provider: Provider) -> Optional[CalendarEvent]:
        event = self._events.get((event_id, provider))
        return event.copy() if event else None

    def get_events_by_date_range(self, start_date: date, end_date: date) -> List[CalendarEvent]:
        """Events whose date span intersects [start_date, end_date]."""
        return [
            event.copy() for event in self._events.values()
            if event.overlaps(start_date, end_date)
        ]

    def get_events_by_provider(self, provider: Provider) -> List[CalendarEvent]:
        return [event.copy() for event in self._events.values() if event.provider == provider]

    def add_event(self, event: CalendarEvent) -> bool:
        """
        Insert a new event.

        Returns:
            False without mutation if invalid or the identity already exists
        """
        if not event.is_valid():
            logger.debug("Rejected invalid event: %r", event.id)
            return False
        if event.key in self._events:
            logger.debug(DuplicateIdentityError(event.id, event.provider.value).reason)
            return False

        stored = event.copy()
        self._events[stored.key] = stored
        self._persist('save_event', stored)
        self.event_added.emit(stored.copy())
        self.data_changed.emit()
        return True

    def update_event(self, event: CalendarEvent) -> bool:
        if not event.is_valid() or event.key not in self._events:
            return False

        stored = event.copy()
        self._events[stored.key] = stored
        self._persist('save_event', stored)
        self.event_updated.emit(stored.copy())
        self.data_changed.emit()
        return True

    def remove_event(self, event_id: str, provider: Provider) -> bool:
        if self._events.pop((event_id, provider), None) is None:
            return False

        self._persist('delete_event', event_id, provider)
        self.event_removed.emit(event_id, provider)
        self.data_changed.emit()
        return True

    def upsert_event(self, event: CalendarEvent) -> bool:
        """Add, falling back to update when the identity already exists."""
        return self.add_event(event) or self.update_event(event)

    def search_events(self, query: str) -> List[CalendarEvent]:
        """Case-insensitive match on title, description or location."""
        return [
            event.copy() for event in self._events.values()
            if event.matches_keyword(query, include_attendees=False)
        ]

    def advanced_search(self, criteria: SearchCriteria) -> List[CalendarEvent]:
        return [event.copy() for event in filter_events(self._events.values(), criteria)]

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def get_all_tasks(self) -> List[Task]:
        return [task.copy() for task in self._tasks.values()]

    def get_task(self, task_id: str, provider: Provider) -> Optional[Task]:
        task = self._tasks.get((task_id, provider))
        return task.copy() if task else None

    def get_tasks_by_due_date(self, day: date) -> List[Task]:
        return [task.copy() for task in self._tasks.values() if task.is_due_on(day)]

    def get_tasks_by_date_range(self, start_date: date, end_date: date) -> List[Task]:
        """Tasks due within [start_date, end_date]; undated tasks never match."""
        results = []
        for task in self._tasks.values():
            due = task.due_day()
            if due is not None and start_date <= due <= end_date:
                results.append(task.copy())
        return results

    def get_tasks_by_provider(self, provider: Provider) -> List[Task]:
        return [task.copy() for task in self._tasks.values() if task.provider == provider]

    def add_task(self, task: Task) -> bool:
        if not task.is_valid():
            logger.debug("Rejected invalid task: %r", task.id)
            return False
        if task.key in self._tasks:
            logger.debug(DuplicateIdentityError(task.id, task.provider.value).reason)
            return False

        stored = task.copy()
        self._tasks[stored.key] = stored
        self._persist('save_task', stored)
        self.task_added.emit(stored.copy())
        self.data_changed.emit()
        return True

    def update_task(self, task: Task) -> bool:
        if not task.is_valid() or task.key not in self._tasks:
            return False

        stored = task.copy()
        self._tasks[stored.key] = stored
        self._persist('save_task', stored)
        self.task_updated.emit(stored.copy())
        self.data_changed.emit()
        return True

    def remove_task(self, task_id: str, provider: Provider) -> bool:
        if self._tasks.pop((task_id, provider), None) is None:
            return False

        self._persist('delete_task', task_id, provider)
        self.task_removed.emit(task_id, provider)
        self.data_changed.emit()
        return True

    def upsert_task(self, task: Task) -> bool:
        return self.add_task(task) or self.update_task(task)

    def set_task_completed(self, task_id: str, provider: Provider, completed: bool) -> bool:
        """Toggle completion locally; the change is not pushed to the provider."""
        task = self._tasks.get((task_id, provider))
        if task is None:
            return False

        task.is_completed = completed
        self._persist('save_task', task)
        self.task_updated.emit(task.copy())
        self.data_changed.emit()
        return True

    def search_tasks(self, query: str) -> List[Task]:
        """Case-insensitive match on title, description or tags."""
        return [task.copy() for task in self._tasks.values() if task.matches_keyword(query)]

    # ------------------------------------------------------------------

    def clear(self) -> None:
        """Drop everything held in memory. The repository is left untouched."""
        if not self._events and not self._tasks:
            return
        self._events.clear()
        self._tasks.clear()
        self.data_changed.emit()

    def get_status(self):
        status = super().get_status()
        status.update({
            "event_count": len(self._events),
            "task_count": len(self._tasks),
            "persistent": self.repository is not None,
        })
        return status

    def _persist(self, operation: str, *args) -> None:
        if self.repository is None:
            return
        try:
            getattr(self.repository, operation)(*args)
        except Exception as e:
            # In-memory state stays authoritative
            self._handle_error(f"repository.{operation}", e)
