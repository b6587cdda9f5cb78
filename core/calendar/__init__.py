"""Calendar aggregation: entities, store, search and sync orchestration."""

from core.calendar.constants import FetchKind, Provider, SyncStatus
from core.calendar.exceptions import (
    AuthenticationFailedError,
    CalendarError,
    DuplicateIdentityError,
    NotAuthenticatedError,
    SyncError,
    TransportError,
    ValidationRejected,
)
from core.calendar.manager import CalendarManager
from core.calendar.models import CalendarEvent, SearchCriteria, SharedCalendar, Task
from core.calendar.search import SearchEngine
from core.calendar.signals import Signal
from core.calendar.sync_manager import SyncManager
from core.calendar.sync_scheduler import SyncScheduler

__all__ = [
    'AuthenticationFailedError',
    'CalendarError',
    'CalendarEvent',
    'CalendarManager',
    'DuplicateIdentityError',
    'FetchKind',
    'NotAuthenticatedError',
    'Provider',
    'SearchCriteria',
    'SearchEngine',
    'SharedCalendar',
    'Signal',
    'SyncError',
    'SyncManager',
    'SyncScheduler',
    'SyncStatus',
    'Task',
    'TransportError',
    'ValidationRejected',
]
