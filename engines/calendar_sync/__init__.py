"""Calendar synchronization adapters."""

from engines.calendar_sync.apple_calendar import AppleCalendarAdapter
from engines.calendar_sync.base import CalendarSyncAdapter, FetchResult, OAuthCalendarAdapter
from engines.calendar_sync.google_calendar import GoogleCalendarAdapter
from engines.calendar_sync.outlook_calendar import OutlookCalendarAdapter

__all__ = [
    'AppleCalendarAdapter',
    'CalendarSyncAdapter',
    'FetchResult',
    'GoogleCalendarAdapter',
    'OAuthCalendarAdapter',
    'OutlookCalendarAdapter',
]
