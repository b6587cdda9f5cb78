"""Outlook Calendar synchronization adapter."""

import json
import logging
import re
from datetime import datetime, tzinfo
from html import unescape
from typing import Any, Dict, List, Optional

from config.constants import DEFAULT_EVENT_COLOR, DEFAULT_TASK_PRIORITY, PROVIDER_PAGE_SIZE
from core.calendar.constants import Provider
from core.calendar.exceptions import ValidationRejected
from core.calendar.models import CalendarEvent, SharedCalendar, Task
from engines.calendar_sync.base import (
    AuthorizationCodeProvider,
    OAuthCalendarAdapter,
    OAuthEndpoints,
)
from utils.http_client import AsyncRetryableHttpClient
from utils.time_utils import (
    date_to_utc_midnight,
    format_rfc3339,
    parse_iso_date,
    parse_iso_datetime,
    resolve_timezone,
)


logger = logging.getLogger('calendarhub.calendar_sync.outlook')


DEFAULT_IANA_TO_WINDOWS_MAP = {
    'UTC': 'UTC',
    'Asia/Shanghai': 'China Standard Time',
    'Asia/Taipei': 'Taipei Standard Time',
    'Asia/Tokyo': 'Tokyo Standard Time',
    'Asia/Kolkata': 'India Standard Time',
    'America/New_York': 'Eastern Standard Time',
    'America/Los_Angeles': 'Pacific Standard Time',
    'America/Chicago': 'Central Standard Time',
    'America/Denver': 'Mountain Standard Time',
    'America/Sao_Paulo': 'E. South America Standard Time',
    'Europe/London': 'GMT Standard Time',
    'Europe/Berlin': 'W. Europe Standard Time',
    'Europe/Paris': 'Romance Standard Time',
    'Africa/Nairobi': 'E. Africa Standard Time',
    'Australia/Sydney': 'AUS Eastern Standard Time',
}

WINDOWS_TO_IANA_MAP = {
    value: key for key, value in DEFAULT_IANA_TO_WINDOWS_MAP.items()
}

# Microsoft To Do importance -> task priority (1 = highest)
IMPORTANCE_TO_PRIORITY = {
    'high': 1,
    'normal': 3,
    'low': 5,
}


def windows_to_timezone(identifier: Optional[str]) -> Optional[tzinfo]:
    """Resolve a Graph timeZone value (Windows or IANA name)."""
    if not identifier:
        return None
    normalised = identifier.strip()
    if not normalised:
        return None
    return resolve_timezone(WINDOWS_TO_IANA_MAP.get(normalised, normalised))


def _normalise_plain_text(value: str) -> str:
    text_value = value.replace('\r\n', '\n').replace('\r', '\n')
    text_value = text_value.replace('\xa0', ' ')
    text_value = re.sub(r'[ \t]+\n', '\n', text_value)
    text_value = re.sub(r'\n{3,}', '\n\n', text_value)
    return text_value.strip()


def extract_body_text(payload: dict) -> str:
    """Return plain text from a Graph ``body`` (HTML or text) or ``bodyPreview``."""
    body_payload = payload.get('body')
    if isinstance(body_payload, dict):
        content = body_payload.get('content')
        if isinstance(content, str):
            content_type = str(body_payload.get('contentType') or '').lower()
            text = content
            if content_type == 'html':
                text = re.sub(
                    r'<(script|style)[^>]*?>.*?</\1>',
                    '',
                    text,
                    flags=re.IGNORECASE | re.DOTALL,
                )
                text = re.sub(r'<br\s*/?>', '\n', text, flags=re.IGNORECASE)
                text = re.sub(r'</p\s*>', '\n', text, flags=re.IGNORECASE)
                text = re.sub(r'<[^>]+>', '', text)
            cleaned = _normalise_plain_text(unescape(text))
            if cleaned:
                return cleaned

    preview = payload.get('bodyPreview')
    if isinstance(preview, str):
        return _normalise_plain_text(unescape(preview))
    return ''


class OutlookCalendarAdapter(OAuthCalendarAdapter):
    """Outlook Calendar and Microsoft To Do synchronization adapter."""

    provider = Provider.OUTLOOK

    # Microsoft OAuth endpoints
    AUTH_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/authorize"  # noqa: E501
    TOKEN_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/token"  # noqa: E501
    API_BASE_URL = "https://graph.microsoft.com/v1.0"

    # OAuth scopes
    SCOPES = [
        "Calendars.Read",
        "Tasks.Read",
        "User.Read",
        "offline_access",
    ]

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str = "http://localhost:8080/callback",
        authorization_code_provider: Optional[AuthorizationCodeProvider] = None,
        refresh_token: Optional[str] = None,
        http_client: Optional[AsyncRetryableHttpClient] = None,
        http_client_config: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
            scopes=self.SCOPES,
            endpoints=OAuthEndpoints(
                auth_url=self.AUTH_URL,
                token_url=self.TOKEN_URL,
                api_base_url=self.API_BASE_URL,
                revoke_url=None,
            ),
            authorization_code_provider=authorization_code_provider,
            refresh_token=refresh_token,
            logger=logger,
            http_client=http_client,
            http_client_config=http_client_config,
        )
        self.logger.info("OutlookCalendarAdapter initialized")

    def build_authorization_params(
        self, state: str, code_challenge: str
    ) -> Dict[str, Any]:
        params = super().build_authorization_params(state, code_challenge)
        params['response_mode'] = 'query'
        return params

    async def _collect_values(self, url: str, params: Optional[Dict[str, Any]] = None) -> List[dict]:
        """Follow @odata.nextLink until the collection is exhausted."""
        items: List[dict] = []
        next_url: Optional[str] = url
        next_params = params

        while next_url:
            data = await self.get_json(next_url, params=next_params)
            items.extend(item for item in data.get('value', []) if isinstance(item, dict))
            # nextLink already carries the query string
            next_url = data.get('@odata.nextLink')
            next_params = None

        return items

    async def _fetch_events(self, start_utc: datetime, end_utc: datetime) -> List[CalendarEvent]:
        params = {
            'startDateTime': format_rfc3339(start_utc),
            'endDateTime': format_rfc3339(end_utc),
            '$orderby': 'start/dateTime',
            '$top': PROVIDER_PAGE_SIZE,
        }
        raw_events = await self._collect_values(f"{self.api_base_url}/me/calendarView", params)
        return self._normalize_items(raw_events, self._convert_outlook_event)

    async def _fetch_tasks(self) -> List[Task]:
        lists = await self.get_json(f"{self.api_base_url}/me/todo/lists")
        task_lists = [item for item in lists.get('value', []) if isinstance(item, dict)]
        if not task_lists:
            return []

        list_id = task_lists[0].get('id')
        if not list_id:
            return []

        raw_tasks = await self._collect_values(
            f"{self.api_base_url}/me/todo/lists/{list_id}/tasks"
        )
        return self._normalize_items(raw_tasks, self._convert_outlook_task)

    async def _fetch_shared_calendars(self) -> List[SharedCalendar]:
        raw = await self._collect_values(f"{self.api_base_url}/me/calendars")
        calendars = []
        for item in raw:
            calendar_id = item.get('id')
            if not calendar_id:
                continue
            owner = item.get('owner') or {}
            calendars.append(SharedCalendar(
                id=calendar_id,
                name=item.get('name') or calendar_id,
                owner_id=owner.get('address', ''),
                color=item.get('hexColor') or DEFAULT_EVENT_COLOR,
                is_shared=not item.get('canShare', True),
                provider=self.provider,
            ))
        return calendars

    def _convert_datetime(self, payload: dict, *, is_all_day: bool) -> Optional[datetime]:
        value = payload.get('dateTime')
        if not value:
            return None

        if is_all_day or 'T' not in value:
            day = parse_iso_date(value)
            if day is None:
                raise ValidationRejected(f"Invalid Outlook date: {value}")
            return date_to_utc_midnight(day)

        return parse_iso_datetime(value, windows_to_timezone(payload.get('timeZone')))

    def _convert_outlook_event(self, outlook_event: dict) -> Optional[CalendarEvent]:
        """
        Convert an Outlook (Graph) event to the unified model.

        Returns:
            CalendarEvent, or None for cancelled occurrences
        """
        if outlook_event.get('isCancelled') or outlook_event.get('@removed') is not None:
            return None

        start = outlook_event.get('start') or {}
        end = outlook_event.get('end') or {}

        is_all_day = bool(outlook_event.get('isAllDay'))
        start_time = self._convert_datetime(start, is_all_day=is_all_day)
        end_time = self._convert_datetime(end, is_all_day=is_all_day)

        attendees = [
            att['emailAddress']['address']
            for att in outlook_event.get('attendees', [])
            if isinstance(att, dict)
            and isinstance(att.get('emailAddress'), dict)
            and att['emailAddress'].get('address')
        ]

        # Graph recurrence objects are stored verbatim in a stable JSON form
        recurrence = outlook_event.get('recurrence')
        recurrence_rule = json.dumps(recurrence, sort_keys=True) if recurrence else ''

        location = outlook_event.get('location') or {}
        organizer = (outlook_event.get('organizer') or {}).get('emailAddress') or {}

        return CalendarEvent(
            id=outlook_event.get('id', ''),
            title=outlook_event.get('subject', ''),
            description=extract_body_text(outlook_event),
            location=location.get('displayName') or '',
            start_time=start_time,
            end_time=end_time,
            is_all_day=is_all_day,
            recurrence_rule=recurrence_rule,
            attendees=attendees,
            owner_id=organizer.get('address', ''),
            color=DEFAULT_EVENT_COLOR,
            provider=self.provider,
        )

    def _convert_outlook_task(self, outlook_task: dict) -> Task:
        due_payload = outlook_task.get('dueDateTime') or {}
        due_date = None
        if due_payload.get('dateTime'):
            due_date = parse_iso_datetime(
                due_payload['dateTime'], windows_to_timezone(due_payload.get('timeZone'))
            )

        importance = str(outlook_task.get('importance') or '').lower()
        categories = outlook_task.get('categories') or []

        return Task(
            id=outlook_task.get('id', ''),
            title=outlook_task.get('title', ''),
            description=extract_body_text(outlook_task),
            due_date=due_date,
            is_completed=outlook_task.get('status') == 'completed',
            priority=IMPORTANCE_TO_PRIORITY.get(importance, DEFAULT_TASK_PRIORITY),
            tags=[str(category) for category in categories],
            owner_id='',
            provider=self.provider,
        )
