"""Google Calendar synchronization adapter."""

import logging
from datetime import datetime
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


logger = logging.getLogger('calendarhub.calendar_sync.google')


class GoogleCalendarAdapter(OAuthCalendarAdapter):
    """Google Calendar and Google Tasks synchronization adapter."""

    provider = Provider.GOOGLE

    # Google OAuth endpoints
    AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    REVOKE_URL = "https://oauth2.googleapis.com/revoke"
    API_BASE_URL = "https://www.googleapis.com/calendar/v3"
    TASKS_API_BASE_URL = "https://tasks.googleapis.com/tasks/v1"

    # OAuth scopes
    SCOPES = [
        "https://www.googleapis.com/auth/calendar.readonly",
        "https://www.googleapis.com/auth/tasks.readonly",
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
                revoke_url=self.REVOKE_URL,
            ),
            authorization_code_provider=authorization_code_provider,
            refresh_token=refresh_token,
            logger=logger,
            http_client=http_client,
            http_client_config=http_client_config,
        )
        self.logger.info("GoogleCalendarAdapter initialized")

    def build_authorization_params(
        self, state: str, code_challenge: str
    ) -> Dict[str, Any]:
        params = super().build_authorization_params(state, code_challenge)
        params.update({
            'access_type': 'offline',
            'prompt': 'consent',
        })
        return params

    async def _collect_pages(self, url: str, params: Dict[str, Any]) -> List[dict]:
        """Follow nextPageToken until the collection is exhausted."""
        items: List[dict] = []
        page_token = None

        while True:
            page_params = dict(params)
            if page_token:
                page_params['pageToken'] = page_token

            data = await self.get_json(url, params=page_params)
            items.extend(item for item in data.get('items', []) if isinstance(item, dict))

            page_token = data.get('nextPageToken')
            if not page_token:
                return items

    async def _fetch_events(self, start_utc: datetime, end_utc: datetime) -> List[CalendarEvent]:
        params = {
            'timeMin': format_rfc3339(start_utc),
            'timeMax': format_rfc3339(end_utc),
            'singleEvents': 'true',
            'orderBy': 'startTime',
            'maxResults': PROVIDER_PAGE_SIZE,
        }
        raw_events = await self._collect_pages(
            f"{self.api_base_url}/calendars/primary/events", params
        )
        return self._normalize_items(raw_events, self._convert_google_event)

    async def _fetch_tasks(self) -> List[Task]:
        lists = await self.get_json(f"{self.TASKS_API_BASE_URL}/users/@me/lists")
        task_lists = [item for item in lists.get('items', []) if isinstance(item, dict)]
        if not task_lists:
            return []

        # Only the default (first) list is synchronized
        list_id = task_lists[0].get('id')
        if not list_id:
            return []

        raw_tasks = await self._collect_pages(
            f"{self.TASKS_API_BASE_URL}/lists/{list_id}/tasks",
            {'maxResults': 100, 'showCompleted': 'true'},
        )
        return self._normalize_items(raw_tasks, self._convert_google_task)

    async def _fetch_shared_calendars(self) -> List[SharedCalendar]:
        raw = await self._collect_pages(f"{self.api_base_url}/users/me/calendarList", {})
        calendars = []
        for item in raw:
            calendar_id = item.get('id')
            if not calendar_id:
                continue
            calendars.append(SharedCalendar(
                id=calendar_id,
                name=item.get('summaryOverride') or item.get('summary') or calendar_id,
                owner_id=calendar_id if item.get('accessRole') == 'owner' else '',
                color=item.get('backgroundColor') or DEFAULT_EVENT_COLOR,
                is_shared=item.get('accessRole') != 'owner',
                provider=self.provider,
            ))
        return calendars

    def _convert_google_event(self, google_event: dict) -> Optional[CalendarEvent]:
        """
        Convert Google Calendar event to the unified model.

        Returns:
            CalendarEvent, or None for cancelled instances
        """
        status_value = google_event.get('status')
        if isinstance(status_value, str) and status_value.lower() == 'cancelled':
            return None

        start = google_event.get('start') or {}
        end = google_event.get('end') or {}

        if 'date' in start and 'dateTime' not in start:
            start_date = parse_iso_date(start.get('date'))
            if start_date is None:
                raise ValidationRejected("Invalid all-day start date")
            end_date = parse_iso_date(end.get('date')) or start_date
            is_all_day = True
            start_time = date_to_utc_midnight(start_date)
            end_time = date_to_utc_midnight(end_date)
        else:
            is_all_day = False
            start_time = parse_iso_datetime(
                start.get('dateTime'), resolve_timezone(start.get('timeZone'))
            )
            end_time = parse_iso_datetime(
                end.get('dateTime'), resolve_timezone(end.get('timeZone'))
            )

        attendees = [
            att['email']
            for att in google_event.get('attendees', [])
            if isinstance(att, dict) and att.get('email')
        ]

        recurrence = google_event.get('recurrence') or []
        organizer = google_event.get('organizer') or google_event.get('creator') or {}

        return CalendarEvent(
            id=google_event.get('id', ''),
            title=google_event.get('summary', ''),
            description=google_event.get('description') or '',
            location=google_event.get('location') or '',
            start_time=start_time,
            end_time=end_time,
            is_all_day=is_all_day,
            recurrence_rule=recurrence[0] if recurrence else '',
            attendees=attendees,
            owner_id=organizer.get('email', ''),
            color=DEFAULT_EVENT_COLOR,
            provider=self.provider,
        )

    def _convert_google_task(self, google_task: dict) -> Optional[Task]:
        """Google Tasks carries no priority; every task gets the default."""
        if google_task.get('deleted'):
            return None

        return Task(
            id=google_task.get('id', ''),
            title=google_task.get('title', ''),
            description=google_task.get('notes') or '',
            due_date=parse_iso_datetime(google_task.get('due')),
            due_is_all_day=True,  # Tasks API keeps only the date
            is_completed=google_task.get('status') == 'completed',
            priority=DEFAULT_TASK_PRIORITY,
            tags=[],
            owner_id='',
            provider=self.provider,
        )
