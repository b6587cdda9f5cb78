"""Apple iCloud Calendar synchronization adapter (CalDAV)."""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import httpx
from icalendar import Calendar

from config.constants import DEFAULT_EVENT_COLOR
from core.calendar.constants import Provider
from core.calendar.exceptions import AuthenticationFailedError, TransportError, ValidationRejected
from core.calendar.models import CalendarEvent, SharedCalendar, Task
from engines.calendar_sync.base import CalendarSyncAdapter, ical_priority_to_task_priority
from utils.http_client import AsyncRetryableHttpClient
from utils.time_utils import (
    date_to_utc_midnight,
    format_caldav_timestamp,
    resolve_timezone,
    to_utc,
)


logger = logging.getLogger('calendarhub.calendar_sync.apple')

NAMESPACES = {
    'D': 'DAV:',
    'C': 'urn:ietf:params:xml:ns:caldav',
    'CS': 'http://calendarserver.org/ns/',
    'A': 'http://apple.com/ns/ical/',
}

PRINCIPAL_PROPFIND = """<?xml version="1.0" encoding="utf-8"?>
<D:propfind xmlns:D="DAV:">
  <D:prop>
    <D:current-user-principal/>
  </D:prop>
</D:propfind>"""

HOME_SET_PROPFIND = """<?xml version="1.0" encoding="utf-8"?>
<D:propfind xmlns:D="DAV:" xmlns:C="urn:ietf:params:xml:ns:caldav">
  <D:prop>
    <C:calendar-home-set/>
  </D:prop>
</D:propfind>"""

CALENDARS_PROPFIND = """<?xml version="1.0" encoding="utf-8"?>
<D:propfind xmlns:D="DAV:" xmlns:C="urn:ietf:params:xml:ns:caldav" xmlns:CS="http://calendarserver.org/ns/" xmlns:A="http://apple.com/ns/ical/">
  <D:prop>
    <D:resourcetype/>
    <D:displayname/>
    <D:owner/>
    <CS:getctag/>
    <A:calendar-color/>
    <C:supported-calendar-component-set/>
  </D:prop>
</D:propfind>"""

EVENTS_REPORT = """<?xml version="1.0" encoding="utf-8"?>
<C:calendar-query xmlns:D="DAV:" xmlns:C="urn:ietf:params:xml:ns:caldav">
  <D:prop>
    <D:getetag/>
    <C:calendar-data/>
  </D:prop>
  <C:filter>
    <C:comp-filter name="VCALENDAR">
      <C:comp-filter name="VEVENT">
        <C:time-range start="{start}" end="{end}"/>
      </C:comp-filter>
    </C:comp-filter>
  </C:filter>
</C:calendar-query>"""

TASKS_REPORT = """<?xml version="1.0" encoding="utf-8"?>
<C:calendar-query xmlns:D="DAV:" xmlns:C="urn:ietf:params:xml:ns:caldav">
  <D:prop>
    <D:getetag/>
    <C:calendar-data/>
  </D:prop>
  <C:filter>
    <C:comp-filter name="VCALENDAR">
      <C:comp-filter name="VTODO"/>
    </C:comp-filter>
  </C:filter>
</C:calendar-query>"""


@dataclass
class CalDAVCollection:
    """A calendar collection found under the calendar home."""

    url: str
    name: str
    color: str
    owner: str
    components: List[str]


def _parse_multistatus(payload: bytes) -> List[ET.Element]:
    try:
        root = ET.fromstring(payload)
    except ET.ParseError as exc:
        raise TransportError(f"Invalid CalDAV response: {exc}") from exc
    return root.findall('D:response', NAMESPACES)


def _find_href(response: ET.Element, path: str) -> Optional[str]:
    node = response.find(path, NAMESPACES)
    if node is None or not (node.text or '').strip():
        return None
    return node.text.strip()


def _ical_text(component, name: str) -> str:
    value = component.get(name)
    return str(value).strip() if value is not None else ''


def _ical_datetime(component, name: str):
    """
    Return (datetime in UTC, is_date_only) for a DTSTART/DTEND/DUE property.
    """
    prop = component.get(name)
    if prop is None:
        return None, False

    value = prop.dt
    if isinstance(value, date) and not isinstance(value, datetime):
        return date_to_utc_midnight(value), True

    if value.tzinfo is None:
        tzid = prop.params.get('TZID') if hasattr(prop, 'params') else None
        return to_utc(value, resolve_timezone(tzid)), False
    return to_utc(value), False


def _ical_categories(component) -> List[str]:
    raw = component.get('CATEGORIES')
    if raw is None:
        return []
    entries = raw if isinstance(raw, list) else [raw]
    tags: List[str] = []
    for entry in entries:
        cats = getattr(entry, 'cats', None)
        if cats is not None:
            tags.extend(str(cat) for cat in cats)
        else:
            tags.extend(part.strip() for part in str(entry).split(',') if part.strip())
    return tags


class AppleCalendarAdapter(CalendarSyncAdapter):
    """
    iCloud adapter authenticating with an Apple ID and app-specific password.

    Discovery walks current-user-principal -> calendar-home-set -> calendar
    collections; events and reminders are fetched by REPORT per collection.
    """

    provider = Provider.APPLE

    CALDAV_BASE_URL = "https://caldav.icloud.com/"

    def __init__(
        self,
        user_id: str,
        app_password: str,
        base_url: str = CALDAV_BASE_URL,
        http_client: Optional[AsyncRetryableHttpClient] = None,
        http_client_config: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            logger=logger,
            http_client=http_client,
            http_client_config=http_client_config,
        )
        self.user_id = user_id
        self.app_password = app_password
        self.base_url = base_url
        self.calendar_home: Optional[str] = None
        self.principal_url: Optional[str] = None
        self._collections: Optional[List[CalDAVCollection]] = None
        self.logger.info("AppleCalendarAdapter initialized")

    def _auth(self) -> httpx.BasicAuth:
        return httpx.BasicAuth(self.user_id, self.app_password)

    async def _dav_request(self, method: str, url: str, body: str, depth: str) -> bytes:
        response = await self.http_client.request(
            method,
            url,
            content=body.encode('utf-8'),
            headers={
                'Content-Type': 'application/xml; charset=utf-8',
                'Depth': depth,
            },
            auth=self._auth(),
        )
        return response.content

    async def _authenticate(self) -> None:
        if not self.user_id or not self.app_password:
            raise AuthenticationFailedError("Please set credentials first.")

        try:
            self.calendar_home = await self._discover_calendar_home()
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code in (401, 403):
                raise AuthenticationFailedError("Invalid credentials") from exc
            raise
        self._collections = None

    async def _discover_calendar_home(self) -> str:
        responses = _parse_multistatus(
            await self._dav_request('PROPFIND', self.base_url, PRINCIPAL_PROPFIND, '0')
        )
        principal = None
        for response in responses:
            principal = _find_href(
                response, 'D:propstat/D:prop/D:current-user-principal/D:href'
            )
            if principal:
                break
        principal_url = urljoin(self.base_url, principal) if principal else self.base_url
        self.principal_url = principal_url

        responses = _parse_multistatus(
            await self._dav_request('PROPFIND', principal_url, HOME_SET_PROPFIND, '0')
        )
        for response in responses:
            home = _find_href(response, 'D:propstat/D:prop/C:calendar-home-set/D:href')
            if home:
                self.logger.debug("Discovered calendar home: %s", home)
                return urljoin(principal_url, home)

        raise AuthenticationFailedError("Calendar home not found")

    async def _list_collections(self) -> List[CalDAVCollection]:
        if self._collections is not None:
            return self._collections

        home = self.calendar_home or self.base_url
        collections = []
        for response in _parse_multistatus(
            await self._dav_request('PROPFIND', home, CALENDARS_PROPFIND, '1')
        ):
            href = _find_href(response, 'D:href')
            prop = response.find('D:propstat/D:prop', NAMESPACES)
            if not href or prop is None:
                continue
            if prop.find('D:resourcetype/C:calendar', NAMESPACES) is None:
                continue

            components = [
                comp.get('name', '').upper()
                for comp in prop.findall('C:supported-calendar-component-set/C:comp', NAMESPACES)
            ] or ['VEVENT', 'VTODO']
            color = (prop.findtext('A:calendar-color', default='', namespaces=NAMESPACES) or '').strip()
            collections.append(CalDAVCollection(
                url=urljoin(home, href),
                name=(prop.findtext('D:displayname', default='', namespaces=NAMESPACES) or '').strip(),
                # iCloud colors carry an alpha suffix (#RRGGBBAA)
                color=color[:7] if color else DEFAULT_EVENT_COLOR,
                owner=(_find_href(prop, 'D:owner/D:href') or ''),
                components=components,
            ))

        self._collections = collections
        return collections

    async def _report(self, component: str, body: str) -> List[Any]:
        parsed = []
        for collection in await self._list_collections():
            if component not in collection.components:
                continue
            for response in _parse_multistatus(
                await self._dav_request('REPORT', collection.url, body, '1')
            ):
                data = response.findtext(
                    'D:propstat/D:prop/C:calendar-data', default='', namespaces=NAMESPACES
                )
                if not data or not data.strip():
                    continue
                try:
                    parsed.append((collection, Calendar.from_ical(data)))
                except ValueError as exc:
                    self.logger.debug("Skipping unparseable calendar data: %s", exc)
        return parsed

    async def _fetch_events(self, start_utc: datetime, end_utc: datetime) -> List[CalendarEvent]:
        body = EVENTS_REPORT.format(
            start=format_caldav_timestamp(start_utc),
            end=format_caldav_timestamp(end_utc),
        )
        reports = [
            (collection, list(calendar.walk('VEVENT')))
            for collection, calendar in await self._report('VEVENT', body)
        ]
        masters = {
            _ical_text(item, 'UID')
            for _, components in reports
            for item in components
            if item.get('RECURRENCE-ID') is None
        }

        events = []
        for collection, components in reports:
            # Edited instances share the master's UID; the series is the master
            components = [
                item for item in components
                if item.get('RECURRENCE-ID') is None or _ical_text(item, 'UID') not in masters
            ]
            events.extend(self._normalize_items(
                components, lambda item, c=collection: self._convert_vevent(item, c)
            ))
        return events

    async def _fetch_tasks(self) -> List[Task]:
        tasks = []
        for collection, calendar in await self._report('VTODO', TASKS_REPORT):
            tasks.extend(self._normalize_items(
                list(calendar.walk('VTODO')),
                lambda item, c=collection: self._convert_vtodo(item, c),
            ))
        return tasks

    async def _fetch_shared_calendars(self) -> List[SharedCalendar]:
        self._collections = None
        return [
            SharedCalendar(
                id=collection.url,
                name=collection.name or collection.url,
                owner_id=collection.owner,
                color=collection.color,
                is_shared=self._is_foreign_owner(collection.owner),
                provider=self.provider,
            )
            for collection in await self._list_collections()
        ]

    def _is_foreign_owner(self, owner: str) -> bool:
        if not owner or not self.principal_url:
            return False
        return urljoin(self.base_url, owner).rstrip('/') != self.principal_url.rstrip('/')

    def _convert_vevent(self, component, collection: CalDAVCollection) -> CalendarEvent:
        start_time, start_is_date = _ical_datetime(component, 'DTSTART')
        if start_time is None:
            raise ValidationRejected("VEVENT without DTSTART")
        end_time, _ = _ical_datetime(component, 'DTEND')
        if end_time is None:
            duration = component.get('DURATION')
            if duration is not None:
                end_time = start_time + duration.dt
            else:
                end_time = start_time + timedelta(days=1) if start_is_date else start_time

        attendees = component.get('ATTENDEE') or []
        if not isinstance(attendees, list):
            attendees = [attendees]

        organizer = _ical_text(component, 'ORGANIZER')

        return CalendarEvent(
            id=_ical_text(component, 'UID'),
            title=_ical_text(component, 'SUMMARY'),
            description=_ical_text(component, 'DESCRIPTION'),
            location=_ical_text(component, 'LOCATION'),
            start_time=start_time,
            end_time=end_time,
            is_all_day=start_is_date,
            recurrence_rule=self._rrule_text(component),
            attendees=[self._strip_mailto(str(attendee)) for attendee in attendees],
            owner_id=self._strip_mailto(organizer),
            color=collection.color,
            provider=self.provider,
        )

    def _convert_vtodo(self, component, collection: CalDAVCollection) -> Task:
        due_date, due_is_date = _ical_datetime(component, 'DUE')
        status = _ical_text(component, 'STATUS').upper()

        return Task(
            id=_ical_text(component, 'UID'),
            title=_ical_text(component, 'SUMMARY'),
            description=_ical_text(component, 'DESCRIPTION'),
            due_date=due_date,
            due_is_all_day=due_is_date,
            is_completed=status == 'COMPLETED' or component.get('COMPLETED') is not None,
            priority=ical_priority_to_task_priority(component.get('PRIORITY')),
            tags=_ical_categories(component),
            owner_id=collection.owner,
            provider=self.provider,
        )

    @staticmethod
    def _rrule_text(component) -> str:
        """Keep RRULE in its native iCalendar text form."""
        rrule = component.get('RRULE')
        if rrule is None:
            return ''
        return rrule.to_ical().decode('utf-8')

    @staticmethod
    def _strip_mailto(value: str) -> str:
        value = value.strip()
        if value.lower().startswith('mailto:'):
            return value[len('mailto:'):]
        return value

    def _clear_credentials(self) -> None:
        self.calendar_home = None
        self._collections = None
