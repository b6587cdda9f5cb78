# SPDX-License-Identifier: Apache-2.0
#
# Copyright (c) 2024-2025 CalendarHub Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Data models for CalendarHub.

Unified event and task entities produced by provider adapters and owned by
the calendar manager.
"""

import copy
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Set, Tuple

from config.constants import DEFAULT_EVENT_COLOR, DEFAULT_TASK_PRIORITY
from core.calendar.constants import Provider
from utils.time_utils import (
    end_of_previous_day,
    now_utc,
    parse_iso_datetime,
    to_local_date,
)


logger = logging.getLogger('calendarhub.calendar.models')

IdentityKey = Tuple[str, Provider]


def _contains(value: Optional[str], keyword: str) -> bool:
    return bool(value) and keyword in value.lower()


@dataclass
class CalendarEvent:
    """Model for calendar events."""

    id: str = ""
    title: str = ""
    description: str = ""
    location: str = ""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    is_all_day: bool = False
    recurrence_rule: str = ""  # provider-native encoding, kept verbatim
    attendees: List[str] = field(default_factory=list)
    owner_id: str = ""
    color: str = DEFAULT_EVENT_COLOR
    provider: Provider = Provider.GOOGLE

    def is_valid(self) -> bool:
        """An event needs an id, a title and a start time."""
        return bool(self.id) and bool(self.title) and self.start_time is not None

    @property
    def key(self) -> IdentityKey:
        return (self.id, self.provider)

    def date_span(self) -> Tuple[date, date]:
        """
        Return the (start, end) calendar dates the event occupies.

        All-day values are read as stored; an end at a later midnight is
        exclusive and therefore belongs to the previous day. Timed values
        use the local date.
        """
        if self.is_all_day:
            start = self.start_time.date()
            if self.end_time is None:
                return start, start
            end = self.end_time.date()
            if self.end_time > self.start_time:
                end = max(start, end_of_previous_day(end))
            return start, end

        start = to_local_date(self.start_time)
        if self.end_time is None:
            return start, start
        return start, max(start, to_local_date(self.end_time))

    def overlaps(self, start_date: date, end_date: date) -> bool:
        """Whether the event's date span intersects [start_date, end_date]."""
        event_start, event_end = self.date_span()
        return event_start <= end_date and event_end >= start_date

    def matches_keyword(self, keyword: str, include_attendees: bool = True) -> bool:
        """Case-insensitive match over title, description, location and attendees."""
        if not keyword:
            return True
        keyword = keyword.lower()
        if (_contains(self.title, keyword) or _contains(self.description, keyword)
                or _contains(self.location, keyword)):
            return True
        if not include_attendees:
            return False
        return any(_contains(attendee, keyword) for attendee in self.attendees)

    def sort_key(self):
        return self.start_time

    def copy(self) -> 'CalendarEvent':
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a plain dictionary for persistence."""
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'location': self.location,
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'is_all_day': self.is_all_day,
            'recurrence_rule': self.recurrence_rule,
            'attendees': list(self.attendees),
            'owner_id': self.owner_id,
            'color': self.color,
            'provider': self.provider.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CalendarEvent':
        """Create instance from a persisted dictionary."""
        attendees = data.get('attendees') or []
        if isinstance(attendees, (set, tuple)):
            attendees = list(attendees)
        elif not isinstance(attendees, list):
            attendees = [attendees]

        return cls(
            id=data.get('id', ''),
            title=data.get('title', ''),
            description=data.get('description') or '',
            location=data.get('location') or '',
            start_time=parse_iso_datetime(data.get('start_time')),
            end_time=parse_iso_datetime(data.get('end_time')),
            is_all_day=bool(data.get('is_all_day', False)),
            recurrence_rule=data.get('recurrence_rule') or '',
            attendees=[str(item) for item in attendees],
            owner_id=data.get('owner_id') or '',
            color=data.get('color') or DEFAULT_EVENT_COLOR,
            provider=Provider.parse(data.get('provider', Provider.GOOGLE)),
        )


@dataclass
class Task:
    """Model for tasks (Google Tasks, Microsoft To Do, iCloud reminders)."""

    id: str = ""
    title: str = ""
    description: str = ""
    due_date: Optional[datetime] = None
    due_is_all_day: bool = False  # date-only due, stored as UTC midnight
    is_completed: bool = False
    priority: int = DEFAULT_TASK_PRIORITY  # 1 = highest
    tags: List[str] = field(default_factory=list)
    owner_id: str = ""
    provider: Provider = Provider.GOOGLE

    def is_valid(self) -> bool:
        return bool(self.id) and bool(self.title)

    @property
    def key(self) -> IdentityKey:
        return (self.id, self.provider)

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        """An incomplete task whose due date has passed."""
        if self.is_completed or self.due_date is None:
            return False
        return self.due_date < (now or now_utc())

    def due_day(self) -> Optional[date]:
        """
        Return the calendar date the task is due on.

        Date-only dues are read as stored; timed dues use the local date,
        the same way event spans do.
        """
        if self.due_date is None:
            return None
        if self.due_is_all_day:
            return self.due_date.date()
        return to_local_date(self.due_date)

    def is_due_on(self, day: date) -> bool:
        return self.due_date is not None and self.due_day() == day

    def matches_keyword(self, keyword: str) -> bool:
        """Case-insensitive match over title, description and tags."""
        if not keyword:
            return True
        keyword = keyword.lower()
        if _contains(self.title, keyword) or _contains(self.description, keyword):
            return True
        return any(_contains(tag, keyword) for tag in self.tags)

    def sort_key(self):
        """
        Incomplete before complete, then priority, then due date.

        Tasks without a due date sort after any dated task.
        """
        has_no_due = self.due_date is None
        due = self.due_date.timestamp() if self.due_date else 0.0
        return (self.is_completed, self.priority, has_no_due, due)

    def copy(self) -> 'Task':
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'due_date': self.due_date.isoformat() if self.due_date else None,
            'due_is_all_day': self.due_is_all_day,
            'is_completed': self.is_completed,
            'priority': self.priority,
            'tags': list(self.tags),
            'owner_id': self.owner_id,
            'provider': self.provider.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Task':
        priority = data.get('priority', DEFAULT_TASK_PRIORITY)
        if not isinstance(priority, int) or isinstance(priority, bool):
            logger.warning("Invalid priority %r for task %s", priority, data.get('id'))
            priority = DEFAULT_TASK_PRIORITY

        return cls(
            id=data.get('id', ''),
            title=data.get('title', ''),
            description=data.get('description') or '',
            due_date=parse_iso_datetime(data.get('due_date')),
            due_is_all_day=bool(data.get('due_is_all_day', False)),
            is_completed=bool(data.get('is_completed', False)),
            priority=priority,
            tags=[str(tag) for tag in data.get('tags') or []],
            owner_id=data.get('owner_id') or '',
            provider=Provider.parse(data.get('provider', Provider.GOOGLE)),
        )


@dataclass
class SearchCriteria:
    """Filter parameters for advanced search."""

    keyword: str = ""
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    providers: Set[Provider] = field(default_factory=set)
    owners: Set[str] = field(default_factory=set)
    include_completed: bool = False

    @property
    def has_date_range(self) -> bool:
        """The date filter applies only when both bounds are set."""
        return self.start_date is not None and self.end_date is not None

    def is_empty(self) -> bool:
        return (
            not self.keyword
            and self.start_date is None
            and self.end_date is None
            and not self.providers
            and not self.owners
            and not self.include_completed
        )

    def clear(self) -> None:
        self.keyword = ""
        self.start_date = None
        self.end_date = None
        self.providers = set()
        self.owners = set()
        self.include_completed = False


@dataclass
class SharedCalendar:
    """A calendar discovered on a provider account."""

    id: str = ""
    name: str = ""
    owner_id: str = ""
    color: str = DEFAULT_EVENT_COLOR
    is_shared: bool = False
    provider: Provider = Provider.GOOGLE
