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
Persistence collaborator for the calendar manager.

The manager only depends on the ``CalendarRepository`` protocol; durable
implementations live outside this package. ``InMemoryCalendarRepository``
keeps serialized copies so identity round-trips exactly as a real store's
would.
"""

import logging
from typing import Dict, List, Protocol, Tuple, runtime_checkable

from core.calendar.constants import Provider
from core.calendar.models import CalendarEvent, Task

logger = logging.getLogger("calendarhub.storage.calendar_repository")


@runtime_checkable
class CalendarRepository(Protocol):
    """Load-all and save/delete-by-identity operations."""

    def load_events(self) -> List[CalendarEvent]:
        ...

    def load_tasks(self) -> List[Task]:
        ...

    def save_event(self, event: CalendarEvent) -> None:
        ...

    def save_task(self, task: Task) -> None:
        ...

    def delete_event(self, event_id: str, provider: Provider) -> None:
        ...

    def delete_task(self, task_id: str, provider: Provider) -> None:
        ...


class InMemoryCalendarRepository:
    """Reference repository backed by dictionaries of serialized entities."""

    def __init__(self):
        self._events: Dict[Tuple[str, str], dict] = {}
        self._tasks: Dict[Tuple[str, str], dict] = {}

    def load_events(self) -> List[CalendarEvent]:
        return [CalendarEvent.from_dict(data) for data in self._events.values()]

    def load_tasks(self) -> List[Task]:
        return [Task.from_dict(data) for data in self._tasks.values()]

    def save_event(self, event: CalendarEvent) -> None:
        self._events[(event.id, event.provider.value)] = event.to_dict()
        logger.debug("Saved event %s (%s)", event.id, event.provider.value)

    def save_task(self, task: Task) -> None:
        self._tasks[(task.id, task.provider.value)] = task.to_dict()
        logger.debug("Saved task %s (%s)", task.id, task.provider.value)

    def delete_event(self, event_id: str, provider: Provider) -> None:
        self._events.pop((event_id, provider.value), None)

    def delete_task(self, task_id: str, provider: Provider) -> None:
        self._tasks.pop((task_id, provider.value), None)

    @property
    def event_count(self) -> int:
        return len(self._events)

    @property
    def task_count(self) -> int:
        return len(self._tasks)
