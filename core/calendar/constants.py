# SPDX-License-Identifier: Apache-2.0
"""
Constants for CalendarHub.

Defines providers, fetch kinds and sync status to avoid hardcoded strings.
"""

from enum import Enum


class Provider(Enum):
    """External calendar providers; part of every entity's identity."""

    GOOGLE = "google"
    OUTLOOK = "outlook"
    APPLE = "apple"

    @classmethod
    def parse(cls, value) -> "Provider":
        """Parse a provider name case-insensitively."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if member.value == normalized:
                    return member
        raise ValueError(f"Unknown calendar provider: {value!r}")

    @classmethod
    def list(cls):
        """Return list of all provider values."""
        return [member.value for member in cls]

    def __str__(self) -> str:
        return self.value


class FetchKind:
    """Kinds of adapter fetch operations."""

    EVENTS = "events"
    TASKS = "tasks"
    CALENDARS = "calendars"


class SyncStatus:
    """Enumeration of synchronization statuses."""

    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"
