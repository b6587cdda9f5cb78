# SPDX-License-Identifier: Apache-2.0
"""
Exceptions for CalendarHub.

Defines specific exceptions for calendar operations and synchronization.
Adapters never let these escape a fetch; they are converted to the
``error_occurred`` reason string instead.
"""

from typing import List, Optional


class CalendarError(Exception):
    """Base exception for calendar operations."""

    @property
    def reason(self) -> str:
        return str(self)


class NotAuthenticatedError(CalendarError):
    """Raised when a fetch is attempted before authentication."""

    def __init__(self, provider: str = ""):
        label = f"{provider}: " if provider else ""
        super().__init__(f"{label}not authenticated")
        self.provider = provider


class AuthenticationFailedError(CalendarError):
    """Raised when the credential flow ends in failure."""

    def __init__(self, reason: str):
        super().__init__(reason)


class TransportError(CalendarError):
    """Raised when a provider request fails at the network or HTTP level."""

    def __init__(self, reason: str, status_code: Optional[int] = None):
        super().__init__(reason)
        self.status_code = status_code


class ValidationRejected(CalendarError):
    """Raised internally when a provider item cannot be normalized."""

    pass


class DuplicateIdentityError(CalendarError):
    """Raised internally when an entity with the same identity already exists."""

    def __init__(self, entity_id: str, provider: str):
        super().__init__(f"Duplicate identity: ({entity_id}, {provider})")
        self.entity_id = entity_id
        self.provider = provider


class SyncError(CalendarError):
    """Raised when synchronization with external providers fails."""

    def __init__(self, message: str, failed_providers: Optional[List[str]] = None):
        super().__init__(message)
        self.failed_providers = failed_providers or []
