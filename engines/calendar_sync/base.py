"""
Base class for external calendar synchronization adapters.

Defines the interface that all calendar sync adapters must implement and
the shared fetch wrapper that turns every call into exactly one terminal
signal.
"""

import asyncio
import base64
import hashlib
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set
from urllib.parse import urlencode

import httpx

from config.constants import (
    DEFAULT_TASK_PRIORITY,
    MAX_TASK_PRIORITY,
    MIN_TASK_PRIORITY,
)
from core.calendar.constants import FetchKind, Provider
from core.calendar.exceptions import (
    AuthenticationFailedError,
    CalendarError,
    NotAuthenticatedError,
    TransportError,
    ValidationRejected,
)
from core.calendar.models import SharedCalendar
from core.calendar.signals import Signal
from utils.http_client import AsyncRetryableHttpClient
from utils.time_utils import day_bounds_utc, now_utc


AuthorizationCodeProvider = Callable[[str], Awaitable[Optional[str]]]


@dataclass(frozen=True)
class FetchResult:
    """Terminal outcome of one adapter fetch call."""

    provider: Provider
    kind: str
    items: List[Any] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def clamp_priority(value: int) -> int:
    """Clamp a priority into the 1 (highest) to 5 range."""
    return max(MIN_TASK_PRIORITY, min(MAX_TASK_PRIORITY, value))


def ical_priority_to_task_priority(value: Any) -> int:
    """
    Compress the iCalendar 0-9 PRIORITY scale into 1-5.

    0 means undefined and maps to the default. Otherwise (p + 1) // 2,
    so 1-2 -> 1, 3-4 -> 2, 5-6 -> 3, 7-8 -> 4, 9 -> 5.
    """
    try:
        native = int(value)
    except (TypeError, ValueError):
        return DEFAULT_TASK_PRIORITY
    if native <= 0:
        return DEFAULT_TASK_PRIORITY
    return clamp_priority((native + 1) // 2)


def describe_http_error(error: httpx.HTTPError) -> TransportError:
    """Translate an httpx error into a TransportError with a readable reason."""
    if isinstance(error, httpx.HTTPStatusError):
        response = error.response
        reason = f"HTTP {response.status_code}"
        if response.reason_phrase:
            reason = f"{reason} {response.reason_phrase}"
        return TransportError(reason, status_code=response.status_code)
    detail = str(error) or type(error).__name__
    return TransportError(f"Network error: {detail}")


class CalendarSyncAdapter(ABC):
    """
    Abstract base class for calendar synchronization adapters.

    All external calendar sync implementations (Google, Outlook, Apple)
    must inherit from this class and implement the ``_fetch_*`` and
    ``_authenticate`` hooks. The public methods own the signal contract:

    - ``authenticate`` ends in exactly one of ``authenticated`` or
      ``authentication_failed(reason)``.
    - ``fetch_events`` and ``fetch_tasks`` return an ``asyncio.Task`` whose
      result is a ``FetchResult`` and emit exactly one of
      ``events_received``/``tasks_received`` or ``error_occurred(reason)``.
    """

    provider: Provider

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        http_client: Optional[AsyncRetryableHttpClient] = None,
        http_client_config: Optional[Dict[str, Any]] = None,
    ):
        if http_client and http_client_config:
            raise ValueError("Provide either http_client or http_client_config, not both")

        self.logger = logger or logging.getLogger(
            f"calendarhub.calendar_sync.{self.get_name()}"
        )

        http_client_config = http_client_config or {}
        self._owns_http_client = http_client is None
        self.http_client = http_client or AsyncRetryableHttpClient(**http_client_config)

        self._authenticated = False
        self._background_tasks: Set[asyncio.Task] = set()

        self.authenticated = Signal(name=f"{self.get_name()}.authenticated")
        self.authentication_failed = Signal(str, name=f"{self.get_name()}.authentication_failed")
        self.auth_state_changed = Signal(bool, name=f"{self.get_name()}.auth_state_changed")
        self.events_received = Signal(list, name=f"{self.get_name()}.events_received")
        self.tasks_received = Signal(list, name=f"{self.get_name()}.tasks_received")
        self.error_occurred = Signal(str, name=f"{self.get_name()}.error_occurred")
        self.calendars_received = Signal(list, name=f"{self.get_name()}.calendars_received")

    def get_name(self) -> str:
        """
        Get the name of the calendar provider.

        Returns:
            Provider name (e.g., 'google', 'outlook')
        """
        return self.provider.value

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def is_authenticated(self) -> bool:
        """Return the cached authentication state. Never performs I/O."""
        return self._authenticated

    async def authenticate(self) -> bool:
        """
        Run the provider credential flow.

        Returns:
            True if the adapter ends up authenticated
        """
        if self._authenticated:
            self.logger.debug("Already authenticated; re-emitting authenticated")
            self.authenticated.emit()
            return True

        try:
            await self._authenticate()
        except httpx.HTTPError as exc:
            reason = describe_http_error(exc).reason
            return self._fail_authentication(reason)
        except CalendarError as exc:
            return self._fail_authentication(exc.reason)
        except Exception as exc:
            self.logger.exception("Unexpected authentication failure")
            return self._fail_authentication(f"Unexpected error: {exc}")

        self._set_authenticated(True)
        self.logger.info("Authenticated with %s", self.get_name())
        self.authenticated.emit()
        return True

    def logout(self) -> None:
        """Clear credentials and cached state. Safe when not authenticated."""
        self._clear_credentials()
        self._set_authenticated(False)

    def _fail_authentication(self, reason: str) -> bool:
        self.logger.error("Authentication failed for %s: %s", self.get_name(), reason)
        self._clear_credentials()
        self._set_authenticated(False)
        self.authentication_failed.emit(reason)
        return False

    def _set_authenticated(self, value: bool) -> None:
        if self._authenticated == value:
            return
        self._authenticated = value
        self.auth_state_changed.emit(value)

    @abstractmethod
    async def _authenticate(self) -> None:
        """
        Provider credential flow.

        Raises:
            AuthenticationFailedError: If the provider rejects the credentials
            httpx.HTTPError: On transport failures
        """

    @abstractmethod
    def _clear_credentials(self) -> None:
        """Drop cached tokens or passwords."""

    # ------------------------------------------------------------------
    # Fetch operations
    # ------------------------------------------------------------------

    def fetch_events(self, start_date: date, end_date: date) -> "asyncio.Task[FetchResult]":
        """
        Fetch events overlapping [start_date, end_date] (local dates).

        Must be called with a running event loop.
        """
        start_utc, end_utc = day_bounds_utc(start_date, end_date)
        return self._schedule(
            self._run_fetch(FetchKind.EVENTS, lambda: self._fetch_events(start_utc, end_utc))
        )

    def fetch_tasks(self) -> "asyncio.Task[FetchResult]":
        """Fetch tasks. Nested list lookups complete before the single terminal signal."""
        return self._schedule(self._run_fetch(FetchKind.TASKS, self._fetch_tasks))

    def fetch_shared_calendars(self) -> "asyncio.Task[List[SharedCalendar]]":
        """Best-effort calendar discovery. Never reports on ``error_occurred``."""
        return self._schedule(self._run_calendar_discovery())

    def _schedule(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def _run_fetch(
        self,
        kind: str,
        operation: Callable[[], Awaitable[List[Any]]],
    ) -> FetchResult:
        if not self._authenticated:
            return self._report_error(kind, NotAuthenticatedError(self.get_name()).reason)

        try:
            items = await operation()
        except httpx.HTTPError as exc:
            return self._report_error(kind, describe_http_error(exc).reason)
        except CalendarError as exc:
            return self._report_error(kind, exc.reason)
        except Exception as exc:
            self.logger.exception("Unexpected error while fetching %s", kind)
            return self._report_error(kind, f"Unexpected error: {exc}")

        self.logger.info("Fetched %s %s from %s", len(items), kind, self.get_name())
        if kind == FetchKind.EVENTS:
            self.events_received.emit(list(items))
        else:
            self.tasks_received.emit(list(items))
        return FetchResult(self.provider, kind, list(items))

    def _report_error(self, kind: str, reason: str) -> FetchResult:
        self.logger.error("Failed to fetch %s from %s: %s", kind, self.get_name(), reason)
        self.error_occurred.emit(reason)
        return FetchResult(self.provider, kind, [], reason)

    async def _run_calendar_discovery(self) -> List[SharedCalendar]:
        if not self._authenticated:
            self.logger.warning("Skipping calendar discovery: not authenticated")
            return []
        try:
            calendars = await self._fetch_shared_calendars()
        except Exception as exc:
            self.logger.warning("Calendar discovery failed for %s: %s", self.get_name(), exc)
            return []
        self.calendars_received.emit(list(calendars))
        return list(calendars)

    @abstractmethod
    async def _fetch_events(self, start_utc: datetime, end_utc: datetime) -> List[Any]:
        """Return normalized CalendarEvent objects in the UTC window."""

    @abstractmethod
    async def _fetch_tasks(self) -> List[Any]:
        """Return normalized Task objects."""

    async def _fetch_shared_calendars(self) -> List[SharedCalendar]:
        return []

    def _normalize_items(self, raw_items: Iterable[Any], converter: Callable[[Any], Any]) -> List[Any]:
        """
        Convert provider items, silently dropping those that fail validation.
        """
        results = []
        for raw in raw_items:
            try:
                item = converter(raw)
            except (ValidationRejected, KeyError, TypeError, ValueError, AttributeError) as exc:
                self.logger.debug("Dropping unparseable %s item: %s", self.get_name(), exc)
                continue
            if item is None or not item.is_valid():
                self.logger.debug("Dropping invalid %s item", self.get_name())
                continue
            results.append(item)
        return results

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance owns it."""
        if self._owns_http_client and self.http_client:
            await self.http_client.close()

    @staticmethod
    def _generate_state_and_pkce() -> Dict[str, str]:
        """Generate OAuth state and PKCE parameters."""

        state = secrets.token_urlsafe(16)
        code_verifier = secrets.token_urlsafe(64)

        while len(code_verifier) < 43:
            code_verifier += secrets.token_urlsafe(32)

        code_verifier = code_verifier[:128]

        code_challenge_bytes = hashlib.sha256(code_verifier.encode('ascii')).digest()
        code_challenge = base64.urlsafe_b64encode(code_challenge_bytes).decode('ascii').rstrip('=')

        return {
            'state': state,
            'code_verifier': code_verifier,
            'code_challenge': code_challenge,
        }


@dataclass(frozen=True)
class OAuthEndpoints:
    """OAuth 2.0 endpoint bundle for calendar providers."""

    auth_url: str
    token_url: str
    api_base_url: str
    revoke_url: Optional[str] = None


class OAuthCalendarAdapter(CalendarSyncAdapter):
    """Calendar adapter base that provides OAuth + HTTP helpers."""

    # Refresh slightly before the provider's stated expiry
    TOKEN_EXPIRY_MARGIN = timedelta(seconds=60)

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        scopes: List[str],
        endpoints: OAuthEndpoints,
        authorization_code_provider: Optional[AuthorizationCodeProvider] = None,
        refresh_token: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
        http_client: Optional[AsyncRetryableHttpClient] = None,
        http_client_config: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            logger=logger,
            http_client=http_client,
            http_client_config=http_client_config,
        )
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes
        self.endpoints = endpoints
        self.authorization_code_provider = authorization_code_provider

        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = refresh_token
        self.expires_at: Optional[datetime] = None
        self.token_type: Optional[str] = None

    @property
    def api_base_url(self) -> str:
        return self.endpoints.api_base_url

    def build_authorization_params(
        self, state: str, code_challenge: str
    ) -> Dict[str, Any]:
        """Base authorization parameters; subclasses may extend."""

        return {
            'client_id': self.client_id,
            'redirect_uri': self.redirect_uri,
            'response_type': 'code',
            'scope': ' '.join(self.scopes),
            'state': state,
            'code_challenge': code_challenge,
            'code_challenge_method': 'S256',
        }

    def get_authorization_url(self) -> Dict[str, str]:
        oauth_params = self._generate_state_and_pkce()
        params = self.build_authorization_params(
            oauth_params['state'], oauth_params['code_challenge']
        )

        query_string = urlencode(params, doseq=True)
        auth_url = f"{self.endpoints.auth_url}?{query_string}"

        self.logger.info("Generated authorization URL for %s", self.get_name())

        return {
            'authorization_url': auth_url,
            'state': oauth_params['state'],
            'code_verifier': oauth_params['code_verifier'],
        }

    async def _authenticate(self) -> None:
        if not self.client_id:
            raise AuthenticationFailedError("OAuth not configured. Please set credentials first.")

        if self.refresh_token:
            try:
                await self.refresh_access_token()
                return
            except (httpx.HTTPError, KeyError, ValueError) as exc:
                self.logger.warning(
                    "Stored refresh token rejected, falling back to authorization: %s", exc
                )
                self.refresh_token = None

        if self.authorization_code_provider is None:
            raise AuthenticationFailedError("No authorization code provider configured")

        auth = self.get_authorization_url()
        code = await self.authorization_code_provider(auth['authorization_url'])
        if not code:
            raise AuthenticationFailedError("Authorization was cancelled")

        await self.exchange_code_for_token(code, code_verifier=auth['code_verifier'])

    async def exchange_code_for_token(
        self, code: str, code_verifier: Optional[str] = None
    ) -> dict:
        data = {
            'code': code,
            'client_id': self.client_id,
            'client_secret': self.client_secret,
            'redirect_uri': self.redirect_uri,
            'grant_type': 'authorization_code',
        }
        if code_verifier:
            data['code_verifier'] = code_verifier

        try:
            token_data = await self._token_request(data)
            self.logger.info("Successfully exchanged authorization code")
            return self._apply_token_response(token_data)
        except Exception as exc:
            self.logger.error("Failed to exchange code for token: %s", exc)
            raise

    async def refresh_access_token(self) -> dict:
        if not self.refresh_token:
            raise ValueError("No refresh token available")

        data = {
            'refresh_token': self.refresh_token,
            'client_id': self.client_id,
            'client_secret': self.client_secret,
            'grant_type': 'refresh_token',
        }

        try:
            token_data = await self._token_request(data)
            self.logger.info("Successfully refreshed access token")
            return self._apply_token_response(token_data)
        except Exception as exc:
            self.logger.error("Failed to refresh token: %s", exc)
            raise

    async def api_request(
        self, method: str, url: str, *, headers: Optional[Dict[str, str]] = None, **kwargs
    ) -> httpx.Response:
        if not self.access_token:
            raise NotAuthenticatedError(self.get_name())

        if self._token_expired() and self.refresh_token:
            try:
                await self.refresh_access_token()
            except (KeyError, ValueError) as exc:
                raise AuthenticationFailedError(f"Token refresh failed: {exc}") from exc

        token_type = self.token_type or 'Bearer'
        auth_headers = {'Authorization': f'{token_type} {self.access_token}'}
        if headers:
            auth_headers.update(headers)

        return await self.http_client.request(method, url, headers=auth_headers, **kwargs)

    async def get_json(self, url: str, **kwargs) -> Dict[str, Any]:
        response = await self.api_request('GET', url, **kwargs)
        try:
            payload = response.json()
        except ValueError as exc:
            raise TransportError(f"Invalid JSON from {self.get_name()}: {exc}") from exc
        if not isinstance(payload, dict):
            raise TransportError(f"Unexpected response shape from {self.get_name()}")
        return payload

    def logout(self) -> None:
        """Clear tokens now; revoke remotely in the background when possible."""
        token = self.access_token
        super().logout()

        if token and self.endpoints.revoke_url:
            try:
                self._schedule(self._revoke_token(token))
            except RuntimeError:
                self.logger.info("No running event loop; skipping remote token revocation")

    async def revoke_access(self) -> None:
        """Revoke the current token remotely, then clear local state."""
        token = self.access_token
        if not token:
            self.logger.warning("No access token to revoke")
            return
        try:
            await self._revoke_token(token)
        finally:
            super().logout()

    async def _revoke_token(self, token: str) -> None:
        if not self.endpoints.revoke_url:
            self.logger.info("No revoke endpoint defined; clearing local tokens only")
            return
        try:
            request_kwargs = self.build_revoke_request(token)
            await self.http_client.post(self.endpoints.revoke_url, **request_kwargs)
            self.logger.info("Successfully revoked access")
        except httpx.HTTPError as exc:
            self.logger.error("Failed to revoke access: %s", exc)

    def build_revoke_request(self, token: str) -> Dict[str, Any]:
        return {'params': {'token': token}}

    def get_credentials(self) -> Dict[str, Any]:
        """Tokens worth persisting between runs."""
        return {
            'refresh_token': self.refresh_token,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
        }

    async def _token_request(self, data: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.http_client.post(self.endpoints.token_url, data=data)
        return response.json()

    def _apply_token_response(self, token_data: Dict[str, Any]) -> Dict[str, Any]:
        self.access_token = token_data['access_token']

        refresh_token = token_data.get('refresh_token')
        if refresh_token:
            self.refresh_token = refresh_token

        raw_token_type = token_data.get('token_type')
        self.token_type = self._normalize_token_type(raw_token_type)

        raw_expires_in = token_data.get('expires_in')
        expires_in = raw_expires_in if raw_expires_in is not None else 3600
        self.expires_at = now_utc() + timedelta(seconds=int(expires_in))

        return {
            'access_token': self.access_token,
            'refresh_token': self.refresh_token,
            'expires_in': expires_in,
            'expires_at': self.expires_at.isoformat(),
            'token_type': self.token_type,
        }

    def _token_expired(self) -> bool:
        if self.expires_at is None:
            return False
        return now_utc() >= self.expires_at - self.TOKEN_EXPIRY_MARGIN

    def _normalize_token_type(self, token_type: Optional[str]) -> str:
        if not token_type:
            return 'Bearer'
        normalized = token_type.strip()
        if normalized.lower() == 'bearer':
            return 'Bearer'
        return normalized

    def _clear_credentials(self) -> None:
        self.access_token = None
        self.refresh_token = None
        self.expires_at = None
        self.token_type = None


__all__ = [
    'AuthorizationCodeProvider',
    'CalendarSyncAdapter',
    'FetchResult',
    'OAuthCalendarAdapter',
    'OAuthEndpoints',
    'clamp_priority',
    'describe_http_error',
    'ical_priority_to_task_priority',
]
