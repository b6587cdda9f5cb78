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
"""Time utilities for CalendarHub."""

import logging
import os
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.relativedelta import relativedelta

logger = logging.getLogger("calendarhub.utils.time_utils")

LOCAL_TIMEZONE_ENV = "CALENDARHUB_LOCAL_TIMEZONE"


def now_utc() -> datetime:
    """Get current datetime with UTC timezone."""
    return datetime.now(timezone.utc)


def get_local_timezone() -> tzinfo:
    """
    Return the zone used for local calendar dates.

    ``CALENDARHUB_LOCAL_TIMEZONE`` (an IANA name) wins over the system zone.
    """
    name = os.environ.get(LOCAL_TIMEZONE_ENV, "").strip()
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone in %s: %s", LOCAL_TIMEZONE_ENV, name)

    local = datetime.now().astimezone().tzinfo
    return local if local is not None else timezone.utc


def resolve_timezone(name: Optional[str]) -> Optional[tzinfo]:
    """Look up an IANA zone name, returning None when it is unknown."""
    if not name:
        return None
    if name.upper() in ("UTC", "Z", "GMT"):
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.debug("Unknown timezone name: %s", name)
        return None


def to_utc(value: datetime, default_tz: Optional[tzinfo] = None) -> datetime:
    """
    Convert a datetime to aware UTC.

    Naive values are interpreted in ``default_tz`` (UTC when omitted).
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=default_tz or timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso_datetime(value: Any, default_tz: Optional[tzinfo] = None) -> Optional[datetime]:
    """
    Parse an ISO 8601 string into an aware UTC datetime.

    Accepts a 'Z' suffix and the seven-digit fractional seconds Microsoft
    Graph emits. Returns None for empty or unparseable input.
    """
    if isinstance(value, datetime):
        return to_utc(value, default_tz)
    if not value or not isinstance(value, str):
        return None

    text = value.strip().replace("Z", "+00:00")
    # fromisoformat handles at most six fractional digits
    if "." in text:
        head, _, tail = text.partition(".")
        digits = ""
        rest = ""
        for index, char in enumerate(tail):
            if not char.isdigit():
                rest = tail[index:]
                break
            digits += char
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest}" if digits else head + rest

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.warning("Failed to parse ISO string: %s", value)
        return None

    return to_utc(parsed, default_tz)


def parse_iso_date(value: Any) -> Optional[date]:
    """Parse a 'YYYY-MM-DD' string, returning None when invalid."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if not value or not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        logger.warning("Failed to parse ISO date: %s", value)
        return None


def date_to_utc_midnight(value: date) -> datetime:
    """Return UTC midnight of a calendar date (all-day storage form)."""
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)


def to_local_date(value: datetime, tz: Optional[tzinfo] = None) -> date:
    """Return the calendar date of ``value`` in the local zone."""
    return to_utc(value).astimezone(tz or get_local_timezone()).date()


def day_bounds_utc(
    start_date: date,
    end_date: date,
    tz: Optional[tzinfo] = None,
) -> Tuple[datetime, datetime]:
    """
    Expand a date range to [start 00:00:00, end 23:59:59] local, in UTC.

    Datetime arguments are reduced to their date first.
    """
    if isinstance(start_date, datetime):
        start_date = start_date.date()
    if isinstance(end_date, datetime):
        end_date = end_date.date()

    zone = tz or get_local_timezone()
    start = datetime.combine(start_date, time.min, tzinfo=zone)
    end = datetime.combine(end_date, time(23, 59, 59), tzinfo=zone)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def fetch_window(today: date, months: int) -> Tuple[date, date]:
    """Return [today - months, today + months] as calendar dates."""
    return today - relativedelta(months=months), today + relativedelta(months=months)


def format_rfc3339(value: datetime) -> str:
    """Format an aware datetime as RFC 3339 UTC with a 'Z' suffix."""
    return to_utc(value).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def format_caldav_timestamp(value: datetime) -> str:
    """Format a datetime as the compact UTC form CalDAV time-range filters use."""
    return to_utc(value).strftime("%Y%m%dT%H%M%SZ")


def local_today(tz: Optional[tzinfo] = None) -> date:
    """Return today's date in the local zone."""
    return now_utc().astimezone(tz or get_local_timezone()).date()


def end_of_previous_day(value: date) -> date:
    """Return the day before ``value``."""
    return value - timedelta(days=1)
