"""Date handling for records whose date-like fields were stored inconsistently.

Legacy opportunities hold calendar instants either as native values or as
ISO-8601 strings. Every comparison in the engine goes through
:func:`parse_instant`, which returns an aware UTC-comparable ``datetime`` or
``None``.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any
from zoneinfo import ZoneInfo

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DAY = timedelta(days=1)

# Stand-in for "no close date" when computing days until close.
NO_CLOSE_DATE_DAYS = 999


def get_zone(name: str | None) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def parse_instant(value: Any, tz: tzinfo = timezone.utc) -> datetime | None:
    """Parse a native or string date value into an aware ``datetime``.

    Date-only values (``date`` objects or ``YYYY-MM-DD`` strings) resolve to
    midday in ``tz`` so that rendering them back as a date never shifts the day.
    Naive datetimes are taken to be UTC, which is how the store persists them.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time(12), tzinfo=tz)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    if _DATE_ONLY_RE.match(text):
        try:
            return datetime.combine(date.fromisoformat(text), time(12), tzinfo=tz)
        except ValueError:
            return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=timezone.utc)


def parse_calendar_date(value: Any, tz: tzinfo = timezone.utc) -> date | None:
    if isinstance(value, datetime):
        instant = parse_instant(value, tz)
        return instant.astimezone(tz).date() if instant is not None else None
    if isinstance(value, date):
        return value
    if isinstance(value, str) and _DATE_ONLY_RE.match(value.strip()):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            return None
    instant = parse_instant(value, tz)
    return instant.astimezone(tz).date() if instant is not None else None


def is_string_date(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def age_in_days(instant: datetime, now: datetime) -> int:
    """Whole days elapsed since ``instant``, rounded up."""
    return math.ceil((now - instant) / _DAY)


def days_until(instant: datetime, now: datetime) -> int:
    return math.ceil((instant - now) / _DAY)


def whole_days_since(instant: datetime, now: datetime) -> int:
    return math.floor((now - instant) / _DAY)


def local_day_start(now: datetime, tz: tzinfo) -> datetime:
    local = now.astimezone(tz)
    return datetime.combine(local.date(), time.min, tzinfo=tz)
