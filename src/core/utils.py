"""Core utility functions."""
from __future__ import annotations

import calendar
from datetime import date, datetime, timezone
from typing import Any, Optional, Tuple


def utcnow() -> datetime:
    """Get current UTC datetime with timezone info. Always use this instead of datetime.now()."""
    return datetime.now(timezone.utc)


def today() -> date:
    """Current calendar date in UTC."""
    return utcnow().date()


def ensure_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime is timezone-aware (UTC).

    SQLite stores datetimes without timezone info, so we need to make them
    aware before comparing with utcnow().

    Args:
        dt: A datetime that may or may not be timezone-aware.

    Returns:
        Timezone-aware datetime in UTC, or None if input was None.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        # Assume naive datetimes are UTC
        return dt.replace(tzinfo=timezone.utc)
    return dt


def parse_date(value: Any) -> Optional[date]:
    """
    Coerce a date-like value to a calendar date.

    Accepts date and datetime objects and ISO-8601 strings (date-only or
    full timestamps). Anything else, including blank strings, yields None.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return date.fromisoformat(text)
        except ValueError:
            parsed = parse_datetime(text)
            return parsed.date() if parsed else None
    return None


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Coerce a timestamp-like value to an aware datetime.

    Date-only strings are treated as midnight UTC. Returns None when the
    value cannot be read as a point in time.
    """
    if isinstance(value, datetime):
        return ensure_aware(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_aware(datetime.fromisoformat(text))
    except ValueError:
        return None


def month_bounds(day: date) -> Tuple[date, date]:
    """Return the first and last calendar day of the month containing ``day``."""
    last = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last)


def isoformat_or_none(value: Any) -> Optional[str]:
    """ISO string for a date/datetime, passing None through."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_aware(value).isoformat()
    return value.isoformat()
