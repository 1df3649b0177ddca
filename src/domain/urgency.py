"""Due-date urgency for loops.

Urgency is derived on demand from a loop's end date and status; it is never
stored. Classification is total: anything that is not a usable date simply
yields no urgency.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Mapping, Optional

from core.config import get_settings
from core.models import TERMINAL_STATUSES
from core.utils import parse_date, today as current_date

SETTINGS = get_settings()


class UrgencyLevel(str, enum.Enum):
    """How pressing a loop's end date is."""
    NONE = "none"
    OVERDUE = "overdue"
    DUE_TODAY = "due-today"
    DUE_SOON = "due-soon"
    NORMAL = "normal"


def _days(count: int) -> str:
    return "DAY" if count == 1 else "DAYS"


@dataclass(frozen=True)
class Urgency:
    """Urgency classification with the signed day offset it came from."""

    level: UrgencyLevel
    days: Optional[int] = None

    @property
    def magnitude(self) -> Optional[int]:
        """Day count shown alongside the badge."""
        if self.level is UrgencyLevel.OVERDUE:
            return abs(self.days)
        if self.level is UrgencyLevel.DUE_SOON:
            return self.days
        if self.level is UrgencyLevel.DUE_TODAY:
            return 0
        return None

    @property
    def badge(self) -> Optional[str]:
        """List badge text, or None when no badge is shown."""
        if self.level is UrgencyLevel.OVERDUE:
            return f"OVERDUE: {self.magnitude} {_days(self.magnitude)}"
        if self.level is UrgencyLevel.DUE_TODAY:
            return "DUE TODAY"
        if self.level is UrgencyLevel.DUE_SOON:
            return f"CLOSING SOON: {self.magnitude} {_days(self.magnitude)} LEFT"
        return None

    @property
    def countdown(self) -> Optional[str]:
        """Longer countdown text for detail views."""
        if self.level is UrgencyLevel.NONE:
            return None
        if self.level is UrgencyLevel.DUE_TODAY:
            return "Closes today"
        if self.level is UrgencyLevel.OVERDUE:
            n = abs(self.days)
            return f"{n} day{'s' if n != 1 else ''} overdue"
        return f"{self.days} day{'s' if self.days != 1 else ''} left"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "days": self.days,
            "magnitude": self.magnitude,
            "badge": self.badge,
            "countdown": self.countdown,
        }


NO_URGENCY = Urgency(UrgencyLevel.NONE)


def classify_urgency(
    end_date: Any,
    status: Optional[str],
    today: Optional[date] = None,
    soon_days: Optional[int] = None,
) -> Urgency:
    """
    Classify a loop's deadline.

    Args:
        end_date: The loop's end date (date, datetime or ISO string).
        status: The loop's stored status.
        today: Reference date (defaults to the current UTC date).
        soon_days: Upper bound, inclusive, of the due-soon window
            (defaults to CLOSING_SOON_DAYS, the same window /loops/closing uses).

    Returns:
        An Urgency; NONE when the date is missing or unreadable, or the
        loop is closed or cancelled.
    """
    if status in TERMINAL_STATUSES:
        return NO_URGENCY
    end = parse_date(end_date)
    if end is None:
        return NO_URGENCY

    days = (end - (today or current_date())).days
    if days < 0:
        return Urgency(UrgencyLevel.OVERDUE, days)
    if days == 0:
        return Urgency(UrgencyLevel.DUE_TODAY, 0)
    window = SETTINGS.closing_soon_days if soon_days is None else soon_days
    if days <= window:
        return Urgency(UrgencyLevel.DUE_SOON, days)
    return Urgency(UrgencyLevel.NORMAL, days)


def urgency_for_row(row: Mapping[str, Any], today: Optional[date] = None) -> Urgency:
    """Classify a serialized loop."""
    return classify_urgency(row.get("end_date"), row.get("status"), today=today)


def with_urgency(row: Dict[str, Any], today: Optional[date] = None) -> Dict[str, Any]:
    """Return a copy of a serialized loop with its urgency attached."""
    return {**row, "urgency": urgency_for_row(row, today).to_dict()}


__all__ = [
    "UrgencyLevel",
    "Urgency",
    "NO_URGENCY",
    "classify_urgency",
    "urgency_for_row",
    "with_urgency",
]
