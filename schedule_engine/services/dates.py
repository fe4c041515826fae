"""Calendar helpers shared by the recurrence calculator and conflict detector.

Weekdays follow the Sunday = 0 convention used by schedule rules, not
Python's Monday = 0 ``datetime.weekday()``.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone, tzinfo

from dateutil import tz
from dateutil.parser import isoparse

WEEKDAY_NAMES = (
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
)

# Fixed-date holidays as (month, day).
HOLIDAYS = frozenset(
    {
        (1, 1),  # New Year's Day
        (7, 4),  # Independence Day
        (12, 25),  # Christmas Day
    }
)

SATURDAY = 6
SUNDAY = 0


def weekday(value: date) -> int:
    """Return the Sunday-based weekday (Sunday = 0 ... Saturday = 6)."""
    return (value.weekday() + 1) % 7


def is_weekend(value: date) -> bool:
    return weekday(value) in (SATURDAY, SUNDAY)


def is_holiday(value: date) -> bool:
    return (value.month, value.day) in HOLIDAYS


def next_business_day(value: datetime) -> datetime:
    """Shift a weekend date forward to Monday; weekdays are returned as-is."""
    day = weekday(value)
    if day == SATURDAY:
        return value + timedelta(days=2)
    if day == SUNDAY:
        return value + timedelta(days=1)
    return value


def resolve_zone(name: str | None) -> tzinfo:
    """Look up an IANA label, falling back to UTC for unknown names."""
    zone = tz.gettz(name) if name else None
    return zone or timezone.utc


def localize(value: datetime, zone: tzinfo) -> datetime:
    """Attach ``zone`` to a naive datetime; aware values are left alone."""
    if value.tzinfo is None:
        return value.replace(tzinfo=zone)
    return value


def align(value: datetime, reference: datetime) -> datetime:
    """Make ``value`` comparable with ``reference``.

    A naive value takes the reference's zone; an aware value compared
    against a naive reference is converted and stripped.
    """
    if value.tzinfo is None and reference.tzinfo is not None:
        return value.replace(tzinfo=reference.tzinfo)
    if value.tzinfo is not None and reference.tzinfo is None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def is_date_only(value: object) -> bool:
    """True for a ``date`` or an ISO string without a time component."""
    if isinstance(value, datetime):
        return False
    if isinstance(value, date):
        return True
    return isinstance(value, str) and "T" not in value and len(value.strip()) <= 10


def parse_datetime(value: object) -> datetime | None:
    """Coerce a datetime, date or ISO string; anything else gives ``None``."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, str) and value.strip():
        try:
            return isoparse(value.strip())
        except ValueError:
            return None
    return None
