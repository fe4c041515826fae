"""Service for expanding schedule rules into concrete calendar occurrences.

Every function here is pure: the same rule and anchor always give the same
dates, and a malformed rule yields fewer (or no) occurrences instead of an
exception, so callers can preview a rule while it is still being edited.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from itertools import islice
from typing import Iterator

from dateutil.relativedelta import relativedelta
from dateutil.rrule import DAILY, FREQNAMES, FR, MO, MONTHLY, SA, SU, TH, TU, WE, WEEKLY

from schedule_engine.domain.models import (
    CalculatedOccurrence,
    EndRuleType,
    Frequency,
    FrequencyOption,
    OccurrenceMetadata,
    ScheduleOverlap,
    ScheduleRule,
    TimeUntilNext,
)
from schedule_engine.services import dates

logger = logging.getLogger(__name__)

DEFAULT_OCCURRENCE_LIMIT = 50
OVERLAP_OCCURRENCE_LIMIT = 100

# Indexed by Sunday-based weekday.
_RRULE_DAYS = (SU, MO, TU, WE, TH, FR, SA)

_RRULE_FREQ = {
    Frequency.DAILY.value: DAILY,
    Frequency.CUSTOM.value: DAILY,
    Frequency.WEEKLY.value: WEEKLY,
    Frequency.BI_WEEKLY.value: WEEKLY,
    Frequency.MONTHLY.value: MONTHLY,
}


# ---------------------------------------------------------------------------
# Stepping
# ---------------------------------------------------------------------------


def _step(current: datetime, rule: ScheduleRule, anchor_day: int | None = None) -> datetime | None:
    """Advance one period from ``current``; ``None`` when the rule can't step."""
    interval = rule.interval
    if not isinstance(interval, int) or interval < 1:
        return None

    frequency = rule.frequency
    if frequency in (Frequency.DAILY, Frequency.CUSTOM):
        return current + timedelta(days=interval)
    if frequency == Frequency.WEEKLY:
        return _step_weekly(current, rule.days_of_week, interval)
    if frequency == Frequency.BI_WEEKLY:
        return _step_weekly(current, rule.days_of_week, interval * 2)
    if frequency == Frequency.MONTHLY:
        return _step_monthly(current, rule.day_of_month or anchor_day, interval)

    logger.debug("Cannot step unrecognized frequency %r", frequency)
    return None


def _step_weekly(current: datetime, days_of_week: list[int] | None, interval: int) -> datetime:
    days = sorted({d for d in days_of_week or () if 0 <= d <= 6})
    if not days:
        return current + timedelta(weeks=interval)

    today = dates.weekday(current)
    later_this_week = [d for d in days if d > today]
    if later_this_week:
        return current + timedelta(days=later_this_week[0] - today)

    # Week exhausted: first listed day of the week ``interval`` weeks ahead.
    return current + timedelta(days=7 - today + days[0] + (interval - 1) * 7)


def _step_monthly(current: datetime, day_of_month: int | None, interval: int) -> datetime:
    if day_of_month == -1:
        # relativedelta clamps day=31 to the month's last day.
        return current + relativedelta(months=interval, day=31)
    if day_of_month is not None and 1 <= day_of_month <= 31:
        return current + relativedelta(months=interval, day=day_of_month)
    return current + relativedelta(months=interval)


# ---------------------------------------------------------------------------
# Bounds
# ---------------------------------------------------------------------------


def _count_limit(rule: ScheduleRule) -> int | None:
    if rule.end_rule.type != EndRuleType.OCCURRENCES:
        return None
    value = rule.end_rule.value
    if isinstance(value, int) and not isinstance(value, bool):
        return max(value, 0)
    return 0


def _bound(value: object) -> tuple[datetime, bool] | None:
    """Parse an end date, remembering whether it covers a whole day."""
    parsed = dates.parse_datetime(value)
    if parsed is None:
        return None
    return parsed, dates.is_date_only(value)


def _beyond(candidate: datetime, bound: tuple[datetime, bool]) -> bool:
    cutoff, whole_day = bound
    if whole_day:
        return candidate.date() > cutoff.date()
    return candidate > dates.align(cutoff, candidate)


def iter_occurrence_dates(
    start_date: datetime | date | str,
    schedule_rule: ScheduleRule,
    end_date: datetime | date | str | None = None,
) -> Iterator[datetime]:
    """Yield raw (unadjusted) occurrence dates after ``start_date``.

    The sequence ends when the rule's end rule or ``end_date`` is reached, or
    when the rule cannot be stepped. A never-ending rule with no ``end_date``
    is infinite; bound it with ``itertools.islice``.
    """
    anchor = dates.parse_datetime(start_date)
    if anchor is None:
        logger.debug("Unparseable anchor date %r", start_date)
        return

    count = _count_limit(schedule_rule)
    bounds = []
    if schedule_rule.end_rule.type == EndRuleType.DATE:
        rule_bound = _bound(schedule_rule.end_rule.value)
        if rule_bound is None:
            return
        bounds.append(rule_bound)
    if end_date is not None:
        cutoff = _bound(end_date)
        if cutoff is not None:
            bounds.append(cutoff)

    current = anchor
    produced = 0
    while count is None or produced < count:
        upcoming = _step(current, schedule_rule, anchor.day)
        if upcoming is None:
            return
        if any(_beyond(upcoming, bound) for bound in bounds):
            return
        yield upcoming
        produced += 1
        current = upcoming


def calculate_next_occurrences(
    start_date: datetime | date | str,
    schedule_rule: ScheduleRule,
    occurrence_limit: int = DEFAULT_OCCURRENCE_LIMIT,
    end_date: datetime | date | str | None = None,
    *,
    adjust_weekends: bool = True,
) -> list[CalculatedOccurrence]:
    """Expand ``schedule_rule`` from ``start_date`` into concrete occurrences.

    Weekend dates are moved to the following Monday unless
    ``adjust_weekends`` is off; the metadata keeps the original date.
    ``is_last`` marks the final emitted occurrence, whether the end rule,
    ``end_date`` or ``occurrence_limit`` stopped the series.
    """
    raw = iter_occurrence_dates(start_date, schedule_rule, end_date)
    raw_dates = list(islice(raw, max(occurrence_limit, 0)))

    occurrences: list[CalculatedOccurrence] = []
    for number, when in enumerate(raw_dates, start=1):
        metadata = OccurrenceMetadata(
            is_weekend=dates.is_weekend(when),
            is_holiday=dates.is_holiday(when),
        )
        emitted = when
        if adjust_weekends and metadata.is_weekend:
            emitted = dates.next_business_day(when)
            metadata.adjusted_from_original = True
            metadata.original_date = when
        occurrences.append(
            CalculatedOccurrence(
                date=emitted,
                occurrence_number=number,
                is_last=number == len(raw_dates),
                metadata=metadata,
            )
        )

    logger.debug(
        "Expanded %s rule into %d occurrences",
        schedule_rule.frequency,
        len(occurrences),
    )
    return occurrences


def get_next_occurrence_date(
    last_occurrence: datetime | date | str, rule: ScheduleRule
) -> datetime | None:
    last = dates.parse_datetime(last_occurrence)
    if last is None:
        return None
    return _step(last, rule)


# ---------------------------------------------------------------------------
# Cross-rule checks and projections
# ---------------------------------------------------------------------------


def detect_schedule_conflicts(
    rule_a: ScheduleRule,
    rule_b: ScheduleRule,
    start_date: datetime | date | str,
    days: int = 30,
) -> ScheduleOverlap:
    """Return the calendar days on which both rules produce an occurrence."""
    start = dates.parse_datetime(start_date)
    if start is None:
        return ScheduleOverlap(has_conflict=False)

    window_end = start + timedelta(days=days)
    days_a = {
        o.date.date()
        for o in calculate_next_occurrences(start, rule_a, OVERLAP_OCCURRENCE_LIMIT, window_end)
    }
    days_b = {
        o.date.date()
        for o in calculate_next_occurrences(start, rule_b, OVERLAP_OCCURRENCE_LIMIT, window_end)
    }
    shared = sorted(days_a & days_b)
    return ScheduleOverlap(has_conflict=bool(shared), conflict_dates=shared)


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}" if count == 1 else f"{count} {unit}s"


def _humanize(delta: timedelta) -> str:
    minutes_total = int(delta.total_seconds() // 60)
    days, remainder = divmod(minutes_total, 24 * 60)
    hours, minutes = divmod(remainder, 60)

    if days > 0:
        text = _plural(days, "day")
        if hours > 0:
            text += f", {_plural(hours, 'hour')}"
        return text
    if hours > 0:
        text = _plural(hours, "hour")
        if minutes > 0:
            text += f", {_plural(minutes, 'minute')}"
        return text
    return _plural(minutes, "minute")


def get_time_until_next(
    rule: ScheduleRule,
    last_occurrence: datetime | date | str | None = None,
    *,
    now: datetime | None = None,
) -> TimeUntilNext:
    """Project one step from ``last_occurrence`` (default: now) and time it."""
    zone = dates.resolve_zone(rule.timezone)
    current = dates.localize(now, zone) if now is not None else datetime.now(zone)

    base = current if last_occurrence is None else dates.parse_datetime(last_occurrence)
    upcoming = _step(dates.localize(base, zone), rule) if base is not None else None
    if upcoming is None:
        return TimeUntilNext(milliseconds=0, human_readable="No next occurrence")

    delta = upcoming - current
    milliseconds = int(delta.total_seconds() * 1000)
    if milliseconds <= 0:
        return TimeUntilNext(milliseconds=0, human_readable="Overdue")
    return TimeUntilNext(milliseconds=milliseconds, human_readable=_humanize(delta))


# ---------------------------------------------------------------------------
# Options and export
# ---------------------------------------------------------------------------


def get_frequency_options() -> list[FrequencyOption]:
    """Frequencies offered by rule editors, with their sensible interval ranges."""
    return [
        FrequencyOption(
            label="Daily",
            value=Frequency.DAILY,
            description="Repeat every day",
            interval_max=365,
        ),
        FrequencyOption(
            label="Weekly",
            value=Frequency.WEEKLY,
            description="Repeat every week",
            interval_max=52,
        ),
        FrequencyOption(
            label="Bi-weekly",
            value=Frequency.BI_WEEKLY,
            description="Repeat every other week",
            interval_max=26,
        ),
        FrequencyOption(
            label="Monthly",
            value=Frequency.MONTHLY,
            description="Repeat every month",
            interval_max=12,
        ),
        FrequencyOption(
            label="Custom",
            value=Frequency.CUSTOM,
            description="Custom interval in days",
            interval_max=365,
            default_interval=7,
        ),
    ]


def _until(value: object) -> str | None:
    until = dates.parse_datetime(value)
    if until is None:
        return None
    if dates.is_date_only(value):
        return until.strftime("%Y%m%dT235959")
    if until.tzinfo is not None:
        return until.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return until.strftime("%Y%m%dT%H%M%S")


def compile_rrule(rule: ScheduleRule) -> str | None:
    """Compile a schedule rule into an RFC 5545 RRULE string.

    Weekend adjustment has no RRULE equivalent and is left out. Returns
    ``None`` for rules that cannot be expanded.
    """
    freq = _RRULE_FREQ.get(str(rule.frequency))
    if freq is None or not isinstance(rule.interval, int) or rule.interval < 1:
        return None

    interval = rule.interval * 2 if rule.frequency == Frequency.BI_WEEKLY else rule.interval
    parts = [f"FREQ={FREQNAMES[freq]}"]
    if interval > 1:
        parts.append(f"INTERVAL={interval}")

    if freq == WEEKLY and rule.days_of_week:
        days = sorted({d for d in rule.days_of_week if 0 <= d <= 6})
        if days:
            parts.append("BYDAY=" + ",".join(str(_RRULE_DAYS[d]) for d in days))
    elif freq == MONTHLY and rule.day_of_month is not None:
        day = rule.day_of_month
        if day == -1:
            parts.append("BYMONTHDAY=-1")
        elif 29 <= day <= 31:
            # Clamp to short months: the latest of 28..day that exists.
            parts.append("BYMONTHDAY=" + ",".join(str(d) for d in range(28, day + 1)))
            parts.append("BYSETPOS=-1")
        elif 1 <= day <= 28:
            parts.append(f"BYMONTHDAY={day}")

    end_rule = rule.end_rule
    if end_rule.type == EndRuleType.OCCURRENCES and isinstance(end_rule.value, int):
        parts.append(f"COUNT={end_rule.value}")
    elif end_rule.type == EndRuleType.DATE:
        until = _until(end_rule.value)
        if until is not None:
            parts.append(f"UNTIL={until}")

    return ";".join(parts)
