"""Validation and plain-English descriptions of schedule rules."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

from pydantic import ValidationError

from schedule_engine.domain.models import EndRuleType, Frequency, ScheduleRule, ValidationResult
from schedule_engine.services import dates

MAX_OCCURRENCES_WITHOUT_WARNING = 1000
DEFAULT_FIXED_OCCURRENCES = 10

# Soft upper bounds; larger intervals are allowed but flagged.
INTERVAL_SOFT_LIMITS = {
    Frequency.DAILY.value: 365,
    Frequency.WEEKLY.value: 52,
    Frequency.BI_WEEKLY.value: 26,
    Frequency.MONTHLY.value: 12,
    Frequency.CUSTOM.value: 365,
}

_WEEKLY = (Frequency.WEEKLY, Frequency.BI_WEEKLY)

ORDINALS = (
    "",
    "1st", "2nd", "3rd", "4th", "5th", "6th", "7th", "8th", "9th", "10th",
    "11th", "12th", "13th", "14th", "15th", "16th", "17th", "18th", "19th", "20th",
    "21st", "22nd", "23rd", "24th", "25th", "26th", "27th", "28th", "29th", "30th",
    "31st",
)  # fmt: skip


def _coerce(rule: ScheduleRule | Mapping[str, Any]) -> tuple[ScheduleRule | None, list[str]]:
    if isinstance(rule, ScheduleRule):
        return rule, []
    # A missing interval is an error here, not the model's default of 1.
    data = {"interval": None, **rule}
    try:
        return ScheduleRule.model_validate(data), []
    except ValidationError as exc:
        return None, [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
        ]


def validate_schedule_rule(
    rule: ScheduleRule | Mapping[str, Any],
    *,
    now: datetime | None = None,
) -> ValidationResult:
    """Report every problem with ``rule`` without raising or changing it.

    Accepts a full ``ScheduleRule`` or a partial mapping from a rule editor.
    Each error that has an obvious repair contributes a partial rule to
    ``suggested_fixes``.
    """
    parsed, errors = _coerce(rule)
    if parsed is None:
        return ValidationResult(is_valid=False, errors=errors)

    warnings: list[str] = []
    fixes: list[dict[str, Any]] = []
    frequency = parsed.frequency
    interval = parsed.interval

    if not frequency:
        errors.append("Frequency is required")
    elif str(frequency) not in INTERVAL_SOFT_LIMITS:
        errors.append(f"Unsupported frequency '{frequency}'")

    if interval is None or interval < 1:
        errors.append("Interval must be a positive number")
        fixes.append({"interval": 1})

    if parsed.days_of_week is not None:
        if frequency in _WEEKLY:
            if not parsed.days_of_week:
                warnings.append(
                    "Weekly frequency with no specified days will repeat on the start date's weekday"
                )
            valid_days = [d for d in parsed.days_of_week if 0 <= d <= 6]
            if len(valid_days) != len(parsed.days_of_week):
                errors.append("Days of week must be between 0 (Sunday) and 6 (Saturday)")
                fixes.append({"days_of_week": valid_days})
        elif frequency:
            warnings.append(f"Days of week are ignored for {frequency} schedules")

    if parsed.day_of_month is not None:
        if frequency == Frequency.MONTHLY:
            day = parsed.day_of_month
            if day != -1 and not 1 <= day <= 31:
                errors.append("Day of month must be between 1-31 or -1 for last day")
                fixes.append({"day_of_month": 1})
        elif frequency:
            warnings.append(f"Day of month is ignored for {frequency} schedules")

    end_rule = parsed.end_rule
    if end_rule.type == EndRuleType.OCCURRENCES:
        count = end_rule.value
        if not isinstance(count, int) or isinstance(count, bool) or count < 1:
            errors.append("Occurrence count must be a positive number")
            fixes.append(
                {"end_rule": {"type": EndRuleType.OCCURRENCES.value, "value": DEFAULT_FIXED_OCCURRENCES}}
            )
        elif count > MAX_OCCURRENCES_WITHOUT_WARNING:
            warnings.append("Large number of occurrences may impact performance")
    elif end_rule.type == EndRuleType.DATE:
        end_date = dates.parse_datetime(end_rule.value)
        if end_date is None:
            errors.append("End date is not a valid date")
        else:
            current = now or datetime.now(timezone.utc)
            if dates.align(end_date, current) < current:
                warnings.append("End date is in the past")
    elif end_rule.type != EndRuleType.NEVER:
        errors.append(f"Unsupported end rule type '{end_rule.type}'")

    limit = INTERVAL_SOFT_LIMITS.get(str(frequency))
    if limit is not None and interval is not None and interval > limit:
        warnings.append(f"Interval of {interval} {frequency} is unusually large")

    return ValidationResult(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        suggested_fixes=fixes or None,
    )


def _day_names(days_of_week: list[int]) -> str:
    return ", ".join(dates.WEEKDAY_NAMES[d] for d in sorted(set(days_of_week)) if 0 <= d <= 6)


def _frequency_clause(rule: ScheduleRule) -> str:
    n = rule.interval if isinstance(rule.interval, int) and rule.interval >= 1 else 1
    frequency = rule.frequency
    day_names = _day_names(rule.days_of_week or [])

    if frequency == Frequency.DAILY:
        return "Every day" if n == 1 else f"Every {n} days"
    if frequency == Frequency.WEEKLY:
        if day_names:
            return f"Every {day_names}" if n == 1 else f"Every {n} weeks on {day_names}"
        return "Every week" if n == 1 else f"Every {n} weeks"
    if frequency == Frequency.BI_WEEKLY:
        if day_names:
            return (
                f"Every other week on {day_names}" if n == 1 else f"Every {n * 2} weeks on {day_names}"
            )
        return "Every other week" if n == 1 else f"Every {n * 2} weeks"
    if frequency == Frequency.MONTHLY:
        day = rule.day_of_month
        if day == -1:
            return "Last day of every month" if n == 1 else f"Last day of every {n} months"
        if day is not None and 1 <= day <= 31:
            return f"{ORDINALS[day]} of every month" if n == 1 else f"{ORDINALS[day]} of every {n} months"
        return "Every month" if n == 1 else f"Every {n} months"
    if frequency == Frequency.CUSTOM:
        return "Every 1 day" if n == 1 else f"Every {n} days"
    return "Unrecognized schedule"


def describe_schedule_rule(rule: ScheduleRule) -> str:
    """Summarize a rule, e.g. ``"Every 2 weeks on Monday, Wednesday, 10 times"``."""
    description = _frequency_clause(rule)

    end_rule = rule.end_rule
    if end_rule.type == EndRuleType.OCCURRENCES and isinstance(end_rule.value, int):
        times = "1 time" if end_rule.value == 1 else f"{end_rule.value} times"
        description += f", {times}"
    elif end_rule.type == EndRuleType.DATE:
        end_date = dates.parse_datetime(end_rule.value)
        if end_date is not None:
            description += f", until {end_date.month}/{end_date.day}/{end_date.year}"

    return description
