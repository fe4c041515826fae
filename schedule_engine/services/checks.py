"""Individual conflict checks, one per ``ConflictType``.

A check receives the rule that enabled it, the proposed event, the existing
events it may be compared with and the detection config, and returns the
conflicts it found. Every event handed to a check has both a start and an
end; the detector filters out the rest.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable

from schedule_engine.domain.config import ConflictDetectionConfig, ConflictRule
from schedule_engine.domain.models import Conflict, ConflictType, TimeOverlap, UnifiedEvent
from schedule_engine.services import dates

Check = Callable[
    [ConflictRule, UnifiedEvent, list[UnifiedEvent], ConflictDetectionConfig],
    list[Conflict],
]


def pair_id(conflict_type: str, first_id: str, second_id: str) -> str:
    """Conflict id for a pair of events; the same whichever side proposes."""
    low, high = sorted((first_id, second_id))
    return f"{conflict_type}:{low}:{high}"


def single_id(conflict_type: str, subject_id: str, *qualifiers: object) -> str:
    """Conflict id for a rule broken by one event on its own."""
    return ":".join([str(conflict_type), subject_id, *(str(q) for q in qualifiers)])


def window(event: UnifiedEvent, config: ConflictDetectionConfig) -> tuple[datetime, datetime]:
    """Return the event's interval, naive times read in the configured zone."""
    zone = dates.resolve_zone(config.timezone)
    return dates.localize(event.start_time, zone), dates.localize(event.end_time, zone)


def _local(value: datetime, config: ConflictDetectionConfig) -> datetime:
    return value.astimezone(dates.resolve_zone(config.timezone))


def overlaps(
    first_start: datetime, first_end: datetime, second_start: datetime, second_end: datetime
) -> bool:
    """Half-open interval overlap; zero-length intervals never overlap."""
    if first_start >= first_end or second_start >= second_end:
        return False
    return first_start < second_end and second_start < first_end


def find_overlapping(
    proposed: UnifiedEvent,
    existing_events: list[UnifiedEvent],
    config: ConflictDetectionConfig,
) -> list[UnifiedEvent]:
    """Return existing events that overlap the proposed event's interval.

    Overlap rule: conflict if new_start < existing.end_time AND
    existing.start_time < new_end. Exact boundary touches (end == start) are
    NOT considered conflicts.
    """
    new_start, new_end = window(proposed, config)
    return [
        event
        for event in existing_events
        if overlaps(new_start, new_end, *window(event, config))
    ]


def _same_client(first: UnifiedEvent, second: UnifiedEvent) -> bool:
    if first.client_id and second.client_id:
        return first.client_id == second.client_id
    return bool(first.client_name) and first.client_name == second.client_name


# ---------------------------------------------------------------------------
# Pair checks
# ---------------------------------------------------------------------------


def check_temporal_overlap(
    rule: ConflictRule,
    proposed: UnifiedEvent,
    existing_events: list[UnifiedEvent],
    config: ConflictDetectionConfig,
) -> list[Conflict]:
    start, end = window(proposed, config)
    conflicts = []
    for other in find_overlapping(proposed, existing_events, config):
        other_start, other_end = window(other, config)
        overlap_start = max(start, other_start)
        overlap_end = min(end, other_end)
        minutes = round((overlap_end - overlap_start).total_seconds() / 60)
        conflicts.append(
            Conflict(
                id=pair_id(ConflictType.TEMPORAL_OVERLAP, proposed.id, other.id),
                type=ConflictType.TEMPORAL_OVERLAP,
                severity=rule.severity,
                message=f'Overlaps with "{other.title}" by {minutes} minutes',
                conflicting_event=other,
                proposed_event=proposed,
                time_overlap=TimeOverlap(
                    start=overlap_start, end=overlap_end, duration_minutes=minutes
                ),
            )
        )
    return conflicts


def check_buffer(
    rule: ConflictRule,
    proposed: UnifiedEvent,
    existing_events: list[UnifiedEvent],
    config: ConflictDetectionConfig,
) -> list[Conflict]:
    required = rule.buffer_minutes
    if required is None:
        required = config.default_buffer_minutes
    if required <= 0:
        return []

    start, end = window(proposed, config)
    conflicts = []
    for other in existing_events:
        other_start, other_end = window(other, config)
        if other_end <= start:
            gap, relation = start - other_end, "after"
        elif end <= other_start:
            gap, relation = other_start - end, "before"
        else:
            continue
        if gap >= timedelta(minutes=required):
            continue
        minutes = round(gap.total_seconds() / 60)
        conflicts.append(
            Conflict(
                id=pair_id(ConflictType.BUFFER_VIOLATION, proposed.id, other.id),
                type=ConflictType.BUFFER_VIOLATION,
                severity=rule.severity,
                message=f'Only {minutes} minutes {relation} "{other.title}", {required} required',
                conflicting_event=other,
                proposed_event=proposed,
            )
        )
    return conflicts


def check_resources(
    rule: ConflictRule,
    proposed: UnifiedEvent,
    existing_events: list[UnifiedEvent],
    config: ConflictDetectionConfig,
) -> list[Conflict]:
    conflicts = []
    for other in find_overlapping(proposed, existing_events, config):
        resources = []
        if _same_client(proposed, other):
            resources.append(f"Client: {proposed.client_name or proposed.client_id}")
        if proposed.location and proposed.location == other.location:
            resources.append(f"Location: {proposed.location}")
        if not resources:
            continue
        conflicts.append(
            Conflict(
                id=pair_id(ConflictType.RESOURCE_CONFLICT, proposed.id, other.id),
                type=ConflictType.RESOURCE_CONFLICT,
                severity=rule.severity,
                message=f'Double-booked with "{other.title}": {", ".join(resources)}',
                conflicting_event=other,
                proposed_event=proposed,
                affected_resources=resources,
            )
        )
    return conflicts


# ---------------------------------------------------------------------------
# Single-event business rules
# ---------------------------------------------------------------------------


def check_working_hours(
    rule: ConflictRule,
    proposed: UnifiedEvent,
    existing_events: list[UnifiedEvent],
    config: ConflictDetectionConfig,
) -> list[Conflict]:
    start, end = window(proposed, config)
    start, end = _local(start, config), _local(end, config)
    hours = config.work_hours
    day_start = datetime.combine(start.date(), hours.start, tzinfo=start.tzinfo)
    day_end = datetime.combine(start.date(), hours.end, tzinfo=start.tzinfo)
    if day_start <= start and end <= day_end:
        return []
    span = f"{hours.start:%H:%M}-{hours.end:%H:%M}"
    return [
        Conflict(
            id=single_id(ConflictType.WORKING_HOURS, proposed.id),
            type=ConflictType.WORKING_HOURS,
            severity=rule.severity,
            message=f"Scheduled outside working hours ({span})",
            conflicting_event=proposed,
            proposed_event=proposed,
        )
    ]


def check_work_days(
    rule: ConflictRule,
    proposed: UnifiedEvent,
    existing_events: list[UnifiedEvent],
    config: ConflictDetectionConfig,
) -> list[Conflict]:
    start, _ = window(proposed, config)
    day = dates.weekday(_local(start, config))
    if day in config.work_days:
        return []
    return [
        Conflict(
            id=single_id(ConflictType.WORK_DAYS, proposed.id),
            type=ConflictType.WORK_DAYS,
            severity=rule.severity,
            message=f"Scheduled on a non-working day ({dates.WEEKDAY_NAMES[day]})",
            conflicting_event=proposed,
            proposed_event=proposed,
        )
    ]


def check_blackouts(
    rule: ConflictRule,
    proposed: UnifiedEvent,
    existing_events: list[UnifiedEvent],
    config: ConflictDetectionConfig,
) -> list[Conflict]:
    start, end = window(proposed, config)
    zone = dates.resolve_zone(config.timezone)
    conflicts = []
    for index, period in enumerate(config.blackout_periods):
        blackout_start = dates.localize(period.start, zone)
        blackout_end = dates.localize(period.end, zone)
        inside = blackout_start <= start < blackout_end
        if not inside and not overlaps(start, end, blackout_start, blackout_end):
            continue
        conflicts.append(
            Conflict(
                id=single_id(ConflictType.BLACKOUT_PERIOD, proposed.id, index),
                type=ConflictType.BLACKOUT_PERIOD,
                severity=rule.severity,
                message=f"Scheduled during blackout period: {period.reason}",
                conflicting_event=proposed,
                proposed_event=proposed,
            )
        )
    return conflicts


def check_slot_capacity(
    rule: ConflictRule,
    proposed: UnifiedEvent,
    existing_events: list[UnifiedEvent],
    config: ConflictDetectionConfig,
) -> list[Conflict]:
    capacity = config.slot_capacity
    if capacity is None:
        return []
    concurrent = find_overlapping(proposed, existing_events, config)
    if len(concurrent) + 1 <= capacity:
        return []
    return [
        Conflict(
            id=single_id(ConflictType.SLOT_CAPACITY, proposed.id),
            type=ConflictType.SLOT_CAPACITY,
            severity=rule.severity,
            message=f"{len(concurrent) + 1} events would share this slot (capacity {capacity})",
            conflicting_event=concurrent[0],
            proposed_event=proposed,
            affected_resources=[event.id for event in concurrent],
        )
    ]


def check_client_daily_limit(
    rule: ConflictRule,
    proposed: UnifiedEvent,
    existing_events: list[UnifiedEvent],
    config: ConflictDetectionConfig,
) -> list[Conflict]:
    client = proposed.client_name or proposed.client_id
    if not client or not (
        proposed.client_name in config.priority_clients
        or proposed.client_id in config.priority_clients
    ):
        return []

    day = _local(window(proposed, config)[0], config).date()
    same_day = [
        event
        for event in existing_events
        if _same_client(proposed, event)
        and _local(window(event, config)[0], config).date() == day
    ]
    if len(same_day) < config.max_events_per_client_day:
        return []
    return [
        Conflict(
            id=single_id(ConflictType.CLIENT_DAILY_LIMIT, proposed.id, day.isoformat()),
            type=ConflictType.CLIENT_DAILY_LIMIT,
            severity=rule.severity,
            message=f'Too many appointments for priority client "{client}" on {day:%m/%d/%Y}',
            conflicting_event=same_day[-1],
            proposed_event=proposed,
            affected_resources=[f"Client: {client}"],
        )
    ]


CHECKS: dict[ConflictType, Check] = {
    ConflictType.TEMPORAL_OVERLAP: check_temporal_overlap,
    ConflictType.BUFFER_VIOLATION: check_buffer,
    ConflictType.RESOURCE_CONFLICT: check_resources,
    ConflictType.WORKING_HOURS: check_working_hours,
    ConflictType.WORK_DAYS: check_work_days,
    ConflictType.BLACKOUT_PERIOD: check_blackouts,
    ConflictType.SLOT_CAPACITY: check_slot_capacity,
    ConflictType.CLIENT_DAILY_LIMIT: check_client_daily_limit,
}
