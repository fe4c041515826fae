"""Domain models for the recurrence and conflict-detection engine."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta, timezone
from enum import StrEnum
from typing import Any, Mapping

from dateutil.parser import isoparse
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class Frequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BI_WEEKLY = "bi-weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


class EndRuleType(StrEnum):
    NEVER = "never"
    OCCURRENCES = "occurrences"
    DATE = "date"


class ConflictType(StrEnum):
    TEMPORAL_OVERLAP = "temporal_overlap"
    RESOURCE_CONFLICT = "resource_conflict"
    BUFFER_VIOLATION = "buffer_violation"
    WORKING_HOURS = "working_hours"
    WORK_DAYS = "work_days"
    BLACKOUT_PERIOD = "blackout_period"
    SLOT_CAPACITY = "slot_capacity"
    CLIENT_DAILY_LIMIT = "client_daily_limit"
    CUSTOM = "custom"


class ConflictSeverity(StrEnum):
    ADVISORY = "advisory"
    BLOCKING = "blocking"


class ResolutionStrategy(StrEnum):
    CANCEL = "cancel"
    ALLOW = "allow"
    RESCHEDULE = "reschedule"


class ResolutionStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    SUPERSEDED = "superseded"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Recurrence
# ---------------------------------------------------------------------------


class EndRule(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: str = EndRuleType.NEVER
    value: int | datetime | date | str | None = None


class ScheduleRule(BaseModel):
    """An abstract repeating pattern, not bound to any stored event.

    Fields carry no range constraints; out-of-range values are reported by
    ``validate_schedule_rule`` instead of rejected here. Keys may be given in
    snake_case or camelCase (``days_of_week`` or ``daysOfWeek``).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    frequency: str | None = None
    interval: int | None = 1
    days_of_week: list[int] | None = None
    day_of_month: int | None = None
    end_rule: EndRule = Field(default_factory=EndRule)
    timezone: str = "UTC"


class OccurrenceMetadata(BaseModel):
    is_weekend: bool = False
    is_holiday: bool = False
    adjusted_from_original: bool = False
    original_date: datetime | None = None


class CalculatedOccurrence(BaseModel):
    date: datetime
    occurrence_number: int
    is_last: bool = False
    metadata: OccurrenceMetadata = Field(default_factory=OccurrenceMetadata)


class ValidationResult(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    suggested_fixes: list[dict[str, Any]] | None = None


class ScheduleOverlap(BaseModel):
    has_conflict: bool
    conflict_dates: list[date] = Field(default_factory=list)


class TimeUntilNext(BaseModel):
    milliseconds: int
    human_readable: str


class FrequencyOption(BaseModel):
    label: str
    value: Frequency
    description: str
    interval_min: int = 1
    interval_max: int
    default_interval: int = 1


# ---------------------------------------------------------------------------
# Events and conflicts
# ---------------------------------------------------------------------------

DEFAULT_EVENT_MINUTES = 60

# Record keys accepted from storage, first match wins.
_START_KEYS = ("start_time", "startDateTime", "scheduledDate", "scheduled_date")
_END_KEYS = ("end_time", "endDateTime")
_RECORD_FIELDS = {
    "clientId": "client_id",
    "clientName": "client_name",
    "eventType": "event_type",
    "type": "event_type",
}


class UnifiedEvent(BaseModel):
    """Canonical event shape read by the conflict detector.

    ``start_time`` and ``end_time`` may be missing on legacy records; the
    detector leaves such events out of every comparison.
    """

    id: str = Field(default_factory=_new_id)
    title: str = "Untitled event"
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration: int | None = Field(default=None, ge=0)
    client_id: str | None = None
    client_name: str | None = None
    location: str | None = None
    priority: str | None = None
    status: str | None = None
    event_type: str | None = None

    @model_validator(mode="after")
    def _derive_end(self) -> UnifiedEvent:
        if self.start_time is None:
            return self
        if self.end_time is None and self.duration is not None:
            self.end_time = self.start_time + timedelta(minutes=self.duration)
        if self.end_time is not None and self.end_time < self.start_time:
            raise ValueError("end_time must not be before start_time")
        return self

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> UnifiedEvent:
        """Normalize a stored record of either legacy shape.

        Scheduled-service records carry ``scheduledDate`` and ``duration``;
        unified records carry ``startDateTime`` and ``endDateTime``. A record
        with a start but neither an end nor a duration gets the default
        one-hour length.
        """
        data: dict[str, Any] = {}
        for key, value in record.items():
            data[_RECORD_FIELDS.get(key, key)] = value

        start = next((record[k] for k in _START_KEYS if record.get(k)), None)
        end = next((record[k] for k in _END_KEYS if record.get(k)), None)
        for key in _START_KEYS + _END_KEYS:
            data.pop(key, None)

        data["start_time"] = isoparse(start) if isinstance(start, str) else start
        data["end_time"] = isoparse(end) if isinstance(end, str) else end
        if data["start_time"] is not None and end is None and data.get("duration") is None:
            data["duration"] = DEFAULT_EVENT_MINUTES
        if data.get("id") is not None:
            data["id"] = str(data["id"])
        return cls.model_validate(data)


class TimeOverlap(BaseModel):
    start: datetime
    end: datetime
    duration_minutes: int


class Conflict(BaseModel):
    id: str
    type: ConflictType
    severity: ConflictSeverity = ConflictSeverity.ADVISORY
    message: str
    conflicting_event: UnifiedEvent
    proposed_event: UnifiedEvent
    time_overlap: TimeOverlap | None = None
    affected_resources: list[str] = Field(default_factory=list)

    @property
    def is_blocking(self) -> bool:
        return self.severity == ConflictSeverity.BLOCKING

    @property
    def event_ids(self) -> list[str]:
        return sorted({self.proposed_event.id, self.conflicting_event.id})


class AlternativeSlot(BaseModel):
    start: datetime
    end: datetime
    confidence: float


class ResolutionSuggestion(BaseModel):
    strategy: ResolutionStrategy
    description: str
    estimated_impact: str
    requires_client_notification: bool = False
    alternative_time_slots: list[AlternativeSlot] = Field(default_factory=list)


class ConflictResult(BaseModel):
    has_conflicts: bool
    conflicts: list[Conflict] = Field(default_factory=list)
    suggestions: list[ResolutionSuggestion] = Field(default_factory=list)
    can_proceed: bool = True


class ConflictResolution(BaseModel):
    """Caller-side record of a user's decision about one conflict id."""

    conflict_id: str
    status: ResolutionStatus = ResolutionStatus.PENDING
    event_ids: list[str] = Field(default_factory=list)
    message: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    resolved_at: datetime | None = None
    expires_at: datetime | None = None


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class PreviewRequest(BaseModel):
    start_date: datetime
    schedule_rule: ScheduleRule
    occurrence_limit: int = Field(default=50, ge=0, le=1000)
    end_date: datetime | None = None
    adjust_weekends: bool = True


class DescriptionResponse(BaseModel):
    description: str
    rrule: str | None = None


class ScheduleOverlapRequest(BaseModel):
    rule_a: ScheduleRule
    rule_b: ScheduleRule
    start_date: datetime
    days: int = Field(default=30, ge=1, le=366)


class TimeUntilNextRequest(BaseModel):
    schedule_rule: ScheduleRule
    last_occurrence: datetime | None = None


class RescheduleRequest(BaseModel):
    start_time: datetime
    end_time: datetime


class DetectRequest(BaseModel):
    event: dict[str, Any]
    accepted_ids: list[str] = Field(default_factory=list)


class AcceptConflictRequest(BaseModel):
    event_ids: list[str] = Field(default_factory=list)
    expires_at: datetime | None = None


class ConflictSummary(BaseModel):
    count: int
    conflicts: list[Conflict] = Field(default_factory=list)
