"""Configuration for conflict detection."""

from __future__ import annotations

import os
from datetime import datetime, time
from typing import Mapping

from pydantic import BaseModel, Field, model_validator

from schedule_engine.domain.models import ConflictSeverity, ConflictType

ENV_PREFIX = "SCHEDULE_ENGINE_"


class ConflictRule(BaseModel):
    id: str
    name: str
    type: ConflictType
    enabled: bool = True
    severity: ConflictSeverity = ConflictSeverity.ADVISORY
    buffer_minutes: int | None = Field(default=None, ge=0)


class WorkHours(BaseModel):
    start: time = time(8, 0)
    end: time = time(18, 0)

    @model_validator(mode="after")
    def _start_before_end(self) -> WorkHours:
        if self.end <= self.start:
            raise ValueError("work hours must end after they start")
        return self


class BlackoutPeriod(BaseModel):
    start: datetime
    end: datetime
    reason: str


def default_rules() -> list[ConflictRule]:
    return [
        ConflictRule(
            id="temporal_overlap",
            name="Time overlaps",
            type=ConflictType.TEMPORAL_OVERLAP,
        ),
        ConflictRule(
            id="buffer_time",
            name="Minimum gap between events",
            type=ConflictType.BUFFER_VIOLATION,
        ),
        ConflictRule(
            id="resource_double_booking",
            name="Client or location double-booking",
            type=ConflictType.RESOURCE_CONFLICT,
        ),
        ConflictRule(
            id="work_hours",
            name="Working hours",
            type=ConflictType.WORKING_HOURS,
        ),
        ConflictRule(
            id="work_days",
            name="Working days",
            type=ConflictType.WORK_DAYS,
        ),
        ConflictRule(
            id="blackout",
            name="Blackout periods",
            type=ConflictType.BLACKOUT_PERIOD,
            severity=ConflictSeverity.BLOCKING,
        ),
        ConflictRule(
            id="slot_capacity",
            name="Concurrent events per slot",
            type=ConflictType.SLOT_CAPACITY,
            severity=ConflictSeverity.BLOCKING,
        ),
        ConflictRule(
            id="priority_client_limits",
            name="Priority client daily limit",
            type=ConflictType.CLIENT_DAILY_LIMIT,
        ),
    ]


class ConflictDetectionConfig(BaseModel):
    rules: list[ConflictRule] = Field(default_factory=default_rules)
    default_buffer_minutes: int = Field(default=30, ge=0)
    work_hours: WorkHours = Field(default_factory=WorkHours)
    work_days: list[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])
    timezone: str = "UTC"
    blackout_periods: list[BlackoutPeriod] = Field(default_factory=list)
    priority_clients: list[str] = Field(default_factory=list)
    max_events_per_client_day: int = Field(default=3, ge=1)
    # None disables the capacity check.
    slot_capacity: int | None = Field(default=None, ge=1)

    def enabled_rules(self) -> list[ConflictRule]:
        return [rule for rule in self.rules if rule.enabled]

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ConflictDetectionConfig:
        """Build a config from ``SCHEDULE_ENGINE_*`` variables.

        ``WORK_HOURS`` is ``HH:MM-HH:MM``, ``WORK_DAYS`` and
        ``PRIORITY_CLIENTS`` are comma separated. Unset variables keep the
        defaults.
        """
        env = os.environ if environ is None else environ
        values: dict = {}

        hours = env.get(f"{ENV_PREFIX}WORK_HOURS")
        if hours:
            start, _, end = hours.partition("-")
            values["work_hours"] = WorkHours(
                start=time.fromisoformat(start.strip()),
                end=time.fromisoformat(end.strip()),
            )
        days = env.get(f"{ENV_PREFIX}WORK_DAYS")
        if days:
            values["work_days"] = [int(d) for d in days.split(",") if d.strip()]
        tz = env.get(f"{ENV_PREFIX}TIMEZONE")
        if tz:
            values["timezone"] = tz
        buffer = env.get(f"{ENV_PREFIX}BUFFER_MINUTES")
        if buffer:
            values["default_buffer_minutes"] = int(buffer)
        capacity = env.get(f"{ENV_PREFIX}SLOT_CAPACITY")
        if capacity:
            values["slot_capacity"] = int(capacity)
        clients = env.get(f"{ENV_PREFIX}PRIORITY_CLIENTS")
        if clients:
            values["priority_clients"] = [c.strip() for c in clients.split(",") if c.strip()]
        return cls(**values)
