"""Tests for event normalization and detection config."""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone

import pytest

from schedule_engine.domain.config import ConflictDetectionConfig, WorkHours
from schedule_engine.domain.models import ConflictSeverity, ConflictType, UnifiedEvent


# ---------------------------------------------------------------------------
# UnifiedEvent
# ---------------------------------------------------------------------------


def test_end_derived_from_duration():
    start = datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc)
    event = UnifiedEvent(id="e1", start_time=start, duration=45)
    assert event.end_time == start + timedelta(minutes=45)


def test_end_before_start_rejected():
    with pytest.raises(ValueError):
        UnifiedEvent(
            id="e1",
            start_time=datetime(2024, 1, 10, 10, 0),
            end_time=datetime(2024, 1, 10, 9, 0),
        )


def test_from_scheduled_service_record():
    event = UnifiedEvent.from_record(
        {
            "id": 42,
            "title": "Lawn care",
            "scheduledDate": "2024-01-10T09:00:00Z",
            "duration": 90,
            "clientId": "c7",
            "clientName": "Acme",
            "notes": "gate code 1234",
        }
    )
    assert event.id == "42"
    assert event.start_time == datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc)
    assert event.end_time == datetime(2024, 1, 10, 10, 30, tzinfo=timezone.utc)
    assert event.client_id == "c7"
    assert event.client_name == "Acme"


def test_from_unified_record():
    event = UnifiedEvent.from_record(
        {
            "id": "u1",
            "title": "Consultation",
            "startDateTime": "2024-01-10T13:00:00+00:00",
            "endDateTime": "2024-01-10T13:30:00+00:00",
            "eventType": "appointment",
            "location": "Office",
        }
    )
    assert event.end_time - event.start_time == timedelta(minutes=30)
    assert event.event_type == "appointment"
    assert event.location == "Office"


def test_record_without_end_gets_default_length():
    event = UnifiedEvent.from_record({"id": "d", "start_time": "2024-01-10T09:00:00"})
    assert event.end_time == datetime(2024, 1, 10, 10, 0)


def test_record_without_times():
    event = UnifiedEvent.from_record({"id": "t", "title": "Call back"})
    assert event.start_time is None
    assert event.end_time is None


# ---------------------------------------------------------------------------
# ConflictDetectionConfig
# ---------------------------------------------------------------------------


def test_defaults():
    config = ConflictDetectionConfig()
    assert config.work_hours.start == time(8, 0)
    assert config.work_hours.end == time(18, 0)
    assert config.work_days == [1, 2, 3, 4, 5]
    assert config.slot_capacity is None
    blocking = {r.type for r in config.rules if r.severity == ConflictSeverity.BLOCKING}
    assert blocking == {ConflictType.BLACKOUT_PERIOD, ConflictType.SLOT_CAPACITY}


def test_from_env():
    config = ConflictDetectionConfig.from_env(
        {
            "SCHEDULE_ENGINE_WORK_HOURS": "09:00-17:30",
            "SCHEDULE_ENGINE_WORK_DAYS": "1,2,3",
            "SCHEDULE_ENGINE_TIMEZONE": "America/Chicago",
            "SCHEDULE_ENGINE_BUFFER_MINUTES": "15",
            "SCHEDULE_ENGINE_SLOT_CAPACITY": "4",
            "SCHEDULE_ENGINE_PRIORITY_CLIENTS": "Acme, Globex",
        }
    )
    assert config.work_hours == WorkHours(start=time(9, 0), end=time(17, 30))
    assert config.work_days == [1, 2, 3]
    assert config.timezone == "America/Chicago"
    assert config.default_buffer_minutes == 15
    assert config.slot_capacity == 4
    assert config.priority_clients == ["Acme", "Globex"]


def test_from_env_empty_keeps_defaults():
    assert ConflictDetectionConfig.from_env({}) == ConflictDetectionConfig()


def test_work_hours_must_end_after_start():
    with pytest.raises(ValueError):
        WorkHours(start=time(17, 0), end=time(9, 0))


def test_disabled_rules_not_enabled():
    config = ConflictDetectionConfig()
    config.rules[0].enabled = False
    assert config.rules[0] not in config.enabled_rules()
    assert len(config.enabled_rules()) == len(config.rules) - 1
