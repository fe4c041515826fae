"""FastAPI application: HTTP surface over the schedule engine."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Mapping

from fastapi import FastAPI, HTTPException

from schedule_engine.domain.bus import EventBus
from schedule_engine.domain.config import ConflictDetectionConfig
from schedule_engine.domain.events import ConflictAccepted, EventDeleted, EventRescheduled
from schedule_engine.domain.handlers import HandlerRegistry
from schedule_engine.domain.models import (
    AcceptConflictRequest,
    CalculatedOccurrence,
    ConflictResolution,
    ConflictResult,
    ConflictSummary,
    DescriptionResponse,
    DetectRequest,
    FrequencyOption,
    PreviewRequest,
    RescheduleRequest,
    ScheduleOverlap,
    ScheduleOverlapRequest,
    ScheduleRule,
    TimeUntilNext,
    TimeUntilNextRequest,
    UnifiedEvent,
    ValidationResult,
)
from schedule_engine.repos.memory import ConflictResolutionRepository, EventRepository
from schedule_engine.services.conflicts import ConflictDetector, unique_conflicts
from schedule_engine.services.recurrence import (
    calculate_next_occurrences,
    compile_rrule,
    detect_schedule_conflicts,
    get_frequency_options,
    get_time_until_next,
)
from schedule_engine.services.rules import describe_schedule_rule, validate_schedule_rule

logger = logging.getLogger(__name__)


def configure_logging(environ: Mapping[str, str] | None = None) -> None:
    """Apply ``SCHEDULE_ENGINE_LOG_LEVEL`` to the package loggers."""
    env = os.environ if environ is None else environ
    level = env.get("SCHEDULE_ENGINE_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("schedule_engine").setLevel(level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    yield


app = FastAPI(title="Schedule Engine", lifespan=lifespan)

# ── Singletons (created at import time for simplicity) ────────────────
event_bus = EventBus()
event_repo = EventRepository()
resolution_repo = ConflictResolutionRepository()
detector = ConflictDetector(ConflictDetectionConfig.from_env())

handler_registry = HandlerRegistry(
    bus=event_bus,
    event_repo=event_repo,
    resolution_repo=resolution_repo,
)


def _normalize(record: dict[str, Any]) -> UnifiedEvent:
    try:
        return UnifiedEvent.from_record(record)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


# ── Schedules ─────────────────────────────────────────────────────────


@app.post("/schedules/preview", response_model=list[CalculatedOccurrence])
def preview_schedule(payload: PreviewRequest) -> list[CalculatedOccurrence]:
    """Expand a rule into the occurrences it would create."""
    return calculate_next_occurrences(
        payload.start_date,
        payload.schedule_rule,
        payload.occurrence_limit,
        payload.end_date,
        adjust_weekends=payload.adjust_weekends,
    )


@app.post("/schedules/validate", response_model=ValidationResult)
def validate_schedule(payload: dict[str, Any]) -> ValidationResult:
    """Report problems with a (possibly partial) rule; never rejects the request."""
    return validate_schedule_rule(payload)


@app.post("/schedules/describe", response_model=DescriptionResponse)
def describe_schedule(rule: ScheduleRule) -> DescriptionResponse:
    return DescriptionResponse(description=describe_schedule_rule(rule), rrule=compile_rrule(rule))


@app.post("/schedules/overlap", response_model=ScheduleOverlap)
def schedule_overlap(payload: ScheduleOverlapRequest) -> ScheduleOverlap:
    """Days on which two recurring series would both land."""
    return detect_schedule_conflicts(payload.rule_a, payload.rule_b, payload.start_date, payload.days)


@app.post("/schedules/time-until-next", response_model=TimeUntilNext)
def time_until_next(payload: TimeUntilNextRequest) -> TimeUntilNext:
    return get_time_until_next(payload.schedule_rule, payload.last_occurrence)


@app.get("/schedules/options", response_model=list[FrequencyOption])
def schedule_options() -> list[FrequencyOption]:
    return get_frequency_options()


# ── Events ────────────────────────────────────────────────────────────


@app.post("/events", response_model=UnifiedEvent)
def create_event(record: dict[str, Any]) -> UnifiedEvent:
    """Store an event record of either legacy shape."""
    event = _normalize(record)
    event_repo.add(event)
    logger.info("Stored event %s", event.id)
    return event


@app.get("/events", response_model=list[UnifiedEvent])
def list_events() -> list[UnifiedEvent]:
    return event_repo.list_all()


@app.patch("/events/{event_id}/reschedule", response_model=UnifiedEvent)
def reschedule_event(event_id: str, body: RescheduleRequest) -> UnifiedEvent:
    if event_repo.get(event_id) is None:
        raise HTTPException(status_code=404, detail="Event not found")
    if body.end_time < body.start_time:
        raise HTTPException(status_code=422, detail="end_time must not be before start_time")
    event_bus.publish(
        EventRescheduled(event_id=event_id, start_time=body.start_time, end_time=body.end_time)
    )
    return event_repo.get(event_id)


@app.delete("/events/{event_id}")
def delete_event(event_id: str) -> dict:
    if event_repo.get(event_id) is None:
        raise HTTPException(status_code=404, detail="Event not found")
    event_bus.publish(EventDeleted(event_id=event_id))
    return {"status": "deleted"}


# ── Conflicts ─────────────────────────────────────────────────────────


@app.post("/conflicts/detect", response_model=ConflictResult)
async def detect(payload: DetectRequest) -> ConflictResult:
    """Check a candidate event against every stored event.

    Conflicts the user already accepted are left out; the rest are
    recorded as pending.
    """
    proposed = _normalize(payload.event)
    result = await detector.detect_conflicts_with_resolutions(
        proposed,
        event_repo.list_all(),
        store=resolution_repo,
        accepted_ids=payload.accepted_ids,
    )
    resolution_repo.record_pending(result.conflicts)
    return result


@app.get("/conflicts", response_model=ConflictSummary)
def list_conflicts() -> ConflictSummary:
    """Every unaccepted conflict among stored events, each reported once."""
    results = detector.detect_batch_conflicts(event_repo.list_all())
    conflicts = [
        conflict
        for conflict in unique_conflicts(results)
        if not resolution_repo.is_accepted(conflict.id)
    ]
    return ConflictSummary(count=len(conflicts), conflicts=conflicts)


@app.post("/conflicts/{conflict_id}/accept", response_model=ConflictResolution)
def accept_conflict(conflict_id: str, body: AcceptConflictRequest) -> ConflictResolution:
    event_bus.publish(
        ConflictAccepted(
            conflict_id=conflict_id,
            event_ids=body.event_ids,
            expires_at=body.expires_at,
        )
    )
    return resolution_repo.get(conflict_id)
