"""Tests for the conflict acceptance lifecycle: repos, bus handlers and HTTP routes."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from schedule_engine.domain.bus import EventBus
from schedule_engine.domain.events import ConflictAccepted, EventDeleted, EventRescheduled
from schedule_engine.domain.handlers import HandlerRegistry
from schedule_engine.domain.models import ResolutionStatus, UnifiedEvent
from schedule_engine.main import (
    app,
    configure_logging,
    event_repo as app_event_repo,
    resolution_repo as app_resolution_repo,
)
from schedule_engine.repos.memory import ConflictResolutionRepository, EventRepository
from schedule_engine.services.conflicts import ConflictDetector

_NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)
_PAIR = "temporal_overlap:a:b"


def _at(hour: int, minute: int = 0) -> datetime:
    # Wednesday
    return datetime(2024, 1, 10, hour, minute, tzinfo=timezone.utc)


@pytest.fixture()
def env():
    """Fresh bus + repos + registry for each test."""
    bus = EventBus()
    event_repo = EventRepository()
    resolution_repo = ConflictResolutionRepository()
    HandlerRegistry(bus=bus, event_repo=event_repo, resolution_repo=resolution_repo)

    event_repo.add(UnifiedEvent(id="a", title="A", start_time=_at(10), end_time=_at(11)))
    event_repo.add(UnifiedEvent(id="b", title="B", start_time=_at(10, 30), end_time=_at(11, 30)))
    return bus, event_repo, resolution_repo


def _detect(event_repo: EventRepository, resolution_repo: ConflictResolutionRepository, event_id: str):
    detector = ConflictDetector()
    return asyncio.run(
        detector.detect_conflicts_with_resolutions(
            event_repo.get(event_id), event_repo.list_all(), store=resolution_repo
        )
    )


# ---------------------------------------------------------------------------
# Resolution repository
# ---------------------------------------------------------------------------


def test_record_pending_then_accept(env):
    _, event_repo, resolution_repo = env
    result = _detect(event_repo, resolution_repo, "b")
    resolution_repo.record_pending(result.conflicts)

    pending = resolution_repo.get(_PAIR)
    assert pending.status == ResolutionStatus.PENDING
    assert pending.event_ids == ["a", "b"]

    resolution_repo.accept(_PAIR)
    accepted = resolution_repo.get(_PAIR)
    assert accepted.status == ResolutionStatus.ACCEPTED
    assert accepted.event_ids == ["a", "b"]
    assert accepted.resolved_at is not None


def test_record_pending_keeps_accepted_decision():
    repo = ConflictResolutionRepository()
    repo.accept(_PAIR, event_ids=["a", "b"])
    a = UnifiedEvent(id="a", start_time=_at(10), end_time=_at(11))
    b = UnifiedEvent(id="b", start_time=_at(10, 30), end_time=_at(11, 30))
    conflicts = ConflictDetector().detect_conflicts(b, [a]).conflicts

    repo.record_pending(conflicts)

    assert repo.get(_PAIR).status == ResolutionStatus.ACCEPTED


def test_expired_acceptance():
    repo = ConflictResolutionRepository()
    repo.accept(_PAIR, expires_at=_NOW)

    assert repo.is_accepted(_PAIR, now=_NOW - timedelta(hours=1)) is True
    assert repo.is_accepted(_PAIR, now=_NOW + timedelta(hours=1)) is False
    assert repo.get(_PAIR) is None


def test_cleanup_expired():
    repo = ConflictResolutionRepository()
    repo.accept("x", expires_at=_NOW)
    repo.accept("y")
    assert repo.cleanup_expired(now=_NOW + timedelta(seconds=1)) == 1
    assert [r.conflict_id for r in repo.list_all()] == ["y"]


# ---------------------------------------------------------------------------
# Bus handlers
# ---------------------------------------------------------------------------


def test_accept_via_bus_hides_conflict(env):
    bus, event_repo, resolution_repo = env
    assert _detect(event_repo, resolution_repo, "b").has_conflicts is True

    bus.publish(ConflictAccepted(conflict_id=_PAIR, event_ids=["a", "b"]))

    assert resolution_repo.is_accepted(_PAIR) is True
    assert _detect(event_repo, resolution_repo, "b").has_conflicts is False
    assert _detect(event_repo, resolution_repo, "a").has_conflicts is False


def test_reschedule_supersedes_acceptance(env):
    bus, event_repo, resolution_repo = env
    bus.publish(ConflictAccepted(conflict_id=_PAIR, event_ids=["a", "b"]))

    bus.publish(EventRescheduled(event_id="b", start_time=_at(10, 15), end_time=_at(11, 15)))

    assert event_repo.get("b").start_time == _at(10, 15)
    assert event_repo.get("b").end_time == _at(11, 15)
    assert resolution_repo.get(_PAIR).status == ResolutionStatus.SUPERSEDED
    assert resolution_repo.is_accepted(_PAIR) is False
    assert _detect(event_repo, resolution_repo, "b").has_conflicts is True


def test_reschedule_unknown_event_is_ignored(env):
    bus, event_repo, resolution_repo = env
    bus.publish(ConflictAccepted(conflict_id=_PAIR, event_ids=["a", "b"]))

    bus.publish(EventRescheduled(event_id="zzz", start_time=_at(9), end_time=_at(10)))

    assert resolution_repo.is_accepted(_PAIR) is True


def test_delete_supersedes_acceptance(env):
    bus, event_repo, resolution_repo = env
    bus.publish(ConflictAccepted(conflict_id=_PAIR, event_ids=["a", "b"]))

    bus.publish(EventDeleted(event_id="a"))

    assert event_repo.get("a") is None
    assert resolution_repo.get(_PAIR).status == ResolutionStatus.SUPERSEDED


def test_superseded_conflict_becomes_pending_again(env):
    bus, event_repo, resolution_repo = env
    bus.publish(ConflictAccepted(conflict_id=_PAIR, event_ids=["a", "b"]))
    bus.publish(EventRescheduled(event_id="a", start_time=_at(10, 15), end_time=_at(11, 15)))

    resolution_repo.record_pending(_detect(event_repo, resolution_repo, "b").conflicts)

    assert resolution_repo.get(_PAIR).status == ResolutionStatus.PENDING


# ---------------------------------------------------------------------------
# HTTP routes
# ---------------------------------------------------------------------------


@pytest.fixture()
def client():
    app_event_repo._store.clear()
    app_resolution_repo._store.clear()
    yield TestClient(app)
    app_event_repo._store.clear()
    app_resolution_repo._store.clear()


def _post_event(client: TestClient, event_id: str, start: str, end: str):
    return client.post(
        "/events",
        json={"id": event_id, "title": event_id.upper(), "startDateTime": start, "endDateTime": end},
    )


def test_preview_route(client: TestClient):
    resp = client.post(
        "/schedules/preview",
        json={
            "start_date": "2024-01-07T10:00:00",
            "schedule_rule": {
                "frequency": "weekly",
                "interval": 1,
                "days_of_week": [1, 3],
                "end_rule": {"type": "occurrences", "value": 4},
            },
        },
    )
    assert resp.status_code == 200
    body = resp.json()
    assert [o["date"][:10] for o in body] == ["2024-01-08", "2024-01-10", "2024-01-15", "2024-01-17"]
    assert body[-1]["is_last"] is True


def test_validate_route_reports_without_rejecting(client: TestClient):
    resp = client.post("/schedules/validate", json={"frequency": "weekly", "interval": 0})
    assert resp.status_code == 200
    body = resp.json()
    assert body["is_valid"] is False
    assert {"interval": 1} in body["suggested_fixes"]


def test_describe_route(client: TestClient):
    resp = client.post("/schedules/describe", json={"frequency": "monthly", "day_of_month": -1})
    assert resp.status_code == 200
    assert resp.json() == {
        "description": "Last day of every month",
        "rrule": "FREQ=MONTHLY;BYMONTHDAY=-1",
    }


def test_options_route(client: TestClient):
    resp = client.get("/schedules/options")
    assert resp.status_code == 200
    assert len(resp.json()) == 5


def test_create_event_rejects_inverted_times(client: TestClient):
    resp = _post_event(client, "bad", "2024-01-10T11:00:00Z", "2024-01-10T10:00:00Z")
    assert resp.status_code == 422


def test_detect_accept_and_reschedule_flow(client: TestClient):
    assert _post_event(client, "a", "2024-01-10T10:00:00Z", "2024-01-10T11:00:00Z").status_code == 200

    detect = client.post(
        "/conflicts/detect",
        json={"event": {"id": "b", "startDateTime": "2024-01-10T10:30:00Z", "endDateTime": "2024-01-10T11:30:00Z"}},
    )
    assert detect.status_code == 200
    assert [c["id"] for c in detect.json()["conflicts"]] == [_PAIR]
    assert app_resolution_repo.get(_PAIR).status == ResolutionStatus.PENDING

    _post_event(client, "b", "2024-01-10T10:30:00Z", "2024-01-10T11:30:00Z")
    assert client.get("/conflicts").json()["count"] == 1

    accept = client.post(f"/conflicts/{_PAIR}/accept", json={})
    assert accept.status_code == 200
    assert accept.json()["status"] == "accepted"
    assert client.get("/conflicts").json()["count"] == 0

    moved = client.patch(
        "/events/b/reschedule",
        json={"start_time": "2024-01-10T10:15:00Z", "end_time": "2024-01-10T11:15:00Z"},
    )
    assert moved.status_code == 200
    assert moved.json()["start_time"].startswith("2024-01-10T10:15:00")
    assert client.get("/conflicts").json()["count"] == 1


def test_delete_event_route(client: TestClient):
    _post_event(client, "a", "2024-01-10T10:00:00Z", "2024-01-10T11:00:00Z")
    assert client.delete("/events/a").status_code == 200
    assert client.get("/events").json() == []


def test_unknown_event_returns_404(client: TestClient):
    assert client.delete("/events/nope").status_code == 404
    resp = client.patch(
        "/events/nope/reschedule",
        json={"start_time": "2024-01-10T10:00:00Z", "end_time": "2024-01-10T11:00:00Z"},
    )
    assert resp.status_code == 404


def test_preview_route_accepts_camel_case_rule(client: TestClient):
    resp = client.post(
        "/schedules/preview",
        json={
            "start_date": "2024-01-07T10:00:00",
            "schedule_rule": {
                "frequency": "weekly",
                "interval": 1,
                "daysOfWeek": [1, 3],
                "endRule": {"type": "occurrences", "value": 2},
            },
        },
    )
    assert resp.status_code == 200
    assert [o["date"][:10] for o in resp.json()] == ["2024-01-08", "2024-01-10"]


def test_validate_route_reads_camel_case_keys(client: TestClient):
    resp = client.post(
        "/schedules/validate",
        json={"frequency": "monthly", "interval": 1, "dayOfMonth": 99},
    )
    body = resp.json()
    assert body["is_valid"] is False
    assert body["errors"] == ["Day of month must be between 1-31 or -1 for last day"]


# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------


@pytest.fixture()
def package_logger():
    engine_logger = logging.getLogger("schedule_engine")
    level = engine_logger.level
    yield engine_logger
    engine_logger.setLevel(level)


def test_configure_logging_reads_level(package_logger):
    configure_logging({"SCHEDULE_ENGINE_LOG_LEVEL": "debug"})
    assert package_logger.level == logging.DEBUG


def test_logging_configured_on_startup(package_logger, monkeypatch):
    package_logger.setLevel(logging.NOTSET)
    monkeypatch.setenv("SCHEDULE_ENGINE_LOG_LEVEL", "WARNING")

    with TestClient(app) as started:
        assert started.get("/schedules/options").status_code == 200
        assert package_logger.level == logging.WARNING
