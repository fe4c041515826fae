"""In-memory repositories for events and conflict resolutions."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from schedule_engine.domain.models import (
    Conflict,
    ConflictResolution,
    ResolutionStatus,
    UnifiedEvent,
)
from schedule_engine.services import dates

logger = logging.getLogger(__name__)


class EventRepository:
    """Dict-backed store for UnifiedEvent instances, keyed by id.

    Raw records of either legacy shape are normalized on the way in, so
    everything read back out has the canonical event shape.
    """

    def __init__(self) -> None:
        self._store: dict[str, UnifiedEvent] = {}

    def add(self, event: UnifiedEvent) -> None:
        self._store[event.id] = event

    def add_record(self, record: Mapping[str, Any]) -> UnifiedEvent:
        event = UnifiedEvent.from_record(record)
        self.add(event)
        return event

    def get(self, event_id: str) -> UnifiedEvent | None:
        return self._store.get(event_id)

    def list_all(self) -> list[UnifiedEvent]:
        return list(self._store.values())

    def reschedule(self, event_id: str, start_time: datetime, end_time: datetime) -> UnifiedEvent | None:
        stored = self._store.get(event_id)
        if stored is None:
            return None
        moved = UnifiedEvent.model_validate(
            stored.model_dump() | {"start_time": start_time, "end_time": end_time, "duration": None}
        )
        self._store[event_id] = moved
        return moved

    def delete(self, event_id: str) -> None:
        self._store.pop(event_id, None)


class ConflictResolutionRepository:
    """Dict-backed store of per-conflict decisions, keyed by conflict id.

    Implements the ``ResolutionStore`` protocol used by resolution-aware
    detection. An acceptance holds only while both events keep their times;
    ``supersede_event`` retires it when either one moves or disappears.
    """

    def __init__(self) -> None:
        self._store: dict[str, ConflictResolution] = {}

    def record_pending(self, conflicts: Iterable[Conflict]) -> None:
        """Track newly surfaced conflicts without touching existing decisions."""
        for conflict in conflicts:
            existing = self._store.get(conflict.id)
            if existing is not None and existing.status != ResolutionStatus.SUPERSEDED:
                continue
            self._store[conflict.id] = ConflictResolution(
                conflict_id=conflict.id,
                event_ids=conflict.event_ids,
                message=conflict.message,
            )

    def accept(
        self,
        conflict_id: str,
        event_ids: Iterable[str] = (),
        expires_at: datetime | None = None,
    ) -> ConflictResolution:
        resolution = self._store.get(conflict_id) or ConflictResolution(conflict_id=conflict_id)
        resolution.status = ResolutionStatus.ACCEPTED
        resolution.resolved_at = datetime.now(timezone.utc)
        resolution.expires_at = expires_at
        ids = sorted(set(event_ids))
        if ids:
            resolution.event_ids = ids
        self._store[conflict_id] = resolution
        logger.info("Conflict %s accepted", conflict_id)
        return resolution

    def is_accepted(self, conflict_id: str, now: datetime | None = None) -> bool:
        resolution = self._store.get(conflict_id)
        if resolution is None or resolution.status != ResolutionStatus.ACCEPTED:
            return False
        current = now or datetime.now(timezone.utc)
        if resolution.expires_at is not None and dates.align(resolution.expires_at, current) <= current:
            logger.info("Acceptance of conflict %s expired", conflict_id)
            del self._store[conflict_id]
            return False
        return True

    def supersede_event(self, event_id: str) -> list[str]:
        """Retire every decision involving ``event_id``; return the conflict ids."""
        superseded = []
        for resolution in self._store.values():
            if event_id not in resolution.event_ids:
                continue
            if resolution.status == ResolutionStatus.SUPERSEDED:
                continue
            resolution.status = ResolutionStatus.SUPERSEDED
            superseded.append(resolution.conflict_id)
        if superseded:
            logger.info("Event %s changed; superseded %d conflict decision(s)", event_id, len(superseded))
        return superseded

    def get(self, conflict_id: str) -> ConflictResolution | None:
        return self._store.get(conflict_id)

    def list_all(self) -> list[ConflictResolution]:
        return list(self._store.values())

    def cleanup_expired(self, now: datetime | None = None) -> int:
        current = now or datetime.now(timezone.utc)
        expired = [
            conflict_id
            for conflict_id, resolution in self._store.items()
            if resolution.expires_at is not None and dates.align(resolution.expires_at, current) <= current
        ]
        for conflict_id in expired:
            del self._store[conflict_id]
        return len(expired)
