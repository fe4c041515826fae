"""Service for detecting scheduling conflicts between events."""

from __future__ import annotations

import inspect
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Iterable, Mapping, Protocol

from schedule_engine.domain.config import ConflictDetectionConfig
from schedule_engine.domain.models import (
    AlternativeSlot,
    Conflict,
    ConflictResult,
    ConflictType,
    ResolutionStrategy,
    ResolutionSuggestion,
    UnifiedEvent,
)
from schedule_engine.services.checks import CHECKS, Check, window

logger = logging.getLogger(__name__)

# Alternative slots are searched within this distance of the original start.
_SEARCH_OFFSETS_MINUTES = [m for m in range(-120, 121, 30) if m != 0]
_MAX_ALTERNATIVES = 3


class ResolutionStore(Protocol):
    """Lookup of conflicts a user has chosen to accept.

    Either method may be a coroutine function.
    """

    def is_accepted(self, conflict_id: str) -> bool | Awaitable[bool]: ...

    def accept(self, conflict_id: str) -> None | Awaitable[None]: ...


def _has_times(event: UnifiedEvent) -> bool:
    return event.start_time is not None and event.end_time is not None


class ConflictDetector:
    """Runs the enabled conflict checks against a set of existing events.

    Custom checks are registered by rule id and run for rules of type
    ``ConflictType.CUSTOM``.
    """

    def __init__(
        self,
        config: ConflictDetectionConfig | None = None,
        custom_checks: Mapping[str, Check] | None = None,
    ) -> None:
        self._config = config or ConflictDetectionConfig()
        self._custom_checks = dict(custom_checks or {})

    @property
    def config(self) -> ConflictDetectionConfig:
        return self._config

    def update_config(self, **changes) -> None:
        """Replace config fields; the result is validated like a new config."""
        self._config = ConflictDetectionConfig.model_validate(
            {**self._config.model_dump(), **changes}
        )

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def _comparable(
        self, proposed: UnifiedEvent, existing_events: Iterable[UnifiedEvent]
    ) -> list[UnifiedEvent]:
        comparable = []
        for event in existing_events:
            if event.id == proposed.id:
                continue
            if not _has_times(event):
                logger.debug("Skipping event %s without start/end time", event.id)
                continue
            comparable.append(event)
        return comparable

    def _run_checks(
        self, proposed: UnifiedEvent, existing_events: list[UnifiedEvent]
    ) -> list[Conflict]:
        conflicts: dict[str, Conflict] = {}
        for rule in self._config.enabled_rules():
            if rule.type == ConflictType.CUSTOM:
                check = self._custom_checks.get(rule.id)
            else:
                check = CHECKS.get(rule.type)
            if check is None:
                logger.debug("No check registered for rule %s", rule.id)
                continue
            for conflict in check(rule, proposed, existing_events, self._config):
                conflicts.setdefault(conflict.id, conflict)
        return list(conflicts.values())

    def _result(
        self,
        proposed: UnifiedEvent,
        conflicts: list[Conflict],
        existing_events: list[UnifiedEvent],
    ) -> ConflictResult:
        return ConflictResult(
            has_conflicts=bool(conflicts),
            conflicts=conflicts,
            suggestions=self._suggest(proposed, conflicts, existing_events),
            can_proceed=not any(c.is_blocking for c in conflicts),
        )

    def detect_conflicts(
        self, proposed_event: UnifiedEvent, existing_events: Iterable[UnifiedEvent]
    ) -> ConflictResult:
        """Check ``proposed_event`` against ``existing_events``.

        Events without a start or end time are left out of the comparison,
        as is any existing event sharing the proposed event's id.
        """
        if not _has_times(proposed_event):
            logger.warning("Proposed event %s has no start/end time", proposed_event.id)
            return ConflictResult(has_conflicts=False)

        others = self._comparable(proposed_event, existing_events)
        conflicts = self._run_checks(proposed_event, others)
        if conflicts:
            logger.debug(
                "Event %s has %d conflict(s) against %d event(s)",
                proposed_event.id,
                len(conflicts),
                len(others),
            )
        return self._result(proposed_event, conflicts, others)

    def has_conflicts(
        self, proposed_event: UnifiedEvent, existing_events: Iterable[UnifiedEvent]
    ) -> bool:
        """Like ``detect_conflicts`` but without building suggestions."""
        if not _has_times(proposed_event):
            return False
        others = self._comparable(proposed_event, existing_events)
        return bool(self._run_checks(proposed_event, others))

    async def detect_conflicts_with_resolutions(
        self,
        proposed_event: UnifiedEvent,
        existing_events: Iterable[UnifiedEvent],
        store: ResolutionStore | None = None,
        accepted_ids: Iterable[str] | None = None,
    ) -> ConflictResult:
        """Detect conflicts, leaving out the ones the user already accepted.

        A conflict is dropped when its id is in ``accepted_ids`` or the
        ``store`` reports it accepted. A failing store lookup keeps the
        conflict visible.
        """
        existing = list(existing_events)
        result = self.detect_conflicts(proposed_event, existing)
        if not result.conflicts:
            return result

        accepted = set(accepted_ids or ())
        unresolved = []
        for conflict in result.conflicts:
            if conflict.id in accepted:
                continue
            if store is not None and await _is_accepted(store, conflict.id):
                continue
            unresolved.append(conflict)

        logger.info(
            "Event %s: %d of %d conflict(s) previously accepted",
            proposed_event.id,
            len(result.conflicts) - len(unresolved),
            len(result.conflicts),
        )
        return self._result(
            proposed_event, unresolved, self._comparable(proposed_event, existing)
        )

    def check_drag_conflicts(
        self,
        dragged_event: UnifiedEvent,
        new_start: datetime,
        new_end: datetime,
        existing_events: Iterable[UnifiedEvent],
    ) -> ConflictResult:
        """Check a re-timed copy of ``dragged_event``; the original is ignored."""
        moved = dragged_event.model_copy(
            update={
                "start_time": new_start,
                "end_time": new_end,
                "duration": round((new_end - new_start).total_seconds() / 60),
            }
        )
        return self.detect_conflicts(moved, existing_events)

    def detect_batch_conflicts(
        self, events: Iterable[UnifiedEvent]
    ) -> dict[str, ConflictResult]:
        """Check every event against all the others.

        Each overlapping pair appears in both events' results under the same
        conflict id; use ``unique_conflicts`` for a de-duplicated list.
        """
        events = list(events)
        untimed = [event.id for event in events if not _has_times(event)]
        if untimed:
            logger.warning(
                "Skipping %d event(s) without start/end time: %s",
                len(untimed),
                ", ".join(untimed),
            )

        results: dict[str, ConflictResult] = {}
        for index, event in enumerate(events):
            if not _has_times(event):
                results[event.id] = ConflictResult(has_conflicts=False)
                continue
            others = events[:index] + events[index + 1 :]
            results[event.id] = self.detect_conflicts(event, others)
        return results

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    def _suggest(
        self,
        proposed: UnifiedEvent,
        conflicts: list[Conflict],
        existing_events: list[UnifiedEvent],
    ) -> list[ResolutionSuggestion]:
        if not conflicts:
            return []

        suggestions = [
            ResolutionSuggestion(
                strategy=ResolutionStrategy.CANCEL,
                description="Cancel this event and do not schedule it",
                estimated_impact="Event will not be created",
            )
        ]
        if not any(c.is_blocking for c in conflicts):
            suggestions.append(
                ResolutionSuggestion(
                    strategy=ResolutionStrategy.ALLOW,
                    description="Schedule it despite the conflicts",
                    estimated_impact="Overlaps may need to be sorted out by hand",
                    requires_client_notification=True,
                )
            )
        slots = self._alternative_slots(proposed, existing_events)
        if slots:
            suggestions.append(
                ResolutionSuggestion(
                    strategy=ResolutionStrategy.RESCHEDULE,
                    description="Move it to a nearby free time",
                    estimated_impact="Choose one of the alternative time slots",
                    requires_client_notification=True,
                    alternative_time_slots=slots,
                )
            )
        return suggestions

    def _alternative_slots(
        self, proposed: UnifiedEvent, existing_events: list[UnifiedEvent]
    ) -> list[AlternativeSlot]:
        start, end = window(proposed, self._config)
        length = end - start
        slots = []
        for offset in _SEARCH_OFFSETS_MINUTES:
            candidate_start = start + timedelta(minutes=offset)
            candidate = proposed.model_copy(
                update={"start_time": candidate_start, "end_time": candidate_start + length}
            )
            if self.has_conflicts(candidate, existing_events):
                continue
            slots.append(
                AlternativeSlot(
                    start=candidate_start,
                    end=candidate_start + length,
                    confidence=1 - abs(offset) / 240,
                )
            )
        slots.sort(key=lambda slot: slot.confidence, reverse=True)
        return slots[:_MAX_ALTERNATIVES]


async def _is_accepted(store: ResolutionStore, conflict_id: str) -> bool:
    try:
        accepted = store.is_accepted(conflict_id)
        if inspect.isawaitable(accepted):
            accepted = await accepted
    except Exception:
        logger.warning(
            "Acceptance lookup failed for conflict %s; keeping it visible",
            conflict_id,
            exc_info=True,
        )
        return False
    return bool(accepted)


def unique_conflicts(results: Mapping[str, ConflictResult]) -> list[Conflict]:
    """Coalesce batch results into one list, each conflict id once."""
    seen: dict[str, Conflict] = {}
    for result in results.values():
        for conflict in result.conflicts:
            seen.setdefault(conflict.id, conflict)
    return list(seen.values())


# ---------------------------------------------------------------------------
# Module-level entry points using the default configuration
# ---------------------------------------------------------------------------

_default_detector = ConflictDetector()


def detect_conflicts(
    proposed_event: UnifiedEvent, existing_events: Iterable[UnifiedEvent]
) -> ConflictResult:
    return _default_detector.detect_conflicts(proposed_event, existing_events)


async def detect_conflicts_with_resolutions(
    proposed_event: UnifiedEvent,
    existing_events: Iterable[UnifiedEvent],
    store: ResolutionStore | None = None,
    accepted_ids: Iterable[str] | None = None,
) -> ConflictResult:
    return await _default_detector.detect_conflicts_with_resolutions(
        proposed_event, existing_events, store, accepted_ids
    )


def detect_batch_conflicts(events: Iterable[UnifiedEvent]) -> dict[str, ConflictResult]:
    return _default_detector.detect_batch_conflicts(events)
