"""Domain event handlers, wired up at application startup."""

from __future__ import annotations

from schedule_engine.domain.bus import EventBus
from schedule_engine.domain.events import ConflictAccepted, EventDeleted, EventRescheduled
from schedule_engine.repos.memory import ConflictResolutionRepository, EventRepository


class HandlerRegistry:
    """Wires domain-event handlers to the bus with access to the repositories.

    Moving or deleting an event supersedes every acceptance that names it,
    so the next detection pass reports its conflicts afresh.
    """

    def __init__(
        self,
        bus: EventBus,
        event_repo: EventRepository,
        resolution_repo: ConflictResolutionRepository,
    ) -> None:
        self.bus = bus
        self.event_repo = event_repo
        self.resolution_repo = resolution_repo
        self._register()

    def _register(self) -> None:
        self.bus.subscribe(ConflictAccepted, self.on_conflict_accepted)
        self.bus.subscribe(EventRescheduled, self.on_event_rescheduled)
        self.bus.subscribe(EventDeleted, self.on_event_deleted)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_conflict_accepted(self, event: ConflictAccepted) -> None:
        self.resolution_repo.accept(
            event.conflict_id,
            event_ids=event.event_ids,
            expires_at=event.expires_at,
        )

    def on_event_rescheduled(self, event: EventRescheduled) -> None:
        moved = self.event_repo.reschedule(event.event_id, event.start_time, event.end_time)
        if moved is None:
            return
        self.resolution_repo.supersede_event(event.event_id)

    def on_event_deleted(self, event: EventDeleted) -> None:
        self.event_repo.delete(event.event_id)
        self.resolution_repo.supersede_event(event.event_id)
