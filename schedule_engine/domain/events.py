"""Domain events emitted while a caller works through detected conflicts."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class ConflictAccepted(BaseModel):
    """Fired when a user dismisses one specific conflict."""

    conflict_id: str
    event_ids: list[str] = Field(default_factory=list)
    expires_at: datetime | None = None


class EventRescheduled(BaseModel):
    """Fired when a stored event gets new start/end times."""

    event_id: str
    start_time: datetime
    end_time: datetime


class EventDeleted(BaseModel):
    """Fired when a stored event is removed."""

    event_id: str
