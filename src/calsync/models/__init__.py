"""Data models for calsync."""

from __future__ import annotations

from calsync.models.calendar import (
    ChannelRegistration,
    ConflictInfo,
    ConflictingEvent,
    EventPage,
    SyncResult,
)
from calsync.models.events import Attendee, CachedEventData, EventDraft

__all__ = [
    "Attendee",
    "CachedEventData",
    "ChannelRegistration",
    "ConflictInfo",
    "ConflictingEvent",
    "EventDraft",
    "EventPage",
    "SyncResult",
]
