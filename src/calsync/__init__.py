"""calsync: Google Calendar synchronization engine.

Keeps a local cache of a user's Google Calendar in sync with the provider,
flags scheduling conflicts, and reconciles events deleted outside the
application.
"""

from __future__ import annotations

from calsync.config import ConfigError, Settings, load_settings
from calsync.models.calendar import ConflictInfo, ConflictingEvent, SyncResult
from calsync.models.events import Attendee, CachedEventData, EventDraft

__version__ = "0.1.0"

__all__ = [
    "Attendee",
    "CachedEventData",
    "ConfigError",
    "ConflictInfo",
    "ConflictingEvent",
    "EventDraft",
    "Settings",
    "SyncResult",
    "load_settings",
]
