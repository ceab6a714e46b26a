"""Data models for calendar sync results and gateway responses.

Defines the structured values passed between the sync engine, the conflict
detector and the remote gateway:

- :class:`SyncResult` -- outcome of one ``sync_calendar`` run.
- :class:`ConflictingEvent` / :class:`ConflictInfo` -- overlap report for a
  candidate interval.
- :class:`EventPage` -- one page of the remote change feed.
- :class:`ChannelRegistration` -- a push channel accepted by the provider.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class SyncResult:
    """Aggregated result of synchronising one (user, calendar) pair.

    A run either succeeds with counts, or fails with a single classified
    error.  ``error_kind`` carries the ``kind`` of the
    :class:`~calsync.calendar.exceptions.CalendarAPIError` that ended the run
    (``"reconnect_required"``, ``"rate_limited"``, ``"in_progress"``...).

    Attributes:
        success: Whether the run completed.
        synced_count: Events upserted into the local cache.
        deleted_count: Cancellation items processed (including ones that
            were already absent from the cache).
        conflict_count: Cached events found overlapping another event.
        next_cursor: Sync token stored for the next incremental run, if the
            provider supplied one.
        full_sync: Whether the run ended up performing a full resync.
        error: Human-readable failure summary.
        error_kind: Machine-readable failure class.
    """

    success: bool = True
    synced_count: int = 0
    deleted_count: int = 0
    conflict_count: int = 0
    next_cursor: str | None = None
    full_sync: bool = False
    error: str | None = None
    error_kind: str | None = None

    @classmethod
    def failed(cls, error: str, error_kind: str | None = None) -> SyncResult:
        """Build a failed result carrying *error*."""
        return cls(success=False, error=error, error_kind=error_kind)

    @property
    def total_processed(self) -> int:
        """Total number of feed items that changed the cache."""
        return self.synced_count + self.deleted_count

    @property
    def has_conflicts(self) -> bool:
        """Whether any scheduling conflicts were detected."""
        return self.conflict_count > 0


@dataclass(frozen=True)
class ConflictingEvent:
    """A cached event that overlaps a candidate interval."""

    id: str
    title: str
    start_time: datetime
    end_time: datetime

    @property
    def duration_minutes(self) -> int:
        return round((self.end_time - self.start_time).total_seconds() / 60)

    def to_dict(self) -> dict[str, str]:
        return {
            "eventId": self.id,
            "title": self.title,
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat(),
        }


@dataclass
class ConflictInfo:
    """Conflicts found for the interval ``[start, end)``."""

    start: datetime
    end: datetime
    conflicting_events: list[ConflictingEvent] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return len(self.conflicting_events) > 0


@dataclass
class EventPage:
    """One page of a Google Calendar ``events.list`` response.

    Attributes:
        events: Raw event resource dicts.
        next_page_token: Token for the following page, ``None`` on the last.
        next_cursor: ``nextSyncToken``; only present on the last page.
    """

    events: list[dict[str, Any]] = field(default_factory=list)
    next_page_token: str | None = None
    next_cursor: str | None = None


@dataclass(frozen=True)
class ChannelRegistration:
    """A push-notification channel accepted by the provider."""

    channel_id: str
    resource_id: str
    resource_uri: str
    expiration: datetime | None
    token: str | None = None
