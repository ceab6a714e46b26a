"""Pydantic models for calendar events crossing the sync boundary.

- :class:`Attendee` -- one attendee, using the provider's camelCase aliases.
- :class:`EventDraft` -- a locally authored event about to be written to
  the remote calendar (create or update).
- :class:`CachedEventData` -- a remote event mapped into the shape of the
  local cache row, produced by
  :func:`~calsync.calendar.event_mapper.map_from_google_event`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

EventStatus = Literal["confirmed", "tentative", "cancelled"]
SyncStatus = Literal["synced", "pending", "error"]
ResponseStatus = Literal["needsAction", "declined", "tentative", "accepted"]


class Attendee(BaseModel):
    """A calendar event attendee.

    Serialises with the provider's field names (``displayName``,
    ``responseStatus``) so the same model is used for API bodies and the
    JSON ``attendees`` column.
    """

    model_config = ConfigDict(populate_by_name=True)

    email: str
    display_name: str | None = Field(default=None, alias="displayName")
    response_status: ResponseStatus | None = Field(default=None, alias="responseStatus")

    @field_validator("response_status", mode="before")
    @classmethod
    def _drop_unknown_status(cls, value: object) -> object:
        # Providers occasionally add states; treat them as unknown.
        if value not in (None, "needsAction", "declined", "tentative", "accepted"):
            return None
        return value

    def to_api(self) -> dict[str, str]:
        return self.model_dump(by_alias=True, exclude_none=True)


class EventDraft(BaseModel):
    """An event authored locally (e.g. a scheduled shoot).

    Ordering of ``start_time`` and ``end_time`` is checked by the event
    mapper so the failure surfaces as a calendar validation error before any
    network call.

    Attributes:
        title: Event summary.
        start_time: Timezone-aware start.
        end_time: Timezone-aware end.
        description: Optional free text.
        location: Optional location string.
        attendees: Attendees to invite.
    """

    title: str = Field(min_length=1)
    start_time: datetime
    end_time: datetime
    description: str | None = None
    location: str | None = None
    attendees: list[Attendee] = Field(default_factory=list)


class CachedEventData(BaseModel):
    """Field values of one ``calendar_events_cache`` row."""

    user_email: str
    calendar_id: str
    remote_event_id: str
    title: str
    description: str | None = None
    location: str | None = None
    start_time: datetime
    end_time: datetime
    status: EventStatus = "confirmed"
    attendees: list[Attendee] = Field(default_factory=list)
    is_recurring: bool = False
    recurring_event_id: str | None = None
    etag: str | None = None
    last_modified: datetime
    sync_status: SyncStatus = "synced"
    conflict_detected: bool = False
    shoot_id: int | None = None
