"""Map between Google Calendar event resources and local models.

- :func:`map_from_google_event` turns an ``events.list`` item into
  :class:`~calsync.models.events.CachedEventData` for the local cache.
- :func:`map_to_google_event` turns an
  :class:`~calsync.models.events.EventDraft` into an API body for
  ``events().insert()`` / ``events().update()``.

Timed events carry ``dateTime`` with an offset.  All-day events carry only a
``date``; they are anchored at midnight in the configured timezone.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from typing import Any
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from calsync.calendar.exceptions import CalendarValidationError
from calsync.models.events import Attendee, CachedEventData, EventDraft

logger = logging.getLogger(__name__)

_KNOWN_STATUSES = frozenset({"confirmed", "tentative", "cancelled"})


def is_complete(google_event: dict[str, Any]) -> bool:
    """Whether *google_event* has the title and times needed for the cache.

    Providers emit placeholder items (e.g. declined instances) without them.
    """
    start, end = parse_event_times(google_event, timezone.utc)
    return bool(google_event.get("summary")) and start is not None and end is not None


def map_from_google_event(
    google_event: dict[str, Any],
    user_email: str,
    calendar_id: str,
    tz_name: str = "UTC",
) -> CachedEventData:
    """Convert a Google Calendar event resource into a cache row payload.

    Args:
        google_event: Event resource dict; must have ``id``, ``summary``,
            ``start`` and ``end``.
        user_email: Owner of the calendar.
        calendar_id: Calendar the event was listed from.
        tz_name: IANA timezone used for all-day events.

    Raises:
        CalendarValidationError: If the resource lacks an id, title or times.
    """
    event_id = google_event.get("id")
    if not event_id:
        raise CalendarValidationError("Cannot map an event without an id")

    start, end = parse_event_times(google_event, ZoneInfo(tz_name))
    title = google_event.get("summary")
    if not title or start is None or end is None:
        raise CalendarValidationError(f"Event {event_id} is missing a title or start/end time")

    status = google_event.get("status", "confirmed")
    if status not in _KNOWN_STATUSES:
        status = "confirmed"

    recurring_event_id = google_event.get("recurringEventId")
    last_modified = _parse_timestamp(google_event.get("updated")) or datetime.now(timezone.utc)

    return CachedEventData(
        user_email=user_email,
        calendar_id=calendar_id,
        remote_event_id=event_id,
        title=title,
        description=google_event.get("description"),
        location=google_event.get("location"),
        start_time=start,
        end_time=end,
        status=status,
        attendees=_parse_attendees(google_event.get("attendees") or []),
        is_recurring=bool(recurring_event_id or google_event.get("recurrence")),
        recurring_event_id=recurring_event_id,
        etag=google_event.get("etag"),
        last_modified=last_modified,
    )


def map_to_google_event(draft: EventDraft, tz_name: str = "UTC") -> dict[str, Any]:
    """Convert a locally authored event into a Google Calendar API body.

    Raises:
        CalendarValidationError: If the times are naive or not strictly
            ordered.  Nothing is sent to the provider in that case.
    """
    if draft.start_time.tzinfo is None or draft.end_time.tzinfo is None:
        raise CalendarValidationError("start_time and end_time must be timezone-aware")
    if draft.end_time <= draft.start_time:
        raise CalendarValidationError(
            f"end_time ({draft.end_time.isoformat()}) must be after "
            f"start_time ({draft.start_time.isoformat()})"
        )

    body: dict[str, Any] = {
        "summary": draft.title,
        "start": _format_datetime(draft.start_time, tz_name),
        "end": _format_datetime(draft.end_time, tz_name),
    }
    if draft.description:
        body["description"] = draft.description
    if draft.location:
        body["location"] = draft.location
    if draft.attendees:
        body["attendees"] = [
            a.model_dump(by_alias=True, exclude_none=True, exclude={"response_status"})
            for a in draft.attendees
        ]

    logger.debug(
        "Mapped draft '%s' (%s -> %s) to Google Calendar body",
        draft.title,
        draft.start_time.isoformat(),
        draft.end_time.isoformat(),
    )
    return body


def parse_event_times(
    google_event: dict[str, Any],
    tz: timezone | ZoneInfo,
) -> tuple[datetime | None, datetime | None]:
    """Extract aware start and end datetimes from an event resource.

    Handles both ``dateTime`` (timed events) and ``date`` (all-day events).
    Either value is ``None`` if missing or unparsable.
    """
    return (
        _parse_boundary(google_event.get("start") or {}, tz),
        _parse_boundary(google_event.get("end") or {}, tz),
    )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _parse_boundary(boundary: Any, tz: timezone | ZoneInfo) -> datetime | None:
    if not isinstance(boundary, dict):
        return None
    if boundary.get("dateTime"):
        parsed = _parse_timestamp(boundary["dateTime"])
        if parsed is not None:
            return parsed
    if boundary.get("date"):
        try:
            day = date.fromisoformat(boundary["date"])
        except (TypeError, ValueError):
            return None
        return datetime.combine(day, time.min, tzinfo=tz)
    return None


def _parse_timestamp(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_attendees(raw: Any) -> list[Attendee]:
    attendees: list[Attendee] = []
    if not isinstance(raw, list):
        return attendees
    for item in raw:
        if not isinstance(item, dict) or not item.get("email"):
            continue
        try:
            attendees.append(Attendee.model_validate(item))
        except ValidationError:
            logger.debug("Ignoring malformed attendee entry: %r", item)
    return attendees


def _format_datetime(dt: datetime, tz_name: str) -> dict[str, str]:
    return {
        "dateTime": dt.isoformat(),
        "timeZone": tz_name,
    }
