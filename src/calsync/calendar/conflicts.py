"""Scheduling conflict detection over cached events.

Intervals are half-open: ``[start, end)``.  Two events conflict iff
``a.start < b.end and b.start < a.end``, so back-to-back events that only
share a boundary instant do not conflict.

All functions here are pure; the sync engine persists the flags.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Protocol

from calsync.models.calendar import ConflictInfo, ConflictingEvent


class TimedEvent(Protocol):
    remote_event_id: str
    title: str
    start_time: datetime
    end_time: datetime


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open interval overlap test."""
    return start_a < end_b and start_b < end_a


def find_overlapping(
    events: Iterable[TimedEvent],
    start: datetime,
    end: datetime,
    exclude_id: str | None = None,
) -> list[ConflictingEvent]:
    """Return the events overlapping ``[start, end)``, skipping *exclude_id*."""
    conflicts: list[ConflictingEvent] = []
    for event in events:
        if exclude_id is not None and event.remote_event_id == exclude_id:
            continue
        if overlaps(start, end, event.start_time, event.end_time):
            conflicts.append(_as_conflicting(event))
    return conflicts


def check_interval(
    events: Iterable[TimedEvent],
    start: datetime,
    end: datetime,
    exclude_id: str | None = None,
) -> ConflictInfo:
    """Build the :class:`ConflictInfo` for a candidate interval."""
    return ConflictInfo(
        start=start,
        end=end,
        conflicting_events=find_overlapping(events, start, end, exclude_id),
    )


def detect_conflicts(events: Sequence[TimedEvent]) -> dict[str, list[ConflictingEvent]]:
    """Map each event id to the other events it overlaps.

    Every event appears in the result, with an empty list when it is free.
    Events are swept in start order so each pair is compared once.
    """
    result: dict[str, list[ConflictingEvent]] = {e.remote_event_id: [] for e in events}
    ordered = sorted(events, key=lambda e: (e.start_time, e.end_time))

    for i, current in enumerate(ordered):
        for other in ordered[i + 1 :]:
            if other.start_time >= current.end_time:
                break
            if overlaps(current.start_time, current.end_time, other.start_time, other.end_time):
                result[current.remote_event_id].append(_as_conflicting(other))
                result[other.remote_event_id].append(_as_conflicting(current))

    return result


def _as_conflicting(event: TimedEvent) -> ConflictingEvent:
    return ConflictingEvent(
        id=event.remote_event_id,
        title=event.title,
        start_time=event.start_time,
        end_time=event.end_time,
    )
