"""Local event cache keyed by (user, calendar, remote event id)."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session, sessionmaker

from calsync.models.calendar import ConflictingEvent
from calsync.models.events import CachedEventData
from calsync.store.database import session_scope
from calsync.store.tables import CachedEvent, SyncStatus

logger = logging.getLogger(__name__)


class EventCacheStore:
    """Persistence adapter for :class:`~calsync.store.tables.CachedEvent` rows.

    Args:
        session_factory: ``sessionmaker`` bound to the sync database.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._sessions = session_factory

    def list_cached_events(self, user_email: str, calendar_id: str = "primary") -> list[CachedEvent]:
        """Return every cached event of the calendar ordered by start time."""
        with session_scope(self._sessions) as session:
            rows = session.scalars(
                select(CachedEvent)
                .where(
                    CachedEvent.user_email == user_email,
                    CachedEvent.calendar_id == calendar_id,
                )
                .order_by(CachedEvent.start_time, CachedEvent.remote_event_id)
            ).all()
            return list(rows)

    def get(self, user_email: str, calendar_id: str, remote_event_id: str) -> CachedEvent | None:
        with session_scope(self._sessions) as session:
            return self._find(session, user_email, calendar_id, remote_event_id)

    def upsert(self, data: CachedEventData) -> CachedEvent:
        """Insert or update the row keyed by the event identity.

        An existing shoot link is kept when *data* carries none, since the
        remote feed has no knowledge of internal records.
        """
        values = data.model_dump(exclude={"attendees"})
        values["attendees"] = [a.to_api() for a in data.attendees]

        with session_scope(self._sessions) as session:
            row = self._find(session, data.user_email, data.calendar_id, data.remote_event_id)
            if row is None:
                row = CachedEvent(**values)
                session.add(row)
                logger.debug("Cached new event %s (%s)", data.remote_event_id, data.title)
            else:
                if values.get("shoot_id") is None:
                    values.pop("shoot_id")
                for name, value in values.items():
                    setattr(row, name, value)
                logger.debug("Updated cached event %s (%s)", data.remote_event_id, data.title)
            session.flush()
            return row

    def delete(self, user_email: str, calendar_id: str, remote_event_id: str) -> bool:
        """Remove one cached event.

        Returns:
            ``True`` if a row was removed, ``False`` if none existed.
        """
        with session_scope(self._sessions) as session:
            result = session.execute(
                delete(CachedEvent).where(
                    CachedEvent.user_email == user_email,
                    CachedEvent.calendar_id == calendar_id,
                    CachedEvent.remote_event_id == remote_event_id,
                )
            )
            return result.rowcount > 0

    def clear(self, user_email: str, calendar_id: str = "primary") -> int:
        """Remove every cached event of the calendar; returns the row count."""
        with session_scope(self._sessions) as session:
            result = session.execute(
                delete(CachedEvent).where(
                    CachedEvent.user_email == user_email,
                    CachedEvent.calendar_id == calendar_id,
                )
            )
        logger.info(
            "Cleared %d cached event(s) for %s/%s", result.rowcount, user_email, calendar_id
        )
        return result.rowcount

    def apply_conflicts(
        self,
        user_email: str,
        calendar_id: str,
        conflicts: Mapping[str, Sequence[ConflictingEvent]],
    ) -> int:
        """Write conflict flags for the whole calendar in one transaction.

        Events listed in *conflicts* with at least one counterpart become
        ``conflict_detected=True`` / ``sync_status=error``; all others are
        reset to ``synced``.

        Returns:
            Number of events flagged as conflicting.
        """
        flagged = 0
        with session_scope(self._sessions) as session:
            rows = session.scalars(
                select(CachedEvent).where(
                    CachedEvent.user_email == user_email,
                    CachedEvent.calendar_id == calendar_id,
                )
            ).all()
            for row in rows:
                overlapping = conflicts.get(row.remote_event_id) or ()
                if overlapping:
                    row.conflict_detected = True
                    row.sync_status = SyncStatus.ERROR.value
                    row.conflict_details = [c.to_dict() for c in overlapping]
                    flagged += 1
                else:
                    row.conflict_detected = False
                    row.sync_status = SyncStatus.SYNCED.value
                    row.conflict_details = None
        return flagged

    def link_shoot(
        self, user_email: str, calendar_id: str, remote_event_id: str, shoot_id: int
    ) -> bool:
        """Attach an internal shoot id to a cached event."""
        with session_scope(self._sessions) as session:
            result = session.execute(
                update(CachedEvent)
                .where(
                    CachedEvent.user_email == user_email,
                    CachedEvent.calendar_id == calendar_id,
                    CachedEvent.remote_event_id == remote_event_id,
                )
                .values(shoot_id=shoot_id)
            )
            return result.rowcount > 0

    def list_linked(self, user_email: str, calendar_id: str = "primary") -> list[CachedEvent]:
        """Return cached events that reference a shoot."""
        with session_scope(self._sessions) as session:
            rows = session.scalars(
                select(CachedEvent).where(
                    CachedEvent.user_email == user_email,
                    CachedEvent.calendar_id == calendar_id,
                    CachedEvent.shoot_id.is_not(None),
                )
            ).all()
            return list(rows)

    def unlink_shoot(self, user_email: str, calendar_id: str, shoot_id: int) -> int:
        """Clear every reference to *shoot_id* in the calendar's cache."""
        with session_scope(self._sessions) as session:
            result = session.execute(
                update(CachedEvent)
                .where(
                    CachedEvent.user_email == user_email,
                    CachedEvent.calendar_id == calendar_id,
                    CachedEvent.shoot_id == shoot_id,
                )
                .values(shoot_id=None)
            )
            return result.rowcount

    @staticmethod
    def _find(
        session: Session, user_email: str, calendar_id: str, remote_event_id: str
    ) -> CachedEvent | None:
        return session.scalars(
            select(CachedEvent).where(
                CachedEvent.user_email == user_email,
                CachedEvent.calendar_id == calendar_id,
                CachedEvent.remote_event_id == remote_event_id,
            )
        ).first()
