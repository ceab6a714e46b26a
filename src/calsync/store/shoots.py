"""Calendar linkage of internal shoot records."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from calsync.store.database import session_scope
from calsync.store.tables import Shoot

DELETED_EXTERNALLY = "Calendar event deleted externally"


class ShootLinkStore:
    """Reads and clears the calendar fields of shoot records."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._sessions = session_factory

    def get(self, shoot_id: int) -> Shoot | None:
        with session_scope(self._sessions) as session:
            return session.get(Shoot, shoot_id)

    def exists(self, shoot_id: int) -> bool:
        """Whether the shoot exists and is not soft-deleted."""
        shoot = self.get(shoot_id)
        return shoot is not None and shoot.deleted_at is None

    def find_by_calendar_event_id(self, event_id: str) -> list[Shoot]:
        """Live shoots pointing at *event_id*."""
        with session_scope(self._sessions) as session:
            rows = session.scalars(
                select(Shoot).where(
                    Shoot.calendar_event_id == event_id,
                    Shoot.deleted_at.is_(None),
                )
            ).all()
            return list(rows)

    def link(self, shoot_id: int, event_id: str, now: datetime) -> bool:
        with session_scope(self._sessions) as session:
            result = session.execute(
                update(Shoot)
                .where(Shoot.id == shoot_id)
                .values(
                    calendar_event_id=event_id,
                    calendar_sync_status="synced",
                    calendar_last_sync=now,
                    calendar_error=None,
                )
            )
            return result.rowcount > 0

    def clear_calendar_sync(
        self, shoot_id: int, event_id: str, reason: str = DELETED_EXTERNALLY
    ) -> bool:
        """Clear the linkage of *shoot_id* if it still points at *event_id*.

        The compare-and-clear keeps a concurrent relink to a new event intact.
        """
        with session_scope(self._sessions) as session:
            result = session.execute(
                update(Shoot)
                .where(Shoot.id == shoot_id, Shoot.calendar_event_id == event_id)
                .values(
                    calendar_event_id=None,
                    calendar_sync_status=None,
                    calendar_last_sync=None,
                    calendar_error=reason,
                )
            )
            return result.rowcount > 0
