"""Sync cursor (sync token) store, one row per (user, calendar)."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from calsync.store.database import session_scope, utcnow
from calsync.store.tables import SyncCursor

logger = logging.getLogger(__name__)


class SyncCursorStore:
    """Persistence adapter for incremental sync tokens."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._sessions = session_factory

    def get(self, user_email: str, calendar_id: str = "primary") -> SyncCursor | None:
        with session_scope(self._sessions) as session:
            return session.scalars(
                select(SyncCursor).where(
                    SyncCursor.user_email == user_email,
                    SyncCursor.calendar_id == calendar_id,
                )
            ).first()

    def upsert(
        self,
        user_email: str,
        calendar_id: str,
        sync_token: str,
        now: datetime | None = None,
    ) -> SyncCursor:
        """Store *sync_token* as the calendar's cursor, replacing any previous one."""
        now = now or utcnow()
        with session_scope(self._sessions) as session:
            row = session.scalars(
                select(SyncCursor).where(
                    SyncCursor.user_email == user_email,
                    SyncCursor.calendar_id == calendar_id,
                )
            ).first()
            if row is None:
                row = SyncCursor(
                    user_email=user_email,
                    calendar_id=calendar_id,
                    sync_token=sync_token,
                    last_sync=now,
                )
                session.add(row)
            else:
                row.sync_token = sync_token
                row.last_sync = now
            session.flush()
        logger.debug("Stored sync cursor for %s/%s", user_email, calendar_id)
        return row

    def delete(self, user_email: str, calendar_id: str = "primary") -> bool:
        """Drop the cursor so the next sync is a full resync."""
        with session_scope(self._sessions) as session:
            result = session.execute(
                delete(SyncCursor).where(
                    SyncCursor.user_email == user_email,
                    SyncCursor.calendar_id == calendar_id,
                )
            )
        return result.rowcount > 0
