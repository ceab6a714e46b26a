"""OAuth credential store per (user, provider)."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from calsync.store.database import session_scope, utcnow
from calsync.store.tables import Integration

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_PROVIDER = "google-calendar"


class CredentialStore:
    """Persistence adapter for :class:`~calsync.store.tables.Integration` rows."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._sessions = session_factory

    def get(self, user_email: str, provider: str = GOOGLE_CALENDAR_PROVIDER) -> Integration | None:
        with session_scope(self._sessions) as session:
            return self._find(session, user_email, provider)

    def upsert(
        self,
        user_email: str,
        provider: str = GOOGLE_CALENDAR_PROVIDER,
        *,
        access_token: str,
        refresh_token: str | None = None,
        expiry_date: datetime | None = None,
    ) -> Integration:
        """Store new tokens atomically.

        A ``None`` *refresh_token* keeps the stored one, because providers
        only reissue refresh tokens occasionally.  Any recorded error is
        cleared.
        """
        with session_scope(self._sessions) as session:
            row = self._find(session, user_email, provider)
            if row is None:
                row = Integration(user_email=user_email, provider=provider)
                session.add(row)
            row.connected = True
            row.access_token = access_token
            if refresh_token is not None:
                row.refresh_token = refresh_token
            row.expiry_date = expiry_date
            row.error = None
            session.flush()
        return row

    def record_error(
        self, user_email: str, message: str, provider: str = GOOGLE_CALENDAR_PROVIDER
    ) -> None:
        """Mark the integration as needing reconnection."""
        with session_scope(self._sessions) as session:
            row = self._find(session, user_email, provider)
            if row is not None:
                row.connected = False
                row.error = message

    def mark_synced(
        self,
        user_email: str,
        provider: str = GOOGLE_CALENDAR_PROVIDER,
        now: datetime | None = None,
    ) -> None:
        with session_scope(self._sessions) as session:
            row = self._find(session, user_email, provider)
            if row is not None:
                row.last_sync = now or utcnow()

    def delete(self, user_email: str, provider: str = GOOGLE_CALENDAR_PROVIDER) -> bool:
        with session_scope(self._sessions) as session:
            result = session.execute(
                delete(Integration).where(
                    Integration.user_email == user_email,
                    Integration.provider == provider,
                )
            )
        return result.rowcount > 0

    @staticmethod
    def _find(session: Session, user_email: str, provider: str) -> Integration | None:
        return session.scalars(
            select(Integration).where(
                Integration.user_email == user_email,
                Integration.provider == provider,
            )
        ).first()
