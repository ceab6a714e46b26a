"""Webhook channel registry.

At most one channel per (user, calendar) is active.  Creating a channel
deactivates the previous active rows in the same transaction; rows are never
deleted.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from calsync.models.calendar import ChannelRegistration
from calsync.store.database import session_scope, utcnow
from calsync.store.tables import WebhookChannel

logger = logging.getLogger(__name__)


class WebhookChannelStore:
    """Persistence adapter for :class:`~calsync.store.tables.WebhookChannel` rows."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._sessions = session_factory

    def get_active(self, user_email: str, calendar_id: str = "primary") -> WebhookChannel | None:
        """Return the active channel of the calendar, newest first."""
        with session_scope(self._sessions) as session:
            return session.scalars(
                select(WebhookChannel)
                .where(
                    WebhookChannel.user_email == user_email,
                    WebhookChannel.calendar_id == calendar_id,
                    WebhookChannel.active.is_(True),
                )
                .order_by(WebhookChannel.created_at.desc(), WebhookChannel.id.desc())
            ).first()

    def get_by_channel_id(self, channel_id: str) -> WebhookChannel | None:
        with session_scope(self._sessions) as session:
            return session.scalars(
                select(WebhookChannel).where(WebhookChannel.channel_id == channel_id)
            ).first()

    def list_for(self, user_email: str, calendar_id: str = "primary") -> list[WebhookChannel]:
        """Return every channel of the calendar, active or not."""
        with session_scope(self._sessions) as session:
            rows = session.scalars(
                select(WebhookChannel)
                .where(
                    WebhookChannel.user_email == user_email,
                    WebhookChannel.calendar_id == calendar_id,
                )
                .order_by(WebhookChannel.id)
            ).all()
            return list(rows)

    def create(
        self,
        user_email: str,
        calendar_id: str,
        registration: ChannelRegistration,
    ) -> WebhookChannel:
        """Persist *registration* as the only active channel of the calendar."""
        with session_scope(self._sessions) as session:
            session.execute(
                update(WebhookChannel)
                .where(
                    WebhookChannel.user_email == user_email,
                    WebhookChannel.calendar_id == calendar_id,
                    WebhookChannel.active.is_(True),
                )
                .values(active=False, updated_at=utcnow())
            )
            row = WebhookChannel(
                user_email=user_email,
                calendar_id=calendar_id,
                channel_id=registration.channel_id,
                resource_id=registration.resource_id,
                resource_uri=registration.resource_uri,
                token=registration.token,
                expiration=registration.expiration,
                active=True,
            )
            session.add(row)
            session.flush()
        logger.info(
            "Registered webhook channel %s for %s/%s",
            registration.channel_id,
            user_email,
            calendar_id,
        )
        return row

    def deactivate(self, channel_id: str) -> bool:
        """Mark a channel inactive; returns whether it was active before."""
        with session_scope(self._sessions) as session:
            result = session.execute(
                update(WebhookChannel)
                .where(
                    WebhookChannel.channel_id == channel_id,
                    WebhookChannel.active.is_(True),
                )
                .values(active=False, updated_at=utcnow())
            )
        return result.rowcount > 0

    def list_expired_channels(self, now: datetime | None = None) -> list[WebhookChannel]:
        """Channels still marked active whose expiration has passed."""
        now = now or utcnow()
        with session_scope(self._sessions) as session:
            rows = session.scalars(
                select(WebhookChannel).where(
                    WebhookChannel.active.is_(True),
                    WebhookChannel.expiration.is_not(None),
                    WebhookChannel.expiration < now,
                )
            ).all()
            return list(rows)
