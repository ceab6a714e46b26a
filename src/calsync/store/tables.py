"""ORM tables backing the sync engine."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Boolean, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from calsync.store.database import Base, UTCDateTime, utcnow


class EventStatus(str, Enum):
    """Status of a remote event."""

    CONFIRMED = "confirmed"
    TENTATIVE = "tentative"
    CANCELLED = "cancelled"


class SyncStatus(str, Enum):
    """Sync state of a cached event."""

    SYNCED = "synced"
    PENDING = "pending"
    ERROR = "error"


class CachedEvent(Base):
    """Local mirror of one remote calendar event."""

    __tablename__ = "calendar_events_cache"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)
    calendar_id: Mapped[str] = mapped_column(String(255), nullable=False, default="primary")
    remote_event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    shoot_id: Mapped[int | None] = mapped_column(nullable=True)  # weak reference, no FK
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=EventStatus.CONFIRMED.value)
    attendees: Mapped[list[dict]] = mapped_column(JSON, default=list)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False)
    recurring_event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    etag: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_modified: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    sync_status: Mapped[str] = mapped_column(String(20), default=SyncStatus.SYNCED.value)
    conflict_detected: Mapped[bool] = mapped_column(Boolean, default=False)
    conflict_details: Mapped[list[dict] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "user_email", "calendar_id", "remote_event_id", name="uq_calendar_events_cache_key"
        ),
        Index("idx_calendar_events_cache_owner", "user_email", "calendar_id"),
        Index("idx_calendar_events_cache_start_time", "start_time"),
    )

    def is_stale(self, etag: str | None, last_modified: datetime | None) -> bool:
        """Whether a remote version described by *etag*/*last_modified* is newer."""
        if etag is not None and self.etag is not None:
            return etag != self.etag
        if last_modified is not None:
            return last_modified > self.last_modified
        return True

    def __repr__(self) -> str:
        return f"<CachedEvent(remote_event_id='{self.remote_event_id}', title='{self.title}')>"


class SyncCursor(Base):
    """Incremental sync token for one (user, calendar)."""

    __tablename__ = "calendar_sync_tokens"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)
    calendar_id: Mapped[str] = mapped_column(String(255), nullable=False, default="primary")
    sync_token: Mapped[str] = mapped_column(Text, nullable=False)
    last_sync: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("user_email", "calendar_id", name="uq_calendar_sync_tokens_key"),
    )

    def __repr__(self) -> str:
        return f"<SyncCursor(user_email='{self.user_email}', calendar_id='{self.calendar_id}')>"


class WebhookChannel(Base):
    """Push-notification channel registered with the provider.

    Rows are deactivated, never deleted, so past channels stay auditable.
    """

    __tablename__ = "calendar_webhook_channels"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)
    calendar_id: Mapped[str] = mapped_column(String(255), nullable=False, default="primary")
    channel_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    resource_id: Mapped[str] = mapped_column(String(255), nullable=False)
    resource_uri: Mapped[str] = mapped_column(String(500), nullable=False)
    token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    expiration: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_calendar_webhook_channels_owner", "user_email", "calendar_id", "active"),
        Index("idx_calendar_webhook_channels_expiration", "expiration"),
    )

    def __repr__(self) -> str:
        return f"<WebhookChannel(channel_id='{self.channel_id}', active={self.active})>"


class Integration(Base):
    """OAuth credential of a user for one provider."""

    __tablename__ = "integrations"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    connected: Mapped[bool] = mapped_column(Boolean, default=False)
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    expiry_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_sync: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("user_email", "provider", name="uq_integrations_user_provider"),
    )

    def __repr__(self) -> str:
        return f"<Integration(user_email='{self.user_email}', provider='{self.provider}')>"


class Shoot(Base):
    """Calendar linkage columns of an internal shoot record.

    The scheduling tool owns the rest of this table; only the fields the
    reconciler reads or clears are mapped here.
    """

    __tablename__ = "shoots"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    calendar_event_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    calendar_sync_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    calendar_last_sync: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    calendar_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Shoot(id={self.id}, title='{self.title}')>"
