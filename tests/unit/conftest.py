"""Database and event fixtures shared by the store and calendar tests."""

from __future__ import annotations

from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from calsync.models.events import CachedEventData
from calsync.store.database import create_db_engine, init_db, make_session_factory, session_scope
from calsync.store.tables import Integration, Shoot

USER = "owner@example.com"

# A fixed "now" well inside the default sync window.
NOW = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
def user() -> str:
    return USER


@pytest.fixture()
def now() -> datetime:
    return NOW


@pytest.fixture()
def db_engine() -> Generator[Engine, None, None]:
    """Fresh in-memory SQLite database with every table created."""
    engine = create_db_engine("sqlite:///:memory:")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def sessions(db_engine: Engine) -> sessionmaker[Session]:
    return make_session_factory(db_engine)


@pytest.fixture()
def make_event_data() -> Callable[..., CachedEventData]:
    """Factory for cache payloads; times are hours relative to ``NOW``."""

    def _make(
        event_id: str = "evt-1",
        start_hour: float = 1,
        end_hour: float = 2,
        **overrides: Any,
    ) -> CachedEventData:
        values: dict[str, Any] = {
            "user_email": USER,
            "calendar_id": "primary",
            "remote_event_id": event_id,
            "title": f"Event {event_id}",
            "start_time": NOW + timedelta(hours=start_hour),
            "end_time": NOW + timedelta(hours=end_hour),
            "etag": f'"etag-{event_id}"',
            "last_modified": NOW,
        }
        values.update(overrides)
        return CachedEventData(**values)

    return _make


@pytest.fixture()
def add_shoot(sessions: sessionmaker[Session]) -> Callable[..., int]:
    """Insert a shoot row and return its id."""

    def _add(
        title: str = "Spring lookbook",
        calendar_event_id: str | None = None,
        deleted_at: datetime | None = None,
    ) -> int:
        with session_scope(sessions) as session:
            shoot = Shoot(
                title=title,
                calendar_event_id=calendar_event_id,
                calendar_sync_status="synced" if calendar_event_id else None,
                calendar_last_sync=NOW if calendar_event_id else None,
                deleted_at=deleted_at,
            )
            session.add(shoot)
            session.flush()
            return shoot.id

    return _add


@pytest.fixture()
def add_credential(sessions: sessionmaker[Session]) -> Callable[..., None]:
    """Insert a connected Google Calendar credential for a user."""

    def _add(
        user_email: str = USER,
        access_token: str = "access-token",
        refresh_token: str | None = "refresh-token",
        expiry_date: datetime | None = NOW + timedelta(hours=1),
    ) -> None:
        with session_scope(sessions) as session:
            session.add(
                Integration(
                    user_email=user_email,
                    provider="google-calendar",
                    connected=True,
                    access_token=access_token,
                    refresh_token=refresh_token,
                    expiry_date=expiry_date,
                )
            )

    return _add
