"""Shared fixtures for Google Calendar unit tests."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import MagicMock, create_autospec

import pytest
from sqlalchemy.orm import Session, sessionmaker

from calsync.calendar.auth import AccessCredential, CredentialManager
from calsync.calendar.gateway import GoogleCalendarGateway
from calsync.calendar.locks import SyncLockRegistry
from calsync.calendar.reconcile import Reconciler
from calsync.calendar.retry import RetryPolicy
from calsync.calendar.sync import SyncEngine
from calsync.config import Settings
from calsync.store import (
    CredentialStore,
    EventCacheStore,
    ShootLinkStore,
    SyncCursorStore,
)

NOW = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        database_url="sqlite:///:memory:",
        google_client_id="client-id",
        google_client_secret="client-secret",
        webhook_url="https://hooks.example.com/integrations/google-calendar/webhook",
    )


@pytest.fixture()
def credential(user: str) -> AccessCredential:
    return AccessCredential(user_email=user, access_token="access-token")


@pytest.fixture()
def gateway() -> MagicMock:
    """Autospecced gateway; configure return values per test."""
    return create_autospec(GoogleCalendarGateway, instance=True)


@pytest.fixture()
def credentials(credential: AccessCredential) -> MagicMock:
    """Credential manager that always hands out ``credential``."""
    manager = create_autospec(CredentialManager, instance=True)
    manager.ensure_valid_credential.return_value = credential
    manager.refresh.return_value = AccessCredential(
        user_email=credential.user_email, access_token="refreshed-token"
    )
    return manager


@pytest.fixture()
def sleeps() -> list[float]:
    """Delays requested by the retry policy."""
    return []


@pytest.fixture()
def retry(sleeps: list[float]) -> RetryPolicy:
    return RetryPolicy(sleep=sleeps.append, random_fn=lambda: 0.0)


@pytest.fixture()
def event_store(sessions: sessionmaker[Session]) -> EventCacheStore:
    return EventCacheStore(sessions)


@pytest.fixture()
def cursor_store(sessions: sessionmaker[Session]) -> SyncCursorStore:
    return SyncCursorStore(sessions)


@pytest.fixture()
def credential_store(sessions: sessionmaker[Session]) -> CredentialStore:
    return CredentialStore(sessions)


@pytest.fixture()
def shoot_store(sessions: sessionmaker[Session]) -> ShootLinkStore:
    return ShootLinkStore(sessions)


@pytest.fixture()
def reconciler(event_store: EventCacheStore, shoot_store: ShootLinkStore) -> Reconciler:
    return Reconciler(event_store, shoot_store, clock=lambda: NOW)


@pytest.fixture()
def locks() -> SyncLockRegistry:
    return SyncLockRegistry()


@pytest.fixture()
def engine(
    settings: Settings,
    gateway: MagicMock,
    credentials: MagicMock,
    event_store: EventCacheStore,
    cursor_store: SyncCursorStore,
    credential_store: CredentialStore,
    reconciler: Reconciler,
    retry: RetryPolicy,
    locks: SyncLockRegistry,
) -> SyncEngine:
    """Sync engine over real SQLite stores and a mocked gateway."""
    return SyncEngine(
        settings=settings,
        gateway=gateway,
        credentials=credentials,
        events=event_store,
        cursors=cursor_store,
        credential_store=credential_store,
        reconciler=reconciler,
        retry=retry,
        locks=locks,
        clock=lambda: NOW,
    )


@pytest.fixture()
def google_event() -> Callable[..., dict[str, Any]]:
    """Factory for Google Calendar event resources; hours are relative to ``NOW``."""

    def _make(
        event_id: str = "evt-1",
        start_hour: float = 1,
        end_hour: float = 2,
        **overrides: Any,
    ) -> dict[str, Any]:
        item: dict[str, Any] = {
            "id": event_id,
            "status": "confirmed",
            "summary": f"Event {event_id}",
            "start": {"dateTime": (NOW + timedelta(hours=start_hour)).isoformat()},
            "end": {"dateTime": (NOW + timedelta(hours=end_hour)).isoformat()},
            "etag": f'"etag-{event_id}"',
            "updated": "2025-03-01T12:00:00.000Z",
        }
        item.update(overrides)
        return item

    return _make
