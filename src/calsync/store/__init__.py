"""Persistence layer: event cache, sync cursors, webhook channels, credentials."""

from __future__ import annotations

from calsync.store.channels import WebhookChannelStore
from calsync.store.credentials import GOOGLE_CALENDAR_PROVIDER, CredentialStore
from calsync.store.cursors import SyncCursorStore
from calsync.store.database import (
    Base,
    create_db_engine,
    init_db,
    make_session_factory,
    session_scope,
)
from calsync.store.events import EventCacheStore
from calsync.store.shoots import DELETED_EXTERNALLY, ShootLinkStore

__all__ = [
    "DELETED_EXTERNALLY",
    "GOOGLE_CALENDAR_PROVIDER",
    "Base",
    "CredentialStore",
    "EventCacheStore",
    "ShootLinkStore",
    "SyncCursorStore",
    "WebhookChannelStore",
    "create_db_engine",
    "init_db",
    "make_session_factory",
    "session_scope",
]
