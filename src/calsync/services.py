"""Wiring of the sync components from :class:`~calsync.config.Settings`.

:func:`build_services` is the single place where stores, the gateway, the
credential manager and the engines are constructed and connected, for both
the CLI and the webhook server.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import Engine

from calsync.calendar.auth import CredentialManager
from calsync.calendar.channels import ChannelManager
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
    WebhookChannelStore,
    create_db_engine,
    make_session_factory,
)

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """The connected components of one calsync process."""

    db_engine: Engine
    events: EventCacheStore
    credentials: CredentialManager
    reconciler: Reconciler
    sync_engine: SyncEngine
    channels: ChannelManager


def build_services(
    settings: Settings,
    gateway: GoogleCalendarGateway | None = None,
    db_engine: Engine | None = None,
) -> Services:
    """Construct every component from *settings*.

    Args:
        settings: Loaded application settings.
        gateway: Gateway override, used by tests.
        db_engine: Engine override; by default one is created from
            ``settings.database_url``.
    """
    db_engine = db_engine or create_db_engine(settings.database_url)
    sessions = make_session_factory(db_engine)

    credential_store = CredentialStore(sessions)
    events = EventCacheStore(sessions)
    gateway = gateway or GoogleCalendarGateway(request_timeout=settings.request_timeout)
    credentials = CredentialManager(credential_store, settings)
    reconciler = Reconciler(events, ShootLinkStore(sessions))
    retry = RetryPolicy()

    sync_engine = SyncEngine(
        settings=settings,
        gateway=gateway,
        credentials=credentials,
        events=events,
        cursors=SyncCursorStore(sessions),
        credential_store=credential_store,
        reconciler=reconciler,
        retry=retry,
        locks=SyncLockRegistry(),
    )
    channels = ChannelManager(
        settings=settings,
        gateway=gateway,
        credentials=credentials,
        store=WebhookChannelStore(sessions),
        engine=sync_engine,
        retry=retry,
    )
    logger.debug("Services built for %s", db_engine.url.render_as_string(hide_password=True))
    return Services(
        db_engine=db_engine,
        events=events,
        credentials=credentials,
        reconciler=reconciler,
        sync_engine=sync_engine,
        channels=channels,
    )
