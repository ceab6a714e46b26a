"""Webhook (push notification) channel lifecycle.

Google delivers change notifications for a calendar to a registered HTTPS
address through a *channel*.  :class:`ChannelManager` creates channels,
tears them down, sweeps expired ones, and turns incoming notifications into
incremental syncs.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from calsync.calendar.auth import CredentialManager
from calsync.calendar.exceptions import CalendarAPIError, CalendarConfigError
from calsync.calendar.gateway import GoogleCalendarGateway
from calsync.calendar.retry import RetryPolicy
from calsync.config import Settings
from calsync.store.channels import WebhookChannelStore
from calsync.store.database import utcnow
from calsync.store.tables import WebhookChannel

if TYPE_CHECKING:
    from calsync.calendar.sync import SyncEngine

logger = logging.getLogger(__name__)

JobRunner = Callable[[Callable[[], object]], None]


class NotificationAction(str, Enum):
    """What a push notification resolved to."""

    IGNORED = "ignored"
    HANDSHAKE = "handshake"
    SYNC = "sync"
    DEACTIVATED = "deactivated"


def _run_inline(job: Callable[[], object]) -> None:
    job()


class ChannelManager:
    """Creates, stops and dispatches webhook channels.

    Args:
        settings: Provides ``webhook_url`` and the channel TTL.
        gateway: Remote calendar API wrapper.
        credentials: Hands out valid per-call credentials.
        store: Channel persistence.
        engine: Sync engine invoked for change notifications.
        retry: Backoff policy for remote calls.
        clock: Returns the current aware UTC time.
    """

    def __init__(
        self,
        settings: Settings,
        gateway: GoogleCalendarGateway,
        credentials: CredentialManager,
        store: WebhookChannelStore,
        engine: SyncEngine,
        retry: RetryPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = settings
        self._gateway = gateway
        self._credentials = credentials
        self._store = store
        self._engine = engine
        self._retry = retry or RetryPolicy()
        self._clock = clock

    def create_channel(self, user_email: str, calendar_id: str = "primary") -> WebhookChannel:
        """Subscribe to changes of *calendar_id*, replacing any active channel.

        Raises:
            CalendarConfigError: If no webhook address is configured.
        """
        if not self._settings.webhook_url:
            raise CalendarConfigError("WEBHOOK_URL is not configured")

        previous = self._store.get_active(user_email, calendar_id)
        if previous is not None:
            self.deactivate_channel(previous.channel_id)

        credential = self._credentials.ensure_valid_credential(user_email)
        registration = self._retry.call(
            self._gateway.watch_events,
            credential,
            calendar_id,
            str(uuid.uuid4()),
            self._settings.webhook_url,
            token=secrets.token_urlsafe(32),
            ttl_seconds=self._settings.channel_ttl_seconds,
        )
        return self._store.create(user_email, calendar_id, registration)

    def deactivate_channel(self, channel_id: str, stop_remote: bool = True) -> bool:
        """Mark a channel inactive and, optionally, stop it on the provider.

        Stopping remotely is best-effort: a failure is logged and the channel
        stays deactivated locally.

        Returns:
            ``True`` if the channel was active.
        """
        channel = self._store.get_by_channel_id(channel_id)
        if channel is None:
            logger.warning("Unknown webhook channel %s", channel_id)
            return False

        was_active = self._store.deactivate(channel_id)
        if was_active and stop_remote:
            try:
                credential = self._credentials.ensure_valid_credential(channel.user_email)
                self._gateway.stop_channel(credential, channel.channel_id, channel.resource_id)
            except CalendarAPIError as exc:
                logger.warning("Could not stop channel %s remotely: %s", channel_id, exc)

        logger.info("Deactivated webhook channel %s (was active=%s)", channel_id, was_active)
        return was_active

    def sweep_expired_channels(self, now: datetime | None = None) -> int:
        """Deactivate active channels past their expiration.

        Expired channels no longer exist on the provider, so nothing is
        stopped remotely.
        """
        expired = self._store.list_expired_channels(now or self._clock())
        count = sum(
            1 for channel in expired if self.deactivate_channel(channel.channel_id, stop_remote=False)
        )
        if count:
            logger.info("Swept %d expired webhook channel(s)", count)
        return count

    def handle_notification(
        self,
        channel_id: str | None,
        resource_state: str | None,
        token: str | None = None,
        run_job: JobRunner = _run_inline,
    ) -> NotificationAction:
        """Dispatch one push notification.

        Args:
            channel_id: ``X-Goog-Channel-ID`` header.
            resource_state: ``X-Goog-Resource-State`` header.
            token: ``X-Goog-Channel-Token`` header.
            run_job: Runs the sync job; the web layer passes a background
                task scheduler.
        """
        if not channel_id or not resource_state:
            logger.warning("Ignoring notification without channel id or resource state")
            return NotificationAction.IGNORED

        channel = self._store.get_by_channel_id(channel_id)
        if channel is None or not channel.active:
            logger.warning("Ignoring notification for unknown or inactive channel %s", channel_id)
            return NotificationAction.IGNORED

        if channel.token and not secrets.compare_digest(channel.token, token or ""):
            logger.warning("Ignoring notification with a bad token for channel %s", channel_id)
            return NotificationAction.IGNORED

        if resource_state == "sync":
            logger.debug("Handshake received for channel %s", channel_id)
            return NotificationAction.HANDSHAKE

        if resource_state == "exists":
            user_email, calendar_id = channel.user_email, channel.calendar_id
            logger.info("Change notification for %s/%s", user_email, calendar_id)
            run_job(lambda: self._engine.sync_calendar(user_email, calendar_id))
            return NotificationAction.SYNC

        if resource_state == "not_exists":
            self.deactivate_channel(channel_id, stop_remote=False)
            return NotificationAction.DEACTIVATED

        logger.warning("Unknown resource state %r for channel %s", resource_state, channel_id)
        return NotificationAction.IGNORED
