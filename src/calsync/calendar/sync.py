"""Sync engine for a user's Google Calendar.

Provides :class:`SyncEngine`, which keeps the local event cache of one
(user, calendar) pair in step with the provider:

1. Obtain a valid access credential, refreshing it when close to expiry.
2. Fetch the change feed incrementally from the stored cursor, or perform a
   full resync when no cursor exists, one was forced, or the provider
   reports the stored cursor expired.
3. Upsert changed events, reconcile cancelled ones, store the new cursor.
4. Re-run conflict detection over the cached events.

Transient failures are retried under the engine's
:class:`~calsync.calendar.retry.RetryPolicy`; an unauthorized response gets
one forced token refresh.  Classified errors never escape
:meth:`SyncEngine.sync_calendar`; they are reported in the returned
:class:`~calsync.models.calendar.SyncResult`.

The engine also exposes the single-event write operations (create, update,
delete) so that writes flow through the same credential and retry handling.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime, time, timedelta
from typing import Any, TypeVar
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError

from calsync.calendar import conflicts
from calsync.calendar.auth import AccessCredential, CredentialManager
from calsync.calendar.event_mapper import is_complete, map_from_google_event, map_to_google_event
from calsync.calendar.exceptions import (
    CalendarAPIError,
    CalendarAuthError,
    CalendarConfigError,
    CalendarNotFoundError,
    CalendarValidationError,
    SyncCancelledError,
    SyncTokenExpiredError,
)
from calsync.calendar.gateway import GoogleCalendarGateway
from calsync.calendar.locks import SyncLockRegistry
from calsync.calendar.reconcile import Reconciler
from calsync.calendar.retry import RetryPolicy, with_retry
from calsync.config import Settings
from calsync.models.calendar import ConflictInfo, SyncResult
from calsync.models.events import EventDraft
from calsync.store.credentials import GOOGLE_CALENDAR_PROVIDER, CredentialStore
from calsync.store.cursors import SyncCursorStore
from calsync.store.database import utcnow
from calsync.store.events import EventCacheStore
from calsync.store.tables import CachedEvent, EventStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CALENDAR_LIST_FIELDS = ("id", "summary", "primary", "accessRole", "timeZone")

# ``SyncResult.error_kind`` for failures of the local database.
STORAGE_ERROR_KIND = "storage"


class SyncEngine:
    """Orchestrates full and incremental calendar syncs.

    Args:
        settings: Application settings.
        gateway: Remote calendar API wrapper.
        credentials: Hands out valid per-call credentials.
        events: Local event cache.
        cursors: Sync token storage.
        credential_store: Credential rows, stamped after successful runs.
        reconciler: Handles events deleted on the provider side.
        retry: Backoff policy for remote calls.
        locks: Per-(user, calendar) run exclusion.
        clock: Returns the current aware UTC time; replaced in tests.
    """

    def __init__(
        self,
        settings: Settings,
        gateway: GoogleCalendarGateway,
        credentials: CredentialManager,
        events: EventCacheStore,
        cursors: SyncCursorStore,
        credential_store: CredentialStore,
        reconciler: Reconciler,
        retry: RetryPolicy | None = None,
        locks: SyncLockRegistry | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = settings
        self._gateway = gateway
        self._credentials = credentials
        self._events = events
        self._cursors = cursors
        self._credential_store = credential_store
        self._reconciler = reconciler
        self._retry = retry or RetryPolicy()
        self._locks = locks or SyncLockRegistry()
        self._clock = clock

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def sync_calendar(
        self,
        user_email: str,
        calendar_id: str = "primary",
        force_full_sync: bool = False,
        cancel: threading.Event | None = None,
    ) -> SyncResult:
        """Bring the cache of *calendar_id* up to date with the provider.

        Args:
            user_email: Owner of the calendar.
            calendar_id: Provider calendar id (default ``"primary"``).
            force_full_sync: Discard the cursor and cache and refetch the
                whole sync window.
            cancel: Checked between pages; when set the run stops, keeping
                the pages already applied but not storing a cursor.

        Returns:
            A :class:`SyncResult`.  Failures are reported through
            ``success``/``error``/``error_kind`` rather than raised.
        """
        if not self._settings.calendar_configured:
            error = CalendarConfigError("Google Calendar client id/secret are not configured")
            logger.error("Cannot sync %s/%s: %s", user_email, calendar_id, error)
            return SyncResult.failed(str(error), error.kind)

        logger.info(
            "Starting %s sync for %s/%s",
            "full" if force_full_sync else "incremental",
            user_email,
            calendar_id,
        )
        try:
            with self._locks.hold(user_email, calendar_id):
                result = self._sync_with_recovery(user_email, calendar_id, force_full_sync, cancel)
                if result.success:
                    self._credential_store.mark_synced(
                        user_email, GOOGLE_CALENDAR_PROVIDER, now=self._clock()
                    )
        except CalendarAPIError as exc:
            logger.error(
                "Sync failed for %s/%s (%s): %s", user_email, calendar_id, exc.kind, exc
            )
            return SyncResult.failed(str(exc), exc.kind)
        except SQLAlchemyError as exc:
            logger.error("Sync failed for %s/%s (storage): %s", user_email, calendar_id, exc)
            return SyncResult.failed(f"Storage error: {exc}", STORAGE_ERROR_KIND)

        if result.success:
            logger.info(
                "Sync complete for %s/%s: %d synced, %d deleted, %d conflict(s)%s",
                user_email,
                calendar_id,
                result.synced_count,
                result.deleted_count,
                result.conflict_count,
                " (full)" if result.full_sync else "",
            )
        return result

    def _sync_with_recovery(
        self,
        user_email: str,
        calendar_id: str,
        force_full_sync: bool,
        cancel: threading.Event | None,
    ) -> SyncResult:
        """Run the sync, recovering once from an expired cursor and once from a 401."""
        full = force_full_sync
        refreshed = False
        while True:
            try:
                return self._run_once(user_email, calendar_id, full, cancel)
            except SyncTokenExpiredError:
                if full:
                    raise
                logger.warning(
                    "Sync token expired for %s/%s, falling back to a full sync",
                    user_email,
                    calendar_id,
                )
                full = True
            except CalendarAuthError:
                if refreshed:
                    raise
                logger.warning("Unauthorized for %s, refreshing token and retrying", user_email)
                self._credentials.refresh(user_email)
                refreshed = True

    @with_retry()
    def _run_once(
        self,
        user_email: str,
        calendar_id: str,
        full: bool,
        cancel: threading.Event | None,
    ) -> SyncResult:
        credential = self._credentials.ensure_valid_credential(user_email)

        cursor: str | None = None
        if not full:
            stored = self._cursors.get(user_email, calendar_id)
            cursor = stored.sync_token if stored is not None else None
        full = cursor is None

        if full:
            self._events.clear(user_email, calendar_id)
            self._cursors.delete(user_email, calendar_id)

        time_min, time_max = self.sync_window()
        result = SyncResult(full_sync=full)
        page_token: str | None = None
        next_cursor: str | None = None

        while True:
            if cancel is not None and cancel.is_set():
                logger.warning(
                    "Sync cancelled for %s/%s after %d item(s)",
                    user_email,
                    calendar_id,
                    result.total_processed,
                )
                result.success = False
                result.error = "Sync cancelled"
                result.error_kind = SyncCancelledError.kind
                return result

            page = self._gateway.list_events(
                credential,
                calendar_id,
                time_min,
                time_max,
                cursor=cursor,
                page_token=page_token,
            )
            self._apply_page(user_email, calendar_id, page.events, result, (time_min, time_max))

            if page.next_cursor:
                next_cursor = page.next_cursor
            page_token = page.next_page_token
            if page_token is None:
                break

        if next_cursor:
            self._cursors.upsert(user_email, calendar_id, next_cursor, now=self._clock())
            result.next_cursor = next_cursor

        result.conflict_count = self._refresh_conflicts(user_email, calendar_id)
        return result

    def _apply_page(
        self,
        user_email: str,
        calendar_id: str,
        items: list[dict[str, Any]],
        result: SyncResult,
        window: tuple[datetime, datetime],
    ) -> None:
        window_start, window_end = window
        for item in items:
            event_id = item.get("id") if isinstance(item, dict) else None
            if not event_id:
                logger.warning("Skipping event without an id in %s", calendar_id)
                continue

            try:
                if item.get("status") == EventStatus.CANCELLED.value:
                    self._reconciler.handle_externally_deleted(user_email, event_id, calendar_id)
                    result.deleted_count += 1
                    continue

                if not is_complete(item):
                    logger.debug("Skipping incomplete event %s", event_id)
                    continue

                data = map_from_google_event(
                    item, user_email, calendar_id, self._settings.timezone
                )
                # Incremental feeds are not bounded by the window.
                if not conflicts.overlaps(data.start_time, data.end_time, window_start, window_end):
                    if self._events.delete(user_email, calendar_id, event_id):
                        logger.debug("Event %s moved out of the sync window", event_id)
                    continue

                self._events.upsert(data)
                result.synced_count += 1
            except SQLAlchemyError:
                raise
            except Exception as exc:
                logger.error("Failed to process event %s: %s", event_id, exc)

    def _refresh_conflicts(self, user_email: str, calendar_id: str) -> int:
        active = self._active_events(user_email, calendar_id)
        flagged = self._events.apply_conflicts(
            user_email, calendar_id, conflicts.detect_conflicts(active)
        )
        if flagged:
            logger.info("%d conflicting event(s) in %s/%s", flagged, user_email, calendar_id)
        return flagged

    def sync_window(self) -> tuple[datetime, datetime]:
        """Local midnight today through ``sync_window_days`` ahead."""
        tz = ZoneInfo(self._settings.timezone)
        today = self._clock().astimezone(tz).date()
        start = datetime.combine(today, time.min, tzinfo=tz)
        return start, start + timedelta(days=self._settings.sync_window_days)

    # ------------------------------------------------------------------
    # Event operations
    # ------------------------------------------------------------------

    def create_event(self, user_email: str, draft: EventDraft, calendar_id: str = "primary") -> str:
        """Create *draft* on the provider and cache it.

        Returns:
            The provider's id for the new event.

        Raises:
            CalendarValidationError: If the draft's times are invalid; raised
                before any remote call.
        """
        body = map_to_google_event(draft, self._settings.timezone)
        created = self._remote(
            user_email, lambda cred: self._gateway.create_event(cred, calendar_id, body)
        )
        self._cache_remote(user_email, calendar_id, created)
        return created["id"]

    def update_event(
        self,
        user_email: str,
        event_id: str,
        draft: EventDraft,
        calendar_id: str = "primary",
        etag: str | None = None,
    ) -> str | None:
        """Update a remote event, optionally only if it still has *etag*.

        Returns:
            The event id, or ``None`` if the event no longer exists on the
            provider (its local traces are reconciled).

        Raises:
            CalendarValidationError: If the draft's times are invalid.
            CalendarConflictError: If *etag* is stale.
        """
        body = map_to_google_event(draft, self._settings.timezone)
        try:
            updated = self._remote(
                user_email,
                lambda cred: self._gateway.update_event(
                    cred, calendar_id, event_id, body, etag=etag
                ),
            )
        except CalendarNotFoundError:
            logger.warning("Event %s was deleted externally; reconciling", event_id)
            self._reconciler.handle_externally_deleted(user_email, event_id, calendar_id)
            return None

        self._cache_remote(user_email, calendar_id, updated)
        return updated.get("id", event_id)

    def delete_event(self, user_email: str, event_id: str, calendar_id: str = "primary") -> bool:
        """Delete a remote event and its cached copy.

        Returns:
            ``False`` if the event was already gone on the provider.
        """
        deleted = True
        try:
            self._remote(
                user_email, lambda cred: self._gateway.delete_event(cred, calendar_id, event_id)
            )
        except CalendarNotFoundError:
            logger.info("Event %s already deleted on the provider", event_id)
            deleted = False

        self._events.delete(user_email, calendar_id, event_id)
        return deleted

    def verify_event_exists(
        self, user_email: str, event_id: str, calendar_id: str = "primary"
    ) -> bool:
        """Check the provider for *event_id*, reconciling when it is gone."""
        try:
            self._remote(
                user_email, lambda cred: self._gateway.get_event(cred, calendar_id, event_id)
            )
        except CalendarNotFoundError:
            self._reconciler.handle_externally_deleted(user_email, event_id, calendar_id)
            return False
        return True

    def check_conflicts_for_interval(
        self,
        user_email: str,
        calendar_id: str,
        start: datetime,
        end: datetime,
        exclude_id: str | None = None,
    ) -> ConflictInfo:
        """Report cached events overlapping ``[start, end)``."""
        if end <= start:
            raise CalendarValidationError("end must be after start")
        return conflicts.check_interval(
            self._active_events(user_email, calendar_id), start, end, exclude_id
        )

    def list_calendars(self, user_email: str) -> list[dict[str, Any]]:
        """Calendars the user can sync, reduced to their identifying fields."""
        entries = self._remote(user_email, self._gateway.list_calendars)
        return [
            {key: entry[key] for key in _CALENDAR_LIST_FIELDS if key in entry}
            for entry in entries
        ]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _remote(self, user_email: str, operation: Callable[[AccessCredential], T]) -> T:
        """Run one gateway call with retries and a single refresh on 401."""
        credential = self._credentials.ensure_valid_credential(user_email)
        try:
            return self._retry.call(operation, credential)
        except CalendarAuthError:
            logger.warning("Unauthorized for %s, refreshing token and retrying", user_email)
            credential = self._credentials.refresh(user_email)
            return self._retry.call(operation, credential)

    def _cache_remote(self, user_email: str, calendar_id: str, resource: dict[str, Any]) -> None:
        data = map_from_google_event(resource, user_email, calendar_id, self._settings.timezone)
        self._events.upsert(data)

    def _active_events(self, user_email: str, calendar_id: str) -> list[CachedEvent]:
        return [
            event
            for event in self._events.list_cached_events(user_email, calendar_id)
            if event.status != EventStatus.CANCELLED.value
        ]
