"""Tests for :class:`calsync.calendar.sync.SyncEngine`.

The engine runs over real in-memory SQLite stores; only the gateway and the
credential manager are mocked.

| Scenario | Expected |
|---|---|
| First sync, two pages | Full sync, all events cached, cursor stored |
| Incremental with a cancellation | Cache row removed, linked shoot cleared |
| Expired cursor | Transparent full resync in the same call |
| Forced full sync | Cache and cursor replaced |
| Rate-limit storm | Retried with backoff, succeeds |
| Refresh rejected | Failed result, reconnect required, no fetch |
| 401 once | One refresh, run repeated |
| Concurrent run | Rejected as in progress |
| Cancellation | Earlier pages kept, no cursor |
| Incremental event moved past the window | Evicted, not cached |
| Database error | Failed result of kind ``storage``, lock released |
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from calsync.calendar.exceptions import (
    CalendarAuthError,
    CalendarConflictError,
    CalendarNotFoundError,
    CalendarRateLimitError,
    CalendarServerError,
    CalendarValidationError,
    ReconnectRequiredError,
    SyncTokenExpiredError,
)
from calsync.calendar.locks import SyncLockRegistry
from calsync.calendar.reconcile import Reconciler
from calsync.calendar.sync import STORAGE_ERROR_KIND, SyncEngine
from calsync.config import Settings
from calsync.models.calendar import EventPage
from calsync.models.events import EventDraft
from calsync.store import CredentialStore, EventCacheStore, ShootLinkStore, SyncCursorStore
from calsync.store.shoots import DELETED_EXTERNALLY

NOW = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)

GoogleEvent = Callable[..., dict[str, Any]]


def _cached_ids(store: EventCacheStore, user: str, calendar_id: str = "primary") -> list[str]:
    return [e.remote_event_id for e in store.list_cached_events(user, calendar_id)]


# ---------------------------------------------------------------------------
# Full and incremental sync
# ---------------------------------------------------------------------------


class TestFirstSync:
    """No cursor stored: the whole window is fetched."""

    def test_two_pages_full_sync(
        self,
        engine: SyncEngine,
        gateway: MagicMock,
        event_store: EventCacheStore,
        cursor_store: SyncCursorStore,
        google_event: GoogleEvent,
        user: str,
    ) -> None:
        gateway.list_events.side_effect = [
            EventPage(events=[google_event("a", 1, 2)], next_page_token="p2"),
            EventPage(events=[google_event("b", 3, 4)], next_cursor="cursor-1"),
        ]

        result = engine.sync_calendar(user)

        assert result.success is True
        assert result.full_sync is True
        assert result.synced_count == 2
        assert result.deleted_count == 0
        assert result.conflict_count == 0
        assert result.next_cursor == "cursor-1"
        assert _cached_ids(event_store, user) == ["a", "b"]
        assert cursor_store.get(user).sync_token == "cursor-1"

    def test_window_and_paging_arguments(
        self, engine: SyncEngine, gateway: MagicMock, google_event: GoogleEvent, user: str
    ) -> None:
        gateway.list_events.side_effect = [
            EventPage(events=[], next_page_token="p2"),
            EventPage(events=[], next_cursor="cursor-1"),
        ]

        engine.sync_calendar(user)

        first, second = gateway.list_events.call_args_list
        _credential, calendar_id, time_min, time_max = first.args
        assert calendar_id == "primary"
        assert time_min == datetime(2025, 3, 10, tzinfo=timezone.utc)
        assert time_max == datetime(2025, 3, 24, tzinfo=timezone.utc)
        assert first.kwargs == {"cursor": None, "page_token": None}
        assert second.kwargs == {"cursor": None, "page_token": "p2"}

    def test_overlapping_events_flagged(
        self,
        engine: SyncEngine,
        gateway: MagicMock,
        event_store: EventCacheStore,
        google_event: GoogleEvent,
        user: str,
    ) -> None:
        gateway.list_events.return_value = EventPage(
            events=[google_event("a", 1, 2), google_event("b", 1.5, 2.5), google_event("c", 2.5, 3)],
            next_cursor="cursor-1",
        )

        result = engine.sync_calendar(user)

        assert result.conflict_count == 2
        assert result.has_conflicts is True
        flags = {e.remote_event_id: e.conflict_detected for e in event_store.list_cached_events(user)}
        assert flags == {"a": True, "b": True, "c": False}

    def test_bad_items_do_not_abort_the_page(
        self,
        engine: SyncEngine,
        gateway: MagicMock,
        event_store: EventCacheStore,
        google_event: GoogleEvent,
        user: str,
    ) -> None:
        no_id = google_event("x")
        del no_id["id"]
        gateway.list_events.return_value = EventPage(
            events=[no_id, google_event("untitled", summary=""), google_event("ok")],
            next_cursor="cursor-1",
        )

        result = engine.sync_calendar(user)

        assert result.success is True
        assert result.synced_count == 1
        assert _cached_ids(event_store, user) == ["ok"]

    def test_malformed_items_do_not_abort_the_page(
        self,
        engine: SyncEngine,
        gateway: MagicMock,
        event_store: EventCacheStore,
        google_event: GoogleEvent,
        user: str,
    ) -> None:
        gateway.list_events.return_value = EventPage(
            events=[
                google_event("bad-attendees", attendees=["a@example.com"]),
                google_event("bad-start", start="2025-03-10"),
                "not-an-event",
                google_event("ok"),
            ],
            next_cursor="cursor-1",
        )

        result = engine.sync_calendar(user)

        assert result.success is True
        assert result.synced_count == 2
        assert _cached_ids(event_store, user) == ["bad-attendees", "ok"]
        assert event_store.get(user, "primary", "bad-attendees").attendees == []

    def test_unexpected_item_error_is_isolated(
        self,
        engine: SyncEngine,
        gateway: MagicMock,
        event_store: EventCacheStore,
        reconciler: Reconciler,
        monkeypatch: pytest.MonkeyPatch,
        google_event: GoogleEvent,
        user: str,
    ) -> None:
        monkeypatch.setattr(
            reconciler, "handle_externally_deleted", MagicMock(side_effect=RuntimeError("boom"))
        )
        gateway.list_events.return_value = EventPage(
            events=[google_event("gone", status="cancelled"), google_event("ok")],
            next_cursor="cursor-1",
        )

        result = engine.sync_calendar(user)

        assert result.success is True
        assert result.deleted_count == 0
        assert _cached_ids(event_store, user) == ["ok"]

    def test_last_sync_stamped(
        self,
        engine: SyncEngine,
        gateway: MagicMock,
        credential_store: CredentialStore,
        add_credential: Callable[..., None],
        user: str,
    ) -> None:
        add_credential()
        gateway.list_events.return_value = EventPage(next_cursor="cursor-1")

        engine.sync_calendar(user)

        assert credential_store.get(user).last_sync == NOW


class TestIncrementalSync:
    """A stored cursor makes the next run incremental."""

    @pytest.fixture()
    def synced(
        self, engine: SyncEngine, gateway: MagicMock, google_event: GoogleEvent, user: str
    ) -> None:
        gateway.list_events.return_value = EventPage(
            events=[google_event("a", 1, 2), google_event("b", 3, 4)],
            next_cursor="cursor-1",
        )
        engine.sync_calendar(user)
        gateway.list_events.reset_mock()

    def test_cancellation_reconciles_shoot(
        self,
        synced: None,
        engine: SyncEngine,
        gateway: MagicMock,
        event_store: EventCacheStore,
        cursor_store: SyncCursorStore,
        shoot_store: ShootLinkStore,
        add_shoot: Callable[..., int],
        google_event: GoogleEvent,
        user: str,
    ) -> None:
        shoot_id = add_shoot(calendar_event_id="a")
        gateway.list_events.return_value = EventPage(
            events=[{"id": "a", "status": "cancelled"}, google_event("b", 5, 6, summary="Moved")],
            next_cursor="cursor-2",
        )

        result = engine.sync_calendar(user)

        assert gateway.list_events.call_args.kwargs["cursor"] == "cursor-1"
        assert result.full_sync is False
        assert result.deleted_count == 1
        assert result.synced_count == 1
        assert _cached_ids(event_store, user) == ["b"]
        assert event_store.get(user, "primary", "b").title == "Moved"
        assert cursor_store.get(user).sync_token == "cursor-2"

        shoot = shoot_store.get(shoot_id)
        assert shoot.calendar_event_id is None
        assert shoot.calendar_error == DELETED_EXTERNALLY

    def test_cancellation_of_unknown_event_still_counts(
        self, synced: None, engine: SyncEngine, gateway: MagicMock, user: str
    ) -> None:
        gateway.list_events.return_value = EventPage(
            events=[{"id": "never-seen", "status": "cancelled"}], next_cursor="cursor-2"
        )

        result = engine.sync_calendar(user)

        assert result.success is True
        assert result.deleted_count == 1

    def test_expired_cursor_falls_back_to_full_sync(
        self,
        synced: None,
        engine: SyncEngine,
        gateway: MagicMock,
        event_store: EventCacheStore,
        cursor_store: SyncCursorStore,
        google_event: GoogleEvent,
        user: str,
    ) -> None:
        gateway.list_events.side_effect = [
            SyncTokenExpiredError(),
            EventPage(events=[google_event("c", 7, 8)], next_cursor="cursor-fresh"),
        ]

        result = engine.sync_calendar(user)

        assert result.success is True
        assert result.full_sync is True
        assert gateway.list_events.call_args_list[0].kwargs["cursor"] == "cursor-1"
        assert gateway.list_events.call_args_list[1].kwargs["cursor"] is None
        assert _cached_ids(event_store, user) == ["c"]
        assert cursor_store.get(user).sync_token == "cursor-fresh"

    def test_force_full_sync_replaces_cache_and_cursor(
        self,
        synced: None,
        engine: SyncEngine,
        gateway: MagicMock,
        event_store: EventCacheStore,
        cursor_store: SyncCursorStore,
        google_event: GoogleEvent,
        user: str,
    ) -> None:
        gateway.list_events.return_value = EventPage(
            events=[google_event("z", 1, 2)], next_cursor="cursor-new"
        )

        result = engine.sync_calendar(user, force_full_sync=True)

        assert result.full_sync is True
        assert gateway.list_events.call_args.kwargs["cursor"] is None
        assert _cached_ids(event_store, user) == ["z"]
        assert cursor_store.get(user).sync_token == "cursor-new"

    def test_forced_full_sync_fetches_without_cursor_or_cache(
        self,
        synced: None,
        engine: SyncEngine,
        gateway: MagicMock,
        event_store: EventCacheStore,
        cursor_store: SyncCursorStore,
        user: str,
    ) -> None:
        """Cursor and cache are already cleared when the first page is requested."""
        seen: list[tuple[object, list[str]]] = []

        def fetch(*_args: Any, **_kwargs: Any) -> EventPage:
            seen.append((cursor_store.get(user), _cached_ids(event_store, user)))
            return EventPage(next_cursor="cursor-new")

        gateway.list_events.side_effect = fetch

        engine.sync_calendar(user, force_full_sync=True)

        assert seen == [(None, [])]

    def test_events_outside_window_are_not_cached(
        self,
        synced: None,
        engine: SyncEngine,
        gateway: MagicMock,
        event_store: EventCacheStore,
        google_event: GoogleEvent,
        user: str,
    ) -> None:
        """The window is 2025-03-10 through 2025-03-24 in UTC."""
        gateway.list_events.return_value = EventPage(
            events=[
                google_event("far", 24 * 60, 24 * 60 + 1),
                google_event("b", 24 * 30, 24 * 30 + 1),
                google_event("overnight", -10, 2),
            ],
            next_cursor="cursor-2",
        )

        result = engine.sync_calendar(user)

        assert result.success is True
        assert result.full_sync is False
        assert result.synced_count == 1
        assert _cached_ids(event_store, user) == ["overnight", "a"]

    def test_missing_final_cursor_removes_stale_one(
        self,
        synced: None,
        engine: SyncEngine,
        gateway: MagicMock,
        cursor_store: SyncCursorStore,
        user: str,
    ) -> None:
        """A forced full sync without a new token leaves no cursor behind."""
        gateway.list_events.return_value = EventPage(events=[])

        result = engine.sync_calendar(user, force_full_sync=True)

        assert result.next_cursor is None
        assert cursor_store.get(user) is None


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------


class TestRetries:
    """Transient errors are retried under the policy."""

    def test_rate_limit_storm(
        self,
        engine: SyncEngine,
        gateway: MagicMock,
        sleeps: list[float],
        google_event: GoogleEvent,
        user: str,
    ) -> None:
        gateway.list_events.side_effect = [
            CalendarRateLimitError(),
            CalendarRateLimitError(),
            CalendarRateLimitError(),
            EventPage(events=[google_event("a")], next_cursor="cursor-1"),
        ]

        result = engine.sync_calendar(user)

        assert result.success is True
        assert result.synced_count == 1
        assert sleeps == [1.0, 2.0, 4.0]

    def test_exhausted_retries_fail_the_run(
        self, engine: SyncEngine, gateway: MagicMock, user: str
    ) -> None:
        gateway.list_events.side_effect = CalendarServerError("backend unavailable")

        result = engine.sync_calendar(user)

        assert result.success is False
        assert result.error_kind == "transient"
        assert gateway.list_events.call_count == 5


class TestStorageFailures:
    """Database errors end the run with a classified result."""

    def test_cursor_write_failure(
        self,
        engine: SyncEngine,
        gateway: MagicMock,
        cursor_store: SyncCursorStore,
        credential_store: CredentialStore,
        add_credential: Callable[..., None],
        locks: SyncLockRegistry,
        monkeypatch: pytest.MonkeyPatch,
        google_event: GoogleEvent,
        user: str,
    ) -> None:
        add_credential()
        monkeypatch.setattr(
            cursor_store,
            "upsert",
            MagicMock(side_effect=OperationalError("UPDATE", {}, Exception("database is locked"))),
        )
        gateway.list_events.return_value = EventPage(
            events=[google_event("a")], next_cursor="cursor-1"
        )

        result = engine.sync_calendar(user)

        assert result.success is False
        assert result.error_kind == STORAGE_ERROR_KIND
        assert "database is locked" in result.error
        assert credential_store.get(user).last_sync is None
        assert locks.is_locked(user, "primary") is False


class TestCredentials:
    """Credential problems surface as classified failures."""

    def test_reconnect_required(
        self, engine: SyncEngine, gateway: MagicMock, credentials: MagicMock, user: str
    ) -> None:
        credentials.ensure_valid_credential.side_effect = ReconnectRequiredError()

        result = engine.sync_calendar(user)

        assert result.success is False
        assert result.error_kind == "reconnect_required"
        assert "reconnect" in result.error.lower()
        gateway.list_events.assert_not_called()

    def test_unauthorized_refreshes_once(
        self,
        engine: SyncEngine,
        gateway: MagicMock,
        credentials: MagicMock,
        google_event: GoogleEvent,
        user: str,
    ) -> None:
        gateway.list_events.side_effect = [
            CalendarAuthError(),
            EventPage(events=[google_event("a")], next_cursor="cursor-1"),
        ]

        result = engine.sync_calendar(user)

        assert result.success is True
        credentials.refresh.assert_called_once_with(user)

    def test_second_unauthorized_fails(
        self, engine: SyncEngine, gateway: MagicMock, credentials: MagicMock, user: str
    ) -> None:
        gateway.list_events.side_effect = CalendarAuthError()

        result = engine.sync_calendar(user)

        assert result.success is False
        assert result.error_kind == "unauthorized"
        assert credentials.refresh.call_count == 1
        assert gateway.list_events.call_count == 2

    def test_unconfigured_client(
        self,
        engine: SyncEngine,
        gateway: MagicMock,
        settings: Settings,
        monkeypatch: pytest.MonkeyPatch,
        user: str,
    ) -> None:
        monkeypatch.setattr(
            engine, "_settings", Settings(database_url=settings.database_url)
        )

        result = engine.sync_calendar(user)

        assert result.success is False
        assert result.error_kind == "configuration"
        gateway.list_events.assert_not_called()


class TestConcurrency:
    """Runs for the same calendar exclude each other."""

    def test_concurrent_run_rejected(
        self, engine: SyncEngine, gateway: MagicMock, locks: SyncLockRegistry, user: str
    ) -> None:
        with locks.hold(user, "primary"):
            result = engine.sync_calendar(user)

        assert result.success is False
        assert result.error_kind == "in_progress"
        gateway.list_events.assert_not_called()

    def test_other_calendar_not_blocked(
        self, engine: SyncEngine, gateway: MagicMock, locks: SyncLockRegistry, user: str
    ) -> None:
        gateway.list_events.return_value = EventPage(next_cursor="cursor-1")

        with locks.hold(user, "team@example.com"):
            result = engine.sync_calendar(user, "primary")

        assert result.success is True

    def test_lock_released_after_failure(
        self, engine: SyncEngine, gateway: MagicMock, locks: SyncLockRegistry, user: str
    ) -> None:
        gateway.list_events.side_effect = CalendarNotFoundError()

        engine.sync_calendar(user)

        assert locks.is_locked(user, "primary") is False


class TestCancellation:
    """Cancellation is checked between pages."""

    def test_keeps_completed_pages_and_skips_cursor(
        self,
        engine: SyncEngine,
        gateway: MagicMock,
        event_store: EventCacheStore,
        cursor_store: SyncCursorStore,
        google_event: GoogleEvent,
        user: str,
    ) -> None:
        cancel = threading.Event()

        def first_page_then_cancel(*_args: Any, **_kwargs: Any) -> EventPage:
            cancel.set()
            return EventPage(events=[google_event("a")], next_page_token="p2")

        gateway.list_events.side_effect = first_page_then_cancel

        result = engine.sync_calendar(user, cancel=cancel)

        assert result.success is False
        assert result.error_kind == "cancelled"
        assert result.synced_count == 1
        assert gateway.list_events.call_count == 1
        assert _cached_ids(event_store, user) == ["a"]
        assert cursor_store.get(user) is None


# ---------------------------------------------------------------------------
# Event operations
# ---------------------------------------------------------------------------


def _draft(start_hour: float = 1, end_hour: float = 2) -> EventDraft:
    return EventDraft(
        title="Product shoot",
        start_time=NOW + timedelta(hours=start_hour),
        end_time=NOW + timedelta(hours=end_hour),
    )


class TestCreateEvent:
    """Creating an event writes remotely then caches the result."""

    def test_create_caches_remote_event(
        self,
        engine: SyncEngine,
        gateway: MagicMock,
        event_store: EventCacheStore,
        google_event: GoogleEvent,
        user: str,
    ) -> None:
        gateway.create_event.return_value = google_event("new-1", summary="Product shoot")

        event_id = engine.create_event(user, _draft())

        assert event_id == "new-1"
        body = gateway.create_event.call_args.args[2]
        assert body["summary"] == "Product shoot"
        assert event_store.get(user, "primary", "new-1").title == "Product shoot"

    def test_invalid_times_never_reach_the_gateway(
        self, engine: SyncEngine, gateway: MagicMock, credentials: MagicMock, user: str
    ) -> None:
        with pytest.raises(CalendarValidationError):
            engine.create_event(user, _draft(2, 1))

        gateway.create_event.assert_not_called()
        credentials.ensure_valid_credential.assert_not_called()


class TestUpdateEvent:
    """Updates honour the etag precondition and reconcile on 404."""

    def test_passes_etag(
        self, engine: SyncEngine, gateway: MagicMock, google_event: GoogleEvent, user: str
    ) -> None:
        gateway.update_event.return_value = google_event("evt-1")

        assert engine.update_event(user, "evt-1", _draft(), etag='"v1"') == "evt-1"

        assert gateway.update_event.call_args.kwargs["etag"] == '"v1"'

    def test_stale_etag_surfaces_conflict(
        self, engine: SyncEngine, gateway: MagicMock, user: str
    ) -> None:
        gateway.update_event.side_effect = CalendarConflictError()

        with pytest.raises(CalendarConflictError):
            engine.update_event(user, "evt-1", _draft(), etag='"stale"')

        assert gateway.update_event.call_count == 1

    def test_deleted_remotely_reconciles(
        self,
        engine: SyncEngine,
        gateway: MagicMock,
        event_store: EventCacheStore,
        shoot_store: ShootLinkStore,
        make_event_data: Callable[..., Any],
        add_shoot: Callable[..., int],
        user: str,
    ) -> None:
        event_store.upsert(make_event_data("evt-1"))
        shoot_id = add_shoot(calendar_event_id="evt-1")
        gateway.update_event.side_effect = CalendarNotFoundError()

        assert engine.update_event(user, "evt-1", _draft()) is None

        assert event_store.get(user, "primary", "evt-1") is None
        assert shoot_store.get(shoot_id).calendar_error == DELETED_EXTERNALLY


class TestDeleteAndVerify:
    """404 on delete is a no-op; 404 on verify reconciles."""

    def test_delete_removes_cache_row(
        self,
        engine: SyncEngine,
        gateway: MagicMock,
        event_store: EventCacheStore,
        make_event_data: Callable[..., Any],
        user: str,
    ) -> None:
        event_store.upsert(make_event_data("evt-1"))

        assert engine.delete_event(user, "evt-1") is True
        assert event_store.get(user, "primary", "evt-1") is None

    def test_delete_already_gone(
        self,
        engine: SyncEngine,
        gateway: MagicMock,
        event_store: EventCacheStore,
        make_event_data: Callable[..., Any],
        user: str,
    ) -> None:
        event_store.upsert(make_event_data("evt-1"))
        gateway.delete_event.side_effect = CalendarNotFoundError()

        assert engine.delete_event(user, "evt-1") is False
        assert event_store.get(user, "primary", "evt-1") is None

    def test_verify_existing(self, engine: SyncEngine, gateway: MagicMock, user: str) -> None:
        gateway.get_event.return_value = {"id": "evt-1"}

        assert engine.verify_event_exists(user, "evt-1") is True

    def test_verify_missing_reconciles(
        self,
        engine: SyncEngine,
        gateway: MagicMock,
        shoot_store: ShootLinkStore,
        add_shoot: Callable[..., int],
        user: str,
    ) -> None:
        shoot_id = add_shoot(calendar_event_id="evt-1")
        gateway.get_event.side_effect = CalendarNotFoundError()

        assert engine.verify_event_exists(user, "evt-1") is False
        assert shoot_store.get(shoot_id).calendar_event_id is None

    def test_verify_propagates_other_errors(
        self, engine: SyncEngine, gateway: MagicMock, user: str
    ) -> None:
        gateway.get_event.side_effect = CalendarConflictError()

        with pytest.raises(CalendarConflictError):
            engine.verify_event_exists(user, "evt-1")


class TestQueries:
    """Read-only helpers."""

    def test_check_conflicts_for_interval(
        self,
        engine: SyncEngine,
        event_store: EventCacheStore,
        make_event_data: Callable[..., Any],
        user: str,
    ) -> None:
        event_store.upsert(make_event_data("a", 1, 2))
        event_store.upsert(make_event_data("b", 2, 3))

        info = engine.check_conflicts_for_interval(
            user, "primary", NOW + timedelta(hours=1.5), NOW + timedelta(hours=2)
        )

        assert [c.id for c in info.conflicting_events] == ["a"]

    def test_check_conflicts_rejects_empty_interval(self, engine: SyncEngine, user: str) -> None:
        with pytest.raises(CalendarValidationError):
            engine.check_conflicts_for_interval(user, "primary", NOW, NOW)

    def test_list_calendars(self, engine: SyncEngine, gateway: MagicMock, user: str) -> None:
        gateway.list_calendars.return_value = [
            {
                "id": "primary@example.com",
                "summary": "Studio",
                "primary": True,
                "accessRole": "owner",
                "timeZone": "America/Vancouver",
                "colorId": "3",
            }
        ]

        calendars = engine.list_calendars(user)

        assert calendars == [
            {
                "id": "primary@example.com",
                "summary": "Studio",
                "primary": True,
                "accessRole": "owner",
                "timeZone": "America/Vancouver",
            }
        ]
