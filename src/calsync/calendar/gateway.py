"""Thin gateway over the Google Calendar v3 API.

Provides :class:`GoogleCalendarGateway`, the only component that talks to the
provider.  It covers:

- **Events** -- list a page of the change feed, get, insert, update (with an
  optional etag precondition), delete.
- **Push channels** -- ``events.watch`` and ``channels.stop``.
- **Calendar list** -- the calendars a user can sync.

Each call receives an :class:`~calsync.calendar.auth.AccessCredential` and
builds its own authorized transport, so concurrent calls for different users
never share client state.  Provider errors are translated into the
:mod:`calsync.calendar.exceptions` taxonomy; retrying is left to the caller's
:class:`~calsync.calendar.retry.RetryPolicy`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import google_auth_httplib2
import httplib2
from google.auth.exceptions import RefreshError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from calsync.calendar.auth import AccessCredential
from calsync.calendar.exceptions import (
    CalendarAuthError,
    CalendarServerError,
    classify_http_error,
)
from calsync.models.calendar import ChannelRegistration, EventPage

logger = logging.getLogger(__name__)

# Largest page size the events.list endpoint accepts without truncation.
_PAGE_SIZE = 250

ServiceFactory = Callable[[AccessCredential], Any]


class GoogleCalendarGateway:
    """Remote calendar operations with per-call credentials.

    Args:
        request_timeout: Timeout in seconds applied to each HTTP request.
        service_factory: Optional callable returning a ``googleapiclient``
            service resource for a credential.  Pass a factory returning a
            mock here in tests.
    """

    def __init__(
        self,
        request_timeout: float = 30.0,
        service_factory: ServiceFactory | None = None,
    ) -> None:
        self._request_timeout = request_timeout
        self._service_factory = service_factory or self._build_service

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def list_events(
        self,
        credential: AccessCredential,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        cursor: str | None = None,
        page_token: str | None = None,
    ) -> EventPage:
        """Fetch one page of the event feed.

        With a *cursor* the request is incremental: the API refuses time
        bounds and ordering together with a sync token, so they are only
        sent on full fetches.

        Raises:
            SyncTokenExpiredError: If the provider no longer accepts *cursor*.
        """
        params: dict[str, Any] = {
            "calendarId": calendar_id,
            "maxResults": _PAGE_SIZE,
            "singleEvents": True,
            "showDeleted": cursor is not None,
        }
        if cursor is not None:
            params["syncToken"] = cursor
        else:
            params["timeMin"] = _rfc3339(time_min)
            params["timeMax"] = _rfc3339(time_max)
            params["orderBy"] = "startTime"
        if page_token is not None:
            params["pageToken"] = page_token

        service = self._service_factory(credential)
        response = self._execute(service.events().list(**params))

        page = EventPage(
            events=list(response.get("items", [])),
            next_page_token=response.get("nextPageToken"),
            next_cursor=response.get("nextSyncToken"),
        )
        logger.debug(
            "Listed %d event(s) from %s (incremental=%s, more=%s)",
            len(page.events),
            calendar_id,
            cursor is not None,
            page.next_page_token is not None,
        )
        return page

    def get_event(
        self, credential: AccessCredential, calendar_id: str, event_id: str
    ) -> dict[str, Any]:
        """Fetch one event.

        Raises:
            CalendarNotFoundError: If the event does not exist.
        """
        service = self._service_factory(credential)
        return self._execute(service.events().get(calendarId=calendar_id, eventId=event_id))

    def create_event(
        self, credential: AccessCredential, calendar_id: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        service = self._service_factory(credential)
        result = self._execute(
            service.events().insert(calendarId=calendar_id, body=body, sendUpdates="all")
        )
        logger.info("Created event '%s' (id=%s)", body.get("summary", "?"), result.get("id", "?"))
        return result

    def update_event(
        self,
        credential: AccessCredential,
        calendar_id: str,
        event_id: str,
        body: dict[str, Any],
        etag: str | None = None,
    ) -> dict[str, Any]:
        """Patch an event, optionally only if it still has *etag*.

        Raises:
            CalendarNotFoundError: If the event does not exist.
            CalendarConflictError: If *etag* no longer matches.
        """
        service = self._service_factory(credential)
        request = service.events().patch(
            calendarId=calendar_id, eventId=event_id, body=body, sendUpdates="all"
        )
        if etag is not None:
            request.headers["If-Match"] = etag
        result = self._execute(request)
        logger.info("Updated event (id=%s)", event_id)
        return result

    def delete_event(self, credential: AccessCredential, calendar_id: str, event_id: str) -> None:
        """Delete an event.

        Raises:
            CalendarNotFoundError: If the event does not exist.
        """
        service = self._service_factory(credential)
        self._execute(
            service.events().delete(calendarId=calendar_id, eventId=event_id, sendUpdates="all")
        )
        logger.info("Deleted event (id=%s)", event_id)

    # ------------------------------------------------------------------
    # Push channels
    # ------------------------------------------------------------------

    def watch_events(
        self,
        credential: AccessCredential,
        calendar_id: str,
        channel_id: str,
        address: str,
        token: str | None = None,
        ttl_seconds: int | None = None,
    ) -> ChannelRegistration:
        """Subscribe *address* to change notifications for the calendar."""
        body: dict[str, Any] = {"id": channel_id, "type": "web_hook", "address": address}
        if token:
            body["token"] = token
        if ttl_seconds:
            body["params"] = {"ttl": str(ttl_seconds)}

        service = self._service_factory(credential)
        response = self._execute(service.events().watch(calendarId=calendar_id, body=body))

        expiration = None
        if response.get("expiration"):
            expiration = datetime.fromtimestamp(int(response["expiration"]) / 1000, tz=timezone.utc)

        return ChannelRegistration(
            channel_id=response.get("id", channel_id),
            resource_id=response.get("resourceId", ""),
            resource_uri=response.get("resourceUri", ""),
            expiration=expiration,
            token=token,
        )

    def stop_channel(self, credential: AccessCredential, channel_id: str, resource_id: str) -> None:
        service = self._service_factory(credential)
        self._execute(service.channels().stop(body={"id": channel_id, "resourceId": resource_id}))
        logger.info("Stopped channel %s", channel_id)

    # ------------------------------------------------------------------
    # Calendar list
    # ------------------------------------------------------------------

    def list_calendars(self, credential: AccessCredential) -> list[dict[str, Any]]:
        """Return every calendar on the user's calendar list."""
        service = self._service_factory(credential)
        calendars: list[dict[str, Any]] = []
        page_token: str | None = None

        while True:
            response = self._execute(
                service.calendarList().list(showHidden=False, pageToken=page_token)
            )
            calendars.extend(response.get("items", []))
            page_token = response.get("nextPageToken")
            if page_token is None:
                break

        return calendars

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _build_service(self, credential: AccessCredential) -> Any:
        # Token-only credentials cannot refresh; a 401 must surface as HttpError.
        http = google_auth_httplib2.AuthorizedHttp(
            credential.to_google_credentials(),
            http=httplib2.Http(timeout=self._request_timeout),
            refresh_status_codes=(),
        )
        return build("calendar", "v3", http=http, cache_discovery=False)

    @staticmethod
    def _execute(request: Any) -> Any:
        """Run a ``googleapiclient`` request, translating its failures."""
        try:
            return request.execute()
        except HttpError as exc:
            error = classify_http_error(exc)
            logger.debug("Calendar API error (HTTP %s): %s", error.status_code, error)
            raise error from exc
        except RefreshError as exc:
            raise CalendarAuthError(f"Access token rejected: {exc}") from exc
        except (OSError, TimeoutError, httplib2.HttpLib2Error) as exc:
            raise CalendarServerError(f"Network error: {exc}") from exc


def _rfc3339(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
