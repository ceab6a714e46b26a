"""OAuth 2.0 credentials for the Google Calendar API.

Stored tokens live in the :class:`~calsync.store.credentials.CredentialStore`.
:class:`CredentialManager` hands out an immutable :class:`AccessCredential`
for each unit of work, refreshing the stored token first when it is within
:data:`EXPIRY_BUFFER` of expiring.

Usage::

    manager = CredentialManager(store, settings)
    credential = manager.ensure_valid_credential("owner@example.com")
    gateway.list_events(credential, "primary", time_min, time_max)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from calsync.calendar.exceptions import (
    CalendarConfigError,
    CalendarServerError,
    ReconnectRequiredError,
)
from calsync.config import Settings
from calsync.store.credentials import GOOGLE_CALENDAR_PROVIDER, CredentialStore
from calsync.store.database import utcnow

logger = logging.getLogger(__name__)

SCOPES: list[str] = ["https://www.googleapis.com/auth/calendar"]
"""OAuth 2.0 scopes required for full Calendar CRUD access and push channels."""

TOKEN_URI = "https://oauth2.googleapis.com/token"

EXPIRY_BUFFER = timedelta(minutes=5)
"""Tokens expiring within this window are refreshed before use."""


@dataclass(frozen=True)
class AccessCredential:
    """A bearer token for a single unit of work.

    Passed explicitly to every gateway call; never mutated.
    """

    user_email: str
    access_token: str
    expiry: datetime | None = None

    def to_google_credentials(self) -> Credentials:
        """Token-only ``google.oauth2`` credentials (no refresh capability)."""
        return Credentials(token=self.access_token, scopes=SCOPES)

    def __repr__(self) -> str:
        return f"AccessCredential(user_email={self.user_email!r}, access_token='***')"


class CredentialManager:
    """Reads, refreshes and persists per-user calendar credentials.

    Args:
        store: Credential persistence.
        settings: Application settings providing the OAuth client id/secret.
        clock: Returns the current aware UTC time; replaced in tests.
    """

    def __init__(
        self,
        store: CredentialStore,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._settings = settings
        self._clock = clock

    def ensure_valid_credential(self, user_email: str) -> AccessCredential:
        """Return a credential that stays valid for at least the buffer window.

        Raises:
            CalendarConfigError: If the user never connected a calendar.
            ReconnectRequiredError: If a needed refresh is rejected.
        """
        record = self._store.get(user_email, GOOGLE_CALENDAR_PROVIDER)
        if record is None or not record.access_token:
            raise CalendarConfigError(f"Google Calendar not connected for {user_email}")

        if self._needs_refresh(record.expiry_date):
            logger.info("Access token for %s expires soon, refreshing", user_email)
            return self.refresh(user_email)

        return AccessCredential(
            user_email=user_email,
            access_token=record.access_token,
            expiry=record.expiry_date,
        )

    def refresh(self, user_email: str) -> AccessCredential:
        """Refresh the stored access token unconditionally.

        Raises:
            CalendarConfigError: If no credential is stored.
            ReconnectRequiredError: If there is no refresh token, or the
                provider rejects it (revoked or expired).
            CalendarServerError: If the token endpoint cannot be reached.
        """
        record = self._store.get(user_email, GOOGLE_CALENDAR_PROVIDER)
        if record is None:
            raise CalendarConfigError(f"Google Calendar not connected for {user_email}")
        if not record.refresh_token:
            self._store.record_error(user_email, "No refresh token stored")
            raise ReconnectRequiredError()

        try:
            refreshed = _refresh_google_credentials(
                access_token=record.access_token,
                refresh_token=record.refresh_token,
                client_id=self._settings.google_client_id,
                client_secret=self._settings.google_client_secret,
            )
        except RefreshError as exc:
            logger.error("Token refresh rejected for %s: %s", user_email, exc)
            self._store.record_error(user_email, f"Token refresh failed: {exc}")
            raise ReconnectRequiredError() from exc
        except TransportError as exc:
            logger.warning("Token endpoint unreachable for %s: %s", user_email, exc)
            raise CalendarServerError(f"Token refresh transport error: {exc}") from exc

        expiry = _aware(refreshed.expiry)
        self._store.upsert(
            user_email,
            GOOGLE_CALENDAR_PROVIDER,
            access_token=refreshed.token,
            refresh_token=refreshed.refresh_token
            if refreshed.refresh_token != record.refresh_token
            else None,
            expiry_date=expiry,
        )
        logger.info("Access token refreshed for %s", user_email)
        return AccessCredential(user_email=user_email, access_token=refreshed.token, expiry=expiry)

    def connect(self, user_email: str, client_secrets_path: Path | str) -> AccessCredential:
        """Run the installed-app OAuth flow and store the resulting tokens.

        Raises:
            CalendarConfigError: If the client secrets file does not exist.
        """
        creds = _run_browser_flow(Path(client_secrets_path))
        expiry = _aware(creds.expiry)
        self._store.upsert(
            user_email,
            GOOGLE_CALENDAR_PROVIDER,
            access_token=creds.token,
            refresh_token=creds.refresh_token,
            expiry_date=expiry,
        )
        logger.info("Google Calendar connected for %s", user_email)
        return AccessCredential(user_email=user_email, access_token=creds.token, expiry=expiry)

    def disconnect(self, user_email: str) -> bool:
        removed = self._store.delete(user_email, GOOGLE_CALENDAR_PROVIDER)
        logger.info("Google Calendar disconnected for %s (removed=%s)", user_email, removed)
        return removed

    def _needs_refresh(self, expiry: datetime | None) -> bool:
        if expiry is None:
            return False
        return expiry <= self._clock() + EXPIRY_BUFFER


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _aware(expiry: datetime | None) -> datetime | None:
    """google-auth reports expiry as naive UTC."""
    if expiry is None:
        return None
    if expiry.tzinfo is None:
        return expiry.replace(tzinfo=timezone.utc)
    return expiry


def _refresh_google_credentials(
    *,
    access_token: str | None,
    refresh_token: str,
    client_id: str,
    client_secret: str,
) -> Credentials:
    """Exchange *refresh_token* for a new access token."""
    creds = Credentials(
        token=access_token,
        refresh_token=refresh_token,
        token_uri=TOKEN_URI,
        client_id=client_id,
        client_secret=client_secret,
        scopes=SCOPES,
    )
    creds.refresh(Request())
    return creds


def _run_browser_flow(credentials_path: Path) -> Credentials:
    """Launch the InstalledAppFlow to authenticate via browser.

    Raises:
        CalendarConfigError: If the client secrets file is missing.
    """
    if not credentials_path.exists():
        msg = f"OAuth client secrets file not found: {credentials_path}"
        logger.error(msg)
        raise CalendarConfigError(msg)

    flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), scopes=SCOPES)
    creds = flow.run_local_server(port=0, access_type="offline", prompt="consent")
    logger.info("Browser OAuth flow completed successfully")
    return creds
