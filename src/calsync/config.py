"""Configuration loading for calsync.

Reads settings from environment variables (with .env support via python-dotenv)
and validates that all required values are present.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment variables.

    Attributes:
        database_url: SQLAlchemy URL of the cache/cursor/channel database.
        google_client_id: OAuth client id for the Google Calendar API.
            Empty when calendar integration is not configured.
        google_client_secret: OAuth client secret paired with the client id.
        webhook_url: Public HTTPS address Google posts push notifications to.
        log_level: Logging level (default ``"INFO"``).
        timezone: IANA timezone used for the sync window (default ``"UTC"``).
        sync_window_days: Days ahead of today covered by a sync (default 14).
        request_timeout: Per-request HTTP timeout in seconds (default 30).
        channel_ttl_seconds: Requested lifetime of a webhook channel
            (default 7 days).
    """

    database_url: str
    google_client_id: str = ""
    google_client_secret: str = ""
    webhook_url: str = ""
    log_level: str = "INFO"
    timezone: str = "UTC"
    sync_window_days: int = 14
    request_timeout: float = 30.0
    channel_ttl_seconds: int = 604800

    @property
    def calendar_configured(self) -> bool:
        """Whether the Google OAuth client is configured."""
        return bool(self.google_client_id and self.google_client_secret)

    def __repr__(self) -> str:
        return (
            f"Settings(database_url={self.database_url!r}, "
            f"google_client_id={self.google_client_id!r}, "
            f"google_client_secret='***', "
            f"webhook_url={self.webhook_url!r}, "
            f"log_level={self.log_level!r}, "
            f"timezone={self.timezone!r}, "
            f"sync_window_days={self.sync_window_days!r})"
        )


_INT_SETTINGS = {
    "SYNC_WINDOW_DAYS": "sync_window_days",
    "CHANNEL_TTL_SECONDS": "channel_ttl_seconds",
}

_OPTIONAL_STR_SETTINGS = {
    "GOOGLE_CLIENT_ID": "google_client_id",
    "GOOGLE_CLIENT_SECRET": "google_client_secret",
    "WEBHOOK_URL": "webhook_url",
    "LOG_LEVEL": "log_level",
    "TIMEZONE": "timezone",
}


def load_settings() -> Settings:
    """Load and validate settings from environment variables.

    Calls :func:`dotenv.load_dotenv` so a ``.env`` file in the project root
    is picked up automatically.

    Google client credentials are optional here: their absence is reported
    as a configuration error by the sync engine when a sync is attempted, so
    maintenance commands keep working without them.

    Returns:
        A validated :class:`Settings` instance.

    Raises:
        ConfigError: If a required environment variable is missing, or a
            numeric variable cannot be parsed.  The error message names
            **all** offending variables.
    """
    load_dotenv()

    required = {
        "DATABASE_URL": "database_url",
    }

    values: dict[str, object] = {}
    missing: list[str] = []

    for env_var, field_name in required.items():
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            missing.append(env_var)
        else:
            values[field_name] = raw.strip()

    if missing:
        names = ", ".join(missing)
        raise ConfigError(f"Missing required environment variables: {names}")

    for env_var, field_name in _OPTIONAL_STR_SETTINGS.items():
        raw = os.environ.get(env_var, "").strip()
        if raw:
            values[field_name] = raw

    invalid: list[str] = []
    for env_var, field_name in _INT_SETTINGS.items():
        raw = os.environ.get(env_var, "").strip()
        if not raw:
            continue
        try:
            number = int(raw)
        except ValueError:
            invalid.append(env_var)
            continue
        if number <= 0:
            invalid.append(env_var)
        else:
            values[field_name] = number

    raw_timeout = os.environ.get("REQUEST_TIMEOUT_SECONDS", "").strip()
    if raw_timeout:
        try:
            values["request_timeout"] = float(raw_timeout)
        except ValueError:
            invalid.append("REQUEST_TIMEOUT_SECONDS")

    if invalid:
        names = ", ".join(invalid)
        raise ConfigError(f"Invalid numeric environment variables: {names}")

    return Settings(**values)  # type: ignore[arg-type]
