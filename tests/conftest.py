"""Shared fixtures for calsync tests."""

from __future__ import annotations

import logging
from collections.abc import Generator

import pytest

_CALSYNC_ENV_VARS = (
    "DATABASE_URL",
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "WEBHOOK_URL",
    "LOG_LEVEL",
    "TIMEZONE",
    "SYNC_WINDOW_DAYS",
    "REQUEST_TIMEOUT_SECONDS",
    "CHANNEL_TTL_SECONDS",
)


@pytest.fixture()
def monkeypatch_env(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set the required environment variables (plus Google client config).

    Also patches ``load_dotenv`` so that a real ``.env`` file on disk does not
    override the test values.

    Returns the dict of variables so tests can inspect or override values.
    """
    monkeypatch.setattr("calsync.config.load_dotenv", lambda *_a, **_kw: None)
    for key in _CALSYNC_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
    env_vars = {
        "DATABASE_URL": "sqlite:///:memory:",
        "GOOGLE_CLIENT_ID": "test-client-id.apps.googleusercontent.com",
        "GOOGLE_CLIENT_SECRET": "test-client-secret",
    }
    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)
    return env_vars


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove all calsync-related environment variables.

    Patches ``load_dotenv`` so a real ``.env`` file cannot re-inject values
    that the test explicitly removed.
    """
    monkeypatch.setattr("calsync.config.load_dotenv", lambda *_a, **_kw: None)
    for key in _CALSYNC_ENV_VARS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def _reset_root_logger() -> Generator[None, None, None]:
    """Reset the root logger after each test to prevent handler leaks."""
    root = logging.getLogger()
    original_handlers = root.handlers[:]
    original_level = root.level
    yield
    root.handlers = original_handlers
    root.setLevel(original_level)
