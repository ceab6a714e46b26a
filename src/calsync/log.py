"""Structured logging setup for calsync.

Provides a consistent log format across the sync engine, the webhook endpoint
and the CLI, with ISO 8601 timestamps and pipe-separated fields.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Marks handlers installed by setup_logging so repeated calls stay idempotent
# without touching handlers added by a host application (uvicorn, celery...).
_HANDLER_ATTR = "_calsync_log_handler"

# Third-party loggers that are chatty at INFO and below.
_NOISY_LOGGERS = (
    "googleapiclient.discovery",
    "googleapiclient.discovery_cache",
    "google_auth_httplib2",
    "urllib3",
)


def setup_logging(level: str = "INFO", stream: TextIO | None = None) -> None:
    """Configure the root logger with the calsync formatter.

    Sets the root logger level and attaches a :class:`logging.StreamHandler`
    writing to *stream* (``sys.stderr`` by default).  Google client library
    loggers are capped at WARNING unless *level* is DEBUG.

    Calling this function multiple times is safe -- it will not add
    duplicate handlers.

    Args:
        level: A standard logging level name (e.g. ``"DEBUG"``,
            ``"INFO"``, ``"WARNING"``).
        stream: Optional text stream for the handler.

    Raises:
        ValueError: If *level* is not a recognised logging level string.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level!r}")

    root = logging.getLogger()
    root.setLevel(numeric_level)

    library_level = logging.DEBUG if numeric_level <= logging.DEBUG else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    for handler in root.handlers:
        if getattr(handler, _HANDLER_ATTR, False):
            handler.setLevel(numeric_level)
            return

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S"))

    setattr(handler, _HANDLER_ATTR, True)
    root.addHandler(handler)
