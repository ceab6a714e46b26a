"""Exception taxonomy for Google Calendar sync operations.

Every failure the sync engine can meet is mapped to one class below.  The
class decides how callers react: retry with backoff, refresh credentials
once, fall back to a full resync, or give up and surface the error.

Exception hierarchy::

    CalendarAPIError                (base; ``status_code`` and ``kind``)
    +-- CalendarConfigError         (integration not configured / not connected)
    |   +-- ReconnectRequiredError  (token refresh failed; user must reconnect)
    +-- CalendarAuthError           (HTTP 401)
    +-- CalendarRateLimitError      (HTTP 429, 403 rate/quota limits)
    +-- CalendarServerError         (HTTP 5xx, network failures)
    +-- SyncTokenExpiredError       (HTTP 410, invalid sync token)
    +-- CalendarNotFoundError       (HTTP 404)
    +-- CalendarConflictError       (HTTP 409/412 precondition failures)
    +-- CalendarForbiddenError      (HTTP 403 other than rate limits)
    +-- CalendarBadRequestError     (HTTP 400)
    +-- CalendarValidationError     (bad local input, raised before any call)
    +-- SyncInProgressError         (another run holds the calendar lock)
    +-- SyncCancelledError          (caller cancelled between pages)
"""

from __future__ import annotations

import json
import logging

from googleapiclient.errors import HttpError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exception classes
# ---------------------------------------------------------------------------


class CalendarAPIError(Exception):
    """Base exception for calendar sync errors.

    Attributes:
        status_code: HTTP status code from the API, or ``None`` if the
            error did not originate from an HTTP response.
        kind: Short machine-readable class name reported in
            :class:`~calsync.models.calendar.SyncResult`.
    """

    kind = "calendar_error"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CalendarConfigError(CalendarAPIError):
    """Calendar integration is not configured or not connected for the user.

    Fatal: never retried, surfaced as an action-required state.
    """

    kind = "configuration"

    def __init__(self, message: str = "Google Calendar integration is not configured") -> None:
        super().__init__(message)


class ReconnectRequiredError(CalendarConfigError):
    """Refreshing the access token failed; the user must reconnect."""

    kind = "reconnect_required"

    def __init__(
        self,
        message: str = "Calendar authentication expired. Please reconnect your Google Calendar.",
    ) -> None:
        super().__init__(message)


class CalendarAuthError(CalendarAPIError):
    """The access token was rejected (HTTP 401)."""

    kind = "unauthorized"

    def __init__(self, message: str = "Calendar access unauthorized") -> None:
        super().__init__(message, status_code=401)


class CalendarRateLimitError(CalendarAPIError):
    """The provider asked us to slow down (HTTP 429 or a 403 rate/quota reason)."""

    kind = "rate_limited"

    def __init__(
        self, message: str = "Calendar API rate limit exceeded", status_code: int = 429
    ) -> None:
        super().__init__(message, status_code=status_code)


class CalendarServerError(CalendarAPIError):
    """Transient provider or network failure."""

    kind = "transient"

    def __init__(
        self, message: str = "Calendar API temporarily unavailable", status_code: int | None = None
    ) -> None:
        super().__init__(message, status_code=status_code)


class SyncTokenExpiredError(CalendarAPIError):
    """The stored sync token is no longer accepted; a full resync is needed."""

    kind = "cursor_expired"

    def __init__(self, message: str = "Sync token expired - full resync required") -> None:
        super().__init__(message, status_code=410)


class CalendarNotFoundError(CalendarAPIError):
    """A calendar, event or channel no longer exists (HTTP 404)."""

    kind = "not_found"

    def __init__(self, message: str = "Calendar resource not found") -> None:
        super().__init__(message, status_code=404)


class CalendarConflictError(CalendarAPIError):
    """An optimistic-concurrency precondition failed.

    The caller's copy of the event is stale and must be refreshed before
    retrying the write.
    """

    kind = "conflict"

    def __init__(
        self, message: str = "Calendar event was modified remotely", status_code: int = 412
    ) -> None:
        super().__init__(message, status_code=status_code)


class CalendarForbiddenError(CalendarAPIError):
    """Access forbidden for reasons other than rate limiting."""

    kind = "forbidden"

    def __init__(
        self, message: str = "Calendar access forbidden - insufficient permissions"
    ) -> None:
        super().__init__(message, status_code=403)


class CalendarBadRequestError(CalendarAPIError):
    """The provider rejected the request as malformed (HTTP 400)."""

    kind = "bad_request"

    def __init__(self, message: str = "Calendar API rejected the request") -> None:
        super().__init__(message, status_code=400)


class CalendarValidationError(CalendarAPIError, ValueError):
    """Local input is invalid; raised before any network call."""

    kind = "validation"


class SyncInProgressError(CalendarAPIError):
    """Another sync run holds the lock for the same (user, calendar)."""

    kind = "in_progress"


class SyncCancelledError(CalendarAPIError):
    """The caller cancelled the run between two pages."""

    kind = "cancelled"


# ---------------------------------------------------------------------------
# HTTP error classification
# ---------------------------------------------------------------------------

_RATE_LIMIT_REASONS = frozenset(
    {"rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded", "dailyLimitExceeded"}
)


def _error_reasons(error: HttpError) -> tuple[set[str], str]:
    """Extract the ``errors[].reason`` values and message from an error body."""
    reasons: set[str] = set()
    message = ""
    content = error.content
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    try:
        payload = json.loads(content) if content else {}
    except (TypeError, ValueError):
        return reasons, str(content or "")

    body = payload.get("error", {}) if isinstance(payload, dict) else {}
    if isinstance(body, dict):
        message = str(body.get("message", ""))
        for item in body.get("errors", []) or []:
            if isinstance(item, dict) and item.get("reason"):
                reasons.add(str(item["reason"]))
    return reasons, message


def classify_http_error(error: HttpError) -> CalendarAPIError:
    """Map an ``HttpError`` to the appropriate calendar exception.

    Args:
        error: The ``googleapiclient.errors.HttpError`` to classify.

    Returns:
        A :class:`CalendarAPIError` subclass matching the status code and,
        for 400/403, the reasons in the error body.
    """
    status = int(error.resp.status)
    reasons, body_message = _error_reasons(error)
    message = body_message or str(error)
    text = f"{message} {' '.join(sorted(reasons))}".lower()

    if status == 401:
        return CalendarAuthError(message)
    if status == 404:
        return CalendarNotFoundError(message)
    if status == 410:
        return SyncTokenExpiredError(message)
    if status in (409, 412):
        return CalendarConflictError(message, status_code=status)
    if status == 429:
        return CalendarRateLimitError(message)
    if status == 403:
        if reasons & _RATE_LIMIT_REASONS or "rate limit" in text:
            return CalendarRateLimitError(message, status_code=403)
        return CalendarForbiddenError(message)
    if status == 400:
        if "sync token" in text or "synctoken" in text:
            return SyncTokenExpiredError(message)
        return CalendarBadRequestError(message)
    if status >= 500:
        return CalendarServerError(message, status_code=status)
    return CalendarAPIError(message, status_code=status)


def is_retryable(error: BaseException) -> bool:
    """Default classifier for :class:`~calsync.calendar.retry.RetryPolicy`."""
    return isinstance(error, (CalendarRateLimitError, CalendarServerError))
