"""Retry with exponential backoff and jitter.

One :class:`RetryPolicy` is shared by every remote call site of the sync
engine.  Whether an error is worth retrying is decided by a classifier
function; by default only rate-limit and transient server errors are.

Delay before retry *n* (0-based)::

    min(base_delay * 2**n + jitter, max_delay)

where ``jitter`` is uniform in ``[0, jitter_ratio * base_delay * 2**n]``.
"""

from __future__ import annotations

import functools
import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from calsync.calendar.exceptions import is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")
F = TypeVar("F", bound=Callable[..., Any])

_DEFAULT_MAX_ATTEMPTS = 5
_DEFAULT_BASE_DELAY = 1.0  # seconds
_DEFAULT_MAX_DELAY = 60.0  # seconds
_DEFAULT_JITTER_RATIO = 0.1


@dataclass
class RetryPolicy:
    """Bounded exponential backoff parameterised by an error classifier.

    Attributes:
        max_attempts: Total attempts, including the first one.
        base_delay: Delay before the first retry, in seconds.
        max_delay: Upper bound on any single delay.
        jitter_ratio: Maximum jitter as a fraction of the exponential delay.
        classifier: Returns ``True`` for errors that should be retried.
        sleep: Sleep function; replaced in tests.
        random_fn: Source of uniform ``[0, 1)`` values for jitter.
    """

    max_attempts: int = _DEFAULT_MAX_ATTEMPTS
    base_delay: float = _DEFAULT_BASE_DELAY
    max_delay: float = _DEFAULT_MAX_DELAY
    jitter_ratio: float = _DEFAULT_JITTER_RATIO
    classifier: Callable[[BaseException], bool] = is_retryable
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    random_fn: Callable[[], float] = field(default=random.random, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def compute_delay(self, retry_index: int) -> float:
        """Delay before retry number *retry_index* (0-based)."""
        exponential = self.base_delay * (2**retry_index)
        jitter = self.random_fn() * self.jitter_ratio * exponential
        return min(exponential + jitter, self.max_delay)

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Invoke *func*, retrying retryable failures.

        Non-retryable errors propagate immediately without consuming an
        attempt.  The last retryable error is re-raised once attempts run out.
        """
        for attempt in range(self.max_attempts):
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                if not self.classifier(exc):
                    raise
                if attempt + 1 >= self.max_attempts:
                    logger.error(
                        "Giving up after %d attempt(s): %s", self.max_attempts, exc
                    )
                    raise
                delay = self.compute_delay(attempt)
                logger.warning(
                    "%s, retrying in %.1fs (attempt %d/%d)",
                    type(exc).__name__,
                    delay,
                    attempt + 1,
                    self.max_attempts,
                )
                self.sleep(delay)

        raise RuntimeError("Retry loop exhausted unexpectedly")  # pragma: no cover


def with_retry(policy_attr: str = "_retry") -> Callable[[F], F]:
    """Decorator running a method under the instance's :class:`RetryPolicy`.

    The policy is looked up on ``self`` through *policy_attr* at call time so
    tests can swap it per instance.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
            policy: RetryPolicy = getattr(self, policy_attr)
            return policy.call(func, self, *args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator
