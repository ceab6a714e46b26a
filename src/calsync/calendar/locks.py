"""Per-(user, calendar) mutual exclusion for sync runs.

Interleaved runs for the same calendar would interleave cursor writes, so a
run must hold the calendar's lock for its whole duration.  Runs for different
calendars never contend.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from calsync.calendar.exceptions import SyncInProgressError

_Key = tuple[str, str]


class SyncLockRegistry:
    """Hands out one :class:`threading.Lock` per (user, calendar) key.

    A key's entry lives only while some caller holds or waits for it, so the
    registry stays bounded by the number of concurrent runs.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[_Key, threading.Lock] = {}
        self._users: dict[_Key, int] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def is_locked(self, user_email: str, calendar_id: str) -> bool:
        with self._guard:
            lock = self._locks.get((user_email, calendar_id))
        return lock is not None and lock.locked()

    @contextmanager
    def hold(
        self, user_email: str, calendar_id: str, timeout: float | None = None
    ) -> Iterator[None]:
        """Hold the key's lock for the duration of the block.

        Args:
            timeout: ``None`` fails immediately when the lock is taken;
                otherwise wait up to *timeout* seconds.

        Raises:
            SyncInProgressError: If the lock could not be acquired.
        """
        key = (user_email, calendar_id)
        lock = self._checkout(key)
        try:
            acquired = lock.acquire(timeout=timeout) if timeout is not None else lock.acquire(False)
            if not acquired:
                raise SyncInProgressError(
                    f"A sync is already running for {user_email}/{calendar_id}"
                )
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    def _checkout(self, key: _Key) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            self._users[key] = self._users.get(key, 0) + 1
            return lock

    def _checkin(self, key: _Key) -> None:
        with self._guard:
            remaining = self._users[key] - 1
            if remaining:
                self._users[key] = remaining
            else:
                del self._users[key]
                del self._locks[key]
