"""Tests for :class:`calsync.calendar.locks.SyncLockRegistry`."""

from __future__ import annotations

import threading

import pytest

from calsync.calendar.exceptions import SyncInProgressError
from calsync.calendar.locks import SyncLockRegistry


class TestSyncLockRegistry:
    """One lock per (user, calendar)."""

    def test_second_holder_rejected(self) -> None:
        locks = SyncLockRegistry()

        with locks.hold("a@example.com", "primary"):
            with pytest.raises(SyncInProgressError):
                with locks.hold("a@example.com", "primary"):
                    pass

        assert locks.is_locked("a@example.com", "primary") is False

    def test_keys_are_independent(self) -> None:
        locks = SyncLockRegistry()

        with locks.hold("a@example.com", "primary"), locks.hold("a@example.com", "team"):
            assert locks.is_locked("b@example.com", "primary") is False

    def test_released_on_error(self) -> None:
        locks = SyncLockRegistry()

        with pytest.raises(RuntimeError):
            with locks.hold("a@example.com", "primary"):
                raise RuntimeError("boom")

        assert locks.is_locked("a@example.com", "primary") is False

    def test_waits_with_timeout(self) -> None:
        """A waiting caller gets the lock once the holder releases it."""
        locks = SyncLockRegistry()
        acquired = threading.Event()
        release = threading.Event()

        def holder() -> None:
            with locks.hold("a@example.com", "primary"):
                acquired.set()
                release.wait(timeout=5)

        thread = threading.Thread(target=holder)
        thread.start()
        acquired.wait(timeout=5)
        release.set()

        with locks.hold("a@example.com", "primary", timeout=5):
            assert locks.is_locked("a@example.com", "primary") is True

        thread.join(timeout=5)

    def test_entries_dropped_on_release(self) -> None:
        locks = SyncLockRegistry()

        with locks.hold("a@example.com", "primary"):
            assert len(locks) == 1
            with pytest.raises(SyncInProgressError):
                with locks.hold("a@example.com", "primary"):
                    pass
            assert len(locks) == 1

        assert len(locks) == 0
