"""Google Calendar integration for calsync."""

from __future__ import annotations

from calsync.calendar.auth import AccessCredential, CredentialManager
from calsync.calendar.channels import ChannelManager, NotificationAction
from calsync.calendar.conflicts import check_interval, detect_conflicts, find_overlapping
from calsync.calendar.gateway import GoogleCalendarGateway
from calsync.calendar.locks import SyncLockRegistry
from calsync.calendar.reconcile import Reconciler
from calsync.calendar.retry import RetryPolicy, with_retry
from calsync.calendar.sync import SyncEngine

__all__ = [
    "AccessCredential",
    "ChannelManager",
    "CredentialManager",
    "GoogleCalendarGateway",
    "NotificationAction",
    "Reconciler",
    "RetryPolicy",
    "SyncEngine",
    "SyncLockRegistry",
    "check_interval",
    "detect_conflicts",
    "find_overlapping",
    "with_retry",
]
