"""Reconciliation of events deleted outside this system.

When the provider reports an event cancelled, or a direct lookup returns 404,
the cached copy is dropped and every shoot still pointing at the event gets
its calendar linkage cleared with a human-readable reason.  Both steps are
idempotent.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from calsync.store.database import utcnow
from calsync.store.events import EventCacheStore
from calsync.store.shoots import DELETED_EXTERNALLY, ShootLinkStore

logger = logging.getLogger(__name__)


class Reconciler:
    """Clears local state that refers to vanished remote events.

    Args:
        events: Local event cache.
        shoots: Shoot linkage store.
        clock: Returns the current aware UTC time.
    """

    def __init__(
        self,
        events: EventCacheStore,
        shoots: ShootLinkStore,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._events = events
        self._shoots = shoots
        self._clock = clock

    def handle_externally_deleted(
        self, user_email: str, event_id: str, calendar_id: str = "primary"
    ) -> list[int]:
        """Remove the cached event and unlink shoots referencing it.

        Returns:
            Ids of the shoots whose linkage was cleared by this call.
        """
        removed = self._events.delete(user_email, calendar_id, event_id)
        logger.info(
            "Handling externally deleted event %s for %s (cached copy removed=%s)",
            event_id,
            user_email,
            removed,
        )

        cleared: list[int] = []
        for shoot in self._shoots.find_by_calendar_event_id(event_id):
            # Only clears while the shoot still points at event_id.
            if self._shoots.clear_calendar_sync(shoot.id, event_id, DELETED_EXTERNALLY):
                logger.info("Cleared calendar sync for shoot %s (%s)", shoot.id, shoot.title)
                cleared.append(shoot.id)

        if not cleared:
            logger.debug("No shoot linked to deleted event %s", event_id)
        return cleared

    def cleanup_orphaned_events(self, user_email: str, calendar_id: str = "primary") -> int:
        """Drop cache links to shoots that no longer exist.

        Returns:
            Number of cached events whose shoot reference was cleared.
        """
        cleaned = 0
        dangling: set[int] = set()
        for event in self._events.list_linked(user_email, calendar_id):
            if event.shoot_id is None or event.shoot_id in dangling:
                continue
            if not self._shoots.exists(event.shoot_id):
                dangling.add(event.shoot_id)

        for shoot_id in sorted(dangling):
            count = self._events.unlink_shoot(user_email, calendar_id, shoot_id)
            logger.info("Unlinked %d cached event(s) from missing shoot %s", count, shoot_id)
            cleaned += count

        logger.info("Cleaned up %d orphaned calendar link(s) for %s", cleaned, user_email)
        return cleaned

    def link_event_to_shoot(
        self, user_email: str, calendar_id: str, event_id: str, shoot_id: int
    ) -> bool:
        """Point a shoot at a remote event and record the link in the cache.

        Returns:
            ``False`` if the shoot does not exist.
        """
        if not self._shoots.link(shoot_id, event_id, self._clock()):
            logger.warning("Cannot link event %s: shoot %s not found", event_id, shoot_id)
            return False
        self._events.link_shoot(user_email, calendar_id, event_id, shoot_id)
        logger.info("Linked event %s to shoot %s", event_id, shoot_id)
        return True
