from __future__ import annotations

from datetime import timedelta
import logging

from regnotify.domain.contracts import NotifierRepository
from regnotify.domain.stages import STALE_LOCK_AFTER

COMPONENT_ID = "domain.delivery.reap_locks"
logger = logging.getLogger("notifier")


async def release_stuck_locks(
    *,
    repository: NotifierRepository,
    stale_after: timedelta = STALE_LOCK_AFTER,
) -> int:
    """Clear processing flags left behind by a crashed or hung send."""
    released = await repository.release_stale_locks(stale_after=stale_after)
    if released:
        logger.warning("released stale processing locks", extra={"count": released})
    return released
