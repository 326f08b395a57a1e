from __future__ import annotations

import logging

from regnotify.domain.contracts import NotifierRepository, RegistrationSource

COMPONENT_ID = "domain.registrations.sync"
logger = logging.getLogger("notifier")


async def sync_new_registrations(*, repository: NotifierRepository, source: RegistrationSource) -> int:
    """Mirror registrations newer than the last synced id into the tracking store.

    Returns the number of source rows observed this cycle. A row that fails to
    upsert is logged and skipped; the rest of the batch still lands.
    """
    last_id = await repository.max_registration_id()
    registrations = await source.list_after(last_id=last_id)
    if not registrations:
        return 0

    logger.info("syncing new registrations", extra={"count": len(registrations)})
    for registration in registrations:
        try:
            await repository.upsert_from_source(registration=registration)
        except Exception:
            logger.exception(
                "registration sync failed",
                extra={"registration_id": registration.id},
            )
    return len(registrations)
