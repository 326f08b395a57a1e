from __future__ import annotations

from regnotify.api.handlers.deps import ApiDeps
from regnotify.api.schemas import SyncResponse
from regnotify.domain.use_cases.dispatch import run_dispatch_cycle
from regnotify.domain.use_cases.sync import sync_new_registrations

COMPONENT_ID = "api.manual_sync"


async def run_sync_handler(*, api_deps: ApiDeps) -> SyncResponse:
    synced = await sync_new_registrations(repository=api_deps.repository, source=api_deps.source)
    cycle = await run_dispatch_cycle(
        sender=api_deps.sender,
        repository=api_deps.repository,
        source=api_deps.source,
        config=api_deps.config_store.current,
        batch_size=api_deps.batch_size,
    )
    return SyncResponse(
        synced=synced,
        sent=cycle.count("sent"),
        failed=cycle.count("failed"),
        skipped=cycle.count("skipped"),
    )
