from __future__ import annotations

from regnotify.domain.use_cases.sync import sync_new_registrations
from regnotify.workers.handlers.deps import WorkerDeps


async def run_tick(deps: WorkerDeps) -> int:
    return await sync_new_registrations(repository=deps.repository, source=deps.source)
