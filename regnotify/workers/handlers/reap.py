from __future__ import annotations

from regnotify.domain.use_cases.reaper import release_stuck_locks
from regnotify.workers.handlers.deps import WorkerDeps


async def run_tick(deps: WorkerDeps) -> int:
    return await release_stuck_locks(repository=deps.repository)
