from __future__ import annotations

from regnotify.domain.use_cases.dispatch import run_dispatch_cycle
from regnotify.workers.handlers.deps import WorkerDeps


async def run_tick(deps: WorkerDeps) -> int:
    """Returns the number of send attempts made, skipped rows excluded."""
    cycle = await run_dispatch_cycle(
        sender=deps.sender,
        repository=deps.repository,
        source=deps.source,
        config=deps.config_store.current,
        batch_size=deps.batch_size,
    )
    return cycle.count("sent") + cycle.count("failed")
