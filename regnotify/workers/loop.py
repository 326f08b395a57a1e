from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

JobTick = Callable[[], Awaitable[int]]

JOB_SYNC = "sync"
JOB_DISPATCH = "dispatch"
JOB_REAPER = "reaper"
JOB_NAMES = (JOB_SYNC, JOB_DISPATCH, JOB_REAPER)


@dataclass
class PeriodicJob:
    """One scheduler trigger; ``tick`` returns the number of items it handled."""

    name: str
    tick: JobTick
    interval_ms: int

    async def run_once(self) -> int:
        return await self.tick()
