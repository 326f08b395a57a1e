from __future__ import annotations

from regnotify.workers.handlers import dispatch, reap, sync
from regnotify.workers.handlers.deps import WorkerDeps
from regnotify.workers.loop import JOB_DISPATCH, JOB_REAPER, JOB_SYNC, JobTick, PeriodicJob
from regnotify.workers.runner import SchedulerSettings


def build_job_tick(name: str, deps: WorkerDeps) -> JobTick:
    async def _sync() -> int:
        return await sync.run_tick(deps)

    async def _dispatch() -> int:
        return await dispatch.run_tick(deps)

    async def _reap() -> int:
        return await reap.run_tick(deps)

    ticks: dict[str, JobTick] = {
        JOB_SYNC: _sync,
        JOB_DISPATCH: _dispatch,
        JOB_REAPER: _reap,
    }
    tick = ticks.get(name)
    if tick is None:
        raise ValueError(f"No job tick for '{name}'")
    return tick


def build_notifier_jobs(deps: WorkerDeps, settings: SchedulerSettings) -> list[PeriodicJob]:
    intervals = {
        JOB_SYNC: settings.sync_interval_ms,
        JOB_DISPATCH: settings.dispatch_interval_ms,
        JOB_REAPER: settings.reaper_interval_ms,
    }
    return [
        PeriodicJob(name=name, tick=build_job_tick(name, deps), interval_ms=interval_ms)
        for name, interval_ms in intervals.items()
    ]
