from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging

from regnotify.settings import env_int
from regnotify.workers.loop import PeriodicJob


@dataclass(frozen=True)
class SchedulerSettings:
    sync_interval_ms: int = 5000
    dispatch_interval_ms: int = 5000
    reaper_interval_ms: int = 300000
    error_backoff_ms: int = 2000


@dataclass
class JobRuntimeState:
    started: bool = False
    stopped: bool = False
    ticks_total: int = 0
    items_total: int = 0
    idle_ticks_total: int = 0
    errors_total: int = 0


def scheduler_settings_from_env() -> SchedulerSettings:
    return SchedulerSettings(
        sync_interval_ms=env_int("NOTIFIER_SYNC_INTERVAL_MS", 5000),
        dispatch_interval_ms=env_int("NOTIFIER_DISPATCH_INTERVAL_MS", 5000),
        reaper_interval_ms=env_int("NOTIFIER_REAPER_INTERVAL_MS", 300000),
        error_backoff_ms=env_int("NOTIFIER_ERROR_BACKOFF_MS", 2000),
    )


async def run_job_until_stopped(
    *,
    job: PeriodicJob,
    role: str,
    run_id: str,
    stop_event: asyncio.Event,
    settings: SchedulerSettings,
    logger: logging.Logger,
    state: JobRuntimeState | None = None,
) -> None:
    if state is not None:
        state.started = True

    logger.info(
        "job started",
        extra={"role": role, "service": role, "run_id": run_id, "job": job.name},
    )

    while not stop_event.is_set():
        delay_ms = job.interval_ms
        try:
            handled = await job.run_once()
            if state is not None:
                state.ticks_total += 1
                if handled:
                    state.items_total += handled
                else:
                    state.idle_ticks_total += 1
            if handled:
                logger.info(
                    "job tick",
                    extra={
                        "role": role,
                        "service": role,
                        "run_id": run_id,
                        "job": job.name,
                        "count": handled,
                    },
                )
        except Exception:
            if state is not None:
                state.ticks_total += 1
                state.errors_total += 1
            delay_ms = settings.error_backoff_ms
            logger.exception(
                "job tick error",
                extra={"role": role, "service": role, "run_id": run_id, "job": job.name},
            )

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=delay_ms / 1000)
        except TimeoutError:
            continue

    logger.info(
        "job stopped",
        extra={"role": role, "service": role, "run_id": run_id, "job": job.name},
    )
    if state is not None:
        state.stopped = True
