from __future__ import annotations

from regnotify.api.handlers.deps import ApiDeps
from regnotify.api.schemas import (
    BreakdownItemResponse,
    LatestRegistrationsResponse,
    RegistrationResponse,
    StageStatsResponse,
    StatsResponse,
)
from regnotify.domain.use_cases.stats import collect_dashboard_stats

COMPONENT_ID_STATS = "api.stats"
COMPONENT_ID_LATEST = "api.latest_registrations"


async def stats_handler(*, api_deps: ApiDeps) -> StatsResponse:
    stats = await collect_dashboard_stats(
        repository=api_deps.repository,
        source=api_deps.source,
        provider=api_deps.provider,
    )
    return StatsResponse(
        total_registrations=stats.total_registrations,
        today_registrations=stats.today_registrations,
        gender=[BreakdownItemResponse(label=item.label, count=item.count) for item in stats.gender],
        position=[BreakdownItemResponse(label=item.label, count=item.count) for item in stats.position],
        total_synced=stats.delivery.total_synced,
        pending_rows=stats.delivery.pending_rows,
        processing_rows=stats.delivery.processing_rows,
        stages={
            stage.value: StageStatsResponse(
                sent=item.sent,
                pending=item.pending,
                permanently_failed=item.permanently_failed,
            )
            for stage, item in stats.delivery.stages.items()
        },
        provider_ready=stats.provider_ready,
    )


async def latest_registrations_handler(*, limit: int, api_deps: ApiDeps) -> LatestRegistrationsResponse:
    items = await api_deps.source.latest(limit=limit)
    return LatestRegistrationsResponse(
        items=[
            RegistrationResponse(
                id=item.id,
                registration_no=item.registration_no,
                name=item.name,
                mobile=item.mobile,
                village=item.village,
                state=item.state,
                position=item.position,
                age=item.age,
                gender=item.gender,
                total_members=item.total_members,
                created_at=item.created_at,
            )
            for item in items
        ]
    )
