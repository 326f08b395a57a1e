from __future__ import annotations

from dataclasses import dataclass

from regnotify.domain.contracts import MessagingProvider, NotifierRepository, RegistrationSource
from regnotify.domain.models import BreakdownItem, DeliveryStats

COMPONENT_ID = "domain.dashboard.stats"


@dataclass(frozen=True)
class DashboardStats:
    total_registrations: int
    today_registrations: int
    gender: list[BreakdownItem]
    position: list[BreakdownItem]
    delivery: DeliveryStats
    provider_ready: bool


async def collect_dashboard_stats(
    *,
    repository: NotifierRepository,
    source: RegistrationSource,
    provider: MessagingProvider,
) -> DashboardStats:
    return DashboardStats(
        total_registrations=await source.count_total(),
        today_registrations=await source.count_today(),
        gender=await source.breakdown(field="gender"),
        position=await source.breakdown(field="position"),
        delivery=await repository.delivery_stats(),
        provider_ready=provider.is_ready(),
    )
