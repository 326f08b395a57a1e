from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import logging

from regnotify.api.handlers.deps import ApiDeps
from regnotify.clients.pass_renderer import BarcodePassRenderer
from regnotify.clients.stub import StubMessagingProvider
from regnotify.clients.whatsapp_cloud import CloudApiProvider
from regnotify.domain.contracts import MessagingProvider, NotifierRepository, RegistrationSource
from regnotify.domain.models import NotifierConfig
from regnotify.domain.templates import load_default_templates
from regnotify.domain.use_cases.dispatch import StageSender
from regnotify.repositories.postgres import AsyncpgPoolManager, PostgresNotifierRepository, PostgresRegistrationSource
from regnotify.repositories.stub import InMemoryNotifierRepository, InMemoryRegistrationSource
from regnotify.roles import RuntimeRole
from regnotify.services.config_store import ConfigStore
from regnotify.services.events import EventHub
from regnotify.settings import (
    NotifierSettings,
    ProviderSettings,
    notifier_settings_from_env,
    provider_settings_from_env,
)
from regnotify.workers.handlers.deps import WorkerDeps
from regnotify.workers.handlers.factory import build_notifier_jobs
from regnotify.workers.loop import PeriodicJob
from regnotify.workers.runner import SchedulerSettings, scheduler_settings_from_env

logger = logging.getLogger("runtime")

Hook = Callable[[], Awaitable[None]]


@dataclass
class RuntimeContainer:
    repository: NotifierRepository
    source: RegistrationSource
    provider: MessagingProvider
    config_store: ConfigStore
    events: EventHub
    api_deps: ApiDeps | None
    jobs: list[PeriodicJob]
    scheduler_settings: SchedulerSettings
    on_startup: Hook | None
    on_shutdown: Hook | None


def build_provider(settings: ProviderSettings) -> MessagingProvider:
    if settings.kind == "cloud":
        return CloudApiProvider(
            access_token=settings.cloud_token,
            phone_number_id=settings.phone_number_id,
            api_base=settings.api_base,
            timeout_seconds=settings.request_timeout_seconds,
        )
    logger.warning("stub messaging provider in use, messages are not delivered")
    return StubMessagingProvider()


def build_runtime_container(
    role: RuntimeRole,
    *,
    notifier_settings: NotifierSettings | None = None,
    provider_settings: ProviderSettings | None = None,
    scheduler_settings: SchedulerSettings | None = None,
) -> RuntimeContainer:
    notifier_settings = notifier_settings or notifier_settings_from_env()
    provider_settings = provider_settings or provider_settings_from_env()
    scheduler_settings = scheduler_settings or scheduler_settings_from_env()

    pool_manager: AsyncpgPoolManager | None = None
    repository: NotifierRepository
    source: RegistrationSource
    if notifier_settings.database_url:
        pool_manager = AsyncpgPoolManager(dsn=notifier_settings.database_url)
        repository = PostgresNotifierRepository(pool_manager=pool_manager)
        source = PostgresRegistrationSource(pool_manager=pool_manager)
    else:
        repository = InMemoryNotifierRepository()
        source = InMemoryRegistrationSource()

    provider = build_provider(provider_settings)
    renderer = BarcodePassRenderer(default_template_path=notifier_settings.pass_template_path)
    config_store = ConfigStore(
        repository=repository,
        defaults=NotifierConfig(pass_template_path=notifier_settings.pass_template_path),
    )
    events = EventHub()
    sender = StageSender(
        repository=repository,
        provider=provider,
        pass_renderer=renderer,
        country_code=notifier_settings.country_code,
    )

    api_deps: ApiDeps | None = None
    if role.serves_admin_api:
        api_deps = ApiDeps(
            repository=repository,
            source=source,
            provider=provider,
            pass_renderer=renderer,
            sender=sender,
            config_store=config_store,
            events=events,
            verify_token=provider_settings.verify_token,
            country_code=notifier_settings.country_code,
            batch_size=notifier_settings.batch_size,
        )

    jobs: list[PeriodicJob] = []
    if role.runs_scheduler:
        worker_deps = WorkerDeps(
            repository=repository,
            source=source,
            sender=sender,
            config_store=config_store,
            batch_size=notifier_settings.batch_size,
        )
        jobs = build_notifier_jobs(worker_deps, scheduler_settings)

    async def on_startup() -> None:
        if pool_manager is not None:
            await pool_manager.startup()
        if isinstance(provider, CloudApiProvider):
            await provider.start()
        seeded = await repository.seed_templates(templates=load_default_templates())
        if seeded:
            logger.info("default message templates seeded", extra={"count": seeded})
        await config_store.load()

    async def on_shutdown() -> None:
        if isinstance(provider, CloudApiProvider):
            await provider.close()
        if pool_manager is not None:
            await pool_manager.shutdown()

    return RuntimeContainer(
        repository=repository,
        source=source,
        provider=provider,
        config_store=config_store,
        events=events,
        api_deps=api_deps,
        jobs=jobs,
        scheduler_settings=scheduler_settings,
        on_startup=on_startup,
        on_shutdown=on_shutdown,
    )
