from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import pytest

from regnotify.clients.stub import StubMessagingProvider, StubPassRenderer
from regnotify.domain.errors import DomainInvariantError
from regnotify.domain.models import NotifierConfig, Stage, TemplateType
from regnotify.domain.pacing import no_pacing
from regnotify.domain.stages import MAX_ATTEMPTS, STALE_LOCK_AFTER
from regnotify.domain.templates import load_default_templates
from regnotify.domain.use_cases.dispatch import StageSender, run_dispatch_cycle
from regnotify.domain.use_cases.sync import sync_new_registrations
from regnotify.repositories.postgres import (
    AsyncpgPoolManager,
    PostgresNotifierRepository,
    PostgresRegistrationSource,
)
from tests.integration.postgres_test_utils import (
    apply_down,
    apply_up,
    execute,
    insert_registration,
    require_postgres,
    reset_public_schema,
)

Scenario = Callable[[PostgresNotifierRepository, PostgresRegistrationSource], Awaitable[None]]


def _run_scenario(dsn: str, scenario: Scenario) -> None:
    async def _run() -> None:
        await reset_public_schema(dsn=dsn)
        await apply_up(dsn=dsn)
        manager = AsyncpgPoolManager(dsn=dsn)
        await manager.startup()
        try:
            await scenario(
                PostgresNotifierRepository(pool_manager=manager),
                PostgresRegistrationSource(pool_manager=manager),
            )
        finally:
            await manager.shutdown()

    asyncio.run(_run())


@pytest.mark.integration
def test_migration_up_down_up_contract() -> None:
    dsn = require_postgres()

    async def _scenario(repo: PostgresNotifierRepository, source: PostgresRegistrationSource) -> None:
        assert await repo.max_registration_id() == 0
        assert await repo.get_tracking(registration_id=1) is None
        assert await source.count_total() == 0
        assert await repo.load_configuration() is None

    _run_scenario(dsn, _scenario)

    async def _down_up() -> None:
        await apply_down(dsn=dsn)
        await apply_up(dsn=dsn)

    asyncio.run(_down_up())


@pytest.mark.integration
def test_sync_mirrors_source_rows_once() -> None:
    dsn = require_postgres()

    async def _scenario(repo: PostgresNotifierRepository, source: PostgresRegistrationSource) -> None:
        first_id = await insert_registration(dsn=dsn, registration_no="REG0001", mobile="9876500001")
        await insert_registration(dsn=dsn, registration_no="REG0002", mobile="9876500002", gender="Male")

        assert await sync_new_registrations(repository=repo, source=source) == 2
        assert await sync_new_registrations(repository=repo, source=source) == 0

        registration = (await source.list_after(last_id=0))[0]
        assert await repo.upsert_from_source(registration=registration) is False

        record = await repo.find_tracking(registration_no="", mobile="9876500002")
        assert record is not None
        assert record.registration_no == "REG0002"
        assert (await repo.get_tracking(registration_id=first_id)) is not None
        assert await source.count_today() == 2
        assert {item.label for item in await source.breakdown(field="gender")} == {"Female", "Male"}
        with pytest.raises(ValueError):
            await source.breakdown(field="mobile")  # type: ignore[arg-type]

    _run_scenario(dsn, _scenario)


@pytest.mark.integration
def test_concurrent_barcode_lock_exclusivity() -> None:
    dsn = require_postgres()

    async def _scenario(repo: PostgresNotifierRepository, source: PostgresRegistrationSource) -> None:
        registration_id = await insert_registration(dsn=dsn, registration_no="REG0001", mobile="9876500001")
        await sync_new_registrations(repository=repo, source=source)

        acquired = await asyncio.gather(
            *(repo.acquire_stage_lock(registration_id=registration_id, stage=Stage.BARCODE) for _ in range(3))
        )

        assert sorted(acquired) == [False, False, True]
        await repo.mark_stage_sent(registration_id=registration_id, stage=Stage.BARCODE)
        record = await repo.get_tracking(registration_id=registration_id)
        assert record is not None
        assert record.is_processing is False
        assert record.barcode.sent is True
        assert await repo.acquire_stage_lock(registration_id=registration_id, stage=Stage.BARCODE) is False

    _run_scenario(dsn, _scenario)


@pytest.mark.integration
def test_failure_bookkeeping_and_cooldown() -> None:
    dsn = require_postgres()

    async def _scenario(repo: PostgresNotifierRepository, source: PostgresRegistrationSource) -> None:
        registration_id = await insert_registration(dsn=dsn, registration_no="REG0001", mobile="9876500001")
        await sync_new_registrations(repository=repo, source=source)

        retry_count = await repo.mark_stage_failed(
            registration_id=registration_id,
            stage=Stage.USER_CONFIRMATION,
            error_code="provider_unavailable",
        )
        assert retry_count == 1
        assert await repo.select_pending(stage=Stage.USER_CONFIRMATION, limit=5) == []

        await execute(
            dsn,
            "UPDATE registration_sync SET user_last_attempt = NOW() - INTERVAL '31 seconds' WHERE registration_id = $1",
            registration_id,
        )
        pending = await repo.select_pending(stage=Stage.USER_CONFIRMATION, limit=5)
        assert [item.registration_id for item in pending] == [registration_id]

        terminal = await repo.mark_stage_failed(
            registration_id=registration_id,
            stage=Stage.ADMIN_NOTIFICATION,
            error_code="template_missing",
            terminal=True,
        )
        assert terminal == MAX_ATTEMPTS
        stats = await repo.delivery_stats()
        assert stats.stages[Stage.ADMIN_NOTIFICATION].permanently_failed == 1
        assert stats.stages[Stage.USER_CONFIRMATION].pending == 1

        with pytest.raises(DomainInvariantError):
            await repo.mark_stage_sent(registration_id=999, stage=Stage.USER_CONFIRMATION)

    _run_scenario(dsn, _scenario)


@pytest.mark.integration
def test_stale_processing_locks_are_released() -> None:
    dsn = require_postgres()

    async def _scenario(repo: PostgresNotifierRepository, source: PostgresRegistrationSource) -> None:
        stale_id = await insert_registration(dsn=dsn, registration_no="REG0001", mobile="9876500001")
        fresh_id = await insert_registration(dsn=dsn, registration_no="REG0002", mobile="9876500002")
        await sync_new_registrations(repository=repo, source=source)
        await repo.acquire_stage_lock(registration_id=fresh_id, stage=Stage.BARCODE)
        await execute(
            dsn,
            "UPDATE registration_sync SET is_processing = TRUE, updated_at = NOW() - INTERVAL '10 minutes' "
            "WHERE registration_id = $1",
            stale_id,
        )

        assert await repo.release_stale_locks(stale_after=STALE_LOCK_AFTER) == 1
        stale = await repo.get_tracking(registration_id=stale_id)
        fresh = await repo.get_tracking(registration_id=fresh_id)
        assert stale is not None and stale.is_processing is False
        assert fresh is not None and fresh.is_processing is True

    _run_scenario(dsn, _scenario)


@pytest.mark.integration
def test_templates_and_configuration_persist() -> None:
    dsn = require_postgres()

    async def _scenario(repo: PostgresNotifierRepository, source: PostgresRegistrationSource) -> None:
        del source
        defaults = load_default_templates()
        assert await repo.seed_templates(templates=defaults) == 4
        assert await repo.seed_templates(templates=defaults) == 0
        assert await repo.update_template(template_type=TemplateType.CHANGE_REQUEST, message_text="Hi {name}")
        assert await repo.get_active_template(template_type=TemplateType.CHANGE_REQUEST) == "Hi {name}"
        assert len(await repo.list_templates()) == 4

        config = NotifierConfig(
            selected_groups=("42@g.us",),
            admin_numbers=("9123456789",),
            registration_message="Welcome {name}",
            pass_template_path="/srv/pass.png",
        )
        await repo.save_configuration(config=config)
        assert await repo.load_configuration() == config

    _run_scenario(dsn, _scenario)


@pytest.mark.integration
def test_dispatch_cycle_against_postgres() -> None:
    dsn = require_postgres()
    provider = StubMessagingProvider()

    async def _scenario(repo: PostgresNotifierRepository, source: PostgresRegistrationSource) -> None:
        await repo.seed_templates(templates=load_default_templates())
        registration_id = await insert_registration(dsn=dsn, registration_no="REG0001", mobile="9876500001")
        await sync_new_registrations(repository=repo, source=source)
        sender = StageSender(repository=repo, provider=provider, pass_renderer=StubPassRenderer(), pacer=no_pacing())
        config = NotifierConfig(admin_numbers=("9123456789",))

        first = await run_dispatch_cycle(sender=sender, repository=repo, source=source, config=config)
        assert first.count("sent") == 2

        await execute(
            dsn,
            "UPDATE registration_sync SET user_sent_at = NOW() - INTERVAL '5 seconds' WHERE registration_id = $1",
            registration_id,
        )
        second = await run_dispatch_cycle(sender=sender, repository=repo, source=source, config=config)
        assert [(item.stage, item.outcome) for item in second.results] == [(Stage.BARCODE, "sent")]

        record = await repo.get_tracking(registration_id=registration_id)
        assert record is not None
        assert record.barcode.sent is True
        assert record.is_processing is False
        assert await repo.update_message_status(provider_message_id="stub-1", status="delivered") is True
        assert await repo.update_message_status(provider_message_id="missing", status="read") is False

    _run_scenario(dsn, _scenario)
