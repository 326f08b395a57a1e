import asyncio
from datetime import timedelta

import pytest

from regnotify.domain.errors import DomainInvariantError, ProviderNotReadyError
from regnotify.domain.models import NotifierConfig, Stage
from regnotify.domain.use_cases.dispatch import run_dispatch_cycle, send_stage_on_demand
from regnotify.domain.use_cases.reaper import release_stuck_locks
from regnotify.domain.use_cases.sync import sync_new_registrations
from tests.notifier_factories import NotifierHarness, build_harness, hold_processing_lock, make_registration

GUEST_1 = "919876500001"


def _confirmed_harness() -> NotifierHarness:
    harness = build_harness()
    harness.source.add(make_registration(1))
    asyncio.run(sync_new_registrations(repository=harness.repository, source=harness.source))
    asyncio.run(
        run_dispatch_cycle(
            sender=harness.sender,
            repository=harness.repository,
            source=harness.source,
            config=NotifierConfig(),
        )
    )
    harness.clock.advance(seconds=3)
    return harness


def _media_count(harness: NotifierHarness) -> int:
    return sum(1 for item in harness.provider.sent_to(GUEST_1) if item.kind == "media")


@pytest.mark.unit
def test_sync_is_incremental_and_idempotent() -> None:
    harness = build_harness()
    harness.source.add(make_registration(1))
    harness.source.add(make_registration(2))

    async def _run() -> list[int]:
        counts = [await sync_new_registrations(repository=harness.repository, source=harness.source)]
        counts.append(await sync_new_registrations(repository=harness.repository, source=harness.source))
        harness.source.add(make_registration(3))
        counts.append(await sync_new_registrations(repository=harness.repository, source=harness.source))
        return counts

    assert asyncio.run(_run()) == [2, 0, 1]
    assert asyncio.run(harness.repository.max_registration_id()) == 3


@pytest.mark.unit
def test_concurrent_barcode_sends_deliver_exactly_once() -> None:
    harness = _confirmed_harness()
    record = asyncio.run(harness.repository.get_tracking(registration_id=1))
    assert record is not None

    async def _run():
        return await asyncio.gather(
            harness.sender.send(stage=Stage.BARCODE, record=record, config=NotifierConfig()),
            harness.sender.send(stage=Stage.BARCODE, record=record, config=NotifierConfig()),
        )

    results = asyncio.run(_run())

    assert sorted(item.outcome for item in results) == ["sent", "skipped"]
    assert [item.detail for item in results if item.outcome == "skipped"] == ["locked"]
    assert _media_count(harness) == 1
    assert [attempt[2] for attempt in harness.repository.lock_attempts] == [True, False]


@pytest.mark.unit
def test_overlapping_dispatch_ticks_send_one_pass() -> None:
    harness = _confirmed_harness()
    harness.provider.delay_seconds = 0.05

    async def _run():
        return await asyncio.gather(
            run_dispatch_cycle(
                sender=harness.sender,
                repository=harness.repository,
                source=harness.source,
                config=NotifierConfig(),
            ),
            run_dispatch_cycle(
                sender=harness.sender,
                repository=harness.repository,
                source=harness.source,
                config=NotifierConfig(),
            ),
        )

    asyncio.run(_run())

    assert _media_count(harness) == 1
    record = asyncio.run(harness.repository.get_tracking(registration_id=1))
    assert record is not None
    assert record.barcode.sent is True
    assert record.is_processing is False


@pytest.mark.unit
def test_stale_lock_is_released_and_row_becomes_eligible() -> None:
    harness = _confirmed_harness()
    hold_processing_lock(harness.repository, registration_id=1, updated_at=harness.clock() - timedelta(minutes=6))

    assert asyncio.run(harness.repository.select_pending(stage=Stage.BARCODE, limit=5)) == []
    released = asyncio.run(release_stuck_locks(repository=harness.repository))

    assert released == 1
    pending = asyncio.run(harness.repository.select_pending(stage=Stage.BARCODE, limit=5))
    assert [item.registration_id for item in pending] == [1]


@pytest.mark.unit
def test_fresh_lock_is_left_alone() -> None:
    harness = _confirmed_harness()
    hold_processing_lock(harness.repository, registration_id=1, updated_at=harness.clock() - timedelta(minutes=1))

    assert asyncio.run(release_stuck_locks(repository=harness.repository)) == 0
    record = asyncio.run(harness.repository.get_tracking(registration_id=1))
    assert record is not None
    assert record.is_processing is True


@pytest.mark.unit
def test_on_demand_send_bypasses_stage_delay() -> None:
    harness = build_harness()
    harness.source.add(make_registration(1))
    asyncio.run(sync_new_registrations(repository=harness.repository, source=harness.source))

    result = asyncio.run(
        send_stage_on_demand(
            sender=harness.sender,
            repository=harness.repository,
            stage=Stage.BARCODE,
            registration_no="REG0001",
            mobile="",
            config=NotifierConfig(),
        )
    )

    assert result.outcome == "sent"
    assert _media_count(harness) == 1


@pytest.mark.unit
def test_on_demand_send_finds_registration_by_mobile() -> None:
    harness = build_harness()
    harness.source.add(make_registration(1))
    asyncio.run(sync_new_registrations(repository=harness.repository, source=harness.source))

    result = asyncio.run(
        send_stage_on_demand(
            sender=harness.sender,
            repository=harness.repository,
            stage=Stage.CHANGE_REQUEST,
            registration_no="",
            mobile="9876500001",
            config=NotifierConfig(),
        )
    )

    assert result.outcome == "sent"
    assert result.registration_id == 1


@pytest.mark.unit
def test_on_demand_send_refuses_duplicates_and_unknown_rows() -> None:
    harness = _confirmed_harness()

    def _send(registration_no: str):
        return asyncio.run(
            send_stage_on_demand(
                sender=harness.sender,
                repository=harness.repository,
                stage=Stage.USER_CONFIRMATION,
                registration_no=registration_no,
                mobile="",
                config=NotifierConfig(),
            )
        )

    with pytest.raises(DomainInvariantError, match="already sent"):
        _send("REG0001")
    with pytest.raises(KeyError):
        _send("REG9999")


@pytest.mark.unit
def test_on_demand_send_refuses_locked_barcode_row() -> None:
    harness = _confirmed_harness()
    hold_processing_lock(harness.repository, registration_id=1)

    with pytest.raises(DomainInvariantError, match="being processed"):
        asyncio.run(
            send_stage_on_demand(
                sender=harness.sender,
                repository=harness.repository,
                stage=Stage.BARCODE,
                registration_no="REG0001",
                mobile="",
                config=NotifierConfig(),
            )
        )


@pytest.mark.unit
def test_on_demand_send_requires_ready_provider() -> None:
    harness = _confirmed_harness()
    harness.provider.ready = False

    with pytest.raises(ProviderNotReadyError):
        asyncio.run(
            send_stage_on_demand(
                sender=harness.sender,
                repository=harness.repository,
                stage=Stage.BARCODE,
                registration_no="REG0001",
                mobile="",
                config=NotifierConfig(),
            )
        )


@pytest.mark.unit
def test_sender_skips_stage_sent_after_selection() -> None:
    harness = build_harness()
    harness.source.add(make_registration(1))
    asyncio.run(sync_new_registrations(repository=harness.repository, source=harness.source))
    selected = asyncio.run(harness.repository.select_pending(stage=Stage.USER_CONFIRMATION, limit=5))
    asyncio.run(harness.repository.mark_stage_sent(registration_id=1, stage=Stage.USER_CONFIRMATION))

    result = asyncio.run(
        harness.sender.send(stage=Stage.USER_CONFIRMATION, record=selected[0], config=NotifierConfig())
    )

    assert result.outcome == "skipped"
    assert result.detail == "already sent"
    assert harness.provider.sent == []
