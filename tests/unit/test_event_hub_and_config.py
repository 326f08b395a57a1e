import asyncio

import pytest

from regnotify.domain.models import BroadcastProgress, NotifierConfig
from regnotify.repositories.stub import InMemoryNotifierRepository
from regnotify.services.config_store import ConfigStore
from regnotify.services.events import EVENT_NOTIFY, EVENT_SENDING_PROGRESS, EventHub


@pytest.mark.unit
def test_event_hub_fans_out_to_every_subscriber() -> None:
    async def _run() -> tuple[dict[str, object], dict[str, object]]:
        hub = EventHub()
        first = hub.subscribe()
        second = hub.subscribe()
        await hub.notify("Configuration saved", level="success")
        return first.get_nowait(), second.get_nowait()

    first, second = asyncio.run(_run())

    expected = {"event": EVENT_NOTIFY, "data": {"message": "Configuration saved", "type": "success"}}
    assert first == expected
    assert second == expected


@pytest.mark.unit
def test_lagging_subscriber_drops_oldest_events() -> None:
    async def _run() -> list[object]:
        hub = EventHub(queue_size=2)
        queue = hub.subscribe()
        for index in range(3):
            await hub.notify(f"event {index}")
        return [queue.get_nowait()["data"]["message"] for _ in range(queue.qsize())]  # type: ignore[index]

    assert asyncio.run(_run()) == ["event 1", "event 2"]


@pytest.mark.unit
def test_progress_event_payload() -> None:
    async def _run() -> dict[str, object]:
        hub = EventHub()
        queue = hub.subscribe()
        await hub.publish_progress(BroadcastProgress(status="progress", total=4, processed=2, successful=1, failed=1))
        hub.unsubscribe(queue)
        assert hub.subscriber_count == 0
        return queue.get_nowait()

    message = asyncio.run(_run())

    assert message["event"] == EVENT_SENDING_PROGRESS
    assert message["data"] == {"status": "progress", "total": 4, "processed": 2, "successful": 1, "failed": 1}


@pytest.mark.unit
def test_config_store_falls_back_to_defaults_until_saved() -> None:
    repository = InMemoryNotifierRepository()
    store = ConfigStore(repository=repository, defaults=NotifierConfig(pass_template_path="/srv/pass.png"))

    loaded = asyncio.run(store.load())

    assert loaded == NotifierConfig(pass_template_path="/srv/pass.png")
    assert store.current is loaded


@pytest.mark.unit
def test_config_store_save_persists_and_reloads() -> None:
    repository = InMemoryNotifierRepository()
    store = ConfigStore(repository=repository)
    config = NotifierConfig(admin_numbers=("9123456789",), selected_groups=("42@g.us",))

    saved = asyncio.run(store.save(config))

    assert saved == config
    assert repository.configuration == config
    assert store.current == config
