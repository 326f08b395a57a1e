from __future__ import annotations

import asyncio

from fastapi.testclient import TestClient
import pytest

from regnotify.api.handlers.deps import ApiDeps
from regnotify.api.http_app import build_app
from regnotify.clients.stub import PNG_SIGNATURE
from regnotify.domain.models import TemplateType
from regnotify.domain.pacing import no_pacing
from regnotify.services.config_store import ConfigStore
from regnotify.services.events import EventHub
from tests.notifier_factories import NotifierHarness, build_harness, make_registration


def _client(harness: NotifierHarness, *, verify_token: str = "s3cret") -> TestClient:
    api_deps = ApiDeps(
        repository=harness.repository,
        source=harness.source,
        provider=harness.provider,
        pass_renderer=harness.renderer,
        sender=harness.sender,
        config_store=ConfigStore(repository=harness.repository),
        events=EventHub(),
        verify_token=verify_token,
        broadcast_pacer=no_pacing(),
    )

    async def _startup() -> None:
        await api_deps.config_store.load()

    app = build_app(role="api", run_id="integration-api", api_deps=api_deps, on_startup=_startup)
    return TestClient(app)


@pytest.mark.integration
def test_system_endpoints_report_role_and_provider() -> None:
    with _client(build_harness()) as client:
        health = client.get("/health")
        ready = client.get("/ready")
        status = client.get("/status")

    assert health.json() == {"status": "ok", "role": "api"}
    assert ready.json()["scheduler_enabled"] is False
    assert ready.json()["jobs"] == []
    assert status.json() == {"provider_ready": True, "event_subscribers": 0}


@pytest.mark.integration
def test_config_round_trip_normalizes_admin_numbers() -> None:
    harness = build_harness()
    with _client(harness) as client:
        saved = client.post(
            "/api/config",
            json={
                "selected_groups": ["42@g.us", " ", "42@g.us"],
                "admin_numbers": "9123456789, 123, 9000000001",
                "registration_message": "  Welcome {name}  ",
            },
        )
        loaded = client.get("/api/config")

    assert saved.status_code == 200
    assert loaded.json() == {
        "selected_groups": ["42@g.us"],
        "admin_numbers": ["9123456789", "9000000001"],
        "registration_message": "Welcome {name}",
        "pass_template_path": None,
    }
    assert harness.repository.configuration is not None


@pytest.mark.integration
def test_templates_can_be_listed_and_updated() -> None:
    harness = build_harness()
    with _client(harness) as client:
        listed = client.get("/api/templates")
        updated = client.put(
            "/api/templates/change_request",
            json={"message_text": "Hello {name}, reply with corrections for {registration_no}."},
        )
        rejected = client.put("/api/templates/change_request", json={"message_text": "Hello {nickname}"})
        unknown_type = client.put("/api/templates/not_a_type", json={"message_text": "Hello"})

    assert len(listed.json()["items"]) == 4
    assert updated.status_code == 204
    assert rejected.status_code == 400
    assert "nickname" in rejected.json()["detail"]
    assert unknown_type.status_code == 422
    text = asyncio.run(harness.repository.get_active_template(template_type=TemplateType.CHANGE_REQUEST))
    assert text == "Hello {name}, reply with corrections for {registration_no}."


@pytest.mark.integration
def test_unseeded_template_update_returns_404() -> None:
    with _client(build_harness(seed_templates=False)) as client:
        response = client.put("/api/templates/barcode_message", json={"message_text": "Pass {registration_no}"})

    assert response.status_code == 404


@pytest.mark.integration
def test_manual_sync_runs_one_dispatch_cycle() -> None:
    harness = build_harness()
    harness.source.add(make_registration(1))
    with _client(harness) as client:
        synced = client.post("/api/sync")
        stats = client.get("/api/stats")
        latest = client.get("/api/registrations/latest", params={"limit": 5})

    assert synced.json() == {"synced": 1, "sent": 2, "failed": 0, "skipped": 0}
    body = stats.json()
    assert body["total_registrations"] == 1
    assert body["today_registrations"] == 1
    assert body["gender"] == [{"label": "Female", "count": 1}]
    assert body["stages"]["user_confirmation"] == {"sent": 1, "pending": 0, "permanently_failed": 0}
    assert body["stages"]["barcode"]["pending"] == 1
    assert [item["registration_no"] for item in latest.json()["items"]] == ["REG0001"]


@pytest.mark.integration
def test_latest_registrations_limit_is_bounded() -> None:
    with _client(build_harness()) as client:
        response = client.get("/api/registrations/latest", params={"limit": 500})

    assert response.status_code == 422


@pytest.mark.integration
def test_generate_pass_returns_png() -> None:
    harness = build_harness()
    with _client(harness) as client:
        response = client.post("/api/passes/generate", json={"registration_no": "REG0042"})

    assert response.status_code == 200
    assert response.headers["content-type"] == "image/png"
    assert response.content.startswith(PNG_SIGNATURE)
    assert harness.renderer.renders == ["REG0042"]


@pytest.mark.integration
def test_manual_pass_send_status_codes() -> None:
    harness = build_harness()
    harness.source.add(make_registration(1))
    with _client(harness) as client:
        client.post("/api/sync")
        missing_input = client.post("/api/passes/send", json={})
        unknown = client.post("/api/passes/send", json={"registration_no": "REG9999"})
        sent = client.post("/api/passes/send", json={"registration_no": "REG0001"})
        duplicate = client.post("/api/passes/send", json={"mobile": "9876500001"})

    assert missing_input.status_code == 400
    assert unknown.status_code == 404
    assert sent.status_code == 200
    assert sent.json()["outcome"] == "sent"
    assert sent.json()["stage"] == "barcode"
    assert duplicate.status_code == 409


@pytest.mark.integration
def test_manual_send_reports_provider_state() -> None:
    harness = build_harness()
    harness.source.add(make_registration(1))
    with _client(harness) as client:
        client.post("/api/sync")
        harness.provider.ready = False
        response = client.post("/api/change-requests/send", json={"registration_no": "REG0001"})

    assert response.status_code == 503


@pytest.mark.integration
def test_failed_manual_send_returns_bad_gateway() -> None:
    harness = build_harness()
    harness.source.add(make_registration(1, mobile="12345"))
    with _client(harness) as client:
        client.post("/api/sync")
        response = client.post("/api/change-requests/send", json={"registration_no": "REG0001"})

    assert response.status_code == 502


@pytest.mark.integration
def test_broadcast_accepts_multipart_form() -> None:
    harness = build_harness()
    with _client(harness) as client:
        text_only = client.post(
            "/api/broadcasts",
            data={"recipient_type": "custom", "message": "Gates open at 7am", "custom_numbers": "9876543210,12"},
        )
        with_media = client.post(
            "/api/broadcasts",
            data={"recipient_type": "custom", "message": "Map", "custom_numbers": "9123456789"},
            files={"media": ("map.pdf", b"%PDF-1.4", "application/pdf")},
        )
        empty = client.post("/api/broadcasts", data={"recipient_type": "custom", "custom_numbers": "9876543210"})

    assert text_only.status_code == 200
    assert text_only.json()["total"] == 1
    assert text_only.json()["successful"] == 1
    assert with_media.json()["successful"] == 1
    assert harness.provider.sent[-1].filename == "map.pdf"
    assert harness.provider.sent[-1].mime_type == "application/pdf"
    assert empty.status_code == 400


@pytest.mark.integration
def test_webhook_verification_and_delivery() -> None:
    harness = build_harness()
    with _client(harness) as client:
        verified = client.get(
            "/webhooks/whatsapp",
            params={"hub.mode": "subscribe", "hub.verify_token": "s3cret", "hub.challenge": "1158201444"},
        )
        rejected = client.get(
            "/webhooks/whatsapp",
            params={"hub.mode": "subscribe", "hub.verify_token": "guess", "hub.challenge": "1"},
        )
        received = client.post(
            "/webhooks/whatsapp",
            json={
                "entry": [
                    {
                        "changes": [
                            {"value": {"messages": [{"from": "919876500001", "type": "text", "text": {"body": "help"}}]}}
                        ]
                    }
                ]
            },
        )

    assert verified.status_code == 200
    assert verified.text == "1158201444"
    assert rejected.status_code == 403
    assert received.json() == {"status": "ok", "statuses_updated": 0, "messages_received": 1, "replies_sent": 1}


@pytest.mark.integration
def test_event_socket_sends_status_on_connect() -> None:
    with _client(build_harness()) as client:
        with client.websocket_connect("/events") as websocket:
            first = websocket.receive_json()

    assert first == {"event": "status", "data": {"provider_ready": True}}
