from __future__ import annotations

from regnotify.api.handlers.deps import ApiDeps
from regnotify.api.schemas import WebhookAckResponse
from regnotify.domain.use_cases.webhook import process_webhook, verify_subscription

COMPONENT_ID_VERIFY = "api.whatsapp_webhook_verify"
COMPONENT_ID_RECEIVE = "api.whatsapp_webhook_receive"


def verify_webhook_handler(
    *,
    mode: str | None,
    token: str | None,
    challenge: str | None,
    api_deps: ApiDeps,
) -> str | None:
    return verify_subscription(mode=mode, token=token, challenge=challenge, verify_token=api_deps.verify_token)


async def receive_webhook_handler(*, payload: dict[str, object], api_deps: ApiDeps) -> WebhookAckResponse:
    outcome = await process_webhook(payload=payload, repository=api_deps.repository, provider=api_deps.provider)
    return WebhookAckResponse(
        status="ok",
        statuses_updated=outcome.statuses_updated,
        messages_received=outcome.messages_received,
        replies_sent=outcome.replies_sent,
    )
