from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import hmac
import logging

from regnotify.domain.contracts import MessagingProvider, NotifierRepository
from regnotify.domain.error_taxonomy import error_code_for

COMPONENT_ID_VERIFY = "domain.webhook.verify"
COMPONENT_ID_PROCESS = "domain.webhook.process"
logger = logging.getLogger("webhook")

SUBSCRIBE_MODE = "subscribe"

DEFAULT_AUTO_REPLIES: dict[str, str] = {
    "hi": "Namaste! Thank you for contacting the registration desk. Reply HELP for options.",
    "hello": "Namaste! Thank you for contacting the registration desk. Reply HELP for options.",
    "help": "Reply STATUS to check your registration or CHANGE for the correction process.",
    "status": "Your registration is received. Your housing pass is sent on this number after confirmation.",
    "change": "To change your registration details, please visit the registration desk with your pass.",
}


@dataclass(frozen=True)
class WebhookOutcome:
    statuses_updated: int = 0
    messages_received: int = 0
    replies_sent: int = 0


def verify_subscription(
    *,
    mode: str | None,
    token: str | None,
    challenge: str | None,
    verify_token: str,
) -> str | None:
    """Return the challenge to echo back, or None when verification fails."""
    if not verify_token or mode != SUBSCRIBE_MODE or token is None or challenge is None:
        return None
    if not hmac.compare_digest(token.encode("utf-8"), verify_token.encode("utf-8")):
        return None
    return challenge


def match_auto_reply(text: str, replies: Mapping[str, str]) -> str | None:
    words = text.strip().lower().split()
    if not words:
        return None
    return replies.get(words[0].strip(".,!?"))


async def process_webhook(
    *,
    payload: dict[str, object],
    repository: NotifierRepository,
    provider: MessagingProvider,
    auto_replies: Mapping[str, str] = DEFAULT_AUTO_REPLIES,
) -> WebhookOutcome:
    # Persisted verbatim before any interpretation.
    await repository.record_webhook_event(payload=payload)

    statuses_updated = 0
    messages_received = 0
    replies_sent = 0
    for value in _change_values(payload):
        for status in _dict_items(value.get("statuses")):
            message_id = status.get("id")
            state = status.get("status")
            if not isinstance(message_id, str) or not isinstance(state, str):
                continue
            if await repository.update_message_status(provider_message_id=message_id, status=state):
                statuses_updated += 1

        for message in _dict_items(value.get("messages")):
            messages_received += 1
            sender = message.get("from")
            text = _message_text(message)
            if not isinstance(sender, str) or text is None:
                continue
            reply = match_auto_reply(text, auto_replies)
            if reply is None or not provider.is_ready():
                continue
            try:
                await provider.send_text(recipient=sender, body=reply)
            except Exception as exc:
                error_code = error_code_for(exc)
                logger.warning(
                    "auto-reply failed",
                    exc_info=error_code == "internal_error",
                    extra={"recipient": sender, "error_code": error_code},
                )
                continue
            replies_sent += 1

    logger.info(
        "webhook processed",
        extra={
            "statuses_updated": statuses_updated,
            "messages_received": messages_received,
            "replies_sent": replies_sent,
        },
    )
    return WebhookOutcome(
        statuses_updated=statuses_updated,
        messages_received=messages_received,
        replies_sent=replies_sent,
    )


def _change_values(payload: dict[str, object]) -> list[dict[str, object]]:
    values: list[dict[str, object]] = []
    for entry in _dict_items(payload.get("entry")):
        for change in _dict_items(entry.get("changes")):
            value = change.get("value")
            if isinstance(value, dict):
                values.append(value)
    return values


def _dict_items(value: object) -> list[dict[str, object]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _message_text(message: dict[str, object]) -> str | None:
    if message.get("type") != "text":
        return None
    text = message.get("text")
    if not isinstance(text, dict):
        return None
    body = text.get("body")
    return body if isinstance(body, str) else None
