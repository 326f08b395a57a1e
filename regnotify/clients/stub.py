from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


@dataclass
class SentMessage:
    recipient: str
    kind: str
    body: str
    message_id: str
    payload: bytes | None = None
    mime_type: str | None = None
    filename: str | None = None


@dataclass
class StubMessagingProvider:
    """In-memory provider with scripted failures per recipient.

    Each queued exception for a recipient is raised by the next send to that
    recipient; once the queue is empty sends succeed again.
    """

    ready: bool = True
    delay_seconds: float = 0.0
    failures_by_recipient: dict[str, list[Exception]] = field(default_factory=dict)
    sent: list[SentMessage] = field(default_factory=list)
    attempts: list[str] = field(default_factory=list)
    next_message_number: int = 1

    def is_ready(self) -> bool:
        return self.ready

    def fail_next(self, recipient: str, *errors: Exception) -> None:
        self.failures_by_recipient.setdefault(recipient, []).extend(errors)

    async def send_text(self, *, recipient: str, body: str) -> str | None:
        return await self._send(SentMessage(recipient=recipient, kind="text", body=body, message_id=""))

    async def send_media(
        self,
        *,
        recipient: str,
        payload: bytes,
        mime_type: str,
        caption: str,
        filename: str,
    ) -> str | None:
        return await self._send(
            SentMessage(
                recipient=recipient,
                kind="media",
                body=caption,
                message_id="",
                payload=payload,
                mime_type=mime_type,
                filename=filename,
            )
        )

    async def send_template(
        self,
        *,
        recipient: str,
        template_name: str,
        parameters: list[str],
        language: str = "en",
    ) -> str | None:
        body = f"{template_name}[{language}]:" + "|".join(parameters)
        return await self._send(SentMessage(recipient=recipient, kind="template", body=body, message_id=""))

    def sent_to(self, recipient: str) -> list[SentMessage]:
        return [item for item in self.sent if item.recipient == recipient]

    async def _send(self, message: SentMessage) -> str:
        self.attempts.append(message.recipient)
        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)
        queued = self.failures_by_recipient.get(message.recipient)
        if queued:
            raise queued.pop(0)
        message.message_id = f"stub-{self.next_message_number}"
        self.next_message_number += 1
        self.sent.append(message)
        return message.message_id


@dataclass
class StubPassRenderer:
    renders: list[str] = field(default_factory=list)
    error: Exception | None = None

    def render(self, *, registration_no: str, template_path: str | None = None) -> bytes:
        del template_path
        self.renders.append(registration_no)
        if self.error is not None:
            raise self.error
        return PNG_SIGNATURE + registration_no.encode("utf-8")
