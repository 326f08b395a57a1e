from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from regnotify.domain.errors import ProviderError, ProviderNotReadyError, RecipientError
from regnotify.domain.recipients import is_group_id

DEFAULT_API_BASE = "https://graph.facebook.com/v19.0"


def error_for_status(status: int, detail: str) -> ProviderError:
    """Map a Cloud API HTTP failure onto the delivery error vocabulary."""
    if status == 429:
        return ProviderError(f"provider rate limited: {detail}", code="provider_rate_limited")
    if status in (401, 403):
        return ProviderNotReadyError(f"provider rejected credentials: {detail}")
    if status == 400:
        return RecipientError(f"provider rejected request: {detail}")
    return ProviderError(f"provider returned HTTP {status}: {detail}")


@dataclass
class CloudApiProvider:
    """Hosted WhatsApp Business (Cloud) API provider."""

    access_token: str
    phone_number_id: str
    api_base: str = DEFAULT_API_BASE
    timeout_seconds: float = 20.0
    _session: aiohttp.ClientSession | None = field(default=None, init=False, repr=False)

    async def start(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                headers={"Authorization": f"Bearer {self.access_token}"},
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            )

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    def is_ready(self) -> bool:
        return bool(self.access_token and self.phone_number_id) and self._session is not None

    async def send_text(self, *, recipient: str, body: str) -> str | None:
        payload = self._message_payload(recipient, "text", {"body": body, "preview_url": False})
        return await self._post_message(payload)

    async def send_media(
        self,
        *,
        recipient: str,
        payload: bytes,
        mime_type: str,
        caption: str,
        filename: str,
    ) -> str | None:
        media_id = await self._upload_media(payload=payload, mime_type=mime_type, filename=filename)
        if mime_type.startswith("image/"):
            message = self._message_payload(recipient, "image", {"id": media_id, "caption": caption})
        else:
            message = self._message_payload(
                recipient,
                "document",
                {"id": media_id, "caption": caption, "filename": filename},
            )
        return await self._post_message(message)

    async def send_template(
        self,
        *,
        recipient: str,
        template_name: str,
        parameters: list[str],
        language: str = "en",
    ) -> str | None:
        template: dict[str, object] = {"name": template_name, "language": {"code": language}}
        if parameters:
            template["components"] = [
                {
                    "type": "body",
                    "parameters": [{"type": "text", "text": value} for value in parameters],
                }
            ]
        return await self._post_message(self._message_payload(recipient, "template", template))

    def _message_payload(self, recipient: str, message_type: str, body: dict[str, object]) -> dict[str, object]:
        # Groups exist only on the self-hosted web client.
        if is_group_id(recipient):
            raise RecipientError(f"group recipients are not supported by the cloud api: {recipient}")
        return {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": recipient,
            "type": message_type,
            message_type: body,
        }

    async def _post_message(self, payload: dict[str, object]) -> str | None:
        data = await self._request("messages", json_body=payload)
        messages = data.get("messages")
        if isinstance(messages, list) and messages and isinstance(messages[0], dict):
            message_id = messages[0].get("id")
            return message_id if isinstance(message_id, str) else None
        return None

    async def _upload_media(self, *, payload: bytes, mime_type: str, filename: str) -> str:
        form = aiohttp.FormData()
        form.add_field("messaging_product", "whatsapp")
        form.add_field("type", mime_type)
        form.add_field("file", payload, filename=filename, content_type=mime_type)
        data = await self._request("media", form=form)
        media_id = data.get("id")
        if not isinstance(media_id, str):
            raise ProviderError("media upload returned no id")
        return media_id

    async def _request(
        self,
        path: str,
        *,
        json_body: dict[str, object] | None = None,
        form: aiohttp.FormData | None = None,
    ) -> dict[str, Any]:
        if self._session is None or not self.is_ready():
            raise ProviderNotReadyError("cloud api provider is not configured")
        url = f"{self.api_base.rstrip('/')}/{self.phone_number_id}/{path}"
        try:
            async with self._session.post(url, json=json_body, data=form) as resp:
                if resp.status >= 400:
                    detail = await resp.text()
                    raise error_for_status(resp.status, detail[:500])
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise ProviderError(f"cloud api request failed: {exc}") from exc
        except ValueError as exc:
            raise ProviderError(f"cloud api returned an unreadable response: {exc}") from exc
        if not isinstance(data, dict):
            raise ProviderError("cloud api returned a non-object response")
        return data
