from __future__ import annotations

from regnotify.api.handlers.deps import ApiDeps
from regnotify.api.schemas import BroadcastRecipientResponse, BroadcastResponse
from regnotify.domain.models import BroadcastRequest
from regnotify.domain.use_cases.broadcast import send_broadcast

COMPONENT_ID = "api.send_broadcast"


async def send_broadcast_handler(*, request: BroadcastRequest, api_deps: ApiDeps) -> BroadcastResponse:
    result = await send_broadcast(
        request=request,
        config=api_deps.config_store.current,
        provider=api_deps.provider,
        source=api_deps.source,
        repository=api_deps.repository,
        country_code=api_deps.country_code,
        pacer=api_deps.broadcast_pacer,
        on_progress=api_deps.events.publish_progress,
    )
    await api_deps.events.notify(
        f"Message sent to {result.successful} recipients successfully, {result.failed} failed",
        level="success" if result.failed == 0 else "warning",
    )
    return BroadcastResponse(
        recipient_type=result.recipient_type,
        total=len(result.results),
        successful=result.successful,
        failed=result.failed,
        results=[
            BroadcastRecipientResponse(
                recipient=item.recipient,
                status=item.status,
                message_id=item.message_id,
                error=item.error,
                error_code=item.error_code,
            )
            for item in result.results
        ],
    )
