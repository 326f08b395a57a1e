from __future__ import annotations

from collections.abc import Awaitable, Callable
import logging

from regnotify.domain.contracts import MessagingProvider, NotifierRepository, RegistrationSource
from regnotify.domain.error_taxonomy import error_code_for
from regnotify.domain.errors import DomainValidationError, ProviderNotReadyError
from regnotify.domain.models import (
    BroadcastProgress,
    BroadcastRecipientResult,
    BroadcastRequest,
    BroadcastResult,
    NotifierConfig,
    RecipientType,
)
from regnotify.domain.pacing import SendPacer
from regnotify.domain.recipients import format_recipient, is_group_id, parse_number_list

COMPONENT_ID = "domain.broadcast.send"
logger = logging.getLogger("notifier")

ProgressConsumer = Callable[[BroadcastProgress], Awaitable[None]]


def broadcast_pacer() -> SendPacer:
    return SendPacer(min_seconds=1.0, max_seconds=3.0)


async def resolve_recipients(
    *,
    request: BroadcastRequest,
    config: NotifierConfig,
    source: RegistrationSource,
) -> list[str]:
    if request.recipient_type == RecipientType.GROUPS:
        return [group_id for group_id in config.selected_groups if group_id]
    if request.recipient_type == RecipientType.ALL_REGISTRATIONS:
        return await source.list_mobiles()
    return list(parse_number_list(request.custom_numbers))


async def send_broadcast(
    *,
    request: BroadcastRequest,
    config: NotifierConfig,
    provider: MessagingProvider,
    source: RegistrationSource,
    repository: NotifierRepository,
    country_code: str = "91",
    pacer: SendPacer | None = None,
    on_progress: ProgressConsumer | None = None,
) -> BroadcastResult:
    """Fan one message out to a resolved recipient set, one attempt each.

    Per-recipient failures are collected into the result and never abort
    the broadcast. The finished broadcast is recorded in the history table.
    """
    if not provider.is_ready():
        raise ProviderNotReadyError("messaging provider is not connected")
    if not request.message.strip() and request.media is None:
        raise DomainValidationError("message text or media is required")

    pacer = pacer or broadcast_pacer()
    recipients = await resolve_recipients(request=request, config=config, source=source)
    total = len(recipients)
    logger.info(
        "broadcast started",
        extra={"count": total, "recipient_type": request.recipient_type.value},
    )
    await _emit(on_progress, "started", total=total, results=[])

    results: list[BroadcastRecipientResult] = []
    for recipient in recipients:
        await pacer.wait()
        try:
            address = recipient if is_group_id(recipient) else format_recipient(recipient, country_code=country_code)
            if request.media is not None:
                message_id = await provider.send_media(
                    recipient=address,
                    payload=request.media.payload,
                    mime_type=request.media.mime_type,
                    caption=request.message,
                    filename=request.media.filename,
                )
            else:
                message_id = await provider.send_text(recipient=address, body=request.message)
        except Exception as exc:
            error_code = error_code_for(exc)
            logger.warning(
                "broadcast recipient failed",
                exc_info=error_code == "internal_error",
                extra={"recipient": recipient, "error_code": error_code},
            )
            results.append(
                BroadcastRecipientResult(recipient=recipient, status="error", error=str(exc), error_code=error_code)
            )
        else:
            results.append(BroadcastRecipientResult(recipient=recipient, status="success", message_id=message_id))
        await _emit(on_progress, "progress", total=total, results=results)

    result = BroadcastResult(recipient_type=request.recipient_type, results=tuple(results))
    await repository.record_broadcast(
        message_text=request.message,
        media_name=request.media.filename if request.media is not None else None,
        recipients=recipients,
        recipient_type=request.recipient_type,
        status="completed",
        successful=result.successful,
        failed=result.failed,
    )
    await _emit(on_progress, "completed", total=total, results=results)
    logger.info(
        "broadcast completed",
        extra={"successful": result.successful, "failed": result.failed},
    )
    return result


async def _emit(
    consumer: ProgressConsumer | None,
    status: str,
    *,
    total: int,
    results: list[BroadcastRecipientResult],
) -> None:
    if consumer is None:
        return
    successful = sum(1 for item in results if item.status == "success")
    await consumer(
        BroadcastProgress(
            status=status,  # type: ignore[arg-type]
            total=total,
            processed=len(results),
            successful=successful,
            failed=len(results) - successful,
        )
    )
