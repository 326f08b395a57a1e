from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging

from regnotify.domain.contracts import MessagingProvider, NotifierRepository, PassImageRenderer, RegistrationSource
from regnotify.domain.error_taxonomy import classify_error, error_code_for
from regnotify.domain.errors import (
    DeliveryError,
    DomainInvariantError,
    ProviderError,
    ProviderNotReadyError,
    RenderError,
    TemplateNotFoundError,
)
from regnotify.domain.models import (
    NotifierConfig,
    RegistrationCounts,
    Stage,
    StageSendResult,
    TrackingRecord,
)
from regnotify.domain.pacing import SendPacer
from regnotify.domain.recipients import admin_recipients, format_recipient
from regnotify.domain.stages import DISPATCH_BATCH_SIZE, STAGE_ORDER, STAGE_POLICIES
from regnotify.domain.templates import render_template

COMPONENT_ID = "domain.delivery.dispatch"
PASS_MIME_TYPE = "image/png"
logger = logging.getLogger("notifier")


@dataclass
class StageSender:
    """Sends one stage message for one tracking row and records the outcome."""

    repository: NotifierRepository
    provider: MessagingProvider
    pass_renderer: PassImageRenderer
    country_code: str = "91"
    pacer: SendPacer = field(default_factory=SendPacer)

    async def send(
        self,
        *,
        stage: Stage,
        record: TrackingRecord,
        config: NotifierConfig,
        counts: RegistrationCounts | None = None,
    ) -> StageSendResult:
        policy = STAGE_POLICIES[stage]
        log_extra = {"stage": stage.value, "registration_id": record.registration_id}

        # Re-read: another tick may have sent this stage after the row was selected.
        current = await self.repository.get_tracking(registration_id=record.registration_id)
        if current is None or current.stage_state(stage).sent:
            logger.info("stage already sent, skipping", extra=log_extra)
            return StageSendResult(
                stage=stage,
                registration_id=record.registration_id,
                outcome="skipped",
                detail="already sent",
            )

        if policy.uses_lock:
            acquired = await self.repository.acquire_stage_lock(registration_id=record.registration_id, stage=stage)
            if not acquired:
                logger.info("stage lock held elsewhere, skipping", extra=log_extra)
                return StageSendResult(
                    stage=stage,
                    registration_id=record.registration_id,
                    outcome="skipped",
                    detail="locked",
                )

        try:
            message_id = await self._deliver(stage=stage, record=record, config=config, counts=counts)
        except Exception as exc:
            error_code = error_code_for(exc)
            retry_classification = classify_error(error_code)
            # Also releases the stage lock for locking stages.
            retry_count = await self.repository.mark_stage_failed(
                registration_id=record.registration_id,
                stage=stage,
                error_code=error_code,
                terminal=retry_classification == "terminal",
            )
            logger.warning(
                "stage send failed",
                exc_info=error_code == "internal_error",
                extra={
                    **log_extra,
                    "error_code": error_code,
                    "retry_classification": retry_classification,
                    "retry_count": retry_count,
                },
            )
            return StageSendResult(
                stage=stage,
                registration_id=record.registration_id,
                outcome="failed",
                detail=str(exc),
                error_code=error_code,
                retry_classification=retry_classification,
                retry_count=retry_count,
            )

        await self.repository.mark_stage_sent(registration_id=record.registration_id, stage=stage)
        if message_id is not None:
            await self.repository.record_outbound_message(
                provider_message_id=message_id,
                recipient=record.mobile,
                registration_id=record.registration_id,
                stage=stage,
            )
        logger.info("stage sent", extra=log_extra)
        return StageSendResult(
            stage=stage,
            registration_id=record.registration_id,
            outcome="sent",
            message_id=message_id,
            retry_count=0,
        )

    async def render_message(
        self,
        *,
        stage: Stage,
        record: TrackingRecord,
        config: NotifierConfig,
        counts: RegistrationCounts | None = None,
    ) -> str:
        template = await self._template_text(stage=stage, config=config)
        values = record.template_fields()
        if counts is not None:
            values["total_registrations"] = counts.total
            values["today_registrations"] = counts.today
        return render_template(template, values)

    async def _template_text(self, *, stage: Stage, config: NotifierConfig) -> str:
        if stage == Stage.USER_CONFIRMATION and config.registration_message.strip():
            return config.registration_message
        template_type = STAGE_POLICIES[stage].template_type
        template = await self.repository.get_active_template(template_type=template_type)
        if not template:
            raise TemplateNotFoundError(f"{template_type.value} template not found")
        return template

    async def _deliver(
        self,
        *,
        stage: Stage,
        record: TrackingRecord,
        config: NotifierConfig,
        counts: RegistrationCounts | None,
    ) -> str | None:
        if stage == Stage.ADMIN_NOTIFICATION:
            return await self._send_admin_notification(record=record, config=config, counts=counts)

        body = await self.render_message(stage=stage, record=record, config=config)
        recipient = format_recipient(record.mobile, country_code=self.country_code)
        if stage == Stage.BARCODE:
            image = await asyncio.to_thread(
                self._render_pass,
                record.registration_no,
                config.pass_template_path,
            )
            await self.pacer.wait()
            return await self.provider.send_media(
                recipient=recipient,
                payload=image,
                mime_type=PASS_MIME_TYPE,
                caption=body,
                filename=f"barcode_{record.registration_no}.png",
            )

        await self.pacer.wait()
        return await self.provider.send_text(recipient=recipient, body=body)

    async def _send_admin_notification(
        self,
        *,
        record: TrackingRecord,
        config: NotifierConfig,
        counts: RegistrationCounts | None,
    ) -> str | None:
        body = await self.render_message(
            stage=Stage.ADMIN_NOTIFICATION,
            record=record,
            config=config,
            counts=counts,
        )
        recipients = admin_recipients(config, country_code=self.country_code)
        if not recipients:
            logger.warning(
                "no admin recipients configured",
                extra={"registration_id": record.registration_id},
            )
            return None

        first_message_id: str | None = None
        last_error: DeliveryError | None = None
        failures = 0
        for recipient in recipients:
            await self.pacer.wait()
            try:
                message_id = await self.provider.send_text(recipient=recipient, body=body)
            except DeliveryError as exc:
                last_error = exc
                failures += 1
                logger.warning(
                    "admin recipient send failed",
                    extra={
                        "registration_id": record.registration_id,
                        "recipient": recipient,
                        "error_code": exc.code,
                    },
                )
                continue
            if first_message_id is None:
                first_message_id = message_id

        # Partial delivery counts as sent so reached admins are not messaged twice.
        if last_error is not None and failures == len(recipients):
            raise ProviderError(
                f"admin notification failed for all {failures} recipients",
                code=last_error.code,
            )
        return first_message_id

    def _render_pass(self, registration_no: str, template_path: str | None) -> bytes:
        try:
            return self.pass_renderer.render(registration_no=registration_no, template_path=template_path)
        except RenderError:
            raise
        except (OSError, ValueError) as exc:
            raise RenderError(f"housing pass render failed: {exc}") from exc


@dataclass(frozen=True)
class DispatchCycleResult:
    results: tuple[StageSendResult, ...] = ()
    errors: int = 0

    def count(self, outcome: str) -> int:
        return sum(1 for item in self.results if item.outcome == outcome)


async def run_dispatch_cycle(
    *,
    sender: StageSender,
    repository: NotifierRepository,
    source: RegistrationSource,
    config: NotifierConfig,
    batch_size: int = DISPATCH_BATCH_SIZE,
) -> DispatchCycleResult:
    """One dispatch tick: every stage in order, a bounded batch per stage.

    A failure recording one row's outcome is logged and the batch moves on.
    A failure selecting a batch propagates and abandons the rest of the tick.
    """
    if not sender.provider.is_ready():
        logger.debug("provider not ready, dispatch skipped")
        return DispatchCycleResult()

    counts = RegistrationCounts(total=await source.count_total(), today=await source.count_today())
    results: list[StageSendResult] = []
    errors = 0
    for stage in STAGE_ORDER:
        records = await repository.select_pending(stage=stage, limit=batch_size)
        for record in records:
            try:
                result = await sender.send(
                    stage=stage,
                    record=record,
                    config=config,
                    counts=counts if stage == Stage.ADMIN_NOTIFICATION else None,
                )
            except Exception:
                errors += 1
                logger.exception(
                    "stage dispatch failed",
                    extra={"stage": stage.value, "registration_id": record.registration_id},
                )
                continue
            results.append(result)

    cycle = DispatchCycleResult(results=tuple(results), errors=errors)
    if cycle.results or errors:
        logger.info(
            "dispatch cycle completed",
            extra={
                "sent": cycle.count("sent"),
                "failed": cycle.count("failed"),
                "skipped": cycle.count("skipped"),
                "errors": errors,
            },
        )
    return cycle


async def send_stage_on_demand(
    *,
    sender: StageSender,
    repository: NotifierRepository,
    stage: Stage,
    registration_no: str,
    mobile: str,
    config: NotifierConfig,
) -> StageSendResult:
    """Operator-triggered send of one stage, bypassing the eligibility delays.

    Shares the send path with the dispatcher, so the barcode lock and the
    sent flag still guard against a duplicate.
    """
    if not sender.provider.is_ready():
        raise ProviderNotReadyError("messaging provider is not connected")
    record = await repository.find_tracking(registration_no=registration_no, mobile=mobile)
    if record is None:
        raise KeyError(registration_no or mobile)
    if record.stage_state(stage).sent:
        raise DomainInvariantError(f"{stage.value} already sent for registration {record.registration_no}")
    if STAGE_POLICIES[stage].uses_lock and record.is_processing:
        raise DomainInvariantError(f"registration {record.registration_no} is being processed")

    result = await sender.send(stage=stage, record=record, config=config)
    if result.outcome == "skipped":
        raise DomainInvariantError(f"{stage.value} for registration {record.registration_no} was taken by another sender")
    return result
