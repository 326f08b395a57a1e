from __future__ import annotations

from datetime import timedelta
from typing import Literal, Protocol, runtime_checkable

from regnotify.domain.error_taxonomy import ErrorCode
from regnotify.domain.models import (
    BreakdownItem,
    DeliveryStats,
    MessageTemplate,
    NotifierConfig,
    RecipientType,
    SourceRegistration,
    Stage,
    TemplateType,
    TrackingRecord,
)

BreakdownField = Literal["gender", "position"]


@runtime_checkable
class NotifierRepository(Protocol):
    """Repository contract for the delivery tracking store.

    Every mutation is a single-row, single-statement update. The barcode lock
    must stay a conditional update whose affected-row count decides ownership.
    """

    async def max_registration_id(self) -> int: ...

    # Refreshes denormalized registrant fields; never touches stage columns.
    async def upsert_from_source(self, *, registration: SourceRegistration) -> bool: ...

    async def select_pending(self, *, stage: Stage, limit: int) -> list[TrackingRecord]: ...

    async def acquire_stage_lock(self, *, registration_id: int, stage: Stage) -> bool: ...

    async def mark_stage_sent(self, *, registration_id: int, stage: Stage) -> None: ...

    async def mark_stage_failed(
        self,
        *,
        registration_id: int,
        stage: Stage,
        error_code: ErrorCode,
        terminal: bool = False,
    ) -> int: ...

    async def release_stale_locks(self, *, stale_after: timedelta) -> int: ...

    async def get_tracking(self, *, registration_id: int) -> TrackingRecord | None: ...

    async def find_tracking(self, *, registration_no: str, mobile: str) -> TrackingRecord | None: ...

    async def delivery_stats(self) -> DeliveryStats: ...

    async def get_active_template(self, *, template_type: TemplateType) -> str | None: ...

    async def list_templates(self) -> list[MessageTemplate]: ...

    async def update_template(self, *, template_type: TemplateType, message_text: str) -> bool: ...

    async def seed_templates(self, *, templates: tuple[MessageTemplate, ...]) -> int: ...

    async def load_configuration(self) -> NotifierConfig | None: ...

    async def save_configuration(self, *, config: NotifierConfig) -> None: ...

    async def record_broadcast(
        self,
        *,
        message_text: str,
        media_name: str | None,
        recipients: list[str],
        recipient_type: RecipientType,
        status: str,
        successful: int,
        failed: int,
    ) -> None: ...

    # Verbatim audit trail of inbound provider callbacks.
    async def record_webhook_event(self, *, payload: dict[str, object]) -> None: ...

    async def record_outbound_message(
        self,
        *,
        provider_message_id: str,
        recipient: str,
        registration_id: int | None,
        stage: Stage | None,
    ) -> None: ...

    async def update_message_status(self, *, provider_message_id: str, status: str) -> bool: ...


@runtime_checkable
class RegistrationSource(Protocol):
    """Read-only view of the external registrations table."""

    async def list_after(self, *, last_id: int) -> list[SourceRegistration]: ...

    async def count_total(self) -> int: ...

    async def count_today(self) -> int: ...

    async def list_mobiles(self) -> list[str]: ...

    async def latest(self, *, limit: int) -> list[SourceRegistration]: ...

    async def breakdown(self, *, field: BreakdownField) -> list[BreakdownItem]: ...


@runtime_checkable
class MessagingProvider(Protocol):
    def is_ready(self) -> bool: ...

    async def send_text(self, *, recipient: str, body: str) -> str | None: ...

    async def send_media(
        self,
        *,
        recipient: str,
        payload: bytes,
        mime_type: str,
        caption: str,
        filename: str,
    ) -> str | None: ...

    async def send_template(
        self,
        *,
        recipient: str,
        template_name: str,
        parameters: list[str],
        language: str = "en",
    ) -> str | None: ...


@runtime_checkable
class PassImageRenderer(Protocol):
    def render(self, *, registration_no: str, template_path: str | None = None) -> bytes: ...
