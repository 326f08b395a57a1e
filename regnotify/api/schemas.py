from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from regnotify.domain.models import RecipientType, TemplateType

MOBILE_PATTERN = r"^[0-9]{10}$"


class ErrorResponse(BaseModel):
    detail: str


class JobMetrics(BaseModel):
    name: str
    started: bool
    stopped: bool
    running: bool
    ticks_total: int
    items_total: int
    idle_ticks_total: int
    errors_total: int


class HealthResponse(BaseModel):
    status: str
    role: str


class ReadyResponse(BaseModel):
    status: str
    role: str
    scheduler_enabled: bool
    scheduler_ready: bool
    jobs: list[JobMetrics]


class StatusResponse(BaseModel):
    provider_ready: bool
    event_subscribers: int


class NotifierConfigRequest(BaseModel):
    selected_groups: list[str] = Field(default_factory=list)
    # Comma-separated; entries that are not ten digits are dropped.
    admin_numbers: str = ""
    registration_message: str = ""
    pass_template_path: str | None = None


class NotifierConfigResponse(BaseModel):
    selected_groups: list[str]
    admin_numbers: list[str]
    registration_message: str
    pass_template_path: str | None


class TemplateResponse(BaseModel):
    template_type: TemplateType
    name: str
    message_text: str
    is_active: bool
    updated_at: datetime | None = None


class ListTemplatesResponse(BaseModel):
    items: list[TemplateResponse]


class UpdateTemplateRequest(BaseModel):
    message_text: str = Field(min_length=1)


class SyncResponse(BaseModel):
    synced: int
    sent: int
    failed: int
    skipped: int


class BreakdownItemResponse(BaseModel):
    label: str
    count: int


class StageStatsResponse(BaseModel):
    sent: int
    pending: int
    permanently_failed: int


class StatsResponse(BaseModel):
    total_registrations: int
    today_registrations: int
    gender: list[BreakdownItemResponse]
    position: list[BreakdownItemResponse]
    total_synced: int
    pending_rows: int
    processing_rows: int
    stages: dict[str, StageStatsResponse]
    provider_ready: bool


class RegistrationResponse(BaseModel):
    id: int
    registration_no: str
    name: str
    mobile: str
    village: str
    state: str
    position: str
    age: int
    gender: str
    total_members: int
    created_at: datetime | None = None


class LatestRegistrationsResponse(BaseModel):
    items: list[RegistrationResponse]


class GeneratePassRequest(BaseModel):
    registration_no: str = Field(min_length=1, max_length=64)


class ManualSendRequest(BaseModel):
    registration_no: str = Field(default="", max_length=64)
    mobile: str = Field(default="", max_length=10)


class ManualSendResponse(BaseModel):
    registration_id: int
    stage: str
    outcome: Literal["sent", "failed", "skipped"]
    message_id: str | None = None


class BroadcastRecipientResponse(BaseModel):
    recipient: str
    status: Literal["success", "error"]
    message_id: str | None = None
    error: str | None = None
    error_code: str | None = None


class BroadcastResponse(BaseModel):
    recipient_type: RecipientType
    total: int
    successful: int
    failed: int
    results: list[BroadcastRecipientResponse]


class WebhookAckResponse(BaseModel):
    status: str
    statuses_updated: int
    messages_received: int
    replies_sent: int
