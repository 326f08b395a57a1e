from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Literal

from regnotify.domain.error_taxonomy import ErrorCode, RetryClassification


# Canonical notification stages.
#
# IMPORTANT:
# - Keep this enum synchronized with regnotify/domain/stages.py (STAGE_POLICIES).
# - Keep stage column names synchronized with db/migrations/000001_bootstrap.up.sql.
class Stage(StrEnum):
    USER_CONFIRMATION = "user_confirmation"
    ADMIN_NOTIFICATION = "admin_notification"
    BARCODE = "barcode"
    CHANGE_REQUEST = "change_request"


class TemplateType(StrEnum):
    REGISTRATION_CONFIRMATION = "registration_confirmation"
    ADMIN_NOTIFICATION = "admin_notification"
    BARCODE_MESSAGE = "barcode_message"
    CHANGE_REQUEST = "change_request"


class RecipientType(StrEnum):
    GROUPS = "groups"
    ALL_REGISTRATIONS = "all_registrations"
    CUSTOM = "custom"


@dataclass(frozen=True)
class SourceRegistration:
    id: int
    registration_no: str
    name: str
    mobile: str
    village: str
    state: str
    position: str
    age: int
    gender: str
    male_members: int
    female_members: int
    child_members: int
    total_members: int
    connected: str
    message: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class StageState:
    sent: bool = False
    sent_at: datetime | None = None
    retry_count: int = 0
    last_attempt: datetime | None = None
    last_error: str | None = None


@dataclass(frozen=True)
class TrackingRecord:
    id: int
    registration_id: int
    registration_no: str
    name: str
    mobile: str
    village: str
    state: str
    position: str
    age: int
    gender: str
    male_members: int
    female_members: int
    child_members: int
    total_members: int
    connected: str
    message: str | None = None
    user_confirmation: StageState = field(default_factory=StageState)
    admin_notification: StageState = field(default_factory=StageState)
    barcode: StageState = field(default_factory=StageState)
    change_request: StageState = field(default_factory=StageState)
    is_processing: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def stage_state(self, stage: Stage) -> StageState:
        return getattr(self, stage.value)

    def template_fields(self) -> dict[str, object]:
        return {
            "registration_no": self.registration_no,
            "name": self.name,
            "village": self.village,
            "state": self.state,
            "mobile": self.mobile,
            "position": self.position,
            "age": self.age,
            "gender": self.gender,
            "male_members": self.male_members,
            "female_members": self.female_members,
            "child_members": self.child_members,
            "total_members": self.total_members,
            "connected": self.connected,
        }


@dataclass(frozen=True)
class RegistrationCounts:
    total: int
    today: int


@dataclass(frozen=True)
class StageSendResult:
    stage: Stage
    registration_id: int
    outcome: Literal["sent", "failed", "skipped"]
    detail: str = ""
    message_id: str | None = None
    error_code: ErrorCode | None = None
    retry_classification: RetryClassification | None = None
    retry_count: int | None = None


@dataclass(frozen=True)
class MessageTemplate:
    template_type: TemplateType
    name: str
    message_text: str
    is_active: bool = True
    updated_at: datetime | None = None


@dataclass(frozen=True)
class NotifierConfig:
    selected_groups: tuple[str, ...] = ()
    admin_numbers: tuple[str, ...] = ()
    registration_message: str = ""
    pass_template_path: str | None = None


@dataclass(frozen=True)
class MediaAttachment:
    payload: bytes
    mime_type: str
    filename: str


@dataclass(frozen=True)
class BroadcastRequest:
    message: str
    recipient_type: RecipientType
    custom_numbers: str = ""
    media: MediaAttachment | None = None


@dataclass(frozen=True)
class BroadcastRecipientResult:
    recipient: str
    status: Literal["success", "error"]
    message_id: str | None = None
    error: str | None = None
    error_code: ErrorCode | None = None


@dataclass(frozen=True)
class BroadcastProgress:
    status: Literal["started", "progress", "completed"]
    total: int
    processed: int
    successful: int
    failed: int


@dataclass(frozen=True)
class BroadcastResult:
    recipient_type: RecipientType
    results: tuple[BroadcastRecipientResult, ...]

    @property
    def successful(self) -> int:
        return sum(1 for item in self.results if item.status == "success")

    @property
    def failed(self) -> int:
        return sum(1 for item in self.results if item.status == "error")


@dataclass(frozen=True)
class StageStats:
    sent: int = 0
    pending: int = 0
    permanently_failed: int = 0


@dataclass(frozen=True)
class DeliveryStats:
    total_synced: int
    pending_rows: int
    processing_rows: int
    stages: dict[Stage, StageStats]


@dataclass(frozen=True)
class BreakdownItem:
    label: str
    count: int
