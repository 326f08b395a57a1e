from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from regnotify.domain.models import Stage, TemplateType

MAX_ATTEMPTS = 3
DISPATCH_BATCH_SIZE = 5
ATTEMPT_COOLDOWN = timedelta(seconds=30)
STALE_LOCK_AFTER = timedelta(minutes=5)


@dataclass(frozen=True)
class StagePolicy:
    stage: Stage
    template_type: TemplateType
    sent_field: str
    sent_at_field: str
    retry_field: str
    last_attempt_field: str
    last_error_field: str
    # None means the stage does not wait on the user confirmation stage.
    after_confirmation: timedelta | None = None
    uses_lock: bool = False
    max_attempts: int = MAX_ATTEMPTS
    cooldown: timedelta = ATTEMPT_COOLDOWN


# Fixed processing order within one dispatch tick.
STAGE_ORDER: tuple[Stage, ...] = (
    Stage.USER_CONFIRMATION,
    Stage.ADMIN_NOTIFICATION,
    Stage.BARCODE,
    Stage.CHANGE_REQUEST,
)


STAGE_POLICIES: dict[Stage, StagePolicy] = {
    Stage.USER_CONFIRMATION: StagePolicy(
        stage=Stage.USER_CONFIRMATION,
        template_type=TemplateType.REGISTRATION_CONFIRMATION,
        sent_field="user_message_sent",
        sent_at_field="user_sent_at",
        retry_field="user_retry_count",
        last_attempt_field="user_last_attempt",
        last_error_field="user_last_error",
    ),
    Stage.ADMIN_NOTIFICATION: StagePolicy(
        stage=Stage.ADMIN_NOTIFICATION,
        template_type=TemplateType.ADMIN_NOTIFICATION,
        sent_field="admin_notification_sent",
        sent_at_field="admin_sent_at",
        retry_field="admin_retry_count",
        last_attempt_field="admin_last_attempt",
        last_error_field="admin_last_error",
    ),
    Stage.BARCODE: StagePolicy(
        stage=Stage.BARCODE,
        template_type=TemplateType.BARCODE_MESSAGE,
        sent_field="barcode_sent",
        sent_at_field="barcode_sent_at",
        retry_field="barcode_retry_count",
        last_attempt_field="barcode_last_attempt",
        last_error_field="barcode_last_error",
        after_confirmation=timedelta(seconds=2),
        uses_lock=True,
    ),
    Stage.CHANGE_REQUEST: StagePolicy(
        stage=Stage.CHANGE_REQUEST,
        template_type=TemplateType.CHANGE_REQUEST,
        sent_field="change_request_sent",
        sent_at_field="change_request_sent_at",
        retry_field="change_request_retry_count",
        last_attempt_field="change_request_last_attempt",
        last_error_field="change_request_last_error",
        after_confirmation=timedelta(minutes=1),
    ),
}
