from __future__ import annotations

from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta

from regnotify.domain.contracts import BreakdownField
from regnotify.domain.eligibility import is_eligible, is_lock_stale, is_permanently_failed
from regnotify.domain.error_taxonomy import ErrorCode
from regnotify.domain.models import (
    BreakdownItem,
    DeliveryStats,
    MessageTemplate,
    NotifierConfig,
    RecipientType,
    SourceRegistration,
    Stage,
    StageState,
    StageStats,
    TemplateType,
    TrackingRecord,
)
from regnotify.domain.stages import STAGE_POLICIES

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class _StageRow:
    sent: bool = False
    sent_at: datetime | None = None
    retry_count: int = 0
    last_attempt: datetime | None = None
    last_error: str | None = None


@dataclass
class _TrackingRow:
    id: int
    registration: SourceRegistration
    stages: dict[Stage, _StageRow] = field(default_factory=lambda: {stage: _StageRow() for stage in Stage})
    is_processing: bool = False
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class InMemoryNotifierRepository:
    """Non-network tracking store with the same update contract as Postgres."""

    clock: Clock = utc_now
    rows: dict[int, _TrackingRow] = field(default_factory=dict)
    templates: dict[TemplateType, MessageTemplate] = field(default_factory=dict)
    configuration: NotifierConfig | None = None
    broadcasts: list[dict[str, object]] = field(default_factory=list)
    webhook_events: list[dict[str, object]] = field(default_factory=list)
    message_log: dict[str, dict[str, object]] = field(default_factory=dict)
    lock_attempts: list[tuple[int, Stage, bool]] = field(default_factory=list)
    next_row_id: int = 1

    async def max_registration_id(self) -> int:
        return max(self.rows, default=0)

    async def upsert_from_source(self, *, registration: SourceRegistration) -> bool:
        now = self.clock()
        existing = self.rows.get(registration.id)
        if existing is not None:
            existing.registration = registration
            existing.updated_at = now
            return False
        self.rows[registration.id] = _TrackingRow(
            id=self.next_row_id,
            registration=registration,
            created_at=now,
            updated_at=now,
        )
        self.next_row_id += 1
        return True

    async def select_pending(self, *, stage: Stage, limit: int) -> list[TrackingRecord]:
        now = self.clock()
        selected: list[TrackingRecord] = []
        for registration_id in sorted(self.rows):
            record = self._snapshot(self.rows[registration_id])
            if is_eligible(stage=stage, record=record, now=now):
                selected.append(record)
            if len(selected) >= limit:
                break
        return selected

    async def acquire_stage_lock(self, *, registration_id: int, stage: Stage) -> bool:
        row = self.rows.get(registration_id)
        acquired = row is not None and not row.is_processing and not row.stages[stage].sent
        if acquired and row is not None:
            row.is_processing = True
            row.updated_at = self.clock()
        self.lock_attempts.append((registration_id, stage, acquired))
        return acquired

    async def mark_stage_sent(self, *, registration_id: int, stage: Stage) -> None:
        row = self._require(registration_id)
        now = self.clock()
        state = row.stages[stage]
        if state.sent_at is None:
            state.sent_at = now
        state.sent = True
        state.retry_count = 0
        state.last_attempt = now
        state.last_error = None
        if STAGE_POLICIES[stage].uses_lock:
            row.is_processing = False
        row.updated_at = now

    async def mark_stage_failed(
        self,
        *,
        registration_id: int,
        stage: Stage,
        error_code: ErrorCode,
        terminal: bool = False,
    ) -> int:
        row = self._require(registration_id)
        now = self.clock()
        max_attempts = STAGE_POLICIES[stage].max_attempts
        state = row.stages[stage]
        state.retry_count = max_attempts if terminal else min(state.retry_count + 1, max_attempts)
        state.last_attempt = now
        state.last_error = error_code
        if STAGE_POLICIES[stage].uses_lock:
            row.is_processing = False
        row.updated_at = now
        return state.retry_count

    async def release_stale_locks(self, *, stale_after: timedelta) -> int:
        now = self.clock()
        released = 0
        for row in self.rows.values():
            if is_lock_stale(record=self._snapshot(row), now=now, stale_after=stale_after):
                row.is_processing = False
                row.updated_at = now
                released += 1
        return released

    async def get_tracking(self, *, registration_id: int) -> TrackingRecord | None:
        row = self.rows.get(registration_id)
        return self._snapshot(row) if row is not None else None

    async def find_tracking(self, *, registration_no: str, mobile: str) -> TrackingRecord | None:
        for registration_id in sorted(self.rows):
            registration = self.rows[registration_id].registration
            if registration_no and registration.registration_no == registration_no:
                return self._snapshot(self.rows[registration_id])
            if mobile and registration.mobile == mobile:
                return self._snapshot(self.rows[registration_id])
        return None

    async def delivery_stats(self) -> DeliveryStats:
        records = [self._snapshot(row) for row in self.rows.values()]
        stages: dict[Stage, StageStats] = {}
        for stage in Stage:
            sent = sum(1 for record in records if record.stage_state(stage).sent)
            failed = sum(1 for record in records if is_permanently_failed(stage=stage, record=record))
            stages[stage] = StageStats(sent=sent, pending=len(records) - sent - failed, permanently_failed=failed)
        return DeliveryStats(
            total_synced=len(records),
            pending_rows=sum(
                1 for record in records if not all(record.stage_state(stage).sent for stage in Stage)
            ),
            processing_rows=sum(1 for record in records if record.is_processing),
            stages=stages,
        )

    async def get_active_template(self, *, template_type: TemplateType) -> str | None:
        template = self.templates.get(template_type)
        if template is None or not template.is_active:
            return None
        return template.message_text

    async def list_templates(self) -> list[MessageTemplate]:
        return [self.templates[key] for key in sorted(self.templates, key=lambda item: item.value)]

    async def update_template(self, *, template_type: TemplateType, message_text: str) -> bool:
        template = self.templates.get(template_type)
        if template is None:
            return False
        self.templates[template_type] = replace(template, message_text=message_text, updated_at=self.clock())
        return True

    async def seed_templates(self, *, templates: tuple[MessageTemplate, ...]) -> int:
        inserted = 0
        for template in templates:
            if template.template_type in self.templates:
                continue
            self.templates[template.template_type] = replace(template, updated_at=self.clock())
            inserted += 1
        return inserted

    async def load_configuration(self) -> NotifierConfig | None:
        return self.configuration

    async def save_configuration(self, *, config: NotifierConfig) -> None:
        self.configuration = config

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
    ) -> None:
        self.broadcasts.append(
            {
                "message_text": message_text,
                "media_name": media_name,
                "recipients": list(recipients),
                "recipient_type": recipient_type.value,
                "status": status,
                "successful": successful,
                "failed": failed,
                "sent_at": self.clock(),
            }
        )

    async def record_webhook_event(self, *, payload: dict[str, object]) -> None:
        self.webhook_events.append(payload)

    async def record_outbound_message(
        self,
        *,
        provider_message_id: str,
        recipient: str,
        registration_id: int | None,
        stage: Stage | None,
    ) -> None:
        self.message_log[provider_message_id] = {
            "recipient": recipient,
            "registration_id": registration_id,
            "stage": stage.value if stage is not None else None,
            "status": "sent",
        }

    async def update_message_status(self, *, provider_message_id: str, status: str) -> bool:
        entry = self.message_log.get(provider_message_id)
        if entry is None:
            return False
        entry["status"] = status
        return True

    def _require(self, registration_id: int) -> _TrackingRow:
        row = self.rows.get(registration_id)
        if row is None:
            raise KeyError(registration_id)
        return row

    def _snapshot(self, row: _TrackingRow) -> TrackingRecord:
        registration = row.registration
        states = {
            stage.value: StageState(
                sent=state.sent,
                sent_at=state.sent_at,
                retry_count=state.retry_count,
                last_attempt=state.last_attempt,
                last_error=state.last_error,
            )
            for stage, state in row.stages.items()
        }
        return TrackingRecord(
            id=row.id,
            registration_id=registration.id,
            registration_no=registration.registration_no,
            name=registration.name,
            mobile=registration.mobile,
            village=registration.village,
            state=registration.state,
            position=registration.position,
            age=registration.age,
            gender=registration.gender,
            male_members=registration.male_members,
            female_members=registration.female_members,
            child_members=registration.child_members,
            total_members=registration.total_members,
            connected=registration.connected,
            message=registration.message,
            is_processing=row.is_processing,
            created_at=row.created_at,
            updated_at=row.updated_at,
            **states,
        )


@dataclass
class InMemoryRegistrationSource:
    """Stand-in for the external registrations table."""

    clock: Clock = utc_now
    registrations: list[SourceRegistration] = field(default_factory=list)

    def add(self, registration: SourceRegistration) -> SourceRegistration:
        if registration.created_at is None:
            registration = replace(registration, created_at=self.clock())
        self.registrations.append(registration)
        return registration

    async def list_after(self, *, last_id: int) -> list[SourceRegistration]:
        return sorted(
            (item for item in self.registrations if item.id > last_id),
            key=lambda item: item.id,
        )

    async def count_total(self) -> int:
        return len(self.registrations)

    async def count_today(self) -> int:
        today = self.clock().date()
        return sum(
            1 for item in self.registrations if item.created_at is not None and item.created_at.date() == today
        )

    async def list_mobiles(self) -> list[str]:
        return [item.mobile for item in sorted(self.registrations, key=lambda item: item.id)]

    async def latest(self, *, limit: int) -> list[SourceRegistration]:
        return sorted(self.registrations, key=lambda item: item.id, reverse=True)[:limit]

    async def breakdown(self, *, field: BreakdownField) -> list[BreakdownItem]:
        counts = Counter(str(getattr(item, field)) for item in self.registrations)
        return [BreakdownItem(label=label, count=count) for label, count in counts.most_common()]
