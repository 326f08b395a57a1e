from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
import json
from typing import Any

import asyncpg

from regnotify.domain.contracts import BreakdownField
from regnotify.domain.error_taxonomy import ErrorCode
from regnotify.domain.errors import DomainInvariantError
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
from regnotify.domain.stages import MAX_ATTEMPTS, STAGE_POLICIES, StagePolicy
from regnotify.repositories.sql_loader import load_sql

SQL_MAX_REGISTRATION_ID = load_sql("max_registration_id.sql")
SQL_UPSERT_TRACKING = load_sql("upsert_tracking.sql")
SQL_SELECT_PENDING: dict[Stage, str] = {stage: load_sql(f"select_pending_{stage.value}.sql") for stage in Stage}
SQL_ACQUIRE_STAGE_LOCK = load_sql("acquire_stage_lock.sql")
SQL_MARK_STAGE_SENT = load_sql("mark_stage_sent.sql")
SQL_MARK_STAGE_FAILED = load_sql("mark_stage_failed.sql")
SQL_RELEASE_STALE_LOCKS = load_sql("release_stale_locks.sql")
SQL_GET_TRACKING = load_sql("get_tracking.sql")
SQL_FIND_TRACKING = load_sql("find_tracking.sql")
SQL_DELIVERY_STATS = load_sql("delivery_stats.sql")
SQL_GET_ACTIVE_TEMPLATE = load_sql("get_active_template.sql")
SQL_LIST_TEMPLATES = load_sql("list_templates.sql")
SQL_UPDATE_TEMPLATE = load_sql("update_template.sql")
SQL_INSERT_TEMPLATE_IF_MISSING = load_sql("insert_template_if_missing.sql")
SQL_LOAD_CONFIGURATION = load_sql("load_configuration.sql")
SQL_SAVE_CONFIGURATION = load_sql("save_configuration.sql")
SQL_INSERT_SENT_MESSAGE = load_sql("insert_sent_message.sql")
SQL_INSERT_WEBHOOK_EVENT = load_sql("insert_webhook_event.sql")
SQL_INSERT_MESSAGE_LOG = load_sql("insert_message_log.sql")
SQL_UPDATE_MESSAGE_STATUS = load_sql("update_message_status.sql")
SQL_REGISTRATIONS_LIST_AFTER = load_sql("registrations_list_after.sql")
SQL_REGISTRATIONS_LATEST = load_sql("registrations_latest.sql")
SQL_REGISTRATIONS_COUNT = load_sql("registrations_count.sql")
SQL_REGISTRATIONS_COUNT_TODAY = load_sql("registrations_count_today.sql")
SQL_REGISTRATIONS_MOBILES = load_sql("registrations_mobiles.sql")
SQL_REGISTRATIONS_BREAKDOWN = load_sql("registrations_breakdown.sql")

_BREAKDOWN_FIELDS: frozenset[str] = frozenset({"gender", "position"})


@dataclass
class AsyncpgPoolManager:
    dsn: str
    pool: Any | None = None

    async def startup(self) -> None:
        async def _init_connection(conn: Any) -> None:
            await conn.set_type_codec(
                "json",
                encoder=json.dumps,
                decoder=json.loads,
                schema="pg_catalog",
            )
            await conn.set_type_codec(
                "jsonb",
                encoder=json.dumps,
                decoder=json.loads,
                schema="pg_catalog",
            )

        self.pool = await asyncpg.create_pool(
            dsn=self.dsn,
            min_size=1,
            max_size=5,
            init=_init_connection,
        )

    async def shutdown(self) -> None:
        if self.pool is None:
            return
        await self.pool.close()
        self.pool = None


@dataclass
class _PoolBacked:
    pool_manager: AsyncpgPoolManager

    def _pool(self) -> Any:
        if self.pool_manager.pool is None:
            raise RuntimeError("postgres pool is not initialized")
        return self.pool_manager.pool


@dataclass
class PostgresNotifierRepository(_PoolBacked):
    async def max_registration_id(self) -> int:
        pool = self._pool()
        async with pool.acquire() as conn:
            value = await conn.fetchval(SQL_MAX_REGISTRATION_ID)
        return int(value or 0)

    async def upsert_from_source(self, *, registration: SourceRegistration) -> bool:
        pool = self._pool()
        async with pool.acquire() as conn:
            created = await conn.fetchval(
                SQL_UPSERT_TRACKING,
                registration.id,
                registration.registration_no,
                registration.name,
                registration.mobile,
                registration.village,
                registration.state,
                registration.position,
                registration.age,
                registration.gender,
                registration.male_members,
                registration.female_members,
                registration.child_members,
                registration.total_members,
                registration.connected,
                registration.message,
            )
        return bool(created)

    async def select_pending(self, *, stage: Stage, limit: int) -> list[TrackingRecord]:
        policy = STAGE_POLICIES[stage]
        args: list[object] = [int(policy.cooldown.total_seconds()), policy.max_attempts, limit]
        if policy.after_confirmation is not None:
            args.append(int(policy.after_confirmation.total_seconds()))
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_SELECT_PENDING[stage], *args)
        return [_tracking_from_row(row) for row in rows]

    async def acquire_stage_lock(self, *, registration_id: int, stage: Stage) -> bool:
        policy = STAGE_POLICIES[stage]
        query = SQL_ACQUIRE_STAGE_LOCK.format(sent_field=policy.sent_field)
        pool = self._pool()
        async with pool.acquire() as conn:
            row_id = await conn.fetchval(query, registration_id)
        return row_id is not None

    async def mark_stage_sent(self, *, registration_id: int, stage: Stage) -> None:
        policy = STAGE_POLICIES[stage]
        query = SQL_MARK_STAGE_SENT.format(**_stage_fields(policy))
        pool = self._pool()
        async with pool.acquire() as conn:
            row_id = await conn.fetchval(query, registration_id)
        if row_id is None:
            raise DomainInvariantError(f"tracking row not found: {registration_id}")

    async def mark_stage_failed(
        self,
        *,
        registration_id: int,
        stage: Stage,
        error_code: ErrorCode,
        terminal: bool = False,
    ) -> int:
        policy = STAGE_POLICIES[stage]
        query = SQL_MARK_STAGE_FAILED.format(**_stage_fields(policy))
        pool = self._pool()
        async with pool.acquire() as conn:
            retry_count = await conn.fetchval(
                query,
                registration_id,
                error_code,
                terminal,
                policy.max_attempts,
            )
        if retry_count is None:
            raise DomainInvariantError(f"tracking row not found: {registration_id}")
        return int(retry_count)

    async def release_stale_locks(self, *, stale_after: timedelta) -> int:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_RELEASE_STALE_LOCKS, int(stale_after.total_seconds()))
        return len(rows)

    async def get_tracking(self, *, registration_id: int) -> TrackingRecord | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_GET_TRACKING, registration_id)
        return _tracking_from_row(row) if row is not None else None

    async def find_tracking(self, *, registration_no: str, mobile: str) -> TrackingRecord | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_FIND_TRACKING, registration_no or None, mobile or None)
        return _tracking_from_row(row) if row is not None else None

    async def delivery_stats(self) -> DeliveryStats:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_DELIVERY_STATS, MAX_ATTEMPTS)
        total = int(row["total_synced"])
        stages: dict[Stage, StageStats] = {}
        for stage in Stage:
            sent = int(row[f"{stage.value}_sent"])
            failed = int(row[f"{stage.value}_failed"])
            stages[stage] = StageStats(sent=sent, pending=total - sent - failed, permanently_failed=failed)
        return DeliveryStats(
            total_synced=total,
            pending_rows=int(row["pending_rows"]),
            processing_rows=int(row["processing_rows"]),
            stages=stages,
        )

    async def get_active_template(self, *, template_type: TemplateType) -> str | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            return await conn.fetchval(SQL_GET_ACTIVE_TEMPLATE, template_type.value)

    async def list_templates(self) -> list[MessageTemplate]:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_LIST_TEMPLATES)
        return [
            MessageTemplate(
                template_type=TemplateType(row["template_type"]),
                name=row["name"],
                message_text=row["message_text"],
                is_active=row["is_active"],
                updated_at=row["updated_at"],
            )
            for row in rows
        ]

    async def update_template(self, *, template_type: TemplateType, message_text: str) -> bool:
        pool = self._pool()
        async with pool.acquire() as conn:
            row_id = await conn.fetchval(SQL_UPDATE_TEMPLATE, template_type.value, message_text)
        return row_id is not None

    async def seed_templates(self, *, templates: tuple[MessageTemplate, ...]) -> int:
        inserted = 0
        pool = self._pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                for template in templates:
                    row_id = await conn.fetchval(
                        SQL_INSERT_TEMPLATE_IF_MISSING,
                        template.template_type.value,
                        template.name,
                        template.message_text,
                        template.is_active,
                    )
                    if row_id is not None:
                        inserted += 1
        return inserted

    async def load_configuration(self) -> NotifierConfig | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_LOAD_CONFIGURATION)
        if row is None:
            return None
        return NotifierConfig(
            selected_groups=_str_tuple(row["selected_groups"]),
            admin_numbers=_str_tuple(row["admin_numbers"]),
            registration_message=row["registration_message"] or "",
            pass_template_path=row["pass_template_path"],
        )

    async def save_configuration(self, *, config: NotifierConfig) -> None:
        pool = self._pool()
        async with pool.acquire() as conn:
            await conn.execute(
                SQL_SAVE_CONFIGURATION,
                list(config.selected_groups),
                list(config.admin_numbers),
                config.registration_message,
                config.pass_template_path,
            )

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
        pool = self._pool()
        async with pool.acquire() as conn:
            await conn.execute(
                SQL_INSERT_SENT_MESSAGE,
                message_text,
                media_name,
                list(recipients),
                recipient_type.value,
                status,
                successful,
                failed,
            )

    async def record_webhook_event(self, *, payload: dict[str, object]) -> None:
        pool = self._pool()
        async with pool.acquire() as conn:
            await conn.execute(SQL_INSERT_WEBHOOK_EVENT, payload)

    async def record_outbound_message(
        self,
        *,
        provider_message_id: str,
        recipient: str,
        registration_id: int | None,
        stage: Stage | None,
    ) -> None:
        pool = self._pool()
        async with pool.acquire() as conn:
            await conn.execute(
                SQL_INSERT_MESSAGE_LOG,
                provider_message_id,
                recipient,
                registration_id,
                stage.value if stage is not None else None,
            )

    async def update_message_status(self, *, provider_message_id: str, status: str) -> bool:
        pool = self._pool()
        async with pool.acquire() as conn:
            updated = await conn.fetchval(SQL_UPDATE_MESSAGE_STATUS, provider_message_id, status)
        return updated is not None


@dataclass
class PostgresRegistrationSource(_PoolBacked):
    async def list_after(self, *, last_id: int) -> list[SourceRegistration]:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_REGISTRATIONS_LIST_AFTER, last_id)
        return [_registration_from_row(row) for row in rows]

    async def count_total(self) -> int:
        pool = self._pool()
        async with pool.acquire() as conn:
            return int(await conn.fetchval(SQL_REGISTRATIONS_COUNT))

    async def count_today(self) -> int:
        pool = self._pool()
        async with pool.acquire() as conn:
            return int(await conn.fetchval(SQL_REGISTRATIONS_COUNT_TODAY))

    async def list_mobiles(self) -> list[str]:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_REGISTRATIONS_MOBILES)
        return [row["mobile"] for row in rows]

    async def latest(self, *, limit: int) -> list[SourceRegistration]:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_REGISTRATIONS_LATEST, limit)
        return [_registration_from_row(row) for row in rows]

    async def breakdown(self, *, field: BreakdownField) -> list[BreakdownItem]:
        if field not in _BREAKDOWN_FIELDS:
            raise ValueError(f"unsupported breakdown field: {field}")
        query = SQL_REGISTRATIONS_BREAKDOWN.format(field=field)
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(query)
        return [BreakdownItem(label=row["label"] or "", count=int(row["count"])) for row in rows]


def _stage_fields(policy: StagePolicy) -> dict[str, str]:
    return {
        "sent_field": policy.sent_field,
        "sent_at_field": policy.sent_at_field,
        "retry_field": policy.retry_field,
        "last_attempt_field": policy.last_attempt_field,
        "last_error_field": policy.last_error_field,
        "lock_release": ",\n    is_processing = FALSE" if policy.uses_lock else "",
    }


def _stage_state(row: Any, stage: Stage) -> StageState:
    policy = STAGE_POLICIES[stage]
    return StageState(
        sent=row[policy.sent_field],
        sent_at=row[policy.sent_at_field],
        retry_count=row[policy.retry_field],
        last_attempt=row[policy.last_attempt_field],
        last_error=row[policy.last_error_field],
    )


def _tracking_from_row(row: Any) -> TrackingRecord:
    return TrackingRecord(
        id=row["id"],
        registration_id=row["registration_id"],
        registration_no=row["registration_no"],
        name=row["name"],
        mobile=row["mobile"],
        village=row["village"],
        state=row["state"],
        position=row["position"],
        age=row["age"],
        gender=row["gender"],
        male_members=row["male_members"],
        female_members=row["female_members"],
        child_members=row["child_members"],
        total_members=row["total_members"],
        connected=row["connected"],
        message=row["message"],
        user_confirmation=_stage_state(row, Stage.USER_CONFIRMATION),
        admin_notification=_stage_state(row, Stage.ADMIN_NOTIFICATION),
        barcode=_stage_state(row, Stage.BARCODE),
        change_request=_stage_state(row, Stage.CHANGE_REQUEST),
        is_processing=row["is_processing"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _registration_from_row(row: Any) -> SourceRegistration:
    return SourceRegistration(
        id=row["id"],
        registration_no=row["registration_no"],
        name=row["name"],
        mobile=row["mobile"],
        village=row["village"],
        state=row["state"],
        position=row["position"],
        age=row["age"],
        gender=row["gender"],
        male_members=row["male_members"],
        female_members=row["female_members"],
        child_members=row["child_members"],
        total_members=row["total_members"],
        connected=row["connected"],
        message=row["message"],
        created_at=row["created_at"],
    )


def _str_tuple(value: object) -> tuple[str, ...]:
    if isinstance(value, str):
        value = json.loads(value)
    if not isinstance(value, list):
        return ()
    return tuple(str(item) for item in value if item)
