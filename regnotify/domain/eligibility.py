from __future__ import annotations

from datetime import datetime, timedelta

from regnotify.domain.models import Stage, TrackingRecord
from regnotify.domain.stages import STAGE_POLICIES, STALE_LOCK_AFTER


def is_eligible(*, stage: Stage, record: TrackingRecord, now: datetime) -> bool:
    """Python twin of the select_pending_*.sql predicates.

    The in-memory repository selects with this function; the Postgres
    repository evaluates the same conditions in SQL against NOW().
    """
    policy = STAGE_POLICIES[stage]
    state = record.stage_state(stage)
    if state.sent:
        return False
    if state.retry_count >= policy.max_attempts:
        return False
    if state.last_attempt is not None and now - state.last_attempt <= policy.cooldown:
        return False
    if policy.uses_lock and record.is_processing:
        return False

    if policy.after_confirmation is not None:
        confirmation = record.user_confirmation
        if not confirmation.sent or confirmation.sent_at is None:
            return False
        if now - confirmation.sent_at < policy.after_confirmation:
            return False
    return True


def is_permanently_failed(*, stage: Stage, record: TrackingRecord) -> bool:
    state = record.stage_state(stage)
    return not state.sent and state.retry_count >= STAGE_POLICIES[stage].max_attempts


def is_lock_stale(*, record: TrackingRecord, now: datetime, stale_after: timedelta = STALE_LOCK_AFTER) -> bool:
    if not record.is_processing or record.updated_at is None:
        return False
    return now - record.updated_at > stale_after
