"""
Rule Store: slot capacity rules, blackout rules and the daily quota policy.

Every write is one transaction followed by an availability cache bump, so
readers see either the old rule or the new one, never a mix.
"""
import logging
from dataclasses import dataclass
from datetime import date, time

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from booking.core import config
from booking.core.cache import availability_cache
from booking.core.calendar import WEEKDAY_NAMES, business_day_slots, has_utc_offset, slot_end_time, weekday_name
from booking.core.errors import TIME_OFFSET_MESSAGE, BookingValidationError, NotFound, RuleConflict, StoreUnavailable
from booking.models.availability import BlackoutRule, SlotCapacityRule
from booking.models.settings import DailyQuotaPolicy, DailyQuotaPolicyChange

logger = logging.getLogger(__name__)

CAPACITY_MIN = 1
CAPACITY_MAX = 20
DAILY_LIMIT_MIN = 1
DAILY_LIMIT_MAX = 50
MAX_REASON_LENGTH = 255
MAX_DESCRIPTION_LENGTH = 500


@dataclass(frozen=True)
class QuotaSnapshot:
    """The quota policy as resolved for one admission decision."""
    limit: int
    is_active: bool


def _commit(db: Session, instance=None, conflict_message: str = 'A rule with these values already exists.'):
    try:
        db.commit()
        if instance is not None:
            db.refresh(instance)
    except IntegrityError as exc:
        db.rollback()
        raise RuleConflict(conflict_message) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Rule store write failed')
        raise StoreUnavailable() from exc

    availability_cache.bump()
    return instance


def _read(query_fn):
    try:
        return query_fn()
    except SQLAlchemyError as exc:
        logger.exception('Rule store read failed')
        raise StoreUnavailable() from exc


def normalize_weekday(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if not normalized:
        return None
    if normalized not in WEEKDAY_NAMES:
        raise BookingValidationError(f'Invalid day of week: {value}.')
    return normalized


def _normalize_description(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    if not normalized:
        return None
    if len(normalized) > MAX_DESCRIPTION_LENGTH:
        raise BookingValidationError(f'Description must be {MAX_DESCRIPTION_LENGTH} characters or fewer.')
    return normalized


# ---------------------------------------------------------------------------
# Slot capacity rules
# ---------------------------------------------------------------------------

def validate_capacity_rule(start_time: time, end_time: time, max_appointments_per_slot: int) -> None:
    if has_utc_offset(start_time) or has_utc_offset(end_time):
        raise BookingValidationError(TIME_OFFSET_MESSAGE)
    if end_time <= start_time:
        raise BookingValidationError('End time must be after start time.')
    if not CAPACITY_MIN <= max_appointments_per_slot <= CAPACITY_MAX:
        raise BookingValidationError(
            f'Capacity must be between {CAPACITY_MIN} and {CAPACITY_MAX} appointments per slot.'
        )


def list_capacity_rules(db: Session, is_active: bool | None = None, day_of_week: str | None = None) -> list[SlotCapacityRule]:
    day_of_week = normalize_weekday(day_of_week)

    def query():
        rules = db.query(SlotCapacityRule)
        if is_active is not None:
            rules = rules.filter(SlotCapacityRule.is_active.is_(is_active))
        if day_of_week is not None:
            rules = rules.filter(
                or_(SlotCapacityRule.day_of_week.is_(None), SlotCapacityRule.day_of_week == day_of_week)
            )
        return rules.order_by(SlotCapacityRule.start_time.asc(), SlotCapacityRule.id.asc()).all()

    return _read(query)


def get_capacity_rule(db: Session, rule_id: int) -> SlotCapacityRule:
    rule = _read(lambda: db.query(SlotCapacityRule).filter(SlotCapacityRule.id == rule_id).first())
    if rule is None:
        raise NotFound('Capacity rule not found.')
    return rule


def create_capacity_rule(
    db: Session,
    *,
    start_time: time,
    end_time: time,
    max_appointments_per_slot: int,
    day_of_week: str | None = None,
    is_active: bool = True,
    description: str | None = None,
) -> SlotCapacityRule:
    validate_capacity_rule(start_time, end_time, max_appointments_per_slot)
    rule = SlotCapacityRule(
        day_of_week=normalize_weekday(day_of_week),
        start_time=start_time,
        end_time=end_time,
        max_appointments_per_slot=max_appointments_per_slot,
        is_active=is_active,
        description=_normalize_description(description),
    )
    db.add(rule)
    _commit(db, rule, 'A capacity rule for this day and time range already exists.')
    logger.info(
        'Created capacity rule %s: %s %s-%s max %s',
        rule.id, rule.day_of_week or 'all days', rule.start_time, rule.end_time, rule.max_appointments_per_slot,
    )
    return rule


def update_capacity_rule(
    db: Session,
    rule_id: int,
    *,
    start_time: time,
    end_time: time,
    max_appointments_per_slot: int,
    day_of_week: str | None = None,
    is_active: bool = True,
    description: str | None = None,
) -> SlotCapacityRule:
    validate_capacity_rule(start_time, end_time, max_appointments_per_slot)
    rule = get_capacity_rule(db, rule_id)
    rule.day_of_week = normalize_weekday(day_of_week)
    rule.start_time = start_time
    rule.end_time = end_time
    rule.max_appointments_per_slot = max_appointments_per_slot
    rule.is_active = is_active
    rule.description = _normalize_description(description)
    _commit(db, rule, 'A capacity rule for this day and time range already exists.')
    logger.info('Updated capacity rule %s', rule.id)
    return rule


def delete_capacity_rule(db: Session, rule_id: int) -> None:
    rule = get_capacity_rule(db, rule_id)
    db.delete(rule)
    _commit(db)
    logger.info('Deleted capacity rule %s', rule_id)


def apply_capacity_to_all_slots(db: Session, max_appointments_per_slot: int) -> tuple[int, int]:
    """Upsert an every-day rule for each business slot. Returns (created, updated)."""
    if not CAPACITY_MIN <= max_appointments_per_slot <= CAPACITY_MAX:
        raise BookingValidationError(
            f'Capacity must be between {CAPACITY_MIN} and {CAPACITY_MAX} appointments per slot.'
        )

    existing = {
        (rule.start_time, rule.end_time): rule
        for rule in _read(lambda: db.query(SlotCapacityRule).filter(SlotCapacityRule.day_of_week.is_(None)).all())
    }
    created = 0
    updated = 0

    for slot_start in business_day_slots():
        slot_end = slot_end_time(slot_start)
        rule = existing.get((slot_start, slot_end))
        if rule is not None:
            rule.max_appointments_per_slot = max_appointments_per_slot
            updated += 1
        else:
            db.add(
                SlotCapacityRule(
                    day_of_week=None,
                    start_time=slot_start,
                    end_time=slot_end,
                    max_appointments_per_slot=max_appointments_per_slot,
                    is_active=True,
                )
            )
            created += 1

    _commit(db)
    logger.info('Applied capacity %s to all slots (created %s, updated %s)', max_appointments_per_slot, created, updated)
    return created, updated


def load_capacity_rules_for_day(db: Session, day: date) -> list[SlotCapacityRule]:
    return list_capacity_rules(db, is_active=True, day_of_week=weekday_name(day))


def resolve_capacity(rules: list[SlotCapacityRule], day_name: str, slot_time: time) -> tuple[int, SlotCapacityRule | None]:
    """Effective capacity for a slot: weekday-scoped rule > every-day rule > configured fallback."""
    matching = [
        rule for rule in rules
        if rule.is_active
        and rule.day_of_week in (None, day_name)
        and rule.start_time <= slot_time < rule.end_time
    ]
    if not matching:
        return config.DEFAULT_SLOT_CAPACITY, None

    matching.sort(key=lambda rule: (rule.day_of_week is None, _descending(rule.start_time), rule.id or 0))
    best = matching[0]
    return best.max_appointments_per_slot, best


def _descending(value: time) -> int:
    return -(value.hour * 3600 + value.minute * 60 + value.second)


def get_slot_capacity(db: Session, day: date, slot_time: time) -> int:
    capacity, _ = resolve_capacity(load_capacity_rules_for_day(db, day), weekday_name(day), slot_time)
    return capacity


# ---------------------------------------------------------------------------
# Blackout rules
# ---------------------------------------------------------------------------

def validate_blackout_rule(
    *,
    date_value: date | None,
    reason: str,
    start_time: time | None,
    end_time: time | None,
    is_recurring: bool,
    recurring_days: list[str] | None,
) -> tuple[str, list[str] | None]:
    normalized_reason = (reason or '').strip()
    if not normalized_reason:
        raise BookingValidationError('A blackout reason is required.')
    if len(normalized_reason) > MAX_REASON_LENGTH:
        raise BookingValidationError(f'Reason must be {MAX_REASON_LENGTH} characters or fewer.')

    if (start_time is None) != (end_time is None):
        raise BookingValidationError('Provide both start and end time, or neither to block the whole day.')
    if start_time is not None and (has_utc_offset(start_time) or has_utc_offset(end_time)):
        raise BookingValidationError(TIME_OFFSET_MESSAGE)
    if start_time is not None and end_time <= start_time:
        raise BookingValidationError('End time must be after start time.')

    normalized_days = None
    if is_recurring:
        normalized_days = sorted(
            {normalize_weekday(day) for day in (recurring_days or []) if day and day.strip()},
            key=WEEKDAY_NAMES.index,
        )
        if not normalized_days:
            raise BookingValidationError('Recurring blackouts need at least one weekday.')
    elif date_value is None:
        raise BookingValidationError('A blackout needs a date unless it is recurring.')

    return normalized_reason, normalized_days


def rule_applies_to(rule: BlackoutRule, day: date) -> bool:
    if rule.is_recurring:
        return weekday_name(day) in (rule.recurring_days or [])
    return rule.date == day


def list_blackout_rules(
    db: Session,
    start_date: date | None = None,
    end_date: date | None = None,
    reason: str | None = None,
) -> list[BlackoutRule]:
    def query():
        rules = db.query(BlackoutRule)
        if start_date is not None and end_date is not None:
            rules = rules.filter(
                or_(
                    BlackoutRule.is_recurring.is_(True),
                    BlackoutRule.date.between(start_date, end_date),
                )
            )
        if reason:
            rules = rules.filter(BlackoutRule.reason.ilike(f'%{reason.strip()}%'))
        return rules.order_by(BlackoutRule.date.asc(), BlackoutRule.id.asc()).all()

    return _read(query)


def blackout_rules_for_date(db: Session, day: date) -> list[BlackoutRule]:
    candidates = _read(
        lambda: db.query(BlackoutRule).filter(
            or_(BlackoutRule.is_recurring.is_(True), BlackoutRule.date == day)
        ).order_by(BlackoutRule.id.asc()).all()
    )
    return [rule for rule in candidates if rule_applies_to(rule, day)]


def get_blackout_rule(db: Session, rule_id: int) -> BlackoutRule:
    rule = _read(lambda: db.query(BlackoutRule).filter(BlackoutRule.id == rule_id).first())
    if rule is None:
        raise NotFound('Blackout rule not found.')
    return rule


def create_blackout_rule(
    db: Session,
    *,
    reason: str,
    date_value: date | None = None,
    start_time: time | None = None,
    end_time: time | None = None,
    is_recurring: bool = False,
    recurring_days: list[str] | None = None,
) -> BlackoutRule:
    normalized_reason, normalized_days = validate_blackout_rule(
        date_value=date_value,
        reason=reason,
        start_time=start_time,
        end_time=end_time,
        is_recurring=is_recurring,
        recurring_days=recurring_days,
    )
    rule = BlackoutRule(
        date=None if is_recurring else date_value,
        reason=normalized_reason,
        start_time=start_time,
        end_time=end_time,
        is_recurring=is_recurring,
        recurring_days=normalized_days,
    )
    db.add(rule)
    _commit(db, rule)
    logger.info('Created blackout rule %s (%s)', rule.id, rule.reason)
    return rule


def update_blackout_rule(
    db: Session,
    rule_id: int,
    *,
    reason: str,
    date_value: date | None = None,
    start_time: time | None = None,
    end_time: time | None = None,
    is_recurring: bool = False,
    recurring_days: list[str] | None = None,
) -> BlackoutRule:
    normalized_reason, normalized_days = validate_blackout_rule(
        date_value=date_value,
        reason=reason,
        start_time=start_time,
        end_time=end_time,
        is_recurring=is_recurring,
        recurring_days=recurring_days,
    )
    rule = get_blackout_rule(db, rule_id)
    rule.date = None if is_recurring else date_value
    rule.reason = normalized_reason
    rule.start_time = start_time
    rule.end_time = end_time
    rule.is_recurring = is_recurring
    rule.recurring_days = normalized_days
    _commit(db, rule)
    logger.info('Updated blackout rule %s', rule.id)
    return rule


def delete_blackout_rule(db: Session, rule_id: int) -> None:
    rule = get_blackout_rule(db, rule_id)
    db.delete(rule)
    _commit(db)
    logger.info('Deleted blackout rule %s', rule_id)


# ---------------------------------------------------------------------------
# Daily quota policy
# ---------------------------------------------------------------------------

def get_current_policy(db: Session) -> DailyQuotaPolicy:
    policy = _read(lambda: db.query(DailyQuotaPolicy).order_by(DailyQuotaPolicy.id.asc()).first())
    if policy is not None:
        return policy

    policy = DailyQuotaPolicy(
        daily_booking_limit_per_user=config.DEFAULT_DAILY_LIMIT,
        is_active=True,
        description='Default appointment settings',
    )
    db.add(policy)
    _commit(db, policy)
    logger.info('Created default quota policy (limit %s)', policy.daily_booking_limit_per_user)
    return policy


def snapshot(policy: DailyQuotaPolicy) -> QuotaSnapshot:
    return QuotaSnapshot(limit=policy.daily_booking_limit_per_user, is_active=bool(policy.is_active))


def get_quota_snapshot(db: Session) -> QuotaSnapshot:
    return snapshot(get_current_policy(db))


def update_policy(
    db: Session,
    *,
    daily_booking_limit_per_user: int,
    is_active: bool = True,
    description: str | None = None,
    updated_by: int | None = None,
) -> DailyQuotaPolicy:
    if not DAILY_LIMIT_MIN <= daily_booking_limit_per_user <= DAILY_LIMIT_MAX:
        raise BookingValidationError(
            f'Daily booking limit must be between {DAILY_LIMIT_MIN} and {DAILY_LIMIT_MAX}.'
        )

    policy = get_current_policy(db)
    old_limit = policy.daily_booking_limit_per_user
    normalized_description = _normalize_description(description)

    policy.daily_booking_limit_per_user = daily_booking_limit_per_user
    policy.is_active = is_active
    policy.description = normalized_description
    policy.last_updated_by = updated_by
    db.add(
        DailyQuotaPolicyChange(
            policy_id=policy.id,
            old_limit=old_limit,
            new_limit=daily_booking_limit_per_user,
            is_active=is_active,
            description=normalized_description,
            changed_by=updated_by,
        )
    )
    _commit(db, policy)
    logger.info(
        'Quota policy changed from %s to %s (active=%s) by user %s',
        old_limit, daily_booking_limit_per_user, is_active, updated_by,
    )
    return policy


def list_policy_history(db: Session, limit: int = 50) -> list[DailyQuotaPolicyChange]:
    return _read(
        lambda: db.query(DailyQuotaPolicyChange)
        .order_by(DailyQuotaPolicyChange.changed_at.desc(), DailyQuotaPolicyChange.id.desc())
        .limit(limit)
        .all()
    )
