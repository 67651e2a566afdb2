"""
Availability Calculator: which slots of a day are open, and how full each one is.

All reads; safe to call concurrently. Results are served through the revision
cache and may trail a concurrent write slightly, which is fine because admission
re-validates under lock.
"""
import logging
from dataclasses import dataclass
from datetime import date, time, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking.core.cache import availability_cache
from booking.core.calendar import (
    business_day_slots,
    format_slot_time,
    has_utc_offset,
    is_lunch_break_slot,
    is_weekend,
    weekday_name,
)
from booking.core.errors import TIME_OFFSET_MESSAGE, BookingValidationError, StoreUnavailable
from booking.models.availability import BlackoutRule
from booking.services import ledger, rule_store

logger = logging.getLogger(__name__)

WEEKEND_REASON = 'weekend'
LUNCH_REASON = 'lunch break'
MAX_RANGE_DAYS = 366
MAX_DAYS_AHEAD = 60
NEXT_BOOKABLE_HORIZON_DAYS = 60


@dataclass(frozen=True)
class SlotAvailability:
    time: time
    booked: int
    capacity: int

    @property
    def remaining(self) -> int:
        return max(0, self.capacity - self.booked)


@dataclass(frozen=True)
class DayAvailability:
    date: date
    slots: tuple[SlotAvailability, ...]
    blocked_reason: str | None = None


def whole_day_blackout(rules: list[BlackoutRule]) -> BlackoutRule | None:
    for rule in rules:
        if rule.blocks_entire_day:
            return rule
    return None


def blackout_covering(rules: list[BlackoutRule], slot_time: time) -> BlackoutRule | None:
    for rule in rules:
        if rule.blocks_entire_day or rule.start_time <= slot_time < rule.end_time:
            return rule
    return None


def blocked_reason_for(db: Session, slot_date: date, slot_time: time | None = None) -> str | None:
    """Why a date (or one slot of it) is closed, or None when it is open."""
    if is_weekend(slot_date):
        return WEEKEND_REASON

    rules = rule_store.blackout_rules_for_date(db, slot_date)
    whole_day = whole_day_blackout(rules)
    if whole_day is not None:
        return whole_day.reason

    if slot_time is None:
        return None
    if is_lunch_break_slot(slot_time):
        return LUNCH_REASON

    covering = blackout_covering(rules, slot_time)
    return covering.reason if covering is not None else None


def compute_available_slots(db: Session, slot_date: date) -> DayAvailability:
    if is_weekend(slot_date):
        return DayAvailability(date=slot_date, slots=(), blocked_reason=WEEKEND_REASON)

    blackout_rules = rule_store.blackout_rules_for_date(db, slot_date)
    whole_day = whole_day_blackout(blackout_rules)
    if whole_day is not None:
        return DayAvailability(date=slot_date, slots=(), blocked_reason=whole_day.reason)

    capacity_rules = rule_store.load_capacity_rules_for_day(db, slot_date)
    booked_by_time = ledger.count_active_by_time(db, slot_date)
    day_name = weekday_name(slot_date)

    slots: list[SlotAvailability] = []
    for slot_time in business_day_slots():
        if blackout_covering(blackout_rules, slot_time) is not None:
            continue

        capacity, _ = rule_store.resolve_capacity(capacity_rules, day_name, slot_time)
        booked = booked_by_time.get(slot_time, 0)
        if booked < capacity:
            slots.append(SlotAvailability(time=slot_time, booked=booked, capacity=capacity))

    return DayAvailability(date=slot_date, slots=tuple(slots))


def get_available_slots(db: Session, slot_date: date) -> DayAvailability:
    try:
        return availability_cache.get_or_compute(
            ('slots', slot_date),
            lambda: compute_available_slots(db, slot_date),
        )
    except SQLAlchemyError as exc:
        logger.exception('Availability lookup failed for %s', slot_date)
        raise StoreUnavailable() from exc


def next_bookable_date(db: Session, after: date, horizon_days: int = NEXT_BOOKABLE_HORIZON_DAYS) -> date | None:
    """First weekday after `after` that is not closed for the whole day."""
    for offset in range(1, horizon_days + 1):
        candidate = after + timedelta(days=offset)
        if blocked_reason_for(db, candidate) is None:
            return candidate
    return None


def get_unavailable_dates(db: Session, start_date: date, end_date: date) -> list[dict]:
    if end_date < start_date:
        raise BookingValidationError('End date must be on or after start date.')
    if (end_date - start_date).days >= MAX_RANGE_DAYS:
        raise BookingValidationError(f'Date range must be {MAX_RANGE_DAYS} days or fewer.')

    try:
        rules = rule_store.list_blackout_rules(db, start_date=start_date, end_date=end_date)
    except SQLAlchemyError as exc:
        raise StoreUnavailable() from exc

    unavailable: list[dict] = []
    current = start_date
    while current <= end_date:
        if is_weekend(current):
            unavailable.append({
                'date': current,
                'reason': f'{weekday_name(current).capitalize()} - Closed',
                'type': WEEKEND_REASON,
                'time_range': None,
                'recurring': False,
            })
        else:
            for rule in rules:
                if not rule_store.rule_applies_to(rule, current):
                    continue
                time_range = None
                if not rule.blocks_entire_day:
                    time_range = f'{format_slot_time(rule.start_time)} - {format_slot_time(rule.end_time)}'
                unavailable.append({
                    'date': current,
                    'reason': rule.reason,
                    'type': 'blackout',
                    'time_range': time_range,
                    'recurring': bool(rule.is_recurring),
                })
        current += timedelta(days=1)

    return unavailable


def suggest_alternatives(db: Session, preferred_date: date, days_ahead: int = 14, limit: int = 3) -> list[dict]:
    """Open business days from preferred_date onward, with their first open times."""
    if not 1 <= days_ahead <= MAX_DAYS_AHEAD:
        raise BookingValidationError(f'days_ahead must be between 1 and {MAX_DAYS_AHEAD}.')

    alternatives: list[dict] = []
    for offset in range(days_ahead):
        if len(alternatives) >= limit:
            break

        candidate = preferred_date + timedelta(days=offset)
        if is_weekend(candidate):
            continue

        day = get_available_slots(db, candidate)
        if not day.slots:
            continue

        alternatives.append({
            'date': candidate,
            'day_name': weekday_name(candidate).capitalize(),
            'available_times': [slot.time for slot in day.slots[:2]],
            'available_slots': len(day.slots),
            'first_available_time': day.slots[0].time,
        })

    return alternatives


def get_capacity_summary(db: Session, slot_date: date, slot_time: time) -> dict:
    if has_utc_offset(slot_time):
        raise BookingValidationError(TIME_OFFSET_MESSAGE)
    try:
        rules = rule_store.load_capacity_rules_for_day(db, slot_date)
    except SQLAlchemyError as exc:
        raise StoreUnavailable() from exc

    day_name = weekday_name(slot_date)
    capacity, rule = rule_store.resolve_capacity(rules, day_name, slot_time)
    return {
        'date': slot_date,
        'time': slot_time,
        'day_of_week': day_name,
        'capacity': capacity,
        'rule_id': rule.id if rule is not None else None,
    }
