"""
Admission Control Engine.

Decides whether a booking request may be accepted and, if so, records it as a
pending appointment. Checks run in a fixed order so the first failing rule is
always the one reported:

    blackout -> slot occupied -> daily quota -> commit

Everything after the blackout check runs while the request holds both of its
serialization keys (the slot, and the user's day): the in-process keyed mutex
plus the matching ``admission_locks`` rows locked FOR UPDATE. Occupancy is only
ever counted from the ledger while those keys are held, so two requests for the
same slot or the same user/day behave as if processed one at a time.

The quota policy is passed in by the caller as a QuotaSnapshot.
"""
import logging
from dataclasses import dataclass, replace
from datetime import date, time
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking.core.cache import availability_cache
from booking.core.calendar import format_slot_time, has_utc_offset, is_on_slot_boundary, is_within_business_hours
from booking.core.errors import TIME_OFFSET_MESSAGE, BookingError, BookingValidationError, StoreUnavailable
from booking.core.locks import admission_locks
from booking.models.appointment import Appointment
from booking.services import availability, collaborators, ledger, rule_store
from booking.services.rule_store import QuotaSnapshot

logger = logging.getLogger(__name__)

MAX_NOTES_LENGTH = 600
MAX_TYPE_LENGTH = 50


class RejectionReason(str, Enum):
    BLACKOUT = 'blackout'
    QUOTA_EXCEEDED = 'quota_exceeded'
    CAPACITY_EXCEEDED = 'capacity_exceeded'


@dataclass(frozen=True)
class AdmissionRequest:
    user_id: int
    appointment_date: date
    appointment_time: time
    appointment_type: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class Admitted:
    record: Appointment


@dataclass(frozen=True)
class Rejected:
    reason: RejectionReason
    message: str
    retry_after: date | None = None


def _normalize_optional(value: str | None, max_length: int, label: str) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    if not normalized:
        return None
    if len(normalized) > max_length:
        raise BookingValidationError(f'{label} must be {max_length} characters or fewer.')
    return normalized


def validate_request(db: Session, request: AdmissionRequest) -> AdmissionRequest:
    if request.appointment_date < date.today():
        raise BookingValidationError('Appointments cannot be booked for a date in the past.')
    if has_utc_offset(request.appointment_time):
        raise BookingValidationError(TIME_OFFSET_MESSAGE)
    if not is_on_slot_boundary(request.appointment_time):
        raise BookingValidationError('Appointment times must be on 30-minute boundaries.')
    if not is_within_business_hours(request.appointment_time):
        raise BookingValidationError('Appointments can only be booked between 8:00 AM and 5:00 PM.')

    try:
        known_user = collaborators.user_exists(db, request.user_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreUnavailable() from exc
    if not known_user:
        raise BookingValidationError('User not found.')

    appointment_type = _normalize_optional(request.appointment_type, MAX_TYPE_LENGTH, 'Appointment type')
    return replace(
        request,
        appointment_type=appointment_type.lower() if appointment_type else None,
        notes=_normalize_optional(request.notes, MAX_NOTES_LENGTH, 'Notes'),
    )


def _check_under_lock(db: Session, request: AdmissionRequest, policy: QuotaSnapshot) -> Rejected | None:
    slot_date = request.appointment_date
    slot_time = request.appointment_time

    if ledger.user_has_active_at_slot(db, request.user_id, slot_date, slot_time):
        return Rejected(RejectionReason.CAPACITY_EXCEEDED, 'You already have an appointment at this time.')

    capacity = rule_store.get_slot_capacity(db, slot_date, slot_time)
    booked = ledger.count_active_at_slot(db, slot_date, slot_time)
    if booked >= capacity:
        return Rejected(
            RejectionReason.CAPACITY_EXCEEDED,
            f'This time slot is fully booked ({booked} of {capacity}).',
        )

    if policy.is_active:
        used = ledger.count_user_active_on_date(db, request.user_id, slot_date)
        if used >= policy.limit:
            return Rejected(
                RejectionReason.QUOTA_EXCEEDED,
                f'Daily booking limit reached ({used} of {policy.limit} appointments on {slot_date.isoformat()}).',
            )

    return None


def try_admit(db: Session, request: AdmissionRequest, policy: QuotaSnapshot) -> Admitted | Rejected:
    """Admit or reject one booking request. Raises BookingValidationError or StoreUnavailable."""
    request = validate_request(db, request)
    slot_date = request.appointment_date
    slot_time = request.appointment_time

    blocked = availability.blocked_reason_for(db, slot_date, slot_time)
    if blocked is not None:
        return _log_rejection(request, Rejected(RejectionReason.BLACKOUT, f'Date/time unavailable: {blocked}.'))

    keys = [ledger.slot_lock_key(slot_date, slot_time), ledger.user_day_lock_key(request.user_id, slot_date)]
    try:
        ledger.ensure_lock_rows(db, keys)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Could not prepare admission locks %s', keys)
        raise StoreUnavailable() from exc

    with admission_locks.hold(*keys):
        try:
            ledger.lock_admission_keys(db, keys)
            rejection = _check_under_lock(db, request, policy)
            if rejection is not None:
                db.rollback()
            else:
                record = ledger.add_pending(
                    db,
                    user_id=request.user_id,
                    slot_date=slot_date,
                    slot_time=slot_time,
                    appointment_type=request.appointment_type,
                    notes=request.notes,
                )
                db.commit()
                db.refresh(record)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception('Admission failed for user %s at %s %s', request.user_id, slot_date, slot_time)
            raise StoreUnavailable() from exc
        except BookingError:
            db.rollback()
            raise

    if rejection is not None:
        if rejection.reason == RejectionReason.QUOTA_EXCEEDED:
            rejection = replace(rejection, retry_after=availability.next_bookable_date(db, slot_date))
        return _log_rejection(request, rejection)

    availability_cache.bump()
    logger.info(
        'Admitted appointment %s for user %s at %s %s',
        record.id, record.user_id, slot_date.isoformat(), format_slot_time(slot_time),
    )
    collaborators.notify('appointment.admitted', record)
    collaborators.audit('admit', request.user_id, record)
    return Admitted(record)


def _log_rejection(request: AdmissionRequest, rejection: Rejected) -> Rejected:
    logger.info(
        'Rejected booking for user %s at %s %s: %s',
        request.user_id,
        request.appointment_date.isoformat(),
        format_slot_time(request.appointment_time),
        rejection.reason.value,
    )
    return rejection


def get_user_daily_limit_status(db: Session, user_id: int, day: date, policy: QuotaSnapshot) -> dict:
    """How many more bookings `user_id` may make on `day`, and when they may book again."""
    try:
        bookings = ledger.list_user_active_on_date(db, user_id, day)
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreUnavailable() from exc

    used = len(bookings)
    if not policy.is_active:
        return {
            'limit': policy.limit,
            'is_active': False,
            'used': used,
            'remaining': None,
            'has_reached_limit': False,
            'next_available_date': None,
            'bookings': bookings,
        }

    has_reached_limit = used >= policy.limit
    return {
        'limit': policy.limit,
        'is_active': True,
        'used': used,
        'remaining': max(0, policy.limit - used),
        'has_reached_limit': has_reached_limit,
        'next_available_date': availability.next_bookable_date(db, day) if has_reached_limit else None,
        'bookings': bookings,
    }
