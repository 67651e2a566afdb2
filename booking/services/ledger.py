"""
Booking Ledger: the appointments table as the single source of truth for occupancy.

Only pending/approved records are counted. Functions here raise SQLAlchemyError
unchanged; the calling service decides how a store failure surfaces.
"""
from datetime import date, time

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from booking.core.calendar import format_slot_time
from booking.models.admission_lock import AdmissionLock
from booking.models.appointment import ACTIVE_STATUSES, STATUS_PENDING, Appointment


def slot_lock_key(slot_date: date, slot_time: time) -> str:
    return f'slot:{slot_date.isoformat()}T{format_slot_time(slot_time)}'


def user_day_lock_key(user_id: int, slot_date: date) -> str:
    return f'user:{user_id}:{slot_date.isoformat()}'


def ensure_lock_rows(db: Session, keys: list[str]) -> None:
    """Create missing key rows, each in its own short transaction; losing an insert race is fine."""
    existing = {
        lock_key for (lock_key,) in db.query(AdmissionLock.lock_key).filter(AdmissionLock.lock_key.in_(keys)).all()
    }
    db.rollback()

    for key in sorted(set(keys) - existing):
        db.add(AdmissionLock(lock_key=key))
        try:
            db.commit()
        except IntegrityError:
            db.rollback()


def lock_admission_keys(db: Session, keys: list[str]) -> list[AdmissionLock]:
    """Row-lock the key rows in sorted order for the rest of the current transaction."""
    return (
        db.query(AdmissionLock)
        .filter(AdmissionLock.lock_key.in_(keys))
        .order_by(AdmissionLock.lock_key.asc())
        .with_for_update()
        .all()
    )


def count_active_at_slot(db: Session, slot_date: date, slot_time: time) -> int:
    return db.query(func.count(Appointment.id)).filter(
        Appointment.appointment_date == slot_date,
        Appointment.appointment_time == slot_time,
        Appointment.status.in_(ACTIVE_STATUSES),
    ).scalar() or 0


def count_active_by_time(db: Session, slot_date: date) -> dict[time, int]:
    rows = db.query(Appointment.appointment_time, func.count(Appointment.id)).filter(
        Appointment.appointment_date == slot_date,
        Appointment.status.in_(ACTIVE_STATUSES),
    ).group_by(Appointment.appointment_time).all()
    return {slot_time: count for slot_time, count in rows}


def count_user_active_on_date(db: Session, user_id: int, slot_date: date) -> int:
    return db.query(func.count(Appointment.id)).filter(
        Appointment.user_id == user_id,
        Appointment.appointment_date == slot_date,
        Appointment.status.in_(ACTIVE_STATUSES),
    ).scalar() or 0


def user_has_active_at_slot(db: Session, user_id: int, slot_date: date, slot_time: time) -> bool:
    return db.query(Appointment.id).filter(
        Appointment.user_id == user_id,
        Appointment.appointment_date == slot_date,
        Appointment.appointment_time == slot_time,
        Appointment.status.in_(ACTIVE_STATUSES),
    ).first() is not None


def list_user_active_on_date(db: Session, user_id: int, slot_date: date) -> list[Appointment]:
    return db.query(Appointment).filter(
        Appointment.user_id == user_id,
        Appointment.appointment_date == slot_date,
        Appointment.status.in_(ACTIVE_STATUSES),
    ).order_by(Appointment.appointment_time.asc()).all()


def list_user_appointments(db: Session, user_id: int) -> list[Appointment]:
    return db.query(Appointment).filter(
        Appointment.user_id == user_id,
    ).order_by(Appointment.appointment_date.desc(), Appointment.appointment_time.desc()).all()


def get_appointment(db: Session, appointment_id: int, for_update: bool = False) -> Appointment | None:
    query = db.query(Appointment).filter(Appointment.id == appointment_id)
    if for_update:
        query = query.with_for_update()
    return query.first()


def add_pending(
    db: Session,
    *,
    user_id: int,
    slot_date: date,
    slot_time: time,
    appointment_type: str | None = None,
    notes: str | None = None,
) -> Appointment:
    appointment = Appointment(
        user_id=user_id,
        appointment_date=slot_date,
        appointment_time=slot_time,
        appointment_type=appointment_type,
        notes=notes,
        status=STATUS_PENDING,
    )
    db.add(appointment)
    db.flush()
    return appointment
