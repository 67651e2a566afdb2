"""
Appointment Lifecycle State Machine.

    pending --approve--> approved --complete--> completed
    pending/approved --decline--> declined
    pending/approved --cancel--> cancelled

completed, declined and cancelled are terminal. `complete` is only accepted from
approved; a pending appointment has to be approved first.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking.core.cache import availability_cache
from booking.core.errors import (
    BookingError,
    BookingValidationError,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    StoreUnavailable,
)
from booking.models.appointment import (
    ACTIVE_STATUSES,
    STATUS_APPROVED,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_DECLINED,
    STATUS_PENDING,
    Appointment,
)
from booking.models.user import User
from booking.services import collaborators, ledger

logger = logging.getLogger(__name__)

ACTION_APPROVE = 'approve'
ACTION_DECLINE = 'decline'
ACTION_COMPLETE = 'complete'
ACTION_CANCEL = collaborators.ACTION_CANCEL

MAX_REASON_LENGTH = 500


@dataclass(frozen=True)
class Transition:
    sources: tuple[str, ...]
    target: str
    event: str


TRANSITIONS = {
    ACTION_APPROVE: Transition((STATUS_PENDING,), STATUS_APPROVED, 'appointment.approved'),
    ACTION_DECLINE: Transition(ACTIVE_STATUSES, STATUS_DECLINED, 'appointment.declined'),
    ACTION_COMPLETE: Transition((STATUS_APPROVED,), STATUS_COMPLETED, 'appointment.completed'),
    ACTION_CANCEL: Transition(ACTIVE_STATUSES, STATUS_CANCELLED, 'appointment.cancelled'),
}


def allowed_actions(status: str) -> list[str]:
    return [action for action, rule in TRANSITIONS.items() if status in rule.sources]


def _normalize_reason(reason: str | None) -> str | None:
    if reason is None:
        return None
    normalized = reason.strip()
    if not normalized:
        return None
    if len(normalized) > MAX_REASON_LENGTH:
        raise BookingValidationError(f'Reason must be {MAX_REASON_LENGTH} characters or fewer.')
    return normalized


def _apply(appointment: Appointment, action: str, actor: User, reason: str | None) -> None:
    appointment.status = TRANSITIONS[action].target

    if action == ACTION_APPROVE:
        if appointment.staff_id is None:
            appointment.staff_id = actor.id
    elif action == ACTION_DECLINE:
        appointment.decline_reason = reason
    elif action == ACTION_CANCEL:
        appointment.cancel_reason = reason
    elif action == ACTION_COMPLETE:
        appointment.completed_at = datetime.now(timezone.utc)
        appointment.completed_by = actor.id
        appointment.completion_notes = reason


def _load_for_update(db: Session, appointment_id: int) -> Appointment:
    appointment = ledger.get_appointment(db, appointment_id, for_update=True)
    if appointment is None:
        raise NotFound('Appointment not found.')
    return appointment


def transition(
    db: Session,
    appointment_id: int,
    action: str,
    actor: User,
    reason: str | None = None,
) -> Appointment:
    """Apply one lifecycle action. Nothing is written unless the whole transition succeeds."""
    rule = TRANSITIONS.get(action)
    if rule is None:
        raise BookingValidationError(f'Unknown appointment action: {action}.')
    reason = _normalize_reason(reason)

    try:
        appointment = _load_for_update(db, appointment_id)
        if not collaborators.is_authorized(actor, action, appointment):
            raise PermissionDenied(f'You are not allowed to {action} this appointment.')
        if appointment.status not in rule.sources:
            raise InvalidTransition(action, appointment.status)

        previous_status = appointment.status
        _apply(appointment, action, actor, reason)
        db.commit()
        db.refresh(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Could not %s appointment %s', action, appointment_id)
        raise StoreUnavailable() from exc
    except BookingError:
        db.rollback()
        raise

    # Leaving an active status frees quota and capacity.
    availability_cache.bump()
    logger.info(
        'Appointment %s %s -> %s by user %s',
        appointment.id, previous_status, appointment.status, actor.id,
    )
    collaborators.notify(rule.event, appointment)
    collaborators.audit(action, actor.id, appointment)
    return appointment


def assign_staff(db: Session, appointment_id: int, staff_id: int, actor: User) -> Appointment:
    if not collaborators.is_staff(actor):
        raise PermissionDenied('Only staff or admins can assign appointments.')

    try:
        staff_member = collaborators.get_user(db, staff_id)
        if not collaborators.is_staff(staff_member) or not staff_member.is_active:
            raise BookingValidationError('Assigned user must be an active staff member or admin.')

        appointment = _load_for_update(db, appointment_id)
        if not appointment.is_active:
            raise InvalidTransition('assign staff to', appointment.status)

        appointment.staff_id = staff_member.id
        db.commit()
        db.refresh(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Could not assign staff %s to appointment %s', staff_id, appointment_id)
        raise StoreUnavailable() from exc
    except BookingError:
        db.rollback()
        raise

    logger.info('Appointment %s assigned to staff %s by user %s', appointment.id, staff_id, actor.id)
    collaborators.notify('appointment.staff_assigned', appointment)
    collaborators.audit('assign_staff', actor.id, appointment)
    return appointment
