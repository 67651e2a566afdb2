"""
Collaborators consumed by the booking core: user directory, authorization,
notification dispatch and audit log.

Notifications and audit entries are fire-and-forget. They run on a small thread
pool, receive plain dict payloads (never ORM instances, whose session is gone by
then), and log their own failures.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from threading import Lock
from typing import Any, Callable

import httpx
from sqlalchemy.orm import Session

from booking.core import config
from booking.core.calendar import format_slot_time
from booking.models.appointment import Appointment
from booking.models.user import ROLE_ADMIN, STAFF_ROLES, User

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger('booking.audit')

ACTION_CANCEL = 'cancel'

_executor: ThreadPoolExecutor | None = None
_executor_lock = Lock()


def get_user(db: Session, user_id: int) -> User | None:
    return db.query(User).filter(User.id == user_id).first()


def user_exists(db: Session, user_id: int) -> bool:
    user = get_user(db, user_id)
    return user is not None and bool(user.is_active)


def is_staff(user: User | None) -> bool:
    return user is not None and user.role in STAFF_ROLES


def is_admin(user: User | None) -> bool:
    return user is not None and user.role == ROLE_ADMIN


def is_authorized(actor: User, action: str, appointment: Appointment) -> bool:
    """Owners and admins may cancel; every other lifecycle action needs staff or admin."""
    if action == ACTION_CANCEL:
        return is_admin(actor) or actor.id == appointment.user_id
    return is_staff(actor)


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix='booking_dispatch')
        return _executor


def shutdown_background_tasks() -> None:
    global _executor
    with _executor_lock:
        if _executor is not None:
            _executor.shutdown(wait=True)
            _executor = None


def fire_and_forget(task: Callable[..., Any], *args: Any) -> None:
    name = getattr(task, '__name__', repr(task))

    def run() -> None:
        try:
            task(*args)
        except Exception:
            logger.exception('Background task %s failed', name)

    if config.BACKGROUND_TASKS_INLINE:
        run()
        return

    try:
        _get_executor().submit(run)
    except RuntimeError:
        logger.exception('Could not schedule background task %s', name)


def appointment_payload(appointment: Appointment) -> dict[str, Any]:
    return {
        'id': appointment.id,
        'user_id': appointment.user_id,
        'staff_id': appointment.staff_id,
        'appointment_type': appointment.appointment_type,
        'appointment_date': appointment.appointment_date.isoformat(),
        'appointment_time': format_slot_time(appointment.appointment_time),
        'status': appointment.status,
        'decline_reason': appointment.decline_reason,
        'cancel_reason': appointment.cancel_reason,
    }


def send_notification(event: str, payload: dict[str, Any]) -> None:
    if not config.NOTIFICATION_WEBHOOK_URL:
        logger.info('Notification %s for appointment %s (no webhook configured)', event, payload.get('id'))
        return

    response = httpx.post(
        config.NOTIFICATION_WEBHOOK_URL,
        json={'type': event, 'payload': payload},
        timeout=config.NOTIFICATION_TIMEOUT_SECONDS,
    )
    response.raise_for_status()
    logger.info('Notification %s delivered for appointment %s', event, payload.get('id'))


def write_audit_entry(action: str, actor_id: int | None, payload: dict[str, Any]) -> None:
    audit_logger.info(
        'action=%s actor=%s appointment=%s status=%s date=%s time=%s',
        action,
        actor_id,
        payload.get('id'),
        payload.get('status'),
        payload.get('appointment_date'),
        payload.get('appointment_time'),
    )


def _safe_payload(appointment: Appointment) -> dict[str, Any] | None:
    try:
        return appointment_payload(appointment)
    except Exception:
        logger.exception('Could not build dispatch payload for appointment')
        return None


def notify(event: str, appointment: Appointment) -> None:
    payload = _safe_payload(appointment)
    if payload is not None:
        fire_and_forget(send_notification, event, payload)


def audit(action: str, actor_id: int | None, appointment: Appointment) -> None:
    payload = _safe_payload(appointment)
    if payload is not None:
        fire_and_forget(write_audit_entry, action, actor_id, payload)
