from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking.auth.dependencies import get_current_user, get_db, require_staff
from booking.core.errors import MSG_STORE_UNAVAILABLE, BookingError, error_to_http
from booking.models.appointment import Appointment
from booking.models.user import User
from booking.routes.common import ensure_database_ready
from booking.services import admission, collaborators, ledger, lifecycle, rule_store

router = APIRouter(tags=['appointments'])

MAX_APPOINTMENT_NOTES_LENGTH = admission.MAX_NOTES_LENGTH


class CreateAppointmentRequest(BaseModel):
    appointment_date: date
    appointment_time: time
    appointment_type: str | None = None
    notes: str | None = None

    @field_validator('appointment_type')
    @classmethod
    def validate_appointment_type(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().lower()
        return normalized or None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

        return normalized


class TransitionRequest(BaseModel):
    reason: str | None = None


class AssignStaffRequest(BaseModel):
    staff_id: int


class AppointmentResponse(BaseModel):
    id: int
    user_id: int
    staff_id: int | None = None
    appointment_type: str | None = None
    appointment_date: date
    appointment_time: time
    status: str
    notes: str | None = None
    decline_reason: str | None = None
    cancel_reason: str | None = None
    completion_notes: str | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None
    allowed_actions: list[str] = []

    class Config:
        from_attributes = True


class LimitStatusResponse(BaseModel):
    user_id: int
    date: date
    limit: int
    is_active: bool
    used: int
    remaining: int | None = None
    has_reached_limit: bool
    next_available_date: date | None = None
    bookings: list[AppointmentResponse]


def to_response(appointment: Appointment) -> AppointmentResponse:
    response = AppointmentResponse.model_validate(appointment)
    response.allowed_actions = lifecycle.allowed_actions(appointment.status)
    return response


def rejection_to_http(rejection: admission.Rejected) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            'reason': rejection.reason.value,
            'message': rejection.message,
            'retry_after': rejection.retry_after.isoformat() if rejection.retry_after else None,
        },
    )


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    request = admission.AdmissionRequest(
        user_id=current_user.id,
        appointment_date=data.appointment_date,
        appointment_time=data.appointment_time,
        appointment_type=data.appointment_type,
        notes=data.notes,
    )
    try:
        policy = rule_store.get_quota_snapshot(db)
        result = admission.try_admit(db, request, policy)
    except BookingError as exc:
        raise error_to_http(exc) from exc

    if isinstance(result, admission.Rejected):
        raise rejection_to_http(result)
    return to_response(result.record)


@router.get('/mine', response_model=list[AppointmentResponse])
def list_my_appointments(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointments = ledger.list_user_appointments(db, current_user.id)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=MSG_STORE_UNAVAILABLE,
        ) from exc

    return [to_response(appointment) for appointment in appointments]


def _limit_status(db: Session, user_id: int, day: date) -> LimitStatusResponse:
    try:
        policy = rule_store.get_quota_snapshot(db)
        limit_status = admission.get_user_daily_limit_status(db, user_id, day, policy)
    except BookingError as exc:
        raise error_to_http(exc) from exc

    bookings = [to_response(appointment) for appointment in limit_status.pop('bookings')]
    return LimitStatusResponse(user_id=user_id, date=day, bookings=bookings, **limit_status)


@router.get('/limit-status', response_model=LimitStatusResponse)
def get_my_limit_status(
    status_date: date | None = Query(default=None, alias='date'),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()
    return _limit_status(db, current_user.id, status_date or date.today())


@router.get('/limit-status/{user_id}', response_model=LimitStatusResponse)
def get_user_limit_status(
    user_id: int,
    status_date: date | None = Query(default=None, alias='date'),
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    try:
        target = collaborators.get_user(db, user_id)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=MSG_STORE_UNAVAILABLE,
        ) from exc
    if target is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User not found.')

    return _limit_status(db, user_id, status_date or date.today())


@router.put('/{appointment_id}/assign-staff', response_model=AppointmentResponse)
def assign_staff(
    appointment_id: int,
    data: AssignStaffRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = lifecycle.assign_staff(db, appointment_id, data.staff_id, current_user)
    except BookingError as exc:
        raise error_to_http(exc) from exc
    return to_response(appointment)


def _transition(db: Session, appointment_id: int, action: str, actor: User, data: TransitionRequest | None):
    ensure_database_ready()

    try:
        appointment = lifecycle.transition(
            db,
            appointment_id,
            action,
            actor,
            reason=data.reason if data is not None else None,
        )
    except BookingError as exc:
        raise error_to_http(exc) from exc
    return to_response(appointment)


@router.put('/{appointment_id}/approve', response_model=AppointmentResponse)
def approve_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _transition(db, appointment_id, lifecycle.ACTION_APPROVE, current_user, None)


@router.put('/{appointment_id}/decline', response_model=AppointmentResponse)
def decline_appointment(
    appointment_id: int,
    data: TransitionRequest | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _transition(db, appointment_id, lifecycle.ACTION_DECLINE, current_user, data)


@router.put('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    data: TransitionRequest | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _transition(db, appointment_id, lifecycle.ACTION_COMPLETE, current_user, data)


@router.put('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    data: TransitionRequest | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _transition(db, appointment_id, lifecycle.ACTION_CANCEL, current_user, data)
