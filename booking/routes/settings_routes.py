import datetime as dt
from datetime import date, datetime, time

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from booking.auth.dependencies import get_db, require_admin
from booking.core.errors import BookingError, error_to_http
from booking.models.user import User
from booking.routes.common import ensure_database_ready
from booking.services import rule_store

router = APIRouter(tags=['settings'])


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


class QuotaPolicyRequest(BaseModel):
    daily_booking_limit_per_user: int
    is_active: bool = True
    description: str | None = None

    @field_validator('description')
    @classmethod
    def validate_description(cls, value: str | None) -> str | None:
        return _strip_or_none(value)


class QuotaPolicyResponse(BaseModel):
    id: int
    daily_booking_limit_per_user: int
    is_active: bool
    description: str | None = None
    last_updated_by: int | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class QuotaPolicyChangeResponse(BaseModel):
    id: int
    old_limit: int | None = None
    new_limit: int
    is_active: bool
    description: str | None = None
    changed_by: int | None = None
    changed_at: datetime | None = None

    class Config:
        from_attributes = True


class CapacityRuleRequest(BaseModel):
    day_of_week: str | None = None
    start_time: time
    end_time: time
    max_appointments_per_slot: int
    is_active: bool = True
    description: str | None = None

    @field_validator('day_of_week')
    @classmethod
    def validate_day_of_week(cls, value: str | None) -> str | None:
        normalized = _strip_or_none(value)
        return normalized.lower() if normalized else None


class ApplyCapacityRequest(BaseModel):
    max_appointments_per_slot: int


class ApplyCapacityResponse(BaseModel):
    created: int
    updated: int
    max_appointments_per_slot: int


class CapacityRuleResponse(BaseModel):
    id: int
    day_of_week: str | None = None
    start_time: time
    end_time: time
    max_appointments_per_slot: int
    is_active: bool
    description: str | None = None

    class Config:
        from_attributes = True


class BlackoutRuleRequest(BaseModel):
    date: dt.date | None = None
    reason: str
    start_time: time | None = None
    end_time: time | None = None
    is_recurring: bool = False
    recurring_days: list[str] | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('A blackout reason is required.')
        return normalized


class BlackoutRuleResponse(BaseModel):
    id: int
    date: dt.date | None = None
    reason: str
    start_time: time | None = None
    end_time: time | None = None
    is_recurring: bool
    recurring_days: list[str] | None = None

    class Config:
        from_attributes = True


@router.get('/quota', response_model=QuotaPolicyResponse)
def get_quota_policy(
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    try:
        return rule_store.get_current_policy(db)
    except BookingError as exc:
        raise error_to_http(exc) from exc


@router.put('/quota', response_model=QuotaPolicyResponse)
def update_quota_policy(
    data: QuotaPolicyRequest,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return rule_store.update_policy(
            db,
            daily_booking_limit_per_user=data.daily_booking_limit_per_user,
            is_active=data.is_active,
            description=data.description,
            updated_by=current_user.id,
        )
    except BookingError as exc:
        raise error_to_http(exc) from exc


@router.get('/quota/history', response_model=list[QuotaPolicyChangeResponse])
def list_quota_history(
    limit: int = Query(default=50, ge=1, le=200),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    try:
        return rule_store.list_policy_history(db, limit=limit)
    except BookingError as exc:
        raise error_to_http(exc) from exc


@router.get('/capacity-rules', response_model=list[CapacityRuleResponse])
def list_capacity_rules(
    is_active: bool | None = Query(default=None),
    day_of_week: str | None = Query(default=None),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    try:
        return rule_store.list_capacity_rules(db, is_active=is_active, day_of_week=day_of_week)
    except BookingError as exc:
        raise error_to_http(exc) from exc


@router.post('/capacity-rules', response_model=CapacityRuleResponse, status_code=status.HTTP_201_CREATED)
def create_capacity_rule(
    data: CapacityRuleRequest,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    try:
        return rule_store.create_capacity_rule(db, **data.model_dump())
    except BookingError as exc:
        raise error_to_http(exc) from exc


@router.post('/capacity-rules/apply-all', response_model=ApplyCapacityResponse)
def apply_capacity_to_all_slots(
    data: ApplyCapacityRequest,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    try:
        created, updated = rule_store.apply_capacity_to_all_slots(db, data.max_appointments_per_slot)
    except BookingError as exc:
        raise error_to_http(exc) from exc

    return ApplyCapacityResponse(
        created=created,
        updated=updated,
        max_appointments_per_slot=data.max_appointments_per_slot,
    )


@router.put('/capacity-rules/{rule_id}', response_model=CapacityRuleResponse)
def update_capacity_rule(
    rule_id: int,
    data: CapacityRuleRequest,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    try:
        return rule_store.update_capacity_rule(db, rule_id, **data.model_dump())
    except BookingError as exc:
        raise error_to_http(exc) from exc


@router.delete('/capacity-rules/{rule_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_capacity_rule(
    rule_id: int,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    try:
        rule_store.delete_capacity_rule(db, rule_id)
    except BookingError as exc:
        raise error_to_http(exc) from exc


def _blackout_fields(data: BlackoutRuleRequest) -> dict:
    return {
        'reason': data.reason,
        'date_value': data.date,
        'start_time': data.start_time,
        'end_time': data.end_time,
        'is_recurring': data.is_recurring,
        'recurring_days': data.recurring_days,
    }


@router.get('/blackout-rules', response_model=list[BlackoutRuleResponse])
def list_blackout_rules(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    reason: str | None = Query(default=None),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    try:
        return rule_store.list_blackout_rules(db, start_date=start_date, end_date=end_date, reason=reason)
    except BookingError as exc:
        raise error_to_http(exc) from exc


@router.post('/blackout-rules', response_model=BlackoutRuleResponse, status_code=status.HTTP_201_CREATED)
def create_blackout_rule(
    data: BlackoutRuleRequest,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    try:
        return rule_store.create_blackout_rule(db, **_blackout_fields(data))
    except BookingError as exc:
        raise error_to_http(exc) from exc


@router.put('/blackout-rules/{rule_id}', response_model=BlackoutRuleResponse)
def update_blackout_rule(
    rule_id: int,
    data: BlackoutRuleRequest,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    try:
        return rule_store.update_blackout_rule(db, rule_id, **_blackout_fields(data))
    except BookingError as exc:
        raise error_to_http(exc) from exc


@router.delete('/blackout-rules/{rule_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_blackout_rule(
    rule_id: int,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    try:
        rule_store.delete_blackout_rule(db, rule_id)
    except BookingError as exc:
        raise error_to_http(exc) from exc
