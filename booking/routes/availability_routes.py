from datetime import date, time

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from booking.auth.dependencies import get_db
from booking.core.calendar import weekday_name
from booking.core.errors import BookingError, error_to_http
from booking.routes.common import ensure_database_ready
from booking.services import availability

router = APIRouter(tags=['availability'])


class SlotResponse(BaseModel):
    time: time
    booked: int
    capacity: int
    remaining: int


class DayAvailabilityResponse(BaseModel):
    date: date
    day_of_week: str
    is_open: bool
    blocked_reason: str | None = None
    slots: list[SlotResponse]


class UnavailableDateResponse(BaseModel):
    date: date
    reason: str
    type: str
    time_range: str | None = None
    recurring: bool


class AlternativeDateResponse(BaseModel):
    date: date
    day_name: str
    available_times: list[time]
    available_slots: int
    first_available_time: time


class CapacitySummaryResponse(BaseModel):
    date: date
    time: time
    day_of_week: str
    capacity: int
    rule_id: int | None = None


@router.get('/slots', response_model=DayAvailabilityResponse)
def list_available_slots(
    slot_date: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        day = availability.get_available_slots(db, slot_date)
    except BookingError as exc:
        raise error_to_http(exc) from exc

    return DayAvailabilityResponse(
        date=day.date,
        day_of_week=weekday_name(day.date),
        is_open=bool(day.slots),
        blocked_reason=day.blocked_reason,
        slots=[
            SlotResponse(time=slot.time, booked=slot.booked, capacity=slot.capacity, remaining=slot.remaining)
            for slot in day.slots
        ],
    )


@router.get('/unavailable-dates', response_model=list[UnavailableDateResponse])
def list_unavailable_dates(
    start_date: date = Query(...),
    end_date: date = Query(...),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return availability.get_unavailable_dates(db, start_date, end_date)
    except BookingError as exc:
        raise error_to_http(exc) from exc


@router.get('/alternatives', response_model=list[AlternativeDateResponse])
def list_alternative_dates(
    preferred_date: date = Query(...),
    days_ahead: int = Query(default=14),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return availability.suggest_alternatives(db, preferred_date, days_ahead=days_ahead)
    except BookingError as exc:
        raise error_to_http(exc) from exc


@router.get('/capacity', response_model=CapacitySummaryResponse)
def get_slot_capacity(
    slot_date: date = Query(..., alias='date'),
    slot_time: time = Query(..., alias='time'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return availability.get_capacity_summary(db, slot_date, slot_time)
    except BookingError as exc:
        raise error_to_http(exc) from exc
