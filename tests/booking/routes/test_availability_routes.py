from datetime import date, time

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from booking.auth.dependencies import get_db
from booking.main import app
from booking.routes.availability_routes import (
    get_slot_capacity,
    list_alternative_dates,
    list_available_slots,
    list_unavailable_dates,
)
from booking.services import rule_store

MONDAY = date(2030, 1, 7)
FRIDAY = date(2030, 1, 11)
SATURDAY = date(2030, 1, 12)
SUNDAY = date(2030, 1, 13)


@pytest.fixture(autouse=True)
def _skip_schema_checks(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr('booking.routes.availability_routes.ensure_database_ready', lambda: None)


def test_list_available_slots_for_open_day(booking_db) -> None:
    response = list_available_slots(slot_date=MONDAY, db=booking_db)

    assert response.is_open is True
    assert response.day_of_week == 'monday'
    assert len(response.slots) == 16
    assert response.slots[0].time == time(8, 0)
    assert response.slots[0].remaining == 3


def test_list_available_slots_for_weekend(booking_db) -> None:
    response = list_available_slots(slot_date=SATURDAY, db=booking_db)

    assert response.is_open is False
    assert response.blocked_reason == 'weekend'
    assert response.slots == []


def test_list_unavailable_dates_rejects_inverted_range(booking_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_unavailable_dates(start_date=FRIDAY, end_date=MONDAY, db=booking_db)

    assert exception_info.value.status_code == 400


def test_list_unavailable_dates_includes_weekend(booking_db) -> None:
    entries = list_unavailable_dates(start_date=MONDAY, end_date=SUNDAY, db=booking_db)

    assert [entry['date'] for entry in entries] == [SATURDAY, SUNDAY]


def test_list_alternative_dates(booking_db) -> None:
    rule_store.create_blackout_rule(booking_db, reason='Closed', date_value=FRIDAY)

    alternatives = list_alternative_dates(preferred_date=FRIDAY, days_ahead=7, db=booking_db)

    assert [alternative['date'] for alternative in alternatives] == [
        date(2030, 1, 14),
        date(2030, 1, 15),
        date(2030, 1, 16),
    ]


def test_list_alternative_dates_validates_days_ahead(booking_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_alternative_dates(preferred_date=FRIDAY, days_ahead=90, db=booking_db)

    assert exception_info.value.status_code == 400


def test_get_slot_capacity(booking_db) -> None:
    rule_store.create_capacity_rule(booking_db, start_time=time(9, 0), end_time=time(10, 0), max_appointments_per_slot=8)

    summary = get_slot_capacity(slot_date=MONDAY, slot_time=time(9, 30), db=booking_db)

    assert summary['capacity'] == 8


def test_health_check_and_slots_over_http(booking_db) -> None:
    app.dependency_overrides[get_db] = lambda: booking_db
    try:
        client = TestClient(app)

        assert client.get('/').json() == {'status': 'Appointment Booking API Running'}

        response = client.get('/availability/slots', params={'date': MONDAY.isoformat()})
        assert response.status_code == 200
        body = response.json()
        assert body['is_open'] is True
        assert body['slots'][0] == {'time': '08:00:00', 'booked': 0, 'capacity': 3, 'remaining': 3}

        assert client.get('/availability/slots', params={'date': 'not-a-date'}).status_code == 422
        assert client.post('/appointments', json={}).status_code in (401, 403)
    finally:
        app.dependency_overrides.clear()


def test_slot_capacity_with_utc_offset_is_bad_request(booking_db) -> None:
    rule_store.create_capacity_rule(booking_db, start_time=time(9, 0), end_time=time(10, 0), max_appointments_per_slot=8)
    app.dependency_overrides[get_db] = lambda: booking_db
    try:
        client = TestClient(app)

        response = client.get('/availability/capacity', params={'date': MONDAY.isoformat(), 'time': '09:30:00Z'})

        assert response.status_code == 400
    finally:
        app.dependency_overrides.clear()
