from datetime import date, time

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient
from pydantic import ValidationError

from booking.auth.dependencies import get_db, require_admin
from booking.main import app
from booking.routes.settings_routes import (
    ApplyCapacityRequest,
    BlackoutRuleRequest,
    CapacityRuleRequest,
    QuotaPolicyRequest,
    apply_capacity_to_all_slots,
    create_blackout_rule,
    create_capacity_rule,
    delete_blackout_rule,
    delete_capacity_rule,
    get_quota_policy,
    list_blackout_rules,
    list_capacity_rules,
    list_quota_history,
    update_blackout_rule,
    update_capacity_rule,
    update_quota_policy,
)

MONDAY = date(2030, 1, 7)


@pytest.fixture(autouse=True)
def _skip_schema_checks(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr('booking.routes.settings_routes.ensure_database_ready', lambda: None)


def test_quota_policy_roundtrip_records_editor(booking_db, admin_user) -> None:
    assert get_quota_policy(current_user=admin_user, db=booking_db).daily_booking_limit_per_user == 3

    updated = update_quota_policy(
        QuotaPolicyRequest(daily_booking_limit_per_user=4, description='  Flu season '),
        current_user=admin_user,
        db=booking_db,
    )
    history = list_quota_history(limit=10, current_user=admin_user, db=booking_db)

    assert updated.daily_booking_limit_per_user == 4
    assert updated.description == 'Flu season'
    assert updated.last_updated_by == admin_user.id
    assert [(change.old_limit, change.new_limit) for change in history] == [(3, 4)]


def test_quota_policy_out_of_range_is_bad_request(booking_db, admin_user) -> None:
    with pytest.raises(HTTPException) as exception_info:
        update_quota_policy(QuotaPolicyRequest(daily_booking_limit_per_user=0), current_user=admin_user, db=booking_db)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Daily booking limit must be between 1 and 50.'


def test_capacity_rule_crud(booking_db, admin_user) -> None:
    created = create_capacity_rule(
        CapacityRuleRequest(day_of_week=' Monday ', start_time=time(9, 0), end_time=time(10, 0), max_appointments_per_slot=2),
        current_user=admin_user,
        db=booking_db,
    )
    assert created.day_of_week == 'monday'

    with pytest.raises(HTTPException) as exception_info:
        create_capacity_rule(
            CapacityRuleRequest(day_of_week='monday', start_time=time(9, 0), end_time=time(10, 0), max_appointments_per_slot=4),
            current_user=admin_user,
            db=booking_db,
        )
    assert exception_info.value.status_code == 409

    updated = update_capacity_rule(
        created.id,
        CapacityRuleRequest(start_time=time(9, 0), end_time=time(10, 0), max_appointments_per_slot=5),
        current_user=admin_user,
        db=booking_db,
    )
    assert updated.day_of_week is None
    assert updated.max_appointments_per_slot == 5
    assert [rule.id for rule in list_capacity_rules(is_active=True, day_of_week=None, current_user=admin_user, db=booking_db)] == [created.id]

    delete_capacity_rule(created.id, current_user=admin_user, db=booking_db)
    with pytest.raises(HTTPException) as exception_info:
        delete_capacity_rule(created.id, current_user=admin_user, db=booking_db)
    assert exception_info.value.status_code == 404


def test_capacity_rule_validation_maps_to_bad_request(booking_db, admin_user) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_capacity_rule(
            CapacityRuleRequest(start_time=time(10, 0), end_time=time(9, 0), max_appointments_per_slot=2),
            current_user=admin_user,
            db=booking_db,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'End time must be after start time.'


def test_apply_capacity_to_all_slots_route(booking_db, admin_user) -> None:
    response = apply_capacity_to_all_slots(ApplyCapacityRequest(max_appointments_per_slot=4), current_user=admin_user, db=booking_db)

    assert response.created == 16
    assert response.updated == 0
    assert response.max_appointments_per_slot == 4


def test_blackout_rule_request_requires_reason() -> None:
    with pytest.raises(ValidationError):
        BlackoutRuleRequest(date=MONDAY, reason='   ')


def test_blackout_rule_crud(booking_db, admin_user) -> None:
    created = create_blackout_rule(
        BlackoutRuleRequest(reason='Fridays closed', is_recurring=True, recurring_days=['Friday']),
        current_user=admin_user,
        db=booking_db,
    )
    assert created.recurring_days == ['friday']

    updated = update_blackout_rule(
        created.id,
        BlackoutRuleRequest(reason='Holiday', date=MONDAY, start_time=time(13, 0), end_time=time(17, 0)),
        current_user=admin_user,
        db=booking_db,
    )
    assert updated.is_recurring is False
    assert updated.date == MONDAY

    listed = list_blackout_rules(start_date=None, end_date=None, reason='holiday', current_user=admin_user, db=booking_db)
    assert [rule.id for rule in listed] == [created.id]

    delete_blackout_rule(created.id, current_user=admin_user, db=booking_db)
    assert list_blackout_rules(start_date=None, end_date=None, reason=None, current_user=admin_user, db=booking_db) == []


def test_blackout_rule_without_date_is_bad_request(booking_db, admin_user) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_blackout_rule(BlackoutRuleRequest(reason='Closed'), current_user=admin_user, db=booking_db)

    assert exception_info.value.status_code == 400


def test_blackout_rule_created_over_http_closes_the_day(booking_db, admin_user, monkeypatch) -> None:
    monkeypatch.setattr('booking.routes.availability_routes.ensure_database_ready', lambda: None)
    app.dependency_overrides[get_db] = lambda: booking_db
    app.dependency_overrides[require_admin] = lambda: admin_user
    try:
        client = TestClient(app)

        created = client.post('/settings/blackout-rules', json={'date': MONDAY.isoformat(), 'reason': 'Holiday'})
        assert created.status_code == 201
        assert created.json()['date'] == MONDAY.isoformat()
        assert created.json()['reason'] == 'Holiday'

        day = client.get('/availability/slots', params={'date': MONDAY.isoformat()}).json()
        assert day['is_open'] is False
        assert day['blocked_reason'] == 'Holiday'
    finally:
        app.dependency_overrides.clear()
