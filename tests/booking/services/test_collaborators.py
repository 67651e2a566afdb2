import logging
from datetime import date, time

import httpx
import pytest

from booking.core import config
from booking.models.appointment import STATUS_PENDING, Appointment
from booking.services import collaborators


def make_appointment(user_id: int = 1) -> Appointment:
    return Appointment(
        id=7,
        user_id=user_id,
        appointment_date=date(2030, 1, 7),
        appointment_time=time(9, 0),
        appointment_type='testing',
        status=STATUS_PENDING,
    )


@pytest.mark.parametrize(
    ('actor_fixture', 'action', 'expected'),
    [
        ('client_user', 'cancel', True),
        ('other_client', 'cancel', False),
        ('staff_user', 'cancel', False),
        ('admin_user', 'cancel', True),
        ('client_user', 'approve', False),
        ('staff_user', 'approve', True),
        ('admin_user', 'decline', True),
        ('staff_user', 'complete', True),
    ],
)
def test_is_authorized(request, client_user, actor_fixture: str, action: str, expected: bool) -> None:
    actor = request.getfixturevalue(actor_fixture)

    assert collaborators.is_authorized(actor, action, make_appointment(client_user.id)) is expected


def test_user_exists_requires_active_user(booking_db, client_user, make_user) -> None:
    inactive = make_user('inactive@example.edu', is_active=False)

    assert collaborators.user_exists(booking_db, client_user.id) is True
    assert collaborators.user_exists(booking_db, inactive.id) is False
    assert collaborators.user_exists(booking_db, 12345) is False


def test_appointment_payload_is_plain_data() -> None:
    payload = collaborators.appointment_payload(make_appointment())

    assert payload['id'] == 7
    assert payload['appointment_date'] == '2030-01-07'
    assert payload['appointment_time'] == '09:00'
    assert payload['status'] == STATUS_PENDING


def test_fire_and_forget_logs_and_swallows_failures(caplog: pytest.LogCaptureFixture) -> None:
    def broken_task(value):
        raise RuntimeError(f'failed with {value}')

    with caplog.at_level(logging.ERROR, logger='booking.services.collaborators'):
        collaborators.fire_and_forget(broken_task, 3)

    assert 'Background task broken_task failed' in caplog.text


def test_fire_and_forget_runs_on_background_pool(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'BACKGROUND_TASKS_INLINE', False)
    received = []

    collaborators.fire_and_forget(received.append, 'sent')
    collaborators.shutdown_background_tasks()

    assert received == ['sent']


def test_send_notification_posts_to_webhook(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'NOTIFICATION_WEBHOOK_URL', 'https://hooks.example.edu/booking')
    calls = []

    def fake_post(url, json, timeout):
        calls.append((url, json, timeout))
        return httpx.Response(202, request=httpx.Request('POST', url))

    monkeypatch.setattr(collaborators.httpx, 'post', fake_post)

    collaborators.notify('appointment.admitted', make_appointment())

    assert len(calls) == 1
    url, body, timeout = calls[0]
    assert url == 'https://hooks.example.edu/booking'
    assert body['type'] == 'appointment.admitted'
    assert body['payload']['id'] == 7
    assert timeout == config.NOTIFICATION_TIMEOUT_SECONDS


def test_webhook_error_is_logged_not_raised(monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture) -> None:
    monkeypatch.setattr(config, 'NOTIFICATION_WEBHOOK_URL', 'https://hooks.example.edu/booking')
    monkeypatch.setattr(
        collaborators.httpx,
        'post',
        lambda url, json, timeout: httpx.Response(500, request=httpx.Request('POST', url)),
    )

    with caplog.at_level(logging.ERROR, logger='booking.services.collaborators'):
        collaborators.notify('appointment.admitted', make_appointment())

    assert 'Background task send_notification failed' in caplog.text


def test_audit_entries_go_to_audit_logger(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.INFO, logger='booking.audit'):
        collaborators.audit('admit', 1, make_appointment())

    assert 'action=admit actor=1 appointment=7 status=pending date=2030-01-07 time=09:00' in caplog.text
