"""
Error taxonomy for the booking core and its mapping onto HTTP responses.

Business-rule rejections (blackout, quota, capacity) are not exceptions; see
booking.services.admission.Rejected.
"""
from __future__ import annotations

from fastapi import HTTPException, status

MSG_STORE_UNAVAILABLE = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'
TIME_OFFSET_MESSAGE = 'Times are local clinic times and must not carry a UTC offset.'


class BookingError(Exception):
    """Base class for errors surfaced by the booking core."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BookingValidationError(BookingError):
    """Malformed or out-of-range input. Not retried."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFound(BookingError):
    status_code = status.HTTP_404_NOT_FOUND


class PermissionDenied(BookingError):
    status_code = status.HTTP_403_FORBIDDEN


class RuleConflict(BookingError):
    """A rule with the same identifying fields already exists."""

    status_code = status.HTTP_409_CONFLICT


class InvalidTransition(BookingError):
    """Lifecycle action not allowed from the record's current status."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, action: str, current_status: str):
        super().__init__(f'Cannot {action} an appointment that is {current_status}.')
        self.action = action
        self.current_status = current_status


class StoreUnavailable(BookingError):
    """The data store failed. The only error class callers may retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = MSG_STORE_UNAVAILABLE):
        super().__init__(message)


def error_to_http(exc: BookingError) -> HTTPException:
    """Map a booking error onto an HTTPException carrying its message."""
    if isinstance(exc, InvalidTransition):
        return HTTPException(
            status_code=exc.status_code,
            detail={
                'error': 'invalid_transition',
                'message': exc.message,
                'current_status': exc.current_status,
            },
        )
    return HTTPException(status_code=exc.status_code, detail=exc.message)
