from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from booking.core.errors import MSG_STORE_UNAVAILABLE
from booking.database import ensure_appointment_schema, ensure_rule_schema


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
        ensure_rule_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=MSG_STORE_UNAVAILABLE,
        ) from exc
