"""Daily quota policy model definitions."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from booking.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DailyQuotaPolicy(Base):
    """The single current per-user daily booking limit."""
    __tablename__ = "appointment_settings"

    id = Column(Integer, primary_key=True)
    daily_booking_limit_per_user = Column(Integer, nullable=False, default=3)
    is_active = Column(Boolean, nullable=False, default=True)
    description = Column(String, nullable=True)
    last_updated_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


class DailyQuotaPolicyChange(Base):
    """Append-only history of quota policy edits."""
    __tablename__ = "appointment_settings_history"

    id = Column(Integer, primary_key=True)
    policy_id = Column(Integer, ForeignKey("appointment_settings.id"), nullable=False)
    old_limit = Column(Integer, nullable=True)
    new_limit = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False)
    description = Column(String, nullable=True)
    changed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    changed_at = Column(DateTime, default=_utcnow)
