"""Appointment model definitions."""

from datetime import datetime, timezone

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, String, Time
from booking.database import Base

STATUS_PENDING = 'pending'
STATUS_APPROVED = 'approved'
STATUS_COMPLETED = 'completed'
STATUS_CANCELLED = 'cancelled'
STATUS_DECLINED = 'declined'

# Only these count toward quota and capacity.
ACTIVE_STATUSES = (STATUS_PENDING, STATUS_APPROVED)
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_CANCELLED, STATUS_DECLINED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Appointment(Base):
    """Represents a booked appointment slot and its lifecycle status."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index('idx_appointments_slot_status', 'appointment_date', 'appointment_time', 'status'),
        Index('idx_appointments_user_date_status', 'user_id', 'appointment_date', 'status'),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    staff_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    appointment_type = Column(String, nullable=True)
    appointment_date = Column(Date, nullable=False)
    appointment_time = Column(Time, nullable=False)
    status = Column(String, nullable=False, default=STATUS_PENDING)
    notes = Column(String, nullable=True)
    decline_reason = Column(String, nullable=True)
    cancel_reason = Column(String, nullable=True)
    completion_notes = Column(String, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    completed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES
