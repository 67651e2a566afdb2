"""Availability rule model definitions."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Integer, String, Time, UniqueConstraint
from booking.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SlotCapacityRule(Base):
    """Maximum concurrent appointments for slots inside [start_time, end_time).

    A NULL day_of_week applies to every day; a weekday-scoped rule wins over it.
    """
    __tablename__ = "time_slot_capacities"
    __table_args__ = (
        UniqueConstraint('day_of_week', 'start_time', 'end_time', name='uq_slot_capacity_range'),
    )

    id = Column(Integer, primary_key=True)
    day_of_week = Column(String, nullable=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    max_appointments_per_slot = Column(Integer, nullable=False, default=3)
    is_active = Column(Boolean, nullable=False, default=True)
    description = Column(String, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


class BlackoutRule(Base):
    """Closes a single date or recurring weekdays, optionally only between start_time and end_time."""
    __tablename__ = "blackout_dates"

    id = Column(Integer, primary_key=True)
    date = Column(Date, nullable=True)
    reason = Column(String, nullable=False)
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)
    is_recurring = Column(Boolean, nullable=False, default=False)
    recurring_days = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    @property
    def blocks_entire_day(self) -> bool:
        return self.start_time is None or self.end_time is None
