"""Admission serialization key rows."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String
from booking.database import Base


class AdmissionLock(Base):
    """One row per slot or user/day key; admissions lock these rows FOR UPDATE."""
    __tablename__ = "admission_locks"

    lock_key = Column(String, primary_key=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
