"""User model definitions."""

from sqlalchemy import Boolean, Column, Integer, String
from booking.database import Base

ROLE_CLIENT = 'client'
ROLE_STAFF = 'staff'
ROLE_ADMIN = 'admin'
STAFF_ROLES = frozenset({ROLE_STAFF, ROLE_ADMIN})


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    full_name = Column(String)
    role = Column(String, default=ROLE_CLIENT)  # client/staff/admin
    is_active = Column(Boolean, default=True)
