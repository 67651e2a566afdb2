import os

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from booking.core import config  # noqa: E402
from booking.core.cache import availability_cache  # noqa: E402
from booking.database import Base  # noqa: E402
from booking.models import admission_lock, appointment, availability, settings  # noqa: E402,F401
from booking.models.user import ROLE_ADMIN, ROLE_CLIENT, ROLE_STAFF, User  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_shared_state(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(config, 'BACKGROUND_TASKS_INLINE', True)
    monkeypatch.setattr(config, 'NOTIFICATION_WEBHOOK_URL', '')
    availability_cache.bump()
    yield
    availability_cache.bump()


@pytest.fixture
def session_factory():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def booking_db(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def make_user(booking_db):
    def _make_user(email: str, role: str = ROLE_CLIENT, is_active: bool = True) -> User:
        user = User(email=email, full_name=email.split('@')[0].title(), role=role, is_active=is_active)
        booking_db.add(user)
        booking_db.commit()
        booking_db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def client_user(make_user) -> User:
    return make_user('casey@example.edu')


@pytest.fixture
def other_client(make_user) -> User:
    return make_user('jordan@example.edu')


@pytest.fixture
def staff_user(make_user) -> User:
    return make_user('nurse@example.edu', role=ROLE_STAFF)


@pytest.fixture
def admin_user(make_user) -> User:
    return make_user('admin@example.edu', role=ROLE_ADMIN)
