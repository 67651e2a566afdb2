import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./booking.db")


def build_engine(url: str):
    connect_args = {}
    if url.startswith("sqlite"):
        # Requests are served from a threadpool; SQLite waits on the file lock instead of failing fast.
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


engine = build_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_appointment_schema_checked = False
_rule_schema_checked = False


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('staff_id', 'ALTER TABLE appointments ADD COLUMN staff_id INTEGER'),
            ('appointment_type', 'ALTER TABLE appointments ADD COLUMN appointment_type VARCHAR'),
            ('notes', 'ALTER TABLE appointments ADD COLUMN notes VARCHAR'),
            ('decline_reason', 'ALTER TABLE appointments ADD COLUMN decline_reason VARCHAR'),
            ('cancel_reason', 'ALTER TABLE appointments ADD COLUMN cancel_reason VARCHAR'),
            ('completion_notes', 'ALTER TABLE appointments ADD COLUMN completion_notes VARCHAR'),
            ('completed_at', 'ALTER TABLE appointments ADD COLUMN completed_at TIMESTAMP'),
            ('completed_by', 'ALTER TABLE appointments ADD COLUMN completed_by INTEGER'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_slot_status '
                    'ON appointments(appointment_date, appointment_time, status)'
                )
            )
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_user_date_status '
                    'ON appointments(user_id, appointment_date, status)'
                )
            )

        _appointment_schema_checked = True


def ensure_rule_schema() -> None:
    global _rule_schema_checked

    if _rule_schema_checked:
        return

    with _schema_lock:
        if _rule_schema_checked:
            return

        inspector = inspect(engine)
        table_names = set(inspector.get_table_names())

        with engine.begin() as connection:
            if 'blackout_dates' in table_names:
                connection.execute(
                    text('CREATE INDEX IF NOT EXISTS idx_blackout_dates_date ON blackout_dates(date)')
                )
            if 'time_slot_capacities' in table_names:
                connection.execute(
                    text(
                        'CREATE INDEX IF NOT EXISTS idx_slot_capacities_active_day '
                        'ON time_slot_capacities(is_active, day_of_week)'
                    )
                )

        _rule_schema_checked = True
