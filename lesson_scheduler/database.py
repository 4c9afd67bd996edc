from datetime import datetime, timezone
from threading import Lock

from sqlalchemy import DateTime, create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.types import TypeDecorator

from lesson_scheduler.core import config


def build_engine(url: str):
    connect_args = {'check_same_thread': False} if url.startswith('sqlite') else {}
    return create_engine(url, connect_args=connect_args)


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_scheduling_schema_checked = False


class UTCDateTime(TypeDecorator):
    """Stores instants as naive UTC and always loads them back as aware UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value: datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def ensure_scheduling_schema(bind=None) -> None:
    global _scheduling_schema_checked

    if _scheduling_schema_checked:
        return

    with _schema_lock:
        if _scheduling_schema_checked:
            return

        bind = bind or engine
        inspector = inspect(bind)
        table_names = set(inspector.get_table_names())

        index_statements = [
            (
                'availability_windows',
                'CREATE INDEX IF NOT EXISTS idx_windows_teacher_range '
                'ON availability_windows(teacher_id, start_instant, end_instant)',
            ),
            (
                'bookings',
                'CREATE INDEX IF NOT EXISTS idx_bookings_teacher_range '
                'ON bookings(teacher_id, start_instant, end_instant)',
            ),
            (
                'bookings',
                'CREATE INDEX IF NOT EXISTS idx_bookings_student ON bookings(student_id, start_instant)',
            ),
            (
                'reservations',
                'CREATE INDEX IF NOT EXISTS idx_reservations_teacher_status '
                'ON reservations(teacher_id, status, expires_at)',
            ),
            (
                'reservations',
                'CREATE INDEX IF NOT EXISTS idx_reservations_student_status ON reservations(student_id, status)',
            ),
            (
                'reservations',
                'CREATE UNIQUE INDEX IF NOT EXISTS uq_reservations_active_student '
                "ON reservations(student_id) WHERE status = 'active'",
            ),
        ]

        with bind.begin() as connection:
            for table_name, statement in index_statements:
                if table_name in table_names:
                    connection.execute(text(statement))

        _scheduling_schema_checked = True
