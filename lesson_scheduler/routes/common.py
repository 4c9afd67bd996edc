from contextlib import contextmanager
from typing import Iterator

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lesson_scheduler.core import config
from lesson_scheduler.core.errors import SchedulingError
from lesson_scheduler.database import SessionLocal, ensure_scheduling_schema
from lesson_scheduler.services.base import system_clock
from lesson_scheduler.services.reservation_manager import ExpiryScheduler

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'

expiry_scheduler = ExpiryScheduler(SessionLocal, enabled=config.RESERVATION_TIMERS_ENABLED)


def ensure_database_ready() -> None:
    try:
        ensure_scheduling_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_clock():
    return system_clock


def get_expiry_scheduler() -> ExpiryScheduler:
    return expiry_scheduler


@contextmanager
def scheduling_errors(db: Session) -> Iterator[None]:
    """Translate engine errors into HTTP responses."""
    try:
        yield
    except SchedulingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc
