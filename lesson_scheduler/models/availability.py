"""Availability window model definitions."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Integer, String, Text

from lesson_scheduler.database import Base, UTCDateTime


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AvailabilityWindow(Base):
    """Represents a teacher-declared open (or explicitly closed) period."""
    __tablename__ = "availability_windows"

    id = Column(Integer, primary_key=True)
    teacher_id = Column(String, nullable=False, index=True)
    start_instant = Column(UTCDateTime, nullable=False)
    end_instant = Column(UTCDateTime, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)
    note = Column(Text)
    created_at = Column(UTCDateTime, default=utc_now)
    updated_at = Column(UTCDateTime, default=utc_now, onupdate=utc_now)
