"""Booking model definitions."""

import enum

from sqlalchemy import Column, Enum, Integer, String, Text

from lesson_scheduler.database import Base, UTCDateTime
from lesson_scheduler.models.availability import utc_now


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses that keep a teacher's interval occupied.
ACTIVE_BOOKING_STATUSES = (
    BookingStatus.PENDING,
    BookingStatus.CONFIRMED,
    BookingStatus.SCHEDULED,
)


class Booking(Base):
    """Represents a class booked by a student with a teacher."""
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True)
    teacher_id = Column(String, nullable=False, index=True)
    student_id = Column(String, nullable=False, index=True)
    start_instant = Column(UTCDateTime, nullable=False)
    end_instant = Column(UTCDateTime, nullable=False)
    status = Column(
        Enum(BookingStatus, values_callable=lambda members: [member.value for member in members]),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    notes = Column(Text)
    reservation_id = Column(String)
    created_at = Column(UTCDateTime, default=utc_now)
    updated_at = Column(UTCDateTime, default=utc_now, onupdate=utc_now)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_BOOKING_STATUSES
