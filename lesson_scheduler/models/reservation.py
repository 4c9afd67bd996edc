"""Reservation (temporary hold) model definitions."""

import enum
from datetime import datetime

from sqlalchemy import Column, Enum, Index, String, text

from lesson_scheduler.database import Base, UTCDateTime
from lesson_scheduler.models.availability import utc_now


class ReservationStatus(str, enum.Enum):
    ACTIVE = "active"
    PROMOTED = "promoted"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class Reservation(Base):
    """Represents a short-lived exclusive claim on an interval during checkout."""
    __tablename__ = "reservations"
    __table_args__ = (
        # At most one active hold per student, whichever teacher it is with.
        Index(
            "uq_reservations_active_student",
            "student_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    id = Column(String, primary_key=True)
    teacher_id = Column(String, nullable=False, index=True)
    student_id = Column(String, nullable=False, index=True)
    start_instant = Column(UTCDateTime, nullable=False)
    end_instant = Column(UTCDateTime, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False)
    status = Column(
        Enum(ReservationStatus, values_callable=lambda members: [member.value for member in members]),
        nullable=False,
        default=ReservationStatus.ACTIVE,
    )
    created_at = Column(UTCDateTime, default=utc_now)

    def is_active_at(self, now: datetime) -> bool:
        # An Active row past its expiry is treated as Expired even before the timer fires.
        return self.status == ReservationStatus.ACTIVE and self.expires_at > now
