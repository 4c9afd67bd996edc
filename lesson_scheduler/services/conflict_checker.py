"""
Conflict detection for candidate intervals.

An interval is free for a student when it sits inside one open availability
window and overlaps neither an active booking nor an unexpired reservation
belonging to someone else. Both layers are checked: a window stays open while
part of it is booked, so window state alone would not hide the booked part.
"""

import enum

from sqlalchemy.orm import Session

from lesson_scheduler.core.intervals import Interval, overlapping
from lesson_scheduler.models.booking import ACTIVE_BOOKING_STATUSES, Booking
from lesson_scheduler.models.reservation import Reservation, ReservationStatus
from lesson_scheduler.services.availability_store import AvailabilityStore
from lesson_scheduler.services.base import BaseService, Clock


class ConflictReason(str, enum.Enum):
    OUTSIDE_AVAILABILITY = "outside_availability"
    BOOKED = "booked"
    RESERVED = "reserved"


class ConflictChecker(BaseService):
    def __init__(self, db: Session, clock: Clock | None = None) -> None:
        super().__init__(db, clock)
        self.availability = AvailabilityStore(db, clock)

    def is_free(
        self,
        teacher_id: str,
        candidate: Interval,
        requesting_student_id: str | None = None,
        exclude_reservation_id: str | None = None,
    ) -> bool:
        return self.find_conflict(teacher_id, candidate, requesting_student_id, exclude_reservation_id) is None

    def find_conflict(
        self,
        teacher_id: str,
        candidate: Interval,
        requesting_student_id: str | None = None,
        exclude_reservation_id: str | None = None,
    ) -> ConflictReason | None:
        if self.availability.open_window_containing(teacher_id, candidate) is None:
            return ConflictReason.OUTSIDE_AVAILABILITY
        if self.blocking_bookings(teacher_id, candidate, requesting_student_id):
            return ConflictReason.BOOKED
        if self.blocking_reservations(teacher_id, candidate, requesting_student_id, exclude_reservation_id):
            return ConflictReason.RESERVED
        return None

    def blocking_bookings(
        self,
        teacher_id: str,
        candidate: Interval,
        requesting_student_id: str | None = None,
    ) -> list[Booking]:
        query = self.db.query(Booking).filter(
            Booking.teacher_id == teacher_id,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            overlapping(Booking.start_instant, Booking.end_instant, candidate),
        )
        if requesting_student_id is not None:
            query = query.filter(Booking.student_id != requesting_student_id)
        return query.all()

    def blocking_reservations(
        self,
        teacher_id: str,
        candidate: Interval,
        requesting_student_id: str | None = None,
        exclude_reservation_id: str | None = None,
    ) -> list[Reservation]:
        query = self.db.query(Reservation).filter(
            Reservation.teacher_id == teacher_id,
            Reservation.status == ReservationStatus.ACTIVE,
            Reservation.expires_at > self.now(),
            overlapping(Reservation.start_instant, Reservation.end_instant, candidate),
        )
        if requesting_student_id is not None:
            query = query.filter(Reservation.student_id != requesting_student_id)
        if exclude_reservation_id is not None:
            query = query.filter(Reservation.id != exclude_reservation_id)
        return query.all()
