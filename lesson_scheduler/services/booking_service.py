"""Booking transitions that affect a teacher's availability."""

from datetime import timedelta

from sqlalchemy.orm import Session

from lesson_scheduler.core import config
from lesson_scheduler.core.errors import InvalidTransition, NotFound
from lesson_scheduler.core.intervals import Interval, overlapping
from lesson_scheduler.models.booking import Booking, BookingStatus
from lesson_scheduler.services.base import BaseService, Clock
from lesson_scheduler.services.restoration import RestorationService

FORWARD_ORDER = (
    BookingStatus.PENDING,
    BookingStatus.CONFIRMED,
    BookingStatus.SCHEDULED,
    BookingStatus.COMPLETED,
)


class BookingService(BaseService):
    def __init__(self, db: Session, clock: Clock | None = None) -> None:
        super().__init__(db, clock)
        self.restoration = RestorationService(db, clock)

    def get(self, booking_id: int) -> Booking:
        booking = self.db.query(Booking).filter(Booking.id == booking_id).first()
        if booking is None:
            raise NotFound('Booking not found.', details={'booking_id': booking_id})
        return booking

    def list_for_teacher(
        self,
        teacher_id: str,
        date_range: Interval | None = None,
        include_cancelled: bool = False,
    ) -> list[Booking]:
        query = self.db.query(Booking).filter(Booking.teacher_id == teacher_id)
        if date_range is not None:
            query = query.filter(overlapping(Booking.start_instant, Booking.end_instant, date_range))
        if not include_cancelled:
            query = query.filter(Booking.status != BookingStatus.CANCELLED)
        return query.order_by(Booking.start_instant.asc()).all()

    def list_for_student(self, student_id: str, include_cancelled: bool = False) -> list[Booking]:
        query = self.db.query(Booking).filter(Booking.student_id == student_id)
        if not include_cancelled:
            query = query.filter(Booking.status != BookingStatus.CANCELLED)
        return query.order_by(Booking.start_instant.asc()).all()

    def cancel(self, booking_id: int) -> Booking:
        """
        Cancel a booking and restore the availability it held.

        Only classes at least ``MIN_CANCELLATION_LEAD_HOURS`` away can be
        cancelled. Cancelling twice is a no-op, so retries never restore twice. The
        cancellation is committed before restoration runs and stands even if
        restoration fails.
        """
        with self.transaction():
            booking = self.get(booking_id)
            if booking.status == BookingStatus.CANCELLED:
                self.logger.info('Booking %s already cancelled', booking_id)
                return booking
            if booking.status == BookingStatus.COMPLETED:
                raise InvalidTransition(
                    'Completed classes cannot be cancelled.',
                    details={'booking_id': booking_id},
                )
            latest_cancellation = booking.start_instant - timedelta(hours=config.MIN_CANCELLATION_LEAD_HOURS)
            if self.now() > latest_cancellation:
                raise InvalidTransition(
                    f'Classes can only be cancelled at least {config.MIN_CANCELLATION_LEAD_HOURS} hours in advance.',
                    details={'booking_id': booking_id, 'latest_cancellation': latest_cancellation.isoformat()},
                )
            booking.status = BookingStatus.CANCELLED

        self.logger.info('Booking %s cancelled', booking_id)
        restored = self.restoration.on_booking_cancelled(booking)
        if restored:
            self.logger.info('Booking %s cancellation reopened windows %s', booking_id, restored)
        return booking

    def advance(self, booking_id: int, status: BookingStatus) -> Booking:
        """Move a booking forward (Pending -> Confirmed -> Scheduled -> Completed)."""
        if status == BookingStatus.CANCELLED:
            return self.cancel(booking_id)

        with self.transaction():
            booking = self.get(booking_id)
            if booking.status == BookingStatus.CANCELLED:
                raise InvalidTransition('Cancelled bookings cannot change status.', details={'booking_id': booking_id})
            if FORWARD_ORDER.index(status) <= FORWARD_ORDER.index(booking.status):
                raise InvalidTransition(
                    f'Cannot move a {booking.status.value} booking to {status.value}.',
                    details={'booking_id': booking_id, 'from': booking.status.value, 'to': status.value},
                )
            booking.status = status

        self.logger.info('Booking %s moved to %s', booking_id, status.value)
        return booking
