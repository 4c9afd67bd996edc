import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lesson_scheduler.core.errors import BookingConflict, SchedulingError
from lesson_scheduler.core.intervals import Interval
from lesson_scheduler.models.booking import Booking
from lesson_scheduler.services.availability_store import AvailabilityStore
from lesson_scheduler.services.base import BaseService, Clock

logger = logging.getLogger(__name__)


class RestorationService(BaseService):
    """Re-opens availability windows that a cancelled booking no longer needs closed."""

    def __init__(self, db: Session, clock: Clock | None = None) -> None:
        super().__init__(db, clock)
        self.availability = AvailabilityStore(db, clock)

    def on_booking_cancelled(self, booking: Booking) -> list[int]:
        """
        Best effort: each window is restored in its own transaction and a
        failure is logged without affecting the cancellation or other windows.
        Returns the ids of windows that were reopened.
        """
        interval = Interval(booking.start_instant, booking.end_instant)
        try:
            closed = [
                window
                for window in self.availability.query(booking.teacher_id, interval)
                if not window.is_available
            ]
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception('Failed to look up windows to restore after booking %s was cancelled', booking.id)
            return []

        restored: list[int] = []
        for window in closed:
            window_id = window.id
            try:
                self.availability.set_available(
                    window_id,
                    True,
                    note=f'Reopened after booking {booking.id} was cancelled at {self.now().isoformat()}',
                )
            except BookingConflict:
                logger.info('Window %s stays closed; another booking still occupies it', window_id)
            except (SchedulingError, SQLAlchemyError):
                self.db.rollback()
                logger.exception('Failed to restore window %s after booking %s was cancelled', window_id, booking.id)
            else:
                restored.append(window_id)

        return restored
