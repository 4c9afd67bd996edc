"""
Teacher availability windows.

Windows are the teacher-owned source of truth for when classes may be
booked. No two windows of one teacher overlap, and a window can neither be
re-opened over nor deleted from under an active booking.
"""

from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from lesson_scheduler.core import config
from lesson_scheduler.core.errors import BookingConflict, HasBookings, InvalidRange, InvalidTime, NotFound, Overlap
from lesson_scheduler.core.intervals import Interval, containing, overlapping
from lesson_scheduler.models.availability import AvailabilityWindow
from lesson_scheduler.models.booking import ACTIVE_BOOKING_STATUSES, Booking
from lesson_scheduler.services.base import BaseService, Clock
from lesson_scheduler.services.calendar_guard import CalendarGuard, run_guarded
from lesson_scheduler.services.time_normalizer import to_instant

MAX_NOTE_LENGTH = 2000


class AvailabilityStore(BaseService):
    def __init__(self, db: Session, clock: Clock | None = None) -> None:
        super().__init__(db, clock)
        self.guard = CalendarGuard(db)

    def declare(
        self,
        teacher_id: str,
        start: str | datetime,
        end: str | datetime,
        is_available: bool = True,
        note: str | None = None,
    ) -> int:
        """
        Declare a new window for ``teacher_id`` and return its id.

        Raises:
            InvalidRange: if the range is ill-ordered or shorter than the minimum.
            Overlap: if it overlaps another window of the same teacher.
        """
        try:
            interval = Interval(to_instant(start), to_instant(end))
        except InvalidTime as exc:
            raise InvalidRange(exc.message, details=exc.details) from exc

        if interval.duration < timedelta(minutes=config.MIN_WINDOW_MINUTES):
            raise InvalidRange(
                f'Availability windows must last at least {config.MIN_WINDOW_MINUTES} minutes.',
                details={'start': interval.start.isoformat(), 'end': interval.end.isoformat()},
            )

        def declare_once() -> int:
            with self.transaction():
                seen = self.guard.read_version(teacher_id)
                clash = (
                    self.db.query(AvailabilityWindow)
                    .filter(
                        AvailabilityWindow.teacher_id == teacher_id,
                        overlapping(AvailabilityWindow.start_instant, AvailabilityWindow.end_instant, interval),
                    )
                    .first()
                )
                if clash is not None:
                    raise Overlap(
                        'This window overlaps an existing availability window.',
                        details={'window_id': clash.id},
                    )

                window = AvailabilityWindow(
                    teacher_id=teacher_id,
                    start_instant=interval.start,
                    end_instant=interval.end,
                    is_available=is_available,
                    note=note,
                )
                self.db.add(window)
                self.db.flush()
                self.guard.commit_version(teacher_id, seen)
                window_id = window.id

            self.logger.info('Teacher %s declared window %s (%s)', teacher_id, window_id, interval)
            return window_id

        return run_guarded(
            self.db,
            declare_once,
            lambda: Overlap('Availability changed while saving. Reload and try again.'),
        )

    def get(self, window_id: int) -> AvailabilityWindow:
        window = self.db.query(AvailabilityWindow).filter(AvailabilityWindow.id == window_id).first()
        if window is None:
            raise NotFound('Availability window not found.', details={'window_id': window_id})
        return window

    def query(self, teacher_id: str, date_range: Interval, only_available: bool = False) -> list[AvailabilityWindow]:
        """Windows intersecting ``date_range``, ordered by start."""
        query = self.db.query(AvailabilityWindow).filter(
            AvailabilityWindow.teacher_id == teacher_id,
            overlapping(AvailabilityWindow.start_instant, AvailabilityWindow.end_instant, date_range),
        )
        if only_available:
            query = query.filter(AvailabilityWindow.is_available.is_(True))
        return query.order_by(AvailabilityWindow.start_instant.asc()).all()

    def open_window_containing(self, teacher_id: str, interval: Interval) -> AvailabilityWindow | None:
        return (
            self.db.query(AvailabilityWindow)
            .filter(
                AvailabilityWindow.teacher_id == teacher_id,
                AvailabilityWindow.is_available.is_(True),
                containing(AvailabilityWindow.start_instant, AvailabilityWindow.end_instant, interval),
            )
            .first()
        )

    def set_available(self, window_id: int, available: bool, note: str | None = None) -> AvailabilityWindow:
        """
        Open or close a window.

        Closing never touches bookings inside the window; it only stops new
        ones. Opening is refused while an active booking overlaps the window.
        """
        def set_once() -> AvailabilityWindow:
            with self.transaction():
                window = self.get(window_id)
                seen = self.guard.read_version(window.teacher_id)
                if available and not window.is_available:
                    blocking = self._active_bookings_in(window)
                    if blocking:
                        raise BookingConflict(
                            'This window cannot be reopened while a booking occupies it.',
                            details={'window_id': window.id, 'booking_ids': [b.id for b in blocking]},
                        )
                window.is_available = available
                if note:
                    self.append_note(window, note)
                self.guard.commit_version(window.teacher_id, seen)

            self.logger.info('Window %s is now %s', window_id, 'open' if available else 'closed')
            return window

        return run_guarded(
            self.db,
            set_once,
            lambda: BookingConflict('Availability changed while saving. Reload and try again.'),
        )

    def delete(self, window_id: int) -> None:
        def delete_once() -> None:
            with self.transaction():
                window = self.get(window_id)
                seen = self.guard.read_version(window.teacher_id)
                blocking = self._active_bookings_in(window)
                if blocking:
                    raise HasBookings(
                        'This window has active bookings and cannot be deleted.',
                        details={'window_id': window.id, 'booking_ids': [b.id for b in blocking]},
                    )
                self.db.delete(window)
                self.guard.commit_version(window.teacher_id, seen)

            self.logger.info('Window %s deleted', window_id)

        run_guarded(
            self.db,
            delete_once,
            lambda: HasBookings('Availability changed while deleting. Reload and try again.'),
        )

    def close_windows_covered_by(self, teacher_id: str, interval: Interval, note: str) -> list[int]:
        """
        Mark open windows lying entirely inside ``interval`` as unavailable.

        Runs inside the caller's transaction. Windows that are only partly
        covered stay open so their remaining slots can still be booked.
        """
        covered = (
            self.db.query(AvailabilityWindow)
            .filter(
                AvailabilityWindow.teacher_id == teacher_id,
                AvailabilityWindow.is_available.is_(True),
                AvailabilityWindow.start_instant >= interval.start,
                AvailabilityWindow.end_instant <= interval.end,
            )
            .all()
        )
        for window in covered:
            window.is_available = False
            self.append_note(window, note)
        return [window.id for window in covered]

    def append_note(self, window: AvailabilityWindow, text: str) -> None:
        combined = f'{window.note}\n{text}' if window.note else text
        window.note = combined[-MAX_NOTE_LENGTH:]

    def _active_bookings_in(self, window: AvailabilityWindow) -> list[Booking]:
        interval = Interval(window.start_instant, window.end_instant)
        return (
            self.db.query(Booking)
            .filter(
                Booking.teacher_id == window.teacher_id,
                Booking.status.in_(ACTIVE_BOOKING_STATUSES),
                overlapping(Booking.start_instant, Booking.end_instant, interval),
            )
            .all()
        )
