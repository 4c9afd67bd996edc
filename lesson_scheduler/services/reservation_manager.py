"""
Reservations (temporary holds) on a teacher's time.

A reservation gives one student an exclusive claim on an interval while they
finish checkout. Lifecycle::

    Active -> Promoted | Cancelled | Expired

Every write runs in one guarded transaction spanning the conflict check and
the write. Expiry is driven by one timer per reservation but is also applied
lazily on every read, so an Active row past ``expires_at`` is never treated as
holding anything even if its timer never fired.
"""

import logging
import threading
import uuid
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lesson_scheduler.core import config
from lesson_scheduler.core.errors import (
    CalendarContention,
    InvalidRange,
    InvalidTime,
    NotFound,
    ReservationExpired,
    SlotUnavailable,
)
from lesson_scheduler.core.intervals import Interval, overlapping
from lesson_scheduler.models.booking import ACTIVE_BOOKING_STATUSES, Booking, BookingStatus
from lesson_scheduler.models.reservation import Reservation, ReservationStatus
from lesson_scheduler.services.availability_store import AvailabilityStore
from lesson_scheduler.services.base import BaseService, Clock
from lesson_scheduler.services.calendar_guard import CalendarGuard, run_guarded
from lesson_scheduler.services.conflict_checker import ConflictChecker

logger = logging.getLogger(__name__)


class ExpiryScheduler:
    """Owns exactly one expiry timer per reservation id."""

    def __init__(self, session_factory: Callable[[], Session] | None = None, enabled: bool = True) -> None:
        self.session_factory = session_factory
        self.enabled = enabled and session_factory is not None
        self._timers: dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    def schedule(self, reservation_id: str, expires_at: datetime, now: datetime) -> None:
        if not self.enabled:
            return
        delay = max(0.0, (expires_at - now).total_seconds())
        timer = threading.Timer(delay, self.fire, args=(reservation_id,))
        timer.daemon = True
        with self._lock:
            previous = self._timers.pop(reservation_id, None)
            self._timers[reservation_id] = timer
        if previous is not None:
            previous.cancel()
        timer.start()

    def cancel(self, reservation_id: str) -> None:
        with self._lock:
            timer = self._timers.pop(reservation_id, None)
        if timer is not None:
            timer.cancel()

    def pending(self) -> set[str]:
        with self._lock:
            return set(self._timers)

    def fire(self, reservation_id: str) -> None:
        with self._lock:
            self._timers.pop(reservation_id, None)
        if self.session_factory is None:
            return

        db = self.session_factory()
        try:
            ReservationManager(db, scheduler=self).expire(reservation_id)
        except Exception:
            # Lazy expiry on read still applies, so a failed timer only delays cleanup.
            logger.exception('Expiry timer failed for reservation %s', reservation_id)
        finally:
            db.close()

    def shutdown(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()


_disabled_scheduler = ExpiryScheduler(enabled=False)


class ReservationManager(BaseService):
    def __init__(
        self,
        db: Session,
        clock: Clock | None = None,
        scheduler: ExpiryScheduler | None = None,
    ) -> None:
        super().__init__(db, clock)
        self.scheduler = scheduler or _disabled_scheduler
        self.guard = CalendarGuard(db)
        self.conflicts = ConflictChecker(db, clock)
        self.availability = AvailabilityStore(db, clock)

    @property
    def ttl(self) -> timedelta:
        return timedelta(minutes=config.RESERVATION_TTL_MINUTES)

    def get(self, reservation_id: str) -> Reservation:
        """Load a reservation, settling its expiry if the deadline has passed."""
        reservation = self._load(reservation_id)
        if self._settle_expiry(reservation, self.now()):
            self.db.commit()
            self.scheduler.cancel(reservation.id)
        return reservation

    def active_for_student(self, student_id: str) -> Reservation | None:
        return (
            self.db.query(Reservation)
            .filter(
                Reservation.student_id == student_id,
                Reservation.status == ReservationStatus.ACTIVE,
                Reservation.expires_at > self.now(),
            )
            .order_by(Reservation.created_at.desc())
            .first()
        )

    def create(self, teacher_id: str, student_id: str, interval: Interval) -> Reservation:
        """
        Place a hold for ``student_id`` on ``interval``.

        Any hold the student already has is cancelled in the same transaction,
        so a failed attempt leaves the previous hold in place.

        Only whole slots can be held: the interval must last exactly one slot
        and sit on the slot grid of the window that contains it.

        Raises:
            InvalidRange: if the interval is not a single slot.
            InvalidTime: if the interval starts too soon.
            SlotUnavailable: if the interval is not free, or the race for it was lost twice.
        """
        slot_length = timedelta(minutes=config.SLOT_DURATION_MINUTES)
        if interval.duration != slot_length:
            raise InvalidRange(
                f'Reservations must cover exactly one {config.SLOT_DURATION_MINUTES}-minute slot.',
                details={'start': interval.start.isoformat(), 'end': interval.end.isoformat()},
            )

        now = self.now()
        earliest_start = now + timedelta(hours=config.MIN_BOOKING_LEAD_HOURS)
        if interval.start < earliest_start:
            raise InvalidTime(
                f'Classes must be reserved at least {config.MIN_BOOKING_LEAD_HOURS} hours in advance.',
                details={'start': interval.start.isoformat(), 'earliest_start': earliest_start.isoformat()},
            )

        released: list[str] = []

        def create_once() -> Reservation:
            released.clear()
            with self.transaction():
                seen = self.guard.read_version(teacher_id)
                released.extend(self._cancel_holds_of(student_id, now))

                conflict = self.conflicts.find_conflict(teacher_id, interval, requesting_student_id=student_id)
                if conflict is not None:
                    raise SlotUnavailable(
                        'This time is no longer available. Refresh and pick another slot.',
                        details={'reason': conflict.value},
                    )

                window = self.availability.open_window_containing(teacher_id, interval)
                if (interval.start - window.start_instant) % slot_length:
                    raise InvalidRange(
                        'Reservations must start on a slot boundary of the availability window.',
                        details={'start': interval.start.isoformat(), 'window_start': window.start_instant.isoformat()},
                    )

                reservation = Reservation(
                    id=uuid.uuid4().hex,
                    teacher_id=teacher_id,
                    student_id=student_id,
                    start_instant=interval.start,
                    end_instant=interval.end,
                    expires_at=now + self.ttl,
                    status=ReservationStatus.ACTIVE,
                    created_at=now,
                )
                self._insert_hold(reservation)
                self.guard.commit_version(teacher_id, seen)
            return reservation

        reservation = run_guarded(
            self.db,
            create_once,
            lambda: SlotUnavailable('This time was just taken. Refresh and pick another slot.'),
        )

        for reservation_id in released:
            self.scheduler.cancel(reservation_id)
        self.scheduler.schedule(reservation.id, reservation.expires_at, now)
        logger.info(
            'Reservation %s created for student %s with teacher %s (%s)',
            reservation.id, student_id, teacher_id, interval,
        )
        return reservation

    def renew(self, reservation_id: str) -> Reservation:
        """
        Replace an active hold with a fresh one over the same interval.

        Raises:
            ReservationExpired: if the hold is no longer active.
            SlotUnavailable: if the interval stopped being free for the holder.
        """
        now = self.now()
        self._require_active(reservation_id, now)

        def renew_once() -> tuple[Reservation, Reservation]:
            with self.transaction():
                current = self._load(reservation_id)
                seen = self.guard.read_version(current.teacher_id)
                if not current.is_active_at(now):
                    raise ReservationExpired('This reservation has already ended.')

                interval = Interval(current.start_instant, current.end_instant)
                conflict = self.conflicts.find_conflict(
                    current.teacher_id,
                    interval,
                    requesting_student_id=current.student_id,
                    exclude_reservation_id=current.id,
                )
                if conflict is not None:
                    raise SlotUnavailable(
                        'This time is no longer available. Refresh and pick another slot.',
                        details={'reason': conflict.value},
                    )

                current.status = ReservationStatus.CANCELLED
                renewed = Reservation(
                    id=uuid.uuid4().hex,
                    teacher_id=current.teacher_id,
                    student_id=current.student_id,
                    start_instant=current.start_instant,
                    end_instant=current.end_instant,
                    expires_at=now + self.ttl,
                    status=ReservationStatus.ACTIVE,
                    created_at=now,
                )
                self._insert_hold(renewed)
                self.guard.commit_version(current.teacher_id, seen)
            return current, renewed

        previous, renewed = run_guarded(
            self.db,
            renew_once,
            lambda: SlotUnavailable('This time was just taken. Refresh and pick another slot.'),
        )
        self.scheduler.cancel(previous.id)
        self.scheduler.schedule(renewed.id, renewed.expires_at, now)
        logger.info('Reservation %s renewed as %s', previous.id, renewed.id)
        return renewed

    def needs_renewal(self, reservation: Reservation) -> bool:
        """True once the hold is within the keep-alive lead of its expiry."""
        now = self.now()
        lead = timedelta(seconds=config.RESERVATION_RENEWAL_LEAD_SECONDS)
        return reservation.is_active_at(now) and reservation.expires_at - now <= lead

    def cancel(self, reservation_id: str) -> Reservation:
        """Release the interval immediately. Cancelling a finished reservation is a no-op."""
        now = self.now()
        with self.transaction():
            reservation = self._load(reservation_id)
            if not self._settle_expiry(reservation, now) and reservation.status == ReservationStatus.ACTIVE:
                reservation.status = ReservationStatus.CANCELLED
                logger.info('Reservation %s cancelled', reservation_id)
        self.scheduler.cancel(reservation_id)
        return reservation

    def expire(self, reservation_id: str) -> Reservation | None:
        """Expire a hold if it is still Active. Safe to call any number of times."""
        with self.transaction():
            reservation = self.db.query(Reservation).filter(Reservation.id == reservation_id).first()
            if reservation is None:
                logger.debug('Expiry for unknown reservation %s ignored', reservation_id)
                return None
            if reservation.status == ReservationStatus.ACTIVE:
                reservation.status = ReservationStatus.EXPIRED
                logger.info('Reservation %s expired', reservation_id)
        self.scheduler.cancel(reservation_id)
        return reservation

    def promote(self, reservation_id: str, notes: str | None = None) -> Booking:
        """
        Turn an active hold into a Pending booking.

        Promoting an already promoted reservation returns its booking, so a
        retried checkout confirmation does not fail.

        Raises:
            ReservationExpired: if the hold expired or was cancelled.
            SlotUnavailable: if another active booking already overlaps the interval.
        """
        now = self.now()
        existing = self._booking_for(reservation_id)
        if existing is not None:
            return existing
        self._require_active(reservation_id, now)

        def promote_once() -> Booking:
            with self.transaction():
                reservation = self._load(reservation_id)
                seen = self.guard.read_version(reservation.teacher_id)
                if not reservation.is_active_at(now):
                    raise ReservationExpired('This reservation has already ended. Reserve the slot again.')

                interval = Interval(reservation.start_instant, reservation.end_instant)
                clash = (
                    self.db.query(Booking)
                    .filter(
                        Booking.teacher_id == reservation.teacher_id,
                        Booking.status.in_(ACTIVE_BOOKING_STATUSES),
                        overlapping(Booking.start_instant, Booking.end_instant, interval),
                    )
                    .first()
                )
                if clash is not None:
                    raise SlotUnavailable(
                        'This time is already booked.',
                        details={'booking_id': clash.id},
                    )

                booking = Booking(
                    teacher_id=reservation.teacher_id,
                    student_id=reservation.student_id,
                    start_instant=reservation.start_instant,
                    end_instant=reservation.end_instant,
                    status=BookingStatus.PENDING,
                    notes=notes,
                    reservation_id=reservation.id,
                    created_at=now,
                    updated_at=now,
                )
                self.db.add(booking)
                self.db.flush()
                reservation.status = ReservationStatus.PROMOTED
                self.availability.close_windows_covered_by(
                    reservation.teacher_id,
                    interval,
                    note=f'Closed for booking {booking.id} at {now.isoformat()}',
                )
                self.guard.commit_version(reservation.teacher_id, seen)
            return booking

        booking = run_guarded(
            self.db,
            promote_once,
            lambda: SlotUnavailable('This time was just taken. Refresh and pick another slot.'),
        )
        self.scheduler.cancel(reservation_id)
        logger.info('Reservation %s promoted to booking %s', reservation_id, booking.id)
        return booking

    def _load(self, reservation_id: str) -> Reservation:
        reservation = self.db.query(Reservation).filter(Reservation.id == reservation_id).first()
        if reservation is None:
            raise NotFound('Reservation not found.', details={'reservation_id': reservation_id})
        return reservation

    def _require_active(self, reservation_id: str, now: datetime) -> None:
        reservation = self._load(reservation_id)
        if self._settle_expiry(reservation, now):
            self.db.commit()
            self.scheduler.cancel(reservation_id)
        if reservation.status != ReservationStatus.ACTIVE:
            raise ReservationExpired(
                'This reservation has already ended. Reserve the slot again.',
                details={'reservation_id': reservation_id, 'status': reservation.status.value},
            )

    def _settle_expiry(self, reservation: Reservation, now: datetime) -> bool:
        if reservation.status == ReservationStatus.ACTIVE and reservation.expires_at <= now:
            reservation.status = ReservationStatus.EXPIRED
            return True
        return False

    def _cancel_holds_of(self, student_id: str, now: datetime) -> list[str]:
        holds = (
            self.db.query(Reservation)
            .filter(
                Reservation.student_id == student_id,
                Reservation.status == ReservationStatus.ACTIVE,
            )
            .all()
        )
        for hold in holds:
            if not self._settle_expiry(hold, now):
                hold.status = ReservationStatus.CANCELLED
        return [hold.id for hold in holds]

    def _insert_hold(self, reservation: Reservation) -> None:
        # Released holds are written first so the one-active-hold-per-student index sees them.
        self.db.flush()
        self.db.add(reservation)
        try:
            self.db.flush()
        except IntegrityError as exc:
            # A hold for the same student, possibly with another teacher, committed first.
            raise CalendarContention(reservation.teacher_id) from exc

    def _booking_for(self, reservation_id: str) -> Booking | None:
        return self.db.query(Booking).filter(Booking.reservation_id == reservation_id).first()
