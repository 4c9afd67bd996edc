import logging
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from lesson_scheduler.core.errors import InvalidTransition, NotFound
from lesson_scheduler.core.intervals import Interval
from lesson_scheduler.models.booking import Booking, BookingStatus
from lesson_scheduler.services.availability_store import AvailabilityStore
from lesson_scheduler.services.booking_service import BookingService
from lesson_scheduler.services.conflict_checker import ConflictChecker
from lesson_scheduler.services.restoration import RestorationService

TEACHER = 'teacher-1'


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def add_booking(db, start, end, student_id='student-a', status=BookingStatus.CONFIRMED) -> Booking:
    booking = Booking(
        teacher_id=TEACHER,
        student_id=student_id,
        start_instant=start,
        end_instant=end,
        status=status,
    )
    db.add(booking)
    db.commit()
    return booking


@pytest.fixture
def store(db, clock) -> AvailabilityStore:
    return AvailabilityStore(db, clock)


@pytest.fixture
def service(db, clock) -> BookingService:
    return BookingService(db, clock)


def test_cancel_reopens_window_closed_for_the_booking(store, service, db) -> None:
    window_id = store.declare(TEACHER, utc(2024, 6, 3, 13), utc(2024, 6, 3, 13, 30))
    booking = add_booking(db, utc(2024, 6, 3, 13), utc(2024, 6, 3, 13, 30))
    store.set_available(window_id, False)

    cancelled = service.cancel(booking.id)

    assert cancelled.status == BookingStatus.CANCELLED
    window = store.get(window_id)
    assert window.is_available is True
    assert f'Reopened after booking {booking.id} was cancelled' in window.note


def test_cancel_keeps_window_closed_while_another_booking_needs_it(store, service, db) -> None:
    window_id = store.declare(TEACHER, utc(2024, 6, 3, 13), utc(2024, 6, 3, 14))
    first = add_booking(db, utc(2024, 6, 3, 13), utc(2024, 6, 3, 13, 30))
    add_booking(db, utc(2024, 6, 3, 13, 30), utc(2024, 6, 3, 14), student_id='student-b')
    store.set_available(window_id, False)

    service.cancel(first.id)

    assert store.get(window_id).is_available is False


def test_cancel_twice_does_not_restore_twice(store, service, db) -> None:
    window_id = store.declare(TEACHER, utc(2024, 6, 3, 13), utc(2024, 6, 3, 13, 30))
    booking = add_booking(db, utc(2024, 6, 3, 13), utc(2024, 6, 3, 13, 30))
    store.set_available(window_id, False)

    service.cancel(booking.id)
    note_after_first = store.get(window_id).note
    again = service.cancel(booking.id)

    assert again.status == BookingStatus.CANCELLED
    assert store.get(window_id).note == note_after_first


def test_restoration_is_idempotent(store, db, clock) -> None:
    window_id = store.declare(TEACHER, utc(2024, 6, 3, 13), utc(2024, 6, 3, 13, 30), is_available=False)
    booking = add_booking(db, utc(2024, 6, 3, 13), utc(2024, 6, 3, 13, 30), status=BookingStatus.CANCELLED)
    restoration = RestorationService(db, clock)

    assert restoration.on_booking_cancelled(booking) == [window_id]
    assert restoration.on_booking_cancelled(booking) == []


def test_cancel_frees_interval_for_other_students(store, service, db, clock) -> None:
    store.declare(TEACHER, utc(2024, 6, 3, 13), utc(2024, 6, 3, 15))
    booking = add_booking(db, utc(2024, 6, 3, 13), utc(2024, 6, 3, 13, 30))
    interval = Interval(utc(2024, 6, 3, 13), utc(2024, 6, 3, 13, 30))
    checker = ConflictChecker(db, clock)
    assert not checker.is_free(TEACHER, interval, requesting_student_id='student-b')

    service.cancel(booking.id)

    assert checker.is_free(TEACHER, interval, requesting_student_id='student-b')


def test_cancel_succeeds_when_restoration_fails(store, service, db, monkeypatch, caplog) -> None:
    window_id = store.declare(TEACHER, utc(2024, 6, 3, 13), utc(2024, 6, 3, 13, 30), is_available=False)
    booking = add_booking(db, utc(2024, 6, 3, 13), utc(2024, 6, 3, 13, 30))

    def broken_set_available(*args, **kwargs):
        raise OperationalError('UPDATE availability_windows', {}, Exception('database is locked'))

    monkeypatch.setattr(service.restoration.availability, 'set_available', broken_set_available)

    with caplog.at_level(logging.ERROR, logger='lesson_scheduler.services.restoration'):
        cancelled = service.cancel(booking.id)

    assert cancelled.status == BookingStatus.CANCELLED
    assert store.get(window_id).is_available is False
    assert f'Failed to restore window {window_id}' in caplog.text


def test_cancel_succeeds_when_window_lookup_fails(store, service, db, monkeypatch, caplog) -> None:
    window_id = store.declare(TEACHER, utc(2024, 6, 3, 13), utc(2024, 6, 3, 13, 30), is_available=False)
    booking = add_booking(db, utc(2024, 6, 3, 13), utc(2024, 6, 3, 13, 30))

    def broken_query(*args, **kwargs):
        raise OperationalError('SELECT availability_windows', {}, Exception('connection reset'))

    monkeypatch.setattr(service.restoration.availability, 'query', broken_query)

    with caplog.at_level(logging.ERROR, logger='lesson_scheduler.services.restoration'):
        cancelled = service.cancel(booking.id)

    assert cancelled.status == BookingStatus.CANCELLED
    assert service.get(booking.id).status == BookingStatus.CANCELLED
    assert store.get(window_id).is_available is False
    assert f'after booking {booking.id} was cancelled' in caplog.text


def test_cancel_completed_booking_is_refused(service, db) -> None:
    booking = add_booking(db, utc(2024, 6, 3, 13), utc(2024, 6, 3, 13, 30), status=BookingStatus.COMPLETED)

    with pytest.raises(InvalidTransition):
        service.cancel(booking.id)


def test_cancel_past_booking_is_refused(service, db, clock) -> None:
    booking = add_booking(db, utc(2024, 6, 3, 13), utc(2024, 6, 3, 13, 30))
    clock.current = utc(2024, 6, 3, 13, 0)

    with pytest.raises(InvalidTransition):
        service.cancel(booking.id)


def test_cancel_within_a_day_of_class_is_refused(service, db) -> None:
    booking = add_booking(db, utc(2024, 6, 1, 13), utc(2024, 6, 1, 13, 30))

    with pytest.raises(InvalidTransition) as exception_info:
        service.cancel(booking.id)

    assert 'latest_cancellation' in exception_info.value.details
    assert service.get(booking.id).status == BookingStatus.CONFIRMED


def test_cancel_exactly_a_day_ahead_is_allowed(service, db) -> None:
    booking = add_booking(db, utc(2024, 6, 2, 12), utc(2024, 6, 2, 12, 30))

    assert service.cancel(booking.id).status == BookingStatus.CANCELLED


def test_cancellation_notice_is_configurable(service, db, monkeypatch) -> None:
    monkeypatch.setattr('lesson_scheduler.core.config.MIN_CANCELLATION_LEAD_HOURS', 0)
    booking = add_booking(db, utc(2024, 6, 1, 13), utc(2024, 6, 1, 13, 30))

    assert service.cancel(booking.id).status == BookingStatus.CANCELLED


def test_cancel_unknown_booking(service) -> None:
    with pytest.raises(NotFound):
        service.cancel(404)


def test_advance_moves_forward_only(service, db) -> None:
    booking = add_booking(db, utc(2024, 6, 3, 13), utc(2024, 6, 3, 13, 30), status=BookingStatus.PENDING)

    assert service.advance(booking.id, BookingStatus.CONFIRMED).status == BookingStatus.CONFIRMED
    assert service.advance(booking.id, BookingStatus.COMPLETED).status == BookingStatus.COMPLETED

    with pytest.raises(InvalidTransition):
        service.advance(booking.id, BookingStatus.SCHEDULED)


def test_advance_to_cancelled_goes_through_restoration(store, service, db) -> None:
    window_id = store.declare(TEACHER, utc(2024, 6, 3, 13), utc(2024, 6, 3, 13, 30), is_available=False)
    booking = add_booking(db, utc(2024, 6, 3, 13), utc(2024, 6, 3, 13, 30), status=BookingStatus.SCHEDULED)

    service.advance(booking.id, BookingStatus.CANCELLED)

    assert store.get(window_id).is_available is True


def test_cancelled_booking_cannot_be_revived(service, db) -> None:
    booking = add_booking(db, utc(2024, 6, 3, 13), utc(2024, 6, 3, 13, 30), status=BookingStatus.CANCELLED)

    with pytest.raises(InvalidTransition):
        service.advance(booking.id, BookingStatus.CONFIRMED)


def test_listings_hide_cancelled_by_default(service, db) -> None:
    add_booking(db, utc(2024, 6, 3, 14), utc(2024, 6, 3, 14, 30))
    add_booking(db, utc(2024, 6, 3, 13), utc(2024, 6, 3, 13, 30), status=BookingStatus.CANCELLED)
    add_booking(db, utc(2024, 6, 4, 13), utc(2024, 6, 4, 13, 30), student_id='student-b')

    teacher_day = service.list_for_teacher(TEACHER, Interval(utc(2024, 6, 3), utc(2024, 6, 4)))
    student_all = service.list_for_student('student-a', include_cancelled=True)

    assert [b.start_instant for b in teacher_day] == [utc(2024, 6, 3, 14)]
    assert [b.start_instant for b in student_all] == [utc(2024, 6, 3, 13), utc(2024, 6, 3, 14)]
