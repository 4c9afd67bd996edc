from datetime import date, datetime, timezone

import pytest

from lesson_scheduler.core.errors import InvalidRange
from lesson_scheduler.models.booking import Booking, BookingStatus
from lesson_scheduler.services.availability_store import AvailabilityStore
from lesson_scheduler.services.slot_generator import SlotGenerator, slot_id

TEACHER = 'teacher-1'
DAY = date(2024, 6, 3)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def store(db, clock) -> AvailabilityStore:
    return AvailabilityStore(db, clock)


@pytest.fixture
def generator(db, clock) -> SlotGenerator:
    return SlotGenerator(db, clock)


def test_two_hour_window_yields_four_slots_inside_it(store, generator) -> None:
    store.declare(TEACHER, utc(2024, 6, 3, 9), utc(2024, 6, 3, 11))

    slots = list(generator.generate(TEACHER, DAY))

    assert [(s.start_instant, s.end_instant) for s in slots] == [
        (utc(2024, 6, 3, 9, 0), utc(2024, 6, 3, 9, 30)),
        (utc(2024, 6, 3, 9, 30), utc(2024, 6, 3, 10, 0)),
        (utc(2024, 6, 3, 10, 0), utc(2024, 6, 3, 10, 30)),
        (utc(2024, 6, 3, 10, 30), utc(2024, 6, 3, 11, 0)),
    ]


def test_partial_trailing_slot_is_dropped(store, generator) -> None:
    store.declare(TEACHER, utc(2024, 6, 3, 9), utc(2024, 6, 3, 9, 45))

    slots = list(generator.generate(TEACHER, DAY))

    assert len(slots) == 1
    assert (slots[0].start_instant, slots[0].end_instant) == (utc(2024, 6, 3, 9, 0), utc(2024, 6, 3, 9, 30))


def test_tiling_starts_at_window_start_not_on_the_hour(store, generator) -> None:
    store.declare(TEACHER, utc(2024, 6, 3, 9, 10), utc(2024, 6, 3, 10, 10))

    slots = list(generator.generate(TEACHER, DAY))

    assert [s.start_instant for s in slots] == [utc(2024, 6, 3, 9, 10), utc(2024, 6, 3, 9, 40)]


def test_closed_windows_and_other_days_produce_no_slots(store, generator) -> None:
    store.declare(TEACHER, utc(2024, 6, 3, 9), utc(2024, 6, 3, 10), is_available=False)
    store.declare(TEACHER, utc(2024, 6, 4, 9), utc(2024, 6, 4, 10))

    assert list(generator.generate(TEACHER, DAY)) == []


def test_window_across_midnight_splits_by_utc_date(store, generator) -> None:
    store.declare(TEACHER, utc(2024, 6, 3, 23), utc(2024, 6, 4, 1))

    first_day = list(generator.generate(TEACHER, DAY))
    second_day = list(generator.generate(TEACHER, date(2024, 6, 4)))

    assert [s.start_instant for s in first_day] == [utc(2024, 6, 3, 23, 0), utc(2024, 6, 3, 23, 30)]
    assert [s.start_instant for s in second_day] == [utc(2024, 6, 4, 0, 0), utc(2024, 6, 4, 0, 30)]


def test_slots_carry_viewer_zone_projection(store, generator) -> None:
    store.declare(TEACHER, utc(2024, 6, 3, 13), utc(2024, 6, 3, 14))

    slots = list(generator.generate(TEACHER, DAY, viewer_zone='America/Sao_Paulo'))

    assert [(s.date, s.display_start, s.display_end) for s in slots] == [
        ('2024-06-03', '10:00', '10:30'),
        ('2024-06-03', '10:30', '11:00'),
    ]
    assert {s.zone for s in slots} == {'America/Sao_Paulo'}
    assert {s.utc_offset for s in slots} == {'-03:00'}


def test_unknown_viewer_zone_falls_back_to_utc(store, generator) -> None:
    store.declare(TEACHER, utc(2024, 6, 3, 13), utc(2024, 6, 3, 13, 30))

    [slot] = generator.generate(TEACHER, DAY, viewer_zone='Nowhere/Special')

    assert slot.zone == 'Etc/UTC'
    assert slot.display_start == '13:00'


def test_slot_ids_are_stable_across_queries_and_zones(store, generator) -> None:
    store.declare(TEACHER, utc(2024, 6, 3, 13), utc(2024, 6, 3, 14))

    first = [s.id for s in generator.generate(TEACHER, DAY, viewer_zone='Asia/Tokyo')]
    second = [s.id for s in generator.generate(TEACHER, DAY, viewer_zone='Europe/Berlin')]

    assert first == second
    assert first[0] == slot_id(TEACHER, utc(2024, 6, 3, 13), utc(2024, 6, 3, 13, 30))
    assert first[0] == 'teacher-1:20240603T1300Z-20240603T1330Z'


def test_custom_duration(store, generator) -> None:
    store.declare(TEACHER, utc(2024, 6, 3, 9), utc(2024, 6, 3, 11))

    slots = list(generator.generate(TEACHER, DAY, duration_minutes=60))

    assert [s.start_instant for s in slots] == [utc(2024, 6, 3, 9), utc(2024, 6, 3, 10)]


@pytest.mark.parametrize('duration_minutes', [0, -30])
def test_non_positive_duration_is_rejected_at_call_time(generator, duration_minutes) -> None:
    with pytest.raises(InvalidRange):
        generator.generate(TEACHER, DAY, duration_minutes=duration_minutes)


def test_free_slots_hide_booked_part_of_open_window(store, generator, db) -> None:
    store.declare(TEACHER, utc(2024, 6, 3, 9), utc(2024, 6, 3, 11))
    db.add(
        Booking(
            teacher_id=TEACHER,
            student_id='student-1',
            start_instant=utc(2024, 6, 3, 9, 30),
            end_instant=utc(2024, 6, 3, 10),
            status=BookingStatus.CONFIRMED,
        )
    )
    db.commit()

    free = generator.free_slots(TEACHER, DAY, student_id='student-2')

    assert [s.start_instant for s in free] == [
        utc(2024, 6, 3, 9, 0),
        utc(2024, 6, 3, 10, 0),
        utc(2024, 6, 3, 10, 30),
    ]


def test_free_slots_skip_slots_inside_booking_lead_time(store, generator, clock) -> None:
    store.declare(TEACHER, utc(2024, 6, 3, 9), utc(2024, 6, 3, 11))
    clock.current = utc(2024, 6, 2, 10, 0)

    free = generator.free_slots(TEACHER, DAY)

    assert [s.start_instant for s in free] == [utc(2024, 6, 3, 10, 0), utc(2024, 6, 3, 10, 30)]
