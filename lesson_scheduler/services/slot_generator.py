"""
Slot generation.

Open windows are tiled into fixed-length slots starting at each window's
start. A trailing piece shorter than the slot length is dropped. Slot ids are
derived from teacher and UTC bounds only, so the same slot keeps its id across
refreshes and viewer zones.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterator

from sqlalchemy.orm import Session

from lesson_scheduler.core import config
from lesson_scheduler.core.errors import InvalidRange
from lesson_scheduler.core.intervals import Interval
from lesson_scheduler.services import time_normalizer
from lesson_scheduler.services.availability_store import AvailabilityStore
from lesson_scheduler.services.base import BaseService, Clock
from lesson_scheduler.services.conflict_checker import ConflictChecker

SLOT_ID_FORMAT = '%Y%m%dT%H%MZ'


@dataclass(frozen=True)
class Slot:
    id: str
    teacher_id: str
    start_instant: datetime
    end_instant: datetime
    date: str
    display_start: str
    display_end: str
    zone: str
    utc_offset: str = '+00:00'

    @property
    def interval(self) -> Interval:
        return Interval(self.start_instant, self.end_instant)


def slot_id(teacher_id: str, start: datetime, end: datetime) -> str:
    return f'{teacher_id}:{start.strftime(SLOT_ID_FORMAT)}-{end.strftime(SLOT_ID_FORMAT)}'


def tile(window: Interval, duration: timedelta) -> Iterator[Interval]:
    current = window.start
    while current + duration <= window.end:
        yield Interval(current, current + duration)
        current += duration


class SlotGenerator(BaseService):
    def __init__(self, db: Session, clock: Clock | None = None) -> None:
        super().__init__(db, clock)
        self.availability = AvailabilityStore(db, clock)
        self.conflicts = ConflictChecker(db, clock)

    def generate(
        self,
        teacher_id: str,
        date_utc: date,
        duration_minutes: int | None = None,
        viewer_zone: str | None = None,
    ) -> Iterator[Slot]:
        """
        Slots starting on the UTC date ``date_utc``, from the teacher's open windows.

        Arguments are checked when called; windows are read lazily on iteration.
        """
        if duration_minutes is None:
            duration_minutes = config.SLOT_DURATION_MINUTES
        if duration_minutes <= 0:
            raise InvalidRange('Slot duration must be positive.', details={'duration_minutes': duration_minutes})

        return self._tile_day(
            teacher_id,
            time_normalizer.utc_day_bounds(date_utc),
            timedelta(minutes=duration_minutes),
            time_normalizer.resolve_zone(viewer_zone),
        )

    def _tile_day(self, teacher_id: str, day: Interval, duration: timedelta, zone: str) -> Iterator[Slot]:
        for window in self.availability.query(teacher_id, day, only_available=True):
            for piece in tile(Interval(window.start_instant, window.end_instant), duration):
                if not day.start <= piece.start < day.end:
                    continue
                projection = time_normalizer.project(piece.start, zone, end=piece.end)
                yield Slot(
                    id=slot_id(teacher_id, piece.start, piece.end),
                    teacher_id=teacher_id,
                    start_instant=piece.start,
                    end_instant=piece.end,
                    date=projection.date,
                    display_start=projection.display_start,
                    display_end=projection.display_end,
                    zone=projection.zone,
                    utc_offset=projection.utc_offset,
                )

    def free_slots(
        self,
        teacher_id: str,
        date_utc: date,
        viewer_zone: str | None = None,
        student_id: str | None = None,
        duration_minutes: int | None = None,
    ) -> list[Slot]:
        """Generated slots that are bookable right now by ``student_id``."""
        earliest_start = self.now() + timedelta(hours=config.MIN_BOOKING_LEAD_HOURS)
        return [
            slot
            for slot in self.generate(teacher_id, date_utc, duration_minutes, viewer_zone)
            if slot.start_instant >= earliest_start
            and self.conflicts.is_free(teacher_id, slot.interval, requesting_student_id=student_id)
        ]
