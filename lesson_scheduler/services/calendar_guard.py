"""
Compare-and-set guard over a teacher's calendar.

Writers read the teacher's calendar version (locking the row where the backend
supports ``SELECT ... FOR UPDATE``), run their checks, write, and finally bump
the version only if it is still the one they read. A writer that loses the
race gets :class:`CalendarContention` and its whole transaction is rolled
back, so a free-check and the write that relies on it are never split.
"""

import logging
from typing import Callable, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lesson_scheduler.core.errors import CalendarContention, SchedulingError
from lesson_scheduler.models.teacher_calendar import TeacherCalendar

logger = logging.getLogger(__name__)

T = TypeVar('T')

GUARDED_ATTEMPTS = 2


class CalendarGuard:
    def __init__(self, db: Session) -> None:
        self.db = db

    def read_version(self, teacher_id: str) -> int:
        calendar = (
            self.db.query(TeacherCalendar)
            .filter(TeacherCalendar.teacher_id == teacher_id)
            .with_for_update()
            .first()
        )
        if calendar is not None:
            return calendar.version

        self.db.add(TeacherCalendar(teacher_id=teacher_id, version=0))
        try:
            self.db.flush()
        except IntegrityError as exc:
            raise CalendarContention(teacher_id) from exc
        return 0

    def commit_version(self, teacher_id: str, seen_version: int) -> None:
        updated = (
            self.db.query(TeacherCalendar)
            .filter(
                TeacherCalendar.teacher_id == teacher_id,
                TeacherCalendar.version == seen_version,
            )
            .update({TeacherCalendar.version: seen_version + 1}, synchronize_session=False)
        )
        if updated != 1:
            raise CalendarContention(teacher_id)


def run_guarded(
    db: Session,
    operation: Callable[[], T],
    on_exhausted: Callable[[], SchedulingError],
) -> T:
    """
    Run ``operation`` (which commits its own guarded transaction), retrying
    once after losing a compare-and-set. A second loss raises ``on_exhausted()``.
    """
    for attempt in range(1, GUARDED_ATTEMPTS + 1):
        try:
            return operation()
        except CalendarContention as exc:
            db.rollback()
            logger.info('Calendar for teacher %s changed concurrently (attempt %d)', exc, attempt)
    raise on_exhausted()
