"""Half-open time intervals and the one overlap rule used across the engine."""

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_

from lesson_scheduler.core.errors import InvalidTime


@dataclass(frozen=True)
class Interval:
    """``[start, end)`` between two aware UTC instants."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise InvalidTime('Interval bounds must be absolute instants.')
        if self.start >= self.end:
            raise InvalidTime(
                'Interval start must be before its end.',
                details={'start': self.start.isoformat(), 'end': self.end.isoformat()},
            )

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: 'Interval') -> bool:
        # Touching endpoints do not overlap.
        return self.start < other.end and other.start < self.end

    def contains(self, other: 'Interval') -> bool:
        return self.start <= other.start and other.end <= self.end


def overlapping(start_column, end_column, interval: Interval):
    """SQL form of :meth:`Interval.overlaps` for rows with start/end columns."""
    return and_(start_column < interval.end, end_column > interval.start)


def containing(start_column, end_column, interval: Interval):
    return and_(start_column <= interval.start, end_column >= interval.end)
