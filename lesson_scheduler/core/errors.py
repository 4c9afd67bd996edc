"""
Scheduling error taxonomy.

Every failure the engine reports is one of these kinds. Callers branch on the
exception type or its ``code`` and never on the message text. ``retryable``
tells the caller whether refreshing and trying again can succeed.
"""

from typing import Any

from fastapi import HTTPException, status


class SchedulingError(Exception):
    """Base class for all scheduling errors."""

    status_code = status.HTTP_400_BAD_REQUEST
    retryable = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.code = self.__class__.__name__
        self.details = details or {}
        super().__init__(message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                'message': self.message,
                'code': self.code,
                'retryable': self.retryable,
                'details': self.details,
            },
        )


class InvalidTime(SchedulingError):
    """Unparsable or ill-ordered time input."""


class InvalidRange(SchedulingError):
    """A window or reservation whose bounds do not fit the slot rules."""


class Overlap(SchedulingError):
    status_code = status.HTTP_409_CONFLICT


class SlotUnavailable(SchedulingError):
    """Lost a race for an interval; refresh slots and let the user re-pick."""

    status_code = status.HTTP_409_CONFLICT
    retryable = True


class ReservationExpired(SchedulingError):
    status_code = status.HTTP_410_GONE
    retryable = True


class BookingConflict(SchedulingError):
    status_code = status.HTTP_409_CONFLICT


class HasBookings(SchedulingError):
    status_code = status.HTTP_409_CONFLICT


class InvalidTransition(SchedulingError):
    status_code = status.HTTP_409_CONFLICT


class Unauthorized(SchedulingError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(SchedulingError):
    status_code = status.HTTP_404_NOT_FOUND


class CalendarContention(Exception):
    """Another writer committed to the same teacher calendar mid-transaction."""
