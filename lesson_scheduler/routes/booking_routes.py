from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from lesson_scheduler.auth.dependencies import CallerIdentity, get_current_user
from lesson_scheduler.core.errors import Unauthorized
from lesson_scheduler.models.booking import Booking, BookingStatus
from lesson_scheduler.routes.common import ensure_database_ready, get_clock, get_db, scheduling_errors
from lesson_scheduler.routes.reservation_routes import BookingResponse
from lesson_scheduler.services.booking_service import BookingService

router = APIRouter(tags=['bookings'])


class AdvanceBookingRequest(BaseModel):
    status: BookingStatus


def require_participant(caller: CallerIdentity, booking: Booking) -> None:
    if caller.is_admin or caller.subject in {booking.student_id, booking.teacher_id}:
        return
    raise Unauthorized('Only the student or teacher of this class can change it.')


@router.get('', response_model=list[BookingResponse])
def list_bookings(
    teacher_id: str | None = Query(default=None),
    student_id: str | None = Query(default=None),
    include_cancelled: bool = Query(default=False),
    caller: CallerIdentity = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if (teacher_id is None) == (student_id is None):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Provide exactly one of teacher_id or student_id.',
        )

    ensure_database_ready()

    with scheduling_errors(db):
        service = BookingService(db)
        if teacher_id is not None:
            caller.require_self(teacher_id)
            return service.list_for_teacher(teacher_id, include_cancelled=include_cancelled)
        caller.require_self(student_id)
        return service.list_for_student(student_id, include_cancelled=include_cancelled)


@router.post('/{booking_id}/cancel', response_model=BookingResponse)
def cancel_booking(
    booking_id: int,
    caller: CallerIdentity = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    ensure_database_ready()

    with scheduling_errors(db):
        service = BookingService(db, clock)
        require_participant(caller, service.get(booking_id))
        return service.cancel(booking_id)


@router.post('/{booking_id}/status', response_model=BookingResponse)
def advance_booking(
    booking_id: int,
    data: AdvanceBookingRequest,
    caller: CallerIdentity = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    ensure_database_ready()

    with scheduling_errors(db):
        service = BookingService(db, clock)
        booking = service.get(booking_id)
        if data.status == BookingStatus.CANCELLED:
            require_participant(caller, booking)
        elif not (caller.is_admin or caller.role == 'service' or caller.subject == booking.teacher_id):
            raise Unauthorized('Only the teacher can confirm or complete this class.')
        return service.advance(booking_id, data.status)
