from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.orm import Session

from lesson_scheduler.auth.dependencies import CallerIdentity, get_current_user
from lesson_scheduler.core.intervals import Interval
from lesson_scheduler.models.booking import BookingStatus
from lesson_scheduler.models.reservation import ReservationStatus
from lesson_scheduler.routes.availability_routes import require_offset
from lesson_scheduler.routes.common import (
    ensure_database_ready,
    get_clock,
    get_db,
    get_expiry_scheduler,
    scheduling_errors,
)
from lesson_scheduler.services.reservation_manager import ExpiryScheduler, ReservationManager

router = APIRouter(tags=['reservations'])

MAX_BOOKING_NOTES_LENGTH = 600


class CreateReservationRequest(BaseModel):
    teacher_id: str
    student_id: str
    start_time: datetime
    end_time: datetime

    @field_validator('teacher_id', 'student_id')
    @classmethod
    def validate_identifier(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Identifier is required.')
        return normalized

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_offset(cls, value: datetime) -> datetime:
        return require_offset(value)

    @model_validator(mode='after')
    def validate_order(self) -> 'CreateReservationRequest':
        if self.end_time <= self.start_time:
            raise ValueError('end_time must be after start_time.')
        return self


class PromoteReservationRequest(BaseModel):
    notes: str | None = None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_BOOKING_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_BOOKING_NOTES_LENGTH} characters or fewer.')

        return normalized


class ReservationResponse(BaseModel):
    id: str
    teacher_id: str
    student_id: str
    start_instant: datetime
    end_instant: datetime
    expires_at: datetime
    status: ReservationStatus

    class Config:
        from_attributes = True


class BookingResponse(BaseModel):
    id: int
    teacher_id: str
    student_id: str
    start_instant: datetime
    end_instant: datetime
    status: BookingStatus
    notes: str | None = None
    reservation_id: str | None = None

    class Config:
        from_attributes = True


def build_manager(db: Session, clock, scheduler: ExpiryScheduler) -> ReservationManager:
    return ReservationManager(db, clock=clock, scheduler=scheduler)


@router.post('', response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
def create_reservation(
    data: CreateReservationRequest,
    caller: CallerIdentity = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    scheduler: ExpiryScheduler = Depends(get_expiry_scheduler),
):
    ensure_database_ready()

    with scheduling_errors(db):
        caller.require_self(data.student_id)
        return build_manager(db, clock, scheduler).create(
            data.teacher_id,
            data.student_id,
            Interval(data.start_time, data.end_time),
        )


@router.get('/{reservation_id}', response_model=ReservationResponse)
def get_reservation(
    reservation_id: str,
    caller: CallerIdentity = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    scheduler: ExpiryScheduler = Depends(get_expiry_scheduler),
):
    ensure_database_ready()

    with scheduling_errors(db):
        reservation = build_manager(db, clock, scheduler).get(reservation_id)
        caller.require_self(reservation.student_id, 'service')
        return reservation


@router.post('/{reservation_id}/renew', response_model=ReservationResponse)
def renew_reservation(
    reservation_id: str,
    caller: CallerIdentity = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    scheduler: ExpiryScheduler = Depends(get_expiry_scheduler),
):
    ensure_database_ready()

    with scheduling_errors(db):
        manager = build_manager(db, clock, scheduler)
        caller.require_self(manager.get(reservation_id).student_id)
        return manager.renew(reservation_id)


@router.delete('/{reservation_id}', status_code=status.HTTP_204_NO_CONTENT)
def cancel_reservation(
    reservation_id: str,
    caller: CallerIdentity = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    scheduler: ExpiryScheduler = Depends(get_expiry_scheduler),
):
    ensure_database_ready()

    with scheduling_errors(db):
        manager = build_manager(db, clock, scheduler)
        caller.require_self(manager.get(reservation_id).student_id)
        manager.cancel(reservation_id)


@router.post('/{reservation_id}/promote', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def promote_reservation(
    reservation_id: str,
    data: PromoteReservationRequest,
    caller: CallerIdentity = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
    scheduler: ExpiryScheduler = Depends(get_expiry_scheduler),
):
    ensure_database_ready()

    with scheduling_errors(db):
        caller.require_role('service')
        return build_manager(db, clock, scheduler).promote(reservation_id, notes=data.notes)
