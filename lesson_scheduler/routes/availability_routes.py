from datetime import date, datetime

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from lesson_scheduler.auth.dependencies import CallerIdentity, get_current_user
from lesson_scheduler.routes.common import ensure_database_ready, get_clock, get_db, scheduling_errors
from lesson_scheduler.services import time_normalizer
from lesson_scheduler.services.availability_store import AvailabilityStore
from lesson_scheduler.services.slot_generator import SlotGenerator

router = APIRouter(tags=['availability'])

MAX_WINDOW_NOTE_LENGTH = 600


def require_offset(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError('Timestamps must include a UTC offset or Z.')
    return time_normalizer.to_instant(value)


def normalize_note(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_WINDOW_NOTE_LENGTH:
        raise ValueError(f'Notes must be {MAX_WINDOW_NOTE_LENGTH} characters or fewer.')

    return normalized


class DeclareWindowRequest(BaseModel):
    start_time: datetime
    end_time: datetime
    is_available: bool = True
    note: str | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_offset(cls, value: datetime) -> datetime:
        return require_offset(value)

    @field_validator('note')
    @classmethod
    def validate_note(cls, value: str | None) -> str | None:
        return normalize_note(value)


class SetAvailableRequest(BaseModel):
    is_available: bool
    note: str | None = None

    @field_validator('note')
    @classmethod
    def validate_note(cls, value: str | None) -> str | None:
        return normalize_note(value)


class WindowResponse(BaseModel):
    id: int
    teacher_id: str
    start_instant: datetime
    end_instant: datetime
    is_available: bool
    note: str | None = None

    class Config:
        from_attributes = True


class SlotResponse(BaseModel):
    id: str
    teacher_id: str
    start_instant: datetime
    end_instant: datetime
    date: str
    display_start: str
    display_end: str
    zone: str
    utc_offset: str

    class Config:
        from_attributes = True


@router.get('/{teacher_id}/slots', response_model=list[SlotResponse])
def get_slots(
    teacher_id: str,
    slot_date: date = Query(..., alias='date'),
    zone: str | None = Query(default=None),
    student_id: str | None = Query(default=None),
    duration_minutes: int | None = Query(default=None, ge=15, le=240),
    caller: CallerIdentity = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    if student_id is None and caller.role == 'student':
        student_id = caller.subject

    ensure_database_ready()

    with scheduling_errors(db):
        return SlotGenerator(db, clock).free_slots(
            teacher_id,
            slot_date,
            viewer_zone=zone,
            student_id=student_id,
            duration_minutes=duration_minutes,
        )


@router.get('/{teacher_id}/windows', response_model=list[WindowResponse])
def list_windows(
    teacher_id: str,
    start_time: datetime = Query(...),
    end_time: datetime = Query(...),
    caller: CallerIdentity = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with scheduling_errors(db):
        window_range = time_normalizer.to_interval(start_time, end_time)
        ensure_database_ready()
        return AvailabilityStore(db).query(teacher_id, window_range)


@router.post('/{teacher_id}/windows', response_model=WindowResponse, status_code=status.HTTP_201_CREATED)
def declare_window(
    teacher_id: str,
    data: DeclareWindowRequest,
    caller: CallerIdentity = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with scheduling_errors(db):
        caller.require_self(teacher_id)
        store = AvailabilityStore(db)
        window_id = store.declare(
            teacher_id,
            data.start_time,
            data.end_time,
            is_available=data.is_available,
            note=data.note,
        )
        return store.get(window_id)


@router.patch('/windows/{window_id}', response_model=WindowResponse)
def set_window_available(
    window_id: int,
    data: SetAvailableRequest,
    caller: CallerIdentity = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with scheduling_errors(db):
        store = AvailabilityStore(db)
        caller.require_self(store.get(window_id).teacher_id)
        return store.set_available(window_id, data.is_available, note=data.note)


@router.delete('/windows/{window_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_window(
    window_id: int,
    caller: CallerIdentity = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    with scheduling_errors(db):
        store = AvailabilityStore(db)
        caller.require_self(store.get(window_id).teacher_id)
        store.delete(window_id)

    return Response(status_code=status.HTTP_204_NO_CONTENT)
