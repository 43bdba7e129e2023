import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_backend.auth.dependencies import Principal, get_current_doctor, get_current_principal
from clinic_backend.database import get_db
from clinic_backend.models.doctor import Doctor
from clinic_backend.routes.http_errors import booking_http_exception, database_unavailable, ensure_database_ready
from clinic_backend.scheduling import booking_arbiter
from clinic_backend.scheduling.errors import BookingError, MalformedSchedule
from clinic_backend.scheduling.schedule_resolver import parse_slot_time, validate_template

logger = logging.getLogger(__name__)

router = APIRouter(tags=['availability'])


class DayWindow(BaseModel):
    start: str
    end: str


class UpdateScheduleRequest(BaseModel):
    schedule: dict[str, DayWindow | None]

    @field_validator('schedule')
    @classmethod
    def validate_schedule(cls, value: dict[str, DayWindow | None]) -> dict[str, DayWindow | None]:
        raw = {day: window.model_dump() if window else None for day, window in value.items()}
        try:
            normalized = validate_template(raw)
        except MalformedSchedule as exc:
            raise ValueError(exc.message) from exc

        return {day: DayWindow(**window) for day, window in normalized.items()}


class ScheduleResponse(BaseModel):
    doctor_id: int
    schedule: dict[str, DayWindow]


class SlotCheckResponse(BaseModel):
    available: bool
    message: str | None = None


def _schedule_response(doctor: Doctor) -> ScheduleResponse:
    try:
        schedule = validate_template(doctor.schedule or {})
    except MalformedSchedule as exc:
        logger.warning('Hiding malformed working hours for doctor %s: %s', doctor.id, exc.message)
        schedule = {}

    return ScheduleResponse(
        doctor_id=doctor.id,
        schedule={day: DayWindow(**window) for day, window in schedule.items()},
    )


@router.get('/availability/slots', response_model=list[str])
def list_available_slots(
    doctor_id: int = Query(...),
    appointment_date: date = Query(..., alias='date'),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return booking_arbiter.available_slots(db, doctor_id, appointment_date)
    except BookingError as exc:
        raise booking_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/availability/check', response_model=SlotCheckResponse)
def check_slot_availability(
    doctor_id: int = Query(...),
    appointment_date: date = Query(..., alias='date'),
    appointment_time: str = Query(..., alias='time'),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        slot_time = parse_slot_time(appointment_time)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    ensure_database_ready()

    try:
        result = booking_arbiter.check_slot(db, doctor_id, appointment_date, slot_time)
        return SlotCheckResponse(available=result.available, message=result.message)
    except BookingError as exc:
        raise booking_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/doctors/{doctor_id}/schedule', response_model=ScheduleResponse)
def get_doctor_schedule(doctor_id: int, db: Session = Depends(get_db)):
    try:
        doctor = db.get(Doctor, doctor_id)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    if doctor is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Doctor not found.')

    return _schedule_response(doctor)


@router.put('/doctor/schedule', response_model=ScheduleResponse)
def update_my_schedule(
    data: UpdateScheduleRequest,
    principal: Principal = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    try:
        doctor = db.get(Doctor, principal.user_id)
        if doctor is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Doctor not found.')

        doctor.schedule = {
            day: {'start': window.start, 'end': window.end}
            for day, window in data.schedule.items()
            if window is not None
        }
        db.commit()
        db.refresh(doctor)

        return _schedule_response(doctor)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc