from datetime import date

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_backend.auth.dependencies import Principal, get_current_doctor, get_current_patient
from clinic_backend.database import get_db
from clinic_backend.models.appointment import APPOINTMENT_STATUSES, MAX_CANCELLATION_REASON_LENGTH, Appointment
from clinic_backend.routes.http_errors import booking_http_exception, database_unavailable, ensure_database_ready
from clinic_backend.scheduling import booking_arbiter
from clinic_backend.scheduling.errors import BookingError
from clinic_backend.scheduling.schedule_resolver import format_slot_time, parse_slot_time

router = APIRouter(tags=['appointments'])


def _normalize_slot_time(value: str) -> str:
    return format_slot_time(parse_slot_time(value))


class CreateAppointmentRequest(BaseModel):
    doctor_id: int
    appointment_date: date
    appointment_time: str

    @field_validator('appointment_time')
    @classmethod
    def validate_appointment_time(cls, value: str) -> str:
        return _normalize_slot_time(value)


class RescheduleAppointmentRequest(BaseModel):
    new_date: date
    new_time: str

    @field_validator('new_time')
    @classmethod
    def validate_new_time(cls, value: str) -> str:
        return _normalize_slot_time(value)


class CancelAppointmentRequest(BaseModel):
    reason: str

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('A cancellation reason is required.')
        if len(normalized) > MAX_CANCELLATION_REASON_LENGTH:
            raise ValueError(f'Cancellation reason must be {MAX_CANCELLATION_REASON_LENGTH} characters or fewer.')
        return normalized


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    doctor_id: int
    appointment_date: date
    appointment_time: str
    status: str
    previous_date: date | None = None
    previous_time: str | None = None
    reschedule_count: int
    cancellation_reason: str | None = None


class MessageResponse(BaseModel):
    message: str


def to_appointment_response(appointment: Appointment) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        patient_id=appointment.patient_id,
        doctor_id=appointment.doctor_id,
        appointment_date=appointment.appointment_date,
        appointment_time=format_slot_time(appointment.appointment_time),
        status=appointment.status,
        previous_date=appointment.previous_date,
        previous_time=format_slot_time(appointment.previous_time) if appointment.previous_time else None,
        reschedule_count=appointment.reschedule_count or 0,
        cancellation_reason=appointment.cancellation_reason,
    )


def _status_filter(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip().lower()
    if normalized not in APPOINTMENT_STATUSES:
        raise booking_http_exception(BookingError(f'Unknown appointment status "{value}".'))
    return normalized


@router.post('/appointments', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    principal: Principal = Depends(get_current_patient),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = booking_arbiter.retry_on_contention(
            lambda: booking_arbiter.book(
                db,
                patient_id=principal.user_id,
                doctor_id=data.doctor_id,
                appointment_date=data.appointment_date,
                appointment_time=data.appointment_time,
            )
        )
        return to_appointment_response(appointment)
    except BookingError as exc:
        raise booking_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.get('/appointments', response_model=list[AppointmentResponse])
def list_my_appointments(
    status_filter: str | None = Query(default=None, alias='status'),
    principal: Principal = Depends(get_current_patient),
    db: Session = Depends(get_db),
):
    normalized_status = _status_filter(status_filter)

    try:
        appointments = booking_arbiter.list_patient_appointments(db, principal.user_id, normalized_status)
        return [to_appointment_response(appointment) for appointment in appointments]
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.put('/appointments/{appointment_id}/reschedule', response_model=AppointmentResponse)
def reschedule_my_appointment(
    appointment_id: int,
    data: RescheduleAppointmentRequest,
    principal: Principal = Depends(get_current_patient),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = booking_arbiter.retry_on_contention(
            lambda: booking_arbiter.reschedule(
                db,
                appointment_id=appointment_id,
                requester_id=principal.user_id,
                new_date=data.new_date,
                new_time=data.new_time,
            )
        )
        return to_appointment_response(appointment)
    except BookingError as exc:
        raise booking_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.put('/appointments/{appointment_id}/cancel', response_model=MessageResponse)
def cancel_my_appointment(
    appointment_id: int,
    data: CancelAppointmentRequest,
    principal: Principal = Depends(get_current_patient),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        booking_arbiter.retry_on_contention(
            lambda: booking_arbiter.cancel(db, appointment_id, principal.user_id, data.reason)
        )
    except BookingError as exc:
        raise booking_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return MessageResponse(message='Appointment canceled successfully.')


@router.get('/doctor/appointments', response_model=list[AppointmentResponse])
def list_doctor_appointments(
    status_filter: str | None = Query(default=None, alias='status'),
    appointment_date: date | None = Query(default=None, alias='date'),
    principal: Principal = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    normalized_status = _status_filter(status_filter)

    try:
        appointments = booking_arbiter.list_doctor_appointments(
            db,
            principal.user_id,
            status=normalized_status,
            appointment_date=appointment_date,
        )
        return [to_appointment_response(appointment) for appointment in appointments]
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.put('/doctor/appointments/{appointment_id}/complete', response_model=MessageResponse)
def complete_appointment(
    appointment_id: int,
    principal: Principal = Depends(get_current_doctor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        booking_arbiter.retry_on_contention(
            lambda: booking_arbiter.complete(db, appointment_id, principal.user_id)
        )
    except BookingError as exc:
        raise booking_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return MessageResponse(message='Appointment marked as completed.')
