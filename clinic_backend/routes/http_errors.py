import logging

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from clinic_backend.database import ensure_appointment_schema
from clinic_backend.scheduling.errors import (
    AppointmentNotFound,
    BookingError,
    Contention,
    DoctorNotFound,
    InvalidState,
    SlotConflict,
)

logger = logging.getLogger(__name__)

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'

_STATUS_BY_ERROR = (
    (DoctorNotFound, status.HTTP_404_NOT_FOUND),
    (AppointmentNotFound, status.HTTP_404_NOT_FOUND),
    (InvalidState, status.HTTP_409_CONFLICT),
    (SlotConflict, status.HTTP_409_CONFLICT),
    (Contention, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def booking_http_exception(exc: BookingError) -> HTTPException:
    status_code = status.HTTP_400_BAD_REQUEST
    for error_type, mapped_status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = mapped_status
            break

    headers = {'Retry-After': '1'} if exc.retryable else None
    return HTTPException(status_code=status_code, detail=exc.message, headers=headers)


def database_unavailable(exc: SQLAlchemyError) -> HTTPException:
    logger.error('Database error: %s', exc.__class__.__name__)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc
