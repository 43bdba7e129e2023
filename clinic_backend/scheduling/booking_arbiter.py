"""Availability and race-safe appointment state changes.

Every operation receives the SQLAlchemy session it works in; nothing here
holds a connection or caches appointments between calls. State changes run
inside :func:`unit_of_work`, so the occupancy check and the write it guards
commit or roll back together. The partial unique index on scheduled slots
backs that up at the store level.
"""

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, time, timedelta
from time import sleep
from typing import TypeVar

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from clinic_backend.core import config
from clinic_backend.database import SCHEDULED_SLOT_INDEX
from clinic_backend.models.appointment import (
    MAX_CANCELLATION_REASON_LENGTH,
    STATUS_CANCELED,
    STATUS_COMPLETED,
    STATUS_SCHEDULED,
    Appointment,
)
from clinic_backend.models.doctor import Doctor
from clinic_backend.scheduling.errors import (
    AppointmentNotFound,
    BookingError,
    Contention,
    DoctorNotFound,
    InvalidSlot,
    InvalidState,
    SlotConflict,
)
from clinic_backend.scheduling.schedule_resolver import format_slot_time, parse_slot_time, resolve_slots

logger = logging.getLogger(__name__)

T = TypeVar('T')

CONTENTION_BACKOFF_SECONDS = 0.05

# lock_not_available, query_canceled, serialization_failure, deadlock_detected
CONTENTION_SQLSTATES = frozenset({'55P03', '57014', '40001', '40P01'})
SQLITE_CONTENTION_MARKERS = ('database is locked', 'database table is locked', 'database is busy')


@dataclass(frozen=True)
class SlotCheck:
    available: bool
    message: str | None = None


def _is_scheduled_slot_violation(exc: IntegrityError) -> bool:
    detail = str(exc.orig)
    return SCHEDULED_SLOT_INDEX in detail or 'appointments.appointment_time' in detail


def _is_contention(exc: OperationalError) -> bool:
    sqlstate = getattr(exc.orig, 'pgcode', None) or getattr(exc.orig, 'sqlstate', None)
    if sqlstate:
        return sqlstate in CONTENTION_SQLSTATES

    detail = str(exc.orig).lower()
    return any(marker in detail for marker in SQLITE_CONTENTION_MARKERS)


def _apply_transaction_timeout(db: Session) -> None:
    if db.get_bind().dialect.name != 'postgresql':
        return

    timeout_ms = int(config.TRANSACTION_TIMEOUT_SECONDS * 1000)
    db.execute(text(f'SET LOCAL lock_timeout = {timeout_ms}'))
    db.execute(text(f'SET LOCAL statement_timeout = {timeout_ms}'))


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """Run the enclosed block as one transaction on ``db``.

    Commits on success. Any failure rolls back first; a unique violation on
    the scheduled-slot index becomes :class:`SlotConflict` and a lock timeout,
    serialization failure or locked database becomes :class:`Contention`.
    Other database failures propagate unchanged.
    """
    try:
        _apply_transaction_timeout(db)
        yield db
        db.commit()
    except BookingError:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        if _is_scheduled_slot_violation(exc):
            logger.warning('Scheduled slot index rejected a concurrent write')
            raise SlotConflict() from exc
        raise
    except OperationalError as exc:
        db.rollback()
        if not _is_contention(exc):
            raise
        logger.warning('Transaction aborted by the database: %s', exc.orig)
        raise Contention() from exc
    except Exception:
        db.rollback()
        raise


def retry_on_contention(operation: Callable[[], T], attempts: int | None = None) -> T:
    """Call ``operation``, rerunning it on :class:`Contention` up to ``attempts`` times.

    :class:`SlotConflict` and every other error propagate on the first try.
    """
    attempts = attempts or config.CONTENTION_RETRY_ATTEMPTS

    attempt = 1
    while True:
        try:
            return operation()
        except Contention:
            if attempt >= attempts:
                raise
            logger.warning('Contention on attempt %d of %d, retrying', attempt, attempts)
            sleep(CONTENTION_BACKOFF_SECONDS * attempt)
            attempt += 1


def _coerce_time(value: time | str) -> time:
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    try:
        return parse_slot_time(value)
    except ValueError as exc:
        raise InvalidSlot(f'Invalid appointment time "{value}".') from exc


def earliest_bookable_date(today: date | None = None) -> date:
    return (today or date.today()) + timedelta(days=config.MIN_BOOKING_LEAD_DAYS)


def _get_doctor(db: Session, doctor_id: int) -> Doctor:
    doctor = db.get(Doctor, doctor_id)
    if doctor is None:
        raise DoctorNotFound()
    return doctor


def _find_occupant(
    db: Session,
    doctor_id: int,
    appointment_date: date,
    appointment_time: time,
    exclude_id: int | None = None,
) -> Appointment | None:
    query = db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.appointment_date == appointment_date,
        Appointment.appointment_time == appointment_time,
        Appointment.status == STATUS_SCHEDULED,
    )
    if exclude_id is not None:
        query = query.filter(Appointment.id != exclude_id)

    return query.with_for_update().first()


def _occupied_times(db: Session, doctor_id: int, appointment_date: date) -> set[str]:
    rows = db.query(Appointment.appointment_time).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.appointment_date == appointment_date,
        Appointment.status == STATUS_SCHEDULED,
    ).all()

    return {format_slot_time(appointment_time) for (appointment_time,) in rows}


def _validate_requested_slot(
    doctor: Doctor,
    appointment_date: date,
    appointment_time: time,
    today: date | None,
) -> None:
    earliest = earliest_bookable_date(today)
    if appointment_date < earliest:
        raise InvalidSlot(f'Appointments must be booked for {earliest.isoformat()} or later.')

    if format_slot_time(appointment_time) not in resolve_slots(doctor.schedule, appointment_date):
        raise InvalidSlot('The doctor does not see patients at this time.')


def available_slots(db: Session, doctor_id: int, appointment_date: date) -> list[str]:
    doctor = _get_doctor(db, doctor_id)
    grid = resolve_slots(doctor.schedule, appointment_date)
    if not grid:
        return []

    occupied = _occupied_times(db, doctor_id, appointment_date)
    return [slot for slot in grid if slot not in occupied]


def check_slot(
    db: Session,
    doctor_id: int,
    appointment_date: date,
    appointment_time: time | str,
    today: date | None = None,
) -> SlotCheck:
    doctor = _get_doctor(db, doctor_id)
    slot_time = _coerce_time(appointment_time)

    earliest = earliest_bookable_date(today)
    if appointment_date < earliest:
        return SlotCheck(False, f'Appointments must be booked for {earliest.isoformat()} or later.')

    grid = resolve_slots(doctor.schedule, appointment_date)
    if not grid:
        return SlotCheck(False, 'Doctor is not available on this day.')
    if format_slot_time(slot_time) not in grid:
        return SlotCheck(False, "Time is outside the doctor's working hours.")

    occupant = db.query(Appointment.id).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.appointment_date == appointment_date,
        Appointment.appointment_time == slot_time,
        Appointment.status == STATUS_SCHEDULED,
    ).first()
    if occupant is not None:
        return SlotCheck(False, 'This slot is already booked.')

    return SlotCheck(True)


def book(
    db: Session,
    patient_id: int,
    doctor_id: int,
    appointment_date: date,
    appointment_time: time | str,
    today: date | None = None,
) -> Appointment:
    slot_time = _coerce_time(appointment_time)

    with unit_of_work(db):
        doctor = _get_doctor(db, doctor_id)
        _validate_requested_slot(doctor, appointment_date, slot_time, today)

        if _find_occupant(db, doctor_id, appointment_date, slot_time) is not None:
            logger.warning(
                'Booking lost slot doctor=%s date=%s time=%s',
                doctor_id,
                appointment_date.isoformat(),
                format_slot_time(slot_time),
            )
            raise SlotConflict()

        appointment = Appointment(
            patient_id=patient_id,
            doctor_id=doctor_id,
            appointment_date=appointment_date,
            appointment_time=slot_time,
            status=STATUS_SCHEDULED,
            reschedule_count=0,
        )
        db.add(appointment)
        db.flush()

    logger.info('Booked appointment %s with doctor %s', appointment.id, doctor_id)
    return appointment


def reschedule(
    db: Session,
    appointment_id: int,
    requester_id: int,
    new_date: date,
    new_time: time | str,
    today: date | None = None,
) -> Appointment:
    slot_time = _coerce_time(new_time)

    with unit_of_work(db):
        appointment = db.query(Appointment).filter(
            Appointment.id == appointment_id,
            Appointment.patient_id == requester_id,
        ).with_for_update().first()

        if appointment is None:
            raise AppointmentNotFound()
        if appointment.status != STATUS_SCHEDULED:
            raise InvalidState('Only scheduled appointments can be rescheduled.')

        doctor = _get_doctor(db, appointment.doctor_id)
        _validate_requested_slot(doctor, new_date, slot_time, today)

        if _find_occupant(db, appointment.doctor_id, new_date, slot_time, exclude_id=appointment.id) is not None:
            logger.warning('Reschedule of appointment %s lost the target slot', appointment_id)
            raise SlotConflict()

        # Compare-and-set on status and reschedule_count guards against a
        # concurrent change on stores without row locks.
        updated = db.query(Appointment).filter(
            Appointment.id == appointment.id,
            Appointment.status == STATUS_SCHEDULED,
            Appointment.reschedule_count == appointment.reschedule_count,
        ).update(
            {
                Appointment.previous_date: appointment.appointment_date,
                Appointment.previous_time: appointment.appointment_time,
                Appointment.appointment_date: new_date,
                Appointment.appointment_time: slot_time,
                Appointment.reschedule_count: appointment.reschedule_count + 1,
            },
            synchronize_session=False,
        )
        if updated == 0:
            raise Contention()

    db.refresh(appointment)
    logger.info('Rescheduled appointment %s (count=%s)', appointment.id, appointment.reschedule_count)
    return appointment


def _transition_guard_failure(db: Session, appointment_id: int, owner_filter) -> BookingError:
    current_status = db.query(Appointment.status).filter(
        Appointment.id == appointment_id,
        owner_filter,
    ).scalar()

    if current_status is None:
        return AppointmentNotFound()
    return InvalidState(f'Appointment is already {current_status}.')


def cancel(db: Session, appointment_id: int, requester_id: int, reason: str) -> None:
    normalized_reason = (reason or '').strip()
    if not normalized_reason:
        raise BookingError('A cancellation reason is required.')
    if len(normalized_reason) > MAX_CANCELLATION_REASON_LENGTH:
        raise BookingError(
            f'Cancellation reason must be {MAX_CANCELLATION_REASON_LENGTH} characters or fewer.'
        )

    with unit_of_work(db):
        owner_filter = Appointment.patient_id == requester_id
        updated = db.query(Appointment).filter(
            Appointment.id == appointment_id,
            owner_filter,
            Appointment.status == STATUS_SCHEDULED,
        ).update(
            {
                Appointment.status: STATUS_CANCELED,
                Appointment.cancellation_reason: normalized_reason,
            },
            synchronize_session=False,
        )

        if updated == 0:
            raise _transition_guard_failure(db, appointment_id, owner_filter)

    logger.info('Canceled appointment %s', appointment_id)


def complete(db: Session, appointment_id: int, doctor_id: int) -> None:
    with unit_of_work(db):
        owner_filter = Appointment.doctor_id == doctor_id
        updated = db.query(Appointment).filter(
            Appointment.id == appointment_id,
            owner_filter,
            Appointment.status == STATUS_SCHEDULED,
        ).update(
            {Appointment.status: STATUS_COMPLETED},
            synchronize_session=False,
        )

        if updated == 0:
            raise _transition_guard_failure(db, appointment_id, owner_filter)

    logger.info('Completed appointment %s', appointment_id)


def list_patient_appointments(db: Session, patient_id: int, status: str | None = None) -> list[Appointment]:
    query = db.query(Appointment).filter(Appointment.patient_id == patient_id)
    if status:
        query = query.filter(Appointment.status == status)

    return query.order_by(Appointment.appointment_date.asc(), Appointment.appointment_time.asc()).all()


def list_doctor_appointments(
    db: Session,
    doctor_id: int,
    status: str | None = None,
    appointment_date: date | None = None,
) -> list[Appointment]:
    query = db.query(Appointment).filter(Appointment.doctor_id == doctor_id)
    if status:
        query = query.filter(Appointment.status == status)
    if appointment_date is not None:
        query = query.filter(Appointment.appointment_date == appointment_date)

    return query.order_by(Appointment.appointment_date.asc(), Appointment.appointment_time.asc()).all()
