import os
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('JWT_SECRET_KEY', 'test-secret-key-for-clinic-booking-tests')

from clinic_backend.database import Base  # noqa: E402
from clinic_backend.models.appointment import Appointment  # noqa: E402
from clinic_backend.models.doctor import Doctor  # noqa: E402
from clinic_backend.models.patient import Patient  # noqa: E402

# 2024-06-10 is a Monday.
MONDAY = date(2024, 6, 10)
TUESDAY = date(2024, 6, 11)
SUNDAY = date(2024, 6, 16)
BOOKING_TODAY = date(2024, 6, 1)

MORNING_TEMPLATE = {
    'monday': {'start': '09:00', 'end': '11:00'},
    'tuesday': {'start': '14:00', 'end': '15:30'},
}

TABLES = [Patient.__table__, Doctor.__table__, Appointment.__table__]


@pytest.fixture
def session_factory():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine, tables=TABLES)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine, tables=list(reversed(TABLES)))
        engine.dispose()


@pytest.fixture
def appointment_db(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def doctor(appointment_db) -> Doctor:
    record = Doctor(id=7, name='Dr. Mensah', specialization='cardiology', schedule=MORNING_TEMPLATE)
    appointment_db.add(record)
    appointment_db.commit()
    return record


@pytest.fixture
def patients(appointment_db) -> list[Patient]:
    records = [
        Patient(id=1, email='ada@example.com', name='Ada'),
        Patient(id=2, email='bo@example.com', name='Bo'),
        Patient(id=3, email='cy@example.com', name='Cy'),
    ]
    appointment_db.add_all(records)
    appointment_db.commit()
    return records


def add_appointment(db, **overrides) -> Appointment:
    values = {
        'patient_id': 1,
        'doctor_id': 7,
        'appointment_date': MONDAY,
        'status': 'scheduled',
        'reschedule_count': 0,
    }
    values.update(overrides)
    appointment = Appointment(**values)
    db.add(appointment)
    db.commit()
    db.refresh(appointment)
    return appointment
