import pytest
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

from clinic_backend.database import SCHEDULED_SLOT_INDEX, ensure_appointment_schema


@pytest.fixture
def legacy_engine():
    engine = create_engine('sqlite://', connect_args={'check_same_thread': False}, poolclass=StaticPool)
    with engine.begin() as connection:
        connection.execute(
            text(
                'CREATE TABLE appointments ('
                'id INTEGER PRIMARY KEY, patient_id INTEGER, doctor_id INTEGER, '
                'appointment_date DATE, appointment_time TIME, status VARCHAR)'
            )
        )
    try:
        yield engine
    finally:
        engine.dispose()


def _insert(connection, appointment_id: int, status: str) -> None:
    connection.execute(
        text(
            'INSERT INTO appointments (id, patient_id, doctor_id, appointment_date, appointment_time, status) '
            "VALUES (:id, 1, 7, '2024-06-10', '09:00:00.000000', :status)"
        ),
        {'id': appointment_id, 'status': status},
    )


def test_ensure_appointment_schema_adds_missing_columns(legacy_engine) -> None:
    ensure_appointment_schema(bind=legacy_engine)

    columns = {column['name'] for column in inspect(legacy_engine).get_columns('appointments')}
    assert {'previous_date', 'previous_time', 'reschedule_count', 'cancellation_reason'} <= columns

    index_names = {index['name'] for index in inspect(legacy_engine).get_indexes('appointments')}
    assert SCHEDULED_SLOT_INDEX in index_names


def test_ensure_appointment_schema_is_repeatable(legacy_engine) -> None:
    ensure_appointment_schema(bind=legacy_engine)
    ensure_appointment_schema(bind=legacy_engine)

    with legacy_engine.connect() as connection:
        _insert(connection, 1, 'scheduled')
        count = connection.execute(text('SELECT reschedule_count FROM appointments WHERE id = 1')).scalar()

    assert count == 0


def test_upgraded_table_rejects_second_scheduled_row(legacy_engine) -> None:
    ensure_appointment_schema(bind=legacy_engine)

    with legacy_engine.begin() as connection:
        _insert(connection, 1, 'scheduled')
        _insert(connection, 2, 'canceled')
        _insert(connection, 3, 'completed')

    with pytest.raises(IntegrityError):
        with legacy_engine.begin() as connection:
            _insert(connection, 4, 'scheduled')


def test_ensure_appointment_schema_skips_missing_table() -> None:
    engine = create_engine('sqlite://', poolclass=StaticPool)

    ensure_appointment_schema(bind=engine)

    assert 'appointments' not in inspect(engine).get_table_names()
    engine.dispose()
