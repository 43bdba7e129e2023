from datetime import date, time

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from clinic_backend.auth.dependencies import Principal
from clinic_backend.models.doctor import Doctor
from clinic_backend.routes.availability_routes import (
    UpdateScheduleRequest,
    check_slot_availability,
    get_doctor_schedule,
    list_available_slots,
    update_my_schedule,
)
from conftest import MONDAY, SUNDAY, add_appointment


@pytest.fixture(autouse=True)
def skip_schema_check(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('clinic_backend.routes.availability_routes.ensure_database_ready', lambda: None)


def test_update_schedule_request_normalizes_weekdays() -> None:
    request = UpdateScheduleRequest(
        schedule={
            'Monday': {'start': '9:00', 'end': '12:00'},
            'saturday': None,
        }
    )

    assert list(request.schedule) == ['monday']
    assert request.schedule['monday'].start == '09:00'


@pytest.mark.parametrize(
    'schedule',
    [
        {'monday': {'start': '12:00', 'end': '09:00'}},
        {'caturday': {'start': '09:00', 'end': '12:00'}},
        {'monday': {'start': '09:00', 'end': 'late'}},
    ],
)
def test_update_schedule_request_rejects_malformed_hours(schedule) -> None:
    with pytest.raises(ValidationError):
        UpdateScheduleRequest(schedule=schedule)


def test_list_available_slots_matches_template(appointment_db, doctor, patients) -> None:
    add_appointment(appointment_db, appointment_time=time(9, 30))

    slots = list_available_slots(doctor_id=7, appointment_date=MONDAY, db=appointment_db)

    assert slots == ['09:00', '10:00', '10:30']


def test_list_available_slots_is_empty_on_day_off(appointment_db, doctor) -> None:
    assert list_available_slots(doctor_id=7, appointment_date=SUNDAY, db=appointment_db) == []


def test_list_available_slots_unknown_doctor(appointment_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_available_slots(doctor_id=404, appointment_date=MONDAY, db=appointment_db)

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Doctor not found.'


def test_check_slot_availability_rejects_bad_time(appointment_db, doctor) -> None:
    with pytest.raises(HTTPException) as exception_info:
        check_slot_availability(doctor_id=7, appointment_date=MONDAY, appointment_time='9h30', db=appointment_db)

    assert exception_info.value.status_code == 400


def test_check_slot_availability_reports_past_date(appointment_db, doctor) -> None:
    response = check_slot_availability(
        doctor_id=7,
        appointment_date=date(2000, 1, 3),
        appointment_time='09:00',
        db=appointment_db,
    )

    assert response.available is False
    assert 'or later' in response.message


def test_get_doctor_schedule_returns_template(appointment_db) -> None:
    appointment_db.add(
        Doctor(id=9, name='Dr. Ortiz', schedule={'monday': {'start': '9:00', 'end': '10:00'}, 'friday': None})
    )
    appointment_db.commit()

    response = get_doctor_schedule(doctor_id=9, db=appointment_db)

    assert list(response.schedule) == ['monday']
    assert response.schedule['monday'].start == '09:00'


def test_get_doctor_schedule_hides_malformed_template(appointment_db, caplog: pytest.LogCaptureFixture) -> None:
    appointment_db.add(
        Doctor(id=9, name='Dr. Ortiz', schedule={'monday': {'start': '17:00', 'end': '10:00'}})
    )
    appointment_db.commit()

    response = get_doctor_schedule(doctor_id=9, db=appointment_db)

    assert response.schedule == {}
    assert 'malformed working hours for doctor 9' in caplog.text


def test_get_doctor_schedule_unknown_doctor(appointment_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_doctor_schedule(doctor_id=404, db=appointment_db)

    assert exception_info.value.status_code == 404


def test_update_my_schedule_replaces_template(appointment_db, doctor) -> None:
    request = UpdateScheduleRequest(schedule={'sunday': {'start': '10:00', 'end': '11:00'}})

    response = update_my_schedule(data=request, principal=Principal(role='doctor', user_id=7), db=appointment_db)

    assert list(response.schedule) == ['sunday']
    assert list_available_slots(doctor_id=7, appointment_date=SUNDAY, db=appointment_db) == ['10:00', '10:30']
    assert list_available_slots(doctor_id=7, appointment_date=MONDAY, db=appointment_db) == []


def test_update_my_schedule_for_missing_doctor(appointment_db) -> None:
    request = UpdateScheduleRequest(schedule={})

    with pytest.raises(HTTPException) as exception_info:
        update_my_schedule(data=request, principal=Principal(role='doctor', user_id=404), db=appointment_db)

    assert exception_info.value.status_code == 404


def test_list_available_slots_tolerates_non_mapping_template(appointment_db) -> None:
    appointment_db.add(Doctor(id=9, name='Dr. Ortiz', schedule=['monday']))
    appointment_db.commit()

    assert list_available_slots(doctor_id=9, appointment_date=MONDAY, db=appointment_db) == []
