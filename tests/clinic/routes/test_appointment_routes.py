from datetime import date, datetime, timedelta, timezone

import pytest
from fastapi import BackgroundTasks, HTTPException
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from clinic.routes import appointment_routes
from clinic.routes.appointment_routes import (
    AppointmentResponse,
    CreateAppointmentRequest,
    RescheduleAppointmentRequest,
    UpdateNotesRequest,
    UpdateStatusRequest,
    create_appointment,
    get_appointment,
    list_appointments,
    list_doctor_available_slots,
    reschedule_appointment,
    update_appointment_notes,
    update_appointment_status,
)

MONDAY_TEN = datetime(2025, 6, 2, 10, 0)


@pytest.fixture(autouse=True)
def skip_schema_checks(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('clinic.routes.appointment_routes.ensure_database_ready', lambda: None)


def _booking_request(**overrides) -> CreateAppointmentRequest:
    body = {
        'doctorId': 1,
        'appointmentDateTime': '2025-06-02T10:00',
        'type': 'consultation',
        'reason': 'annual checkup',
    }
    body.update(overrides)
    return CreateAppointmentRequest(**body)


def _list(db, actor, **filters):
    params = {
        'status_filter': None,
        'start_date': None,
        'end_date': None,
        'doctor_id': None,
        'patient_id': None,
    }
    params.update(filters)
    return list_appointments(actor=actor, db=db, **params)


def test_create_appointment_request_reads_camel_case_and_normalizes() -> None:
    request = _booking_request(type=' Emergency ', symptoms=[' fever ', '', 'cough'], reason='   ')

    assert request.doctor_id == 1
    assert request.appointment_datetime == MONDAY_TEN
    assert request.type == 'emergency'
    assert request.symptoms == 'fever, cough'
    assert request.reason is None
    assert request.duration is None


def test_create_appointment_request_converts_aware_datetimes_to_naive_local() -> None:
    aware = datetime(2025, 6, 2, 10, 0, tzinfo=timezone.utc)

    request = _booking_request(appointmentDateTime=aware)

    assert request.appointment_datetime.tzinfo is None
    assert request.appointment_datetime == aware.astimezone().replace(tzinfo=None)


@pytest.mark.parametrize(
    'overrides',
    [
        {'type': '   '},
        {'duration': 0},
        {'appointmentDateTime': 'next monday'},
        {'doctorId': None},
    ],
)
def test_create_appointment_request_rejects_invalid_bodies(overrides: dict) -> None:
    with pytest.raises(ValidationError):
        _booking_request(**overrides)


def test_create_appointment_route_returns_created_appointment(db, clinic) -> None:
    background_tasks = BackgroundTasks()

    response = create_appointment(_booking_request(), background_tasks, actor=clinic.patient, db=db)

    assert isinstance(response, AppointmentResponse)
    assert response.status == 'scheduled'
    assert response.patient_id == 2
    assert response.duration_minutes == 30
    assert len(background_tasks.tasks) == 1

    payload = response.model_dump(by_alias=True)
    assert payload['appointmentDateTime'] == MONDAY_TEN
    assert payload['doctorId'] == 1
    assert payload['createdById'] == 2


def test_create_appointment_route_lets_admin_book_for_patient(db, clinic) -> None:
    response = create_appointment(_booking_request(patientId=3), BackgroundTasks(), actor=clinic.admin, db=db)

    assert response.patient_id == 3
    assert response.created_by_id == 4


def test_create_appointment_route_requires_patient_id_for_admin(db, clinic) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_appointment(_booking_request(), BackgroundTasks(), actor=clinic.admin, db=db)

    assert exception_info.value.status_code == 400


def test_create_appointment_route_rejects_doctor_actor(db, clinic) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_appointment(_booking_request(), BackgroundTasks(), actor=clinic.doctor, db=db)

    assert exception_info.value.status_code == 403


@pytest.mark.parametrize(
    ('overrides', 'status_code', 'detail'),
    [
        ({'appointmentDateTime': '2025-06-02T18:00'}, 400, "Requested time is outside the doctor's working hours."),
        ({'appointmentDateTime': '2025-06-01T10:00'}, 400, 'No working hours configured for this day.'),
        ({'doctorId': 999}, 404, 'Doctor not found or inactive.'),
    ],
)
def test_create_appointment_route_maps_scheduling_errors(
    db, clinic, overrides: dict, status_code: int, detail: str,
) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_appointment(_booking_request(**overrides), BackgroundTasks(), actor=clinic.patient, db=db)

    assert exception_info.value.status_code == status_code
    assert exception_info.value.detail == detail


def test_create_appointment_route_reports_slot_taken_as_bad_request(db, clinic) -> None:
    create_appointment(_booking_request(), BackgroundTasks(), actor=clinic.patient, db=db)

    with pytest.raises(HTTPException) as exception_info:
        create_appointment(_booking_request(), BackgroundTasks(), actor=clinic.other_patient, db=db)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Doctor already has an appointment at this time.'


def test_create_appointment_route_hides_store_failures(db, clinic, monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_store(*args, **kwargs):
        raise OperationalError('INSERT INTO appointments', {}, Exception('connection refused'))

    monkeypatch.setattr(appointment_routes.booking, 'create_appointment', broken_store)

    with pytest.raises(HTTPException) as exception_info:
        create_appointment(_booking_request(), BackgroundTasks(), actor=clinic.patient, db=db)

    assert exception_info.value.status_code == 500
    assert exception_info.value.detail == 'Failed to create appointment.'


def test_list_appointments_scopes_results_by_role(db, clinic, make_appointment) -> None:
    make_appointment(datetime(2025, 6, 2, 9, 0), patient_id=2)
    make_appointment(datetime(2025, 6, 2, 10, 0), patient_id=3)
    make_appointment(datetime(2025, 6, 2, 11, 0), patient_id=3, doctor_id=5)

    assert [item.patient_id for item in _list(db, clinic.patient)] == [2]
    assert len(_list(db, clinic.doctor)) == 2
    assert len(_list(db, clinic.other_doctor)) == 1
    assert len(_list(db, clinic.admin)) == 3
    assert len(_list(db, clinic.admin, doctor_id=5)) == 1
    assert len(_list(db, clinic.admin, patient_id=3)) == 2


def test_list_appointments_ignores_admin_filters_for_patients(db, clinic, make_appointment) -> None:
    make_appointment(datetime(2025, 6, 2, 10, 0), patient_id=3)

    assert _list(db, clinic.patient, patient_id=3) == []


def test_list_appointments_filters_by_status_and_dates(db, clinic, make_appointment) -> None:
    make_appointment(datetime(2025, 6, 2, 9, 0))
    make_appointment(datetime(2025, 6, 3, 9, 0), status='cancelled')
    make_appointment(datetime(2025, 6, 9, 9, 0))

    assert len(_list(db, clinic.admin, status_filter='cancelled')) == 1
    assert len(_list(db, clinic.admin, status_filter='all')) == 3

    in_range = _list(db, clinic.admin, start_date=date(2025, 6, 2), end_date=date(2025, 6, 3))
    assert [item.appointment_datetime for item in in_range] == [
        datetime(2025, 6, 2, 9, 0),
        datetime(2025, 6, 3, 9, 0),
    ]


def test_list_appointments_rejects_unknown_status(db, clinic) -> None:
    with pytest.raises(HTTPException) as exception_info:
        _list(db, clinic.admin, status_filter='pending')

    assert exception_info.value.status_code == 400


def test_get_appointment_route_checks_access(db, clinic, make_appointment) -> None:
    appointment = make_appointment(MONDAY_TEN)

    assert get_appointment(appointment.id, actor=clinic.doctor, db=db).id == appointment.id

    with pytest.raises(HTTPException) as forbidden:
        get_appointment(appointment.id, actor=clinic.other_patient, db=db)
    with pytest.raises(HTTPException) as missing:
        get_appointment(999, actor=clinic.admin, db=db)

    assert forbidden.value.status_code == 403
    assert missing.value.status_code == 404


def test_update_status_route_cancels_and_schedules_notification(db, clinic, make_appointment) -> None:
    appointment = make_appointment(MONDAY_TEN)
    background_tasks = BackgroundTasks()

    response = update_appointment_status(
        appointment.id,
        UpdateStatusRequest(status='Cancelled', cancellationReason='patient request'),
        background_tasks,
        actor=clinic.patient,
        db=db,
    )

    assert response.status == 'cancelled'
    assert response.cancellation_reason == 'patient request'
    assert response.cancelled_by_id == 2
    assert len(background_tasks.tasks) == 1


@pytest.mark.parametrize(
    ('body', 'actor_name', 'status_code'),
    [
        ({'status': 'completed'}, 'other_doctor', 403),
        ({'status': 'archived'}, 'doctor', 400),
        ({'status': 'cancelled'}, 'doctor', 400),
    ],
)
def test_update_status_route_maps_errors(
    db, clinic, make_appointment, body: dict, actor_name: str, status_code: int,
) -> None:
    appointment = make_appointment(MONDAY_TEN)

    with pytest.raises(HTTPException) as exception_info:
        update_appointment_status(
            appointment.id,
            UpdateStatusRequest(**body),
            BackgroundTasks(),
            actor=getattr(clinic, actor_name),
            db=db,
        )

    assert exception_info.value.status_code == status_code


def test_update_status_route_returns_not_found(db, clinic) -> None:
    with pytest.raises(HTTPException) as exception_info:
        update_appointment_status(
            999, UpdateStatusRequest(status='completed'), BackgroundTasks(), actor=clinic.admin, db=db,
        )

    assert exception_info.value.status_code == 404


def test_update_notes_route_allows_doctor_only(db, clinic, make_appointment) -> None:
    appointment = make_appointment(MONDAY_TEN)

    response = update_appointment_notes(
        appointment.id, UpdateNotesRequest(notes='  prescribe rest  '), actor=clinic.doctor, db=db,
    )
    assert response.notes == 'prescribe rest'

    with pytest.raises(HTTPException) as exception_info:
        update_appointment_notes(appointment.id, UpdateNotesRequest(notes='hi'), actor=clinic.patient, db=db)
    assert exception_info.value.status_code == 403


def test_available_slots_route_lists_free_slots(db, clinic, make_appointment) -> None:
    make_appointment(MONDAY_TEN)

    response = list_doctor_available_slots(1, slot_date=date(2025, 6, 2), db=db)

    starts = [slot.start_time for slot in response.available_slots]
    assert MONDAY_TEN not in starts
    assert starts[0] == datetime(2025, 6, 2, 9, 0)
    assert response.available_slots[0].end_time - starts[0] == timedelta(minutes=30)
    assert 'availableSlots' in response.model_dump(by_alias=True)


def test_reschedule_route_moves_appointment(db, clinic, make_appointment) -> None:
    appointment = make_appointment(MONDAY_TEN)

    response = reschedule_appointment(
        appointment.id,
        RescheduleAppointmentRequest(appointmentDateTime='2025-06-02T14:30'),
        actor=clinic.patient,
        db=db,
    )

    assert response.appointment_datetime == datetime(2025, 6, 2, 14, 30)
    assert response.status == 'scheduled'


@pytest.mark.parametrize(
    ('status', 'actor_name', 'status_code'),
    [
        ('cancelled', 'patient', 400),
        ('scheduled', 'other_patient', 403),
    ],
)
def test_reschedule_route_maps_errors(
    db, clinic, make_appointment, status: str, actor_name: str, status_code: int,
) -> None:
    appointment = make_appointment(MONDAY_TEN, status=status)

    with pytest.raises(HTTPException) as exception_info:
        reschedule_appointment(
            appointment.id,
            RescheduleAppointmentRequest(appointmentDateTime='2025-06-02T14:30'),
            actor=getattr(clinic, actor_name),
            db=db,
        )

    assert exception_info.value.status_code == status_code
