import os
from datetime import datetime, time
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from clinic.database import Base  # noqa: E402
from clinic.models.appointment import Appointment  # noqa: E402
from clinic.models.availability import DoctorScheduleEntry, DoctorUnavailability  # noqa: E402
from clinic.models.doctor import Doctor  # noqa: E402
from clinic.models.user import User  # noqa: E402
from clinic.services.access import Actor, Role  # noqa: E402

SUNDAY, MONDAY, TUESDAY = 0, 1, 2


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def send(self, to, subject, body):
        self.sent.append((to, subject, body))


class FailingNotifier:
    def __init__(self):
        self.attempts = 0

    def send(self, to, subject, body):
        self.attempts += 1
        raise ConnectionError('SMTP relay unreachable')


@pytest.fixture
def db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def failing_notifier():
    return FailingNotifier()


@pytest.fixture
def clinic(db):
    """Doctor 1 works Monday 09:00-17:00 and Tuesday 09:00-17:00 with a 12:00-13:00 break."""
    db.add_all([
        User(id=1, email='house@clinic.test', first_name='Gregory', last_name='House', role='doctor'),
        User(id=2, email='ana@example.com', first_name='Ana', last_name='Lima', role='patient'),
        User(id=3, email='ben@example.com', first_name='Ben', last_name='Ode', role='patient'),
        User(id=4, email='admin@clinic.test', first_name='Front', last_name='Desk', role='admin'),
        User(id=5, email='wilson@clinic.test', first_name='James', last_name='Wilson', role='doctor'),
    ])
    db.add_all([
        Doctor(id=1, specialty='diagnostics', is_active=True),
        Doctor(id=5, specialty='oncology', is_active=True),
    ])
    db.add_all([
        DoctorScheduleEntry(doctor_id=1, day_of_week=MONDAY, start_time=time(9, 0), end_time=time(17, 0)),
        DoctorScheduleEntry(
            doctor_id=1,
            day_of_week=TUESDAY,
            start_time=time(9, 0),
            end_time=time(17, 0),
            break_start=time(12, 0),
            break_end=time(13, 0),
        ),
        DoctorScheduleEntry(doctor_id=5, day_of_week=MONDAY, start_time=time(9, 0), end_time=time(17, 0)),
    ])
    db.commit()

    return SimpleNamespace(
        doctor=Actor(actor_id=1, role=Role.DOCTOR),
        patient=Actor(actor_id=2, role=Role.PATIENT),
        other_patient=Actor(actor_id=3, role=Role.PATIENT),
        admin=Actor(actor_id=4, role=Role.ADMIN),
        other_doctor=Actor(actor_id=5, role=Role.DOCTOR),
    )


@pytest.fixture
def make_appointment(db):
    def factory(start: datetime, status: str = 'scheduled', doctor_id: int = 1, patient_id: int = 2, duration: int = 30):
        appointment = Appointment(
            patient_id=patient_id,
            doctor_id=doctor_id,
            appointment_datetime=start,
            duration_minutes=duration,
            status=status,
            type='consultation',
            created_by_id=patient_id,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return factory


@pytest.fixture
def make_unavailability(db):
    def factory(start: datetime, end: datetime, doctor_id: int = 1, reason: str | None = None):
        window = DoctorUnavailability(doctor_id=doctor_id, start_datetime=start, end_datetime=end, reason=reason)
        db.add(window)
        db.commit()
        db.refresh(window)
        return window

    return factory
