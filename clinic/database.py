import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL")

engine = create_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_schedule_schema_checked = False
_appointment_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_schedule_schema() -> None:
    global _schedule_schema_checked

    if _schedule_schema_checked:
        return

    with _schema_lock:
        if _schedule_schema_checked:
            return

        inspector = inspect(engine)

        if 'doctor_schedules' not in inspector.get_table_names():
            _schedule_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('doctor_schedules')}
        migration_steps = [
            ('break_start', 'ALTER TABLE doctor_schedules ADD COLUMN break_start TIME'),
            ('break_end', 'ALTER TABLE doctor_schedules ADD COLUMN break_end TIME'),
            ('slot_duration_minutes', 'ALTER TABLE doctor_schedules ADD COLUMN slot_duration_minutes INTEGER DEFAULT 30'),
            ('is_active', 'ALTER TABLE doctor_schedules ADD COLUMN is_active BOOLEAN DEFAULT TRUE'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_doctor_schedules_doctor_day ON doctor_schedules(doctor_id, day_of_week)')
            )
            if 'doctor_unavailability' in inspector.get_table_names():
                connection.execute(
                    text(
                        'CREATE INDEX IF NOT EXISTS idx_doctor_unavailability_range '
                        'ON doctor_unavailability(doctor_id, start_datetime, end_datetime)'
                    )
                )

        _schedule_schema_checked = True


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('duration_minutes', 'ALTER TABLE appointments ADD COLUMN duration_minutes INTEGER DEFAULT 30'),
            ('end_datetime', 'ALTER TABLE appointments ADD COLUMN end_datetime TIMESTAMP'),
            ('symptoms', 'ALTER TABLE appointments ADD COLUMN symptoms VARCHAR'),
            ('notes', 'ALTER TABLE appointments ADD COLUMN notes VARCHAR'),
            ('cancellation_reason', 'ALTER TABLE appointments ADD COLUMN cancellation_reason VARCHAR'),
            ('cancelled_by_id', 'ALTER TABLE appointments ADD COLUMN cancelled_by_id INTEGER'),
            ('created_by_id', 'ALTER TABLE appointments ADD COLUMN created_by_id INTEGER'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_doctor_start ON appointments(doctor_id, appointment_datetime)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_patient_start ON appointments(patient_id, appointment_datetime)')
            )
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_doctor_active_slot '
                    "ON appointments(doctor_id, appointment_datetime) WHERE status <> 'cancelled'"
                )
            )

        _appointment_schema_checked = True
