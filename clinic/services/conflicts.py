"""Double-booking checks for a doctor's candidate slot."""

from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from clinic.core import config
from clinic.models.appointment import Appointment, AppointmentStatus, SLOT_HOLDING_STATUSES
from clinic.services.errors import SlotTaken

EXACT_MODE = 'exact'
OVERLAP_MODE = 'overlap'


def find_exact_conflict(
    db: Session,
    doctor_id: int,
    start: datetime,
    exclude_id: int | None = None,
) -> Appointment | None:
    query = db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.appointment_datetime == start,
        Appointment.status != AppointmentStatus.CANCELLED.value,
    )
    if exclude_id is not None:
        query = query.filter(Appointment.id != exclude_id)
    return query.first()


def find_overlapping_conflict(
    db: Session,
    doctor_id: int,
    start: datetime,
    duration_minutes: int,
    exclude_id: int | None = None,
) -> Appointment | None:
    end = start + timedelta(minutes=duration_minutes)
    # Row durations never exceed the booking maximum, which bounds the scan.
    earliest = start - timedelta(minutes=config.MAX_APPOINTMENT_DURATION_MINUTES)
    candidates = db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.appointment_datetime > earliest,
        Appointment.appointment_datetime < end,
        Appointment.status.in_(SLOT_HOLDING_STATUSES),
    )
    if exclude_id is not None:
        candidates = candidates.filter(Appointment.id != exclude_id)

    for appointment in candidates.all():
        if appointment.scheduled_end > start:
            return appointment
    return None


def ensure_slot_free(
    db: Session,
    doctor_id: int,
    start: datetime,
    duration_minutes: int,
    mode: str | None = None,
    exclude_id: int | None = None,
) -> None:
    mode = mode or config.BOOKING_CONFLICT_MODE

    if mode == OVERLAP_MODE:
        conflict = find_overlapping_conflict(db, doctor_id, start, duration_minutes, exclude_id)
    else:
        conflict = find_exact_conflict(db, doctor_id, start, exclude_id)

    if conflict is not None:
        raise SlotTaken()
