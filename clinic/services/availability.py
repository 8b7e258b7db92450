"""Working-hours and unavailability checks for a candidate appointment start."""

from datetime import date, datetime, time, timedelta

from sqlalchemy.orm import Session

from clinic.core import config
from clinic.models.appointment import Appointment, SLOT_HOLDING_STATUSES
from clinic.models.availability import DoctorScheduleEntry, DoctorUnavailability
from clinic.services.errors import DoctorUnavailable


def schedule_day_of_week(value: date) -> int:
    """Map a date to the stored weekday convention (0=Sunday .. 6=Saturday)."""
    return (value.weekday() + 1) % 7


def get_schedule_entry(db: Session, doctor_id: int, day: date) -> DoctorScheduleEntry | None:
    return db.query(DoctorScheduleEntry).filter(
        DoctorScheduleEntry.doctor_id == doctor_id,
        DoctorScheduleEntry.day_of_week == schedule_day_of_week(day),
        DoctorScheduleEntry.is_active.is_(True),
    ).first()


def is_break_time(entry: DoctorScheduleEntry, time_of_day: time) -> bool:
    if entry.break_start is None or entry.break_end is None:
        return False
    return entry.break_start <= time_of_day < entry.break_end


def find_unavailability(db: Session, doctor_id: int, start: datetime) -> DoctorUnavailability | None:
    return db.query(DoctorUnavailability).filter(
        DoctorUnavailability.doctor_id == doctor_id,
        DoctorUnavailability.start_datetime <= start,
        DoctorUnavailability.end_datetime > start,
    ).first()


def ensure_doctor_available(
    db: Session,
    doctor_id: int,
    start: datetime,
    duration_minutes: int,
    enforce_end: bool | None = None,
) -> DoctorScheduleEntry:
    """Raise ``DoctorUnavailable`` unless ``start`` is bookable for the doctor.

    Only the start edge is checked against the working hours unless
    ``enforce_end`` (or ``ENFORCE_APPOINTMENT_END_WITHIN_HOURS``) is set, in
    which case the whole appointment must finish by ``end_time``.
    """
    if enforce_end is None:
        enforce_end = config.ENFORCE_APPOINTMENT_END_WITHIN_HOURS

    entry = get_schedule_entry(db, doctor_id, start.date())
    if entry is None:
        raise DoctorUnavailable('No working hours configured for this day.')

    time_of_day = start.time()
    if time_of_day < entry.start_time or time_of_day > entry.end_time:
        raise DoctorUnavailable('Requested time is outside the doctor\'s working hours.')

    if enforce_end:
        day_close = datetime.combine(start.date(), entry.end_time)
        if start + timedelta(minutes=duration_minutes) > day_close:
            raise DoctorUnavailable('Appointment would end after the doctor\'s working hours.')

    if is_break_time(entry, time_of_day):
        raise DoctorUnavailable('Requested time falls within the doctor\'s break.')

    if find_unavailability(db, doctor_id, start) is not None:
        raise DoctorUnavailable('Doctor is marked unavailable at this time.')

    return entry


def list_available_slots(db: Session, doctor_id: int, day: date) -> list[tuple[datetime, datetime]]:
    """Free slots for ``day`` at the schedule's slot granularity."""
    entry = get_schedule_entry(db, doctor_id, day)
    if entry is None:
        return []

    day_start = datetime.combine(day, time.min)
    day_end = day_start + timedelta(days=1)
    slot_minutes = entry.slot_duration_minutes or config.DEFAULT_APPOINTMENT_DURATION_MINUTES

    booked = [
        (appointment.appointment_datetime, appointment.scheduled_end)
        for appointment in db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.appointment_datetime >= day_start,
            Appointment.appointment_datetime < day_end,
            Appointment.status.in_(SLOT_HOLDING_STATUSES),
        ).all()
    ]
    blocked = [
        (window.start_datetime, window.end_datetime)
        for window in db.query(DoctorUnavailability).filter(
            DoctorUnavailability.doctor_id == doctor_id,
            DoctorUnavailability.start_datetime < day_end,
            DoctorUnavailability.end_datetime > day_start,
        ).all()
    ]

    slots: list[tuple[datetime, datetime]] = []
    current = datetime.combine(day, entry.start_time)
    close = datetime.combine(day, entry.end_time)

    while current < close:
        slot_end = current + timedelta(minutes=slot_minutes)
        is_free = not is_break_time(entry, current.time()) and not any(
            busy_start < slot_end and busy_end > current for busy_start, busy_end in booked + blocked
        )
        if is_free:
            slots.append((current, slot_end))
        current = slot_end

    return slots
