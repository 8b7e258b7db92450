"""Appointment booking: doctor lookup, availability, conflict check, insert, confirmation."""

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinic.core import config
from clinic.models.appointment import Appointment, AppointmentStatus
from clinic.models.doctor import Doctor
from clinic.services.access import Actor, can_act_on
from clinic.services.availability import ensure_doctor_available
from clinic.services.conflicts import ensure_slot_free
from clinic.services.errors import (
    AppointmentNotFound,
    DoctorNotFound,
    Forbidden,
    SlotTaken,
    ValidationFailed,
)
from clinic.services.notifications import notify_booking_confirmed

logger = logging.getLogger(__name__)

DEFAULT_APPOINTMENT_TYPE = 'consultation'

NON_RESCHEDULABLE_STATUSES = (AppointmentStatus.CANCELLED.value, AppointmentStatus.COMPLETED.value)


def get_active_doctor(db: Session, doctor_id: int) -> Doctor:
    doctor = db.get(Doctor, doctor_id)
    if doctor is None or not doctor.is_active or (doctor.user is not None and doctor.user.is_active is False):
        raise DoctorNotFound()
    return doctor


def create_appointment(
    db: Session,
    patient_id: int,
    doctor_id: int,
    start: datetime,
    duration_minutes: int | None = None,
    appointment_type: str | None = None,
    reason: str | None = None,
    symptoms: str | None = None,
    created_by_id: int | None = None,
    notifier=None,
) -> Appointment:
    """Book ``start`` with ``doctor_id`` for ``patient_id``.

    The conflict check runs before the insert; the partial unique index on
    ``(doctor_id, appointment_datetime)`` turns a concurrent duplicate insert
    into ``SlotTaken`` as well.
    """
    if duration_minutes is None:
        duration_minutes = config.DEFAULT_APPOINTMENT_DURATION_MINUTES
    if duration_minutes <= 0 or duration_minutes > config.MAX_APPOINTMENT_DURATION_MINUTES:
        raise ValidationFailed(
            f'Duration must be between 1 and {config.MAX_APPOINTMENT_DURATION_MINUTES} minutes.'
        )

    get_active_doctor(db, doctor_id)
    ensure_doctor_available(db, doctor_id, start, duration_minutes)
    ensure_slot_free(db, doctor_id, start, duration_minutes)

    now = datetime.now()
    appointment = Appointment(
        patient_id=patient_id,
        doctor_id=doctor_id,
        appointment_datetime=start,
        duration_minutes=duration_minutes,
        status=AppointmentStatus.SCHEDULED.value,
        type=appointment_type or DEFAULT_APPOINTMENT_TYPE,
        reason=reason,
        symptoms=symptoms,
        created_by_id=created_by_id or patient_id,
        created_at=now,
        updated_at=now,
    )
    db.add(appointment)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.info('Concurrent booking lost the race for doctor %s at %s', doctor_id, start)
        raise SlotTaken() from exc
    db.refresh(appointment)

    logger.info(
        'Appointment %s booked: patient=%s doctor=%s start=%s',
        appointment.id, patient_id, doctor_id, start,
    )

    notify_booking_confirmed(db, notifier, appointment)
    return appointment


def reschedule_appointment(
    db: Session,
    appointment_id: int,
    actor: Actor,
    new_start: datetime,
) -> Appointment:
    """Move an appointment to ``new_start`` keeping its doctor and duration.

    The appointment's own row is excluded from the conflict check, so moving
    within its current slot is allowed.
    """
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise AppointmentNotFound()
    if not can_act_on(actor, appointment).can_mutate_status:
        raise Forbidden()
    if appointment.status in NON_RESCHEDULABLE_STATUSES:
        raise ValidationFailed(f'Cannot reschedule a {appointment.status} appointment.')

    duration_minutes = appointment.duration_minutes or config.DEFAULT_APPOINTMENT_DURATION_MINUTES
    ensure_doctor_available(db, appointment.doctor_id, new_start, duration_minutes)
    ensure_slot_free(db, appointment.doctor_id, new_start, duration_minutes, exclude_id=appointment.id)

    previous_start = appointment.appointment_datetime
    appointment.appointment_datetime = new_start
    appointment.status = AppointmentStatus.SCHEDULED.value
    appointment.end_datetime = None
    appointment.updated_at = datetime.now()

    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise SlotTaken() from exc
    db.refresh(appointment)

    logger.info(
        'Appointment %s rescheduled from %s to %s by %s %s',
        appointment.id, previous_start, new_start, actor.role.value, actor.actor_id,
    )
    return appointment
