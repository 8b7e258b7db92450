"""Appointment status lifecycle and doctor notes."""

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinic.core import config
from clinic.models.appointment import Appointment, AppointmentStatus
from clinic.services.access import Actor, can_act_on
from clinic.services.errors import (
    AppointmentNotFound,
    Forbidden,
    InvalidTransition,
    SlotTaken,
    ValidationFailed,
)
from clinic.services.notifications import notify_cancellation

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset({
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    }),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}


def parse_status(value: str) -> AppointmentStatus:
    try:
        return AppointmentStatus((value or '').strip().lower())
    except ValueError as exc:
        allowed = ', '.join(item.value for item in AppointmentStatus)
        raise ValidationFailed(f'Invalid status. Must be one of: {allowed}') from exc


def is_transition_allowed(current: AppointmentStatus, target: AppointmentStatus, strict: bool) -> bool:
    if not strict:
        return True
    return target in ALLOWED_TRANSITIONS[current]


def get_appointment_for_actor(db: Session, appointment_id: int, actor: Actor) -> Appointment:
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise AppointmentNotFound()
    if not can_act_on(actor, appointment).can_view:
        raise Forbidden()
    return appointment


def update_status(
    db: Session,
    appointment_id: int,
    actor: Actor,
    new_status: str,
    notes: str | None = None,
    cancellation_reason: str | None = None,
    notifier=None,
    strict: bool | None = None,
) -> Appointment:
    """Move an appointment to ``new_status``.

    Without ``strict`` (the default, ``STRICT_STATUS_TRANSITIONS`` off) any of
    the four statuses may be set from any current status.
    """
    if strict is None:
        strict = config.STRICT_STATUS_TRANSITIONS

    target = parse_status(new_status)

    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise AppointmentNotFound()
    if not can_act_on(actor, appointment).can_mutate_status:
        raise Forbidden()

    current = AppointmentStatus(appointment.status)
    if not is_transition_allowed(current, target, strict):
        raise InvalidTransition(f'Cannot change status from {current.value} to {target.value}.')

    now = datetime.now()

    if target is AppointmentStatus.CANCELLED:
        reason = (cancellation_reason or '').strip()
        if not reason:
            raise ValidationFailed('Cancellation reason is required.')
        appointment.cancellation_reason = reason
        appointment.cancelled_by_id = actor.actor_id
    elif target in (AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW):
        if notes is not None:
            appointment.notes = notes
        appointment.end_datetime = now
    elif target is AppointmentStatus.SCHEDULED:
        appointment.cancellation_reason = None
        appointment.cancelled_by_id = None
        appointment.end_datetime = None

    appointment.status = target.value
    appointment.updated_at = now

    try:
        db.commit()
    except IntegrityError as exc:
        # Reviving a cancelled row whose slot has since been rebooked.
        db.rollback()
        raise SlotTaken() from exc
    db.refresh(appointment)

    logger.info(
        'Appointment %s status %s -> %s by %s %s',
        appointment.id, current.value, target.value, actor.role.value, actor.actor_id,
    )

    if target is AppointmentStatus.CANCELLED:
        notify_cancellation(db, notifier, appointment, actor)

    return appointment


def update_notes(db: Session, appointment_id: int, actor: Actor, notes: str) -> Appointment:
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise AppointmentNotFound()
    if not can_act_on(actor, appointment).can_edit_notes:
        raise Forbidden('Only the appointment\'s doctor can edit notes.')

    appointment.notes = notes
    appointment.updated_at = datetime.now()
    db.commit()
    db.refresh(appointment)
    return appointment
