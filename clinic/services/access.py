"""Role and capability checks shared by the appointment read and write paths."""

from dataclasses import dataclass
from enum import Enum

from clinic.models.appointment import Appointment


class Role(str, Enum):
    PATIENT = 'patient'
    DOCTOR = 'doctor'
    ADMIN = 'admin'


@dataclass(frozen=True)
class Actor:
    actor_id: int
    role: Role


@dataclass(frozen=True)
class AppointmentCapabilities:
    can_view: bool
    can_mutate_status: bool
    can_edit_notes: bool


NO_ACCESS = AppointmentCapabilities(can_view=False, can_mutate_status=False, can_edit_notes=False)


def can_act_on(actor: Actor, appointment: Appointment) -> AppointmentCapabilities:
    if actor.role is Role.ADMIN:
        return AppointmentCapabilities(can_view=True, can_mutate_status=True, can_edit_notes=True)

    if actor.role is Role.DOCTOR and appointment.doctor_id == actor.actor_id:
        return AppointmentCapabilities(can_view=True, can_mutate_status=True, can_edit_notes=True)

    if actor.role is Role.PATIENT and appointment.patient_id == actor.actor_id:
        return AppointmentCapabilities(can_view=True, can_mutate_status=True, can_edit_notes=False)

    return NO_ACCESS
