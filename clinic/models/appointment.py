"""Appointment model definitions."""

from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, text
from clinic.database import Base


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


# Rows in these states occupy their slot for interval overlap purposes.
SLOT_HOLDING_STATUSES = (AppointmentStatus.SCHEDULED.value, AppointmentStatus.COMPLETED.value)

_ACTIVE_SLOT_PREDICATE = text("status <> 'cancelled'")


class Appointment(Base):
    """Represents a booked visit between a patient and a doctor."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index(
            "uq_appointments_doctor_active_slot",
            "doctor_id",
            "appointment_datetime",
            unique=True,
            postgresql_where=_ACTIVE_SLOT_PREDICATE,
            sqlite_where=_ACTIVE_SLOT_PREDICATE,
        ),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), index=True, nullable=False)
    appointment_datetime = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, default=30, nullable=False)
    end_datetime = Column(DateTime)
    status = Column(String, default=AppointmentStatus.SCHEDULED.value, nullable=False)
    type = Column(String)
    reason = Column(String)
    symptoms = Column(String)
    notes = Column(String)
    cancellation_reason = Column(String)
    cancelled_by_id = Column(Integer, ForeignKey("users.id"))
    created_by_id = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now)

    @property
    def scheduled_end(self) -> datetime:
        return self.appointment_datetime + timedelta(minutes=self.duration_minutes or 0)
