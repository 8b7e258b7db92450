"""Doctor working hours and unavailability model definitions."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Time
from clinic.database import Base


class DoctorScheduleEntry(Base):
    """Recurring weekly working hours; day_of_week is 0=Sunday .. 6=Saturday."""
    __tablename__ = "doctor_schedules"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), index=True, nullable=False)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    break_start = Column(Time)
    break_end = Column(Time)
    slot_duration_minutes = Column(Integer, default=30)
    is_active = Column(Boolean, default=True)


class DoctorUnavailability(Base):
    """Ad hoc [start_datetime, end_datetime) window when a doctor cannot be booked."""
    __tablename__ = "doctor_unavailability"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), index=True, nullable=False)
    start_datetime = Column(DateTime, nullable=False)
    end_datetime = Column(DateTime, nullable=False)
    reason = Column(String)
