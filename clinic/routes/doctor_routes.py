import logging
from datetime import date, datetime, time, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic.auth.dependencies import require_role
from clinic.database import get_db
from clinic.models.appointment import Appointment, SLOT_HOLDING_STATUSES
from clinic.models.availability import DoctorScheduleEntry, DoctorUnavailability
from clinic.routes.appointment_routes import ensure_database_ready, store_failure, to_clinic_local
from clinic.services.access import Actor, Role

router = APIRouter(tags=['doctors'])

logger = logging.getLogger(__name__)

DEFAULT_SCHEDULE_RANGE_DAYS = 7


class ScheduleEntryRequest(BaseModel):
    day_of_week: int = Field(alias='dayOfWeek', ge=0, le=6)
    start_time: time = Field(alias='startTime')
    end_time: time = Field(alias='endTime')
    break_start: time | None = Field(default=None, alias='breakStart')
    break_end: time | None = Field(default=None, alias='breakEnd')
    slot_duration_minutes: int = Field(default=30, alias='slotDuration', ge=5, le=240)

    class Config:
        populate_by_name = True

    @model_validator(mode='after')
    def validate_times(self):
        if self.start_time >= self.end_time:
            raise ValueError('startTime must be before endTime.')
        if (self.break_start is None) != (self.break_end is None):
            raise ValueError('breakStart and breakEnd must be provided together.')
        if self.break_start is not None and not (
            self.start_time <= self.break_start < self.break_end <= self.end_time
        ):
            raise ValueError('Break must fall within working hours.')
        return self


class UpdateScheduleRequest(BaseModel):
    schedules: list[ScheduleEntryRequest]

    @field_validator('schedules')
    @classmethod
    def validate_unique_days(cls, value: list[ScheduleEntryRequest]) -> list[ScheduleEntryRequest]:
        days = [entry.day_of_week for entry in value]
        if len(days) != len(set(days)):
            raise ValueError('Each day of the week may appear only once.')
        return value


class CreateUnavailabilityRequest(BaseModel):
    start_datetime: datetime = Field(alias='startDateTime')
    end_datetime: datetime = Field(alias='endDateTime')
    reason: str | None = None

    class Config:
        populate_by_name = True

    @field_validator('start_datetime', 'end_datetime')
    @classmethod
    def validate_datetime(cls, value: datetime) -> datetime:
        return to_clinic_local(value)

    @model_validator(mode='after')
    def validate_range(self):
        if self.end_datetime <= self.start_datetime:
            raise ValueError('End time must be after start time.')
        return self


class ScheduleEntryResponse(BaseModel):
    id: int
    day_of_week: int = Field(alias='dayOfWeek')
    start_time: time = Field(alias='startTime')
    end_time: time = Field(alias='endTime')
    break_start: time | None = Field(default=None, alias='breakStart')
    break_end: time | None = Field(default=None, alias='breakEnd')
    slot_duration_minutes: int | None = Field(default=None, alias='slotDuration')

    class Config:
        from_attributes = True
        populate_by_name = True


class UnavailabilityResponse(BaseModel):
    id: int
    start_datetime: datetime = Field(alias='startDateTime')
    end_datetime: datetime = Field(alias='endDateTime')
    reason: str | None = None

    class Config:
        from_attributes = True
        populate_by_name = True


class BookedIntervalResponse(BaseModel):
    appointment_datetime: datetime = Field(alias='appointmentDateTime')
    duration_minutes: int = Field(alias='duration')

    class Config:
        from_attributes = True
        populate_by_name = True


class DoctorScheduleResponse(BaseModel):
    regular_schedule: list[ScheduleEntryResponse] = Field(alias='regularSchedule')
    unavailable_times: list[UnavailabilityResponse] = Field(alias='unavailableTimes')
    appointments: list[BookedIntervalResponse]

    class Config:
        populate_by_name = True


@router.get('/{doctor_id}/schedule', response_model=DoctorScheduleResponse)
def get_doctor_schedule(
    doctor_id: int,
    start_date: date | None = Query(default=None, alias='startDate'),
    end_date: date | None = Query(default=None, alias='endDate'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    range_start = datetime.combine(start_date or date.today(), time.min)
    if end_date is not None:
        range_end = datetime.combine(end_date + timedelta(days=1), time.min)
    else:
        range_end = range_start + timedelta(days=DEFAULT_SCHEDULE_RANGE_DAYS)

    try:
        schedules = db.query(DoctorScheduleEntry).filter(
            DoctorScheduleEntry.doctor_id == doctor_id,
            DoctorScheduleEntry.is_active.is_(True),
        ).order_by(DoctorScheduleEntry.day_of_week.asc()).all()

        unavailable_times = db.query(DoctorUnavailability).filter(
            DoctorUnavailability.doctor_id == doctor_id,
            DoctorUnavailability.start_datetime < range_end,
            DoctorUnavailability.end_datetime > range_start,
        ).order_by(DoctorUnavailability.start_datetime.asc()).all()

        appointments = db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.appointment_datetime >= range_start,
            Appointment.appointment_datetime < range_end,
            Appointment.status.in_(SLOT_HOLDING_STATUSES),
        ).order_by(Appointment.appointment_datetime.asc()).all()

        return DoctorScheduleResponse(
            regular_schedule=[ScheduleEntryResponse.model_validate(entry) for entry in schedules],
            unavailable_times=[UnavailabilityResponse.model_validate(window) for window in unavailable_times],
            appointments=[BookedIntervalResponse.model_validate(appointment) for appointment in appointments],
        )
    except SQLAlchemyError as exc:
        raise store_failure(db, 'Failed to retrieve doctor schedule.') from exc


@router.put('/me/schedule', response_model=list[ScheduleEntryResponse])
def update_my_schedule(
    data: UpdateScheduleRequest,
    actor: Actor = Depends(require_role(Role.DOCTOR)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        db.query(DoctorScheduleEntry).filter(DoctorScheduleEntry.doctor_id == actor.actor_id).delete()

        entries = [
            DoctorScheduleEntry(
                doctor_id=actor.actor_id,
                day_of_week=entry.day_of_week,
                start_time=entry.start_time,
                end_time=entry.end_time,
                break_start=entry.break_start,
                break_end=entry.break_end,
                slot_duration_minutes=entry.slot_duration_minutes,
                is_active=True,
            )
            for entry in data.schedules
        ]
        db.add_all(entries)
        db.commit()
        for entry in entries:
            db.refresh(entry)

        logger.info('Doctor %s replaced weekly schedule (%d days)', actor.actor_id, len(entries))
        return [ScheduleEntryResponse.model_validate(entry) for entry in entries]
    except SQLAlchemyError as exc:
        raise store_failure(db, 'Failed to update schedule.') from exc


@router.post('/me/unavailability', response_model=UnavailabilityResponse, status_code=status.HTTP_201_CREATED)
def add_unavailable_time(
    data: CreateUnavailabilityRequest,
    actor: Actor = Depends(require_role(Role.DOCTOR)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        window = DoctorUnavailability(
            doctor_id=actor.actor_id,
            start_datetime=data.start_datetime,
            end_datetime=data.end_datetime,
            reason=data.reason,
        )
        db.add(window)
        db.commit()
        db.refresh(window)
        return UnavailabilityResponse.model_validate(window)
    except SQLAlchemyError as exc:
        raise store_failure(db, 'Failed to add unavailable time.') from exc


@router.delete('/me/unavailability/{unavailability_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_unavailable_time(
    unavailability_id: int,
    actor: Actor = Depends(require_role(Role.DOCTOR)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        window = db.query(DoctorUnavailability).filter(
            DoctorUnavailability.id == unavailability_id,
            DoctorUnavailability.doctor_id == actor.actor_id,
        ).first()

        if not window:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Unavailable time not found.',
            )

        db.delete(window)
        db.commit()
    except SQLAlchemyError as exc:
        raise store_failure(db, 'Failed to remove unavailable time.') from exc
