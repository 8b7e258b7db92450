import logging
from datetime import date, datetime, time, timedelta

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic.auth.dependencies import get_current_actor
from clinic.auth.rate_limit import enforce_rate_limit
from clinic.core import config
from clinic.database import ensure_appointment_schema, ensure_schedule_schema, get_db
from clinic.models.appointment import Appointment
from clinic.services import booking
from clinic.services import status as status_engine
from clinic.services.access import Actor, Role
from clinic.services.availability import list_available_slots
from clinic.services.errors import SchedulingError, to_http_exception
from clinic.services.notifications import BackgroundNotifier, get_notifier

router = APIRouter(tags=['appointments'])

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 1000


def _normalize_text(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_TEXT_LENGTH:
        raise ValueError(f'Must be {MAX_TEXT_LENGTH} characters or fewer.')

    return normalized


def to_clinic_local(value: datetime) -> datetime:
    """Appointments are stored as naive clinic-local time."""
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


class CreateAppointmentRequest(BaseModel):
    doctor_id: int = Field(alias='doctorId')
    appointment_datetime: datetime = Field(alias='appointmentDateTime')
    duration: int | None = Field(default=None, ge=1, le=config.MAX_APPOINTMENT_DURATION_MINUTES)
    type: str
    reason: str | None = None
    symptoms: str | list[str] | None = None
    patient_id: int | None = Field(default=None, alias='patientId')

    class Config:
        populate_by_name = True

    @field_validator('appointment_datetime')
    @classmethod
    def validate_appointment_datetime(cls, value: datetime) -> datetime:
        return to_clinic_local(value)

    @field_validator('type')
    @classmethod
    def validate_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError('Appointment type is required.')
        return normalized

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_text(value)

    @field_validator('symptoms')
    @classmethod
    def validate_symptoms(cls, value: str | list[str] | None) -> str | None:
        if isinstance(value, list):
            value = ', '.join(item.strip() for item in value if item and item.strip())
        return _normalize_text(value)


class RescheduleAppointmentRequest(BaseModel):
    appointment_datetime: datetime = Field(alias='appointmentDateTime')

    class Config:
        populate_by_name = True

    @field_validator('appointment_datetime')
    @classmethod
    def validate_appointment_datetime(cls, value: datetime) -> datetime:
        return to_clinic_local(value)


class UpdateStatusRequest(BaseModel):
    status: str
    notes: str | None = None
    cancellation_reason: str | None = Field(default=None, alias='cancellationReason')

    class Config:
        populate_by_name = True

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator('cancellation_reason')
    @classmethod
    def validate_cancellation_reason(cls, value: str | None) -> str | None:
        return _normalize_text(value)


class UpdateNotesRequest(BaseModel):
    notes: str

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str) -> str:
        value = value.strip()
        if len(value) > MAX_TEXT_LENGTH:
            raise ValueError(f'Notes must be {MAX_TEXT_LENGTH} characters or fewer.')
        return value


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int = Field(alias='patientId')
    doctor_id: int = Field(alias='doctorId')
    appointment_datetime: datetime = Field(alias='appointmentDateTime')
    duration_minutes: int = Field(alias='duration')
    end_datetime: datetime | None = Field(default=None, alias='endDateTime')
    status: str
    type: str | None = None
    reason: str | None = None
    symptoms: str | None = None
    notes: str | None = None
    cancellation_reason: str | None = Field(default=None, alias='cancellationReason')
    cancelled_by_id: int | None = Field(default=None, alias='cancelledById')
    created_by_id: int | None = Field(default=None, alias='createdById')
    created_at: datetime | None = Field(default=None, alias='createdAt')
    updated_at: datetime | None = Field(default=None, alias='updatedAt')

    class Config:
        from_attributes = True
        populate_by_name = True


class AvailableSlotResponse(BaseModel):
    start_time: datetime = Field(alias='startTime')
    end_time: datetime = Field(alias='endTime')

    class Config:
        populate_by_name = True


class AvailableSlotsResponse(BaseModel):
    available_slots: list[AvailableSlotResponse] = Field(alias='availableSlots')

    class Config:
        populate_by_name = True


def ensure_database_ready() -> None:
    try:
        ensure_schedule_schema()
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        logger.exception('Database schema check failed.')
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail='Database unavailable.',
        ) from exc


def store_failure(db: Session, detail: str) -> HTTPException:
    db.rollback()
    logger.exception(detail)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(enforce_rate_limit),
    db: Session = Depends(get_db),
):
    if actor.role is Role.PATIENT:
        patient_id = actor.actor_id
    elif actor.role is Role.ADMIN:
        if data.patient_id is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='patientId is required when booking on behalf of a patient.',
            )
        patient_id = data.patient_id
    else:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only patients and admins can book appointments.',
        )

    ensure_database_ready()

    try:
        appointment = booking.create_appointment(
            db,
            patient_id=patient_id,
            doctor_id=data.doctor_id,
            start=data.appointment_datetime,
            duration_minutes=data.duration,
            appointment_type=data.type,
            reason=data.reason,
            symptoms=data.symptoms,
            created_by_id=actor.actor_id,
            notifier=BackgroundNotifier(background_tasks, get_notifier()),
        )
        return AppointmentResponse.model_validate(appointment)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise store_failure(db, 'Failed to create appointment.') from exc


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    status_filter: str | None = Query(default=None, alias='status'),
    start_date: date | None = Query(default=None, alias='startDate'),
    end_date: date | None = Query(default=None, alias='endDate'),
    doctor_id: int | None = Query(default=None, alias='doctorId'),
    patient_id: int | None = Query(default=None, alias='patientId'),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        query = db.query(Appointment)

        if actor.role is Role.DOCTOR:
            query = query.filter(Appointment.doctor_id == actor.actor_id)
        elif actor.role is Role.PATIENT:
            query = query.filter(Appointment.patient_id == actor.actor_id)
        else:
            if doctor_id is not None:
                query = query.filter(Appointment.doctor_id == doctor_id)
            if patient_id is not None:
                query = query.filter(Appointment.patient_id == patient_id)

        if status_filter and status_filter != 'all':
            query = query.filter(Appointment.status == status_engine.parse_status(status_filter).value)
        if start_date is not None:
            query = query.filter(Appointment.appointment_datetime >= datetime.combine(start_date, time.min))
        if end_date is not None:
            query = query.filter(
                Appointment.appointment_datetime < datetime.combine(end_date + timedelta(days=1), time.min)
            )

        appointments = query.order_by(Appointment.appointment_datetime.asc()).all()
        return [AppointmentResponse.model_validate(appointment) for appointment in appointments]
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise store_failure(db, 'Failed to retrieve appointments.') from exc


@router.get('/doctors/{doctor_id}/available-slots', response_model=AvailableSlotsResponse)
def list_doctor_available_slots(
    doctor_id: int,
    slot_date: date = Query(alias='date'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        slots = list_available_slots(db, doctor_id, slot_date)
        return AvailableSlotsResponse(
            available_slots=[AvailableSlotResponse(start_time=start, end_time=end) for start, end in slots]
        )
    except SQLAlchemyError as exc:
        raise store_failure(db, 'Failed to retrieve available slots.') from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = status_engine.get_appointment_for_actor(db, appointment_id, actor)
        return AppointmentResponse.model_validate(appointment)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise store_failure(db, 'Failed to retrieve appointment.') from exc


@router.patch('/{appointment_id}/status', response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    data: UpdateStatusRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(enforce_rate_limit),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = status_engine.update_status(
            db,
            appointment_id,
            actor,
            data.status,
            notes=data.notes,
            cancellation_reason=data.cancellation_reason,
            notifier=BackgroundNotifier(background_tasks, get_notifier()),
        )
        return AppointmentResponse.model_validate(appointment)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise store_failure(db, 'Failed to update appointment status.') from exc


@router.patch('/{appointment_id}/notes', response_model=AppointmentResponse)
def update_appointment_notes(
    appointment_id: int,
    data: UpdateNotesRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = status_engine.update_notes(db, appointment_id, actor, data.notes)
        return AppointmentResponse.model_validate(appointment)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise store_failure(db, 'Failed to update appointment notes.') from exc


@router.post('/{appointment_id}/reschedule', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    data: RescheduleAppointmentRequest,
    actor: Actor = Depends(enforce_rate_limit),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = booking.reschedule_appointment(db, appointment_id, actor, data.appointment_datetime)
        return AppointmentResponse.model_validate(appointment)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise store_failure(db, 'Failed to reschedule appointment.') from exc
