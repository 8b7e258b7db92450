"""Scheduling error taxonomy.

Services raise these; routes translate them into ``HTTPException`` using the
``status_code`` carried by each class.
"""

from fastapi import HTTPException, status


class SchedulingError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Scheduling request failed.'

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationFailed(SchedulingError):
    default_message = 'Invalid request.'


class DoctorNotFound(SchedulingError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Doctor not found or inactive.'


class DoctorUnavailable(SchedulingError):
    default_message = 'Doctor is not available at this time.'


class SlotTaken(SchedulingError):
    default_message = 'Doctor already has an appointment at this time.'


class AppointmentNotFound(SchedulingError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Appointment not found.'


class Forbidden(SchedulingError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = 'You do not have permission to access this appointment.'


class InvalidTransition(SchedulingError):
    default_message = 'Status transition is not allowed.'


def to_http_exception(exc: SchedulingError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)
