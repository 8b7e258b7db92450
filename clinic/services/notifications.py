"""
Appointment notification delivery.

Notifications are best-effort: every entry point here logs failures and
returns normally so a booking or status change never fails because an email
could not be sent.
"""

import logging
import smtplib
import ssl
from email.mime.text import MIMEText

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from clinic.core import config
from clinic.models.appointment import Appointment
from clinic.models.user import User
from clinic.services.access import Actor, Role

logger = logging.getLogger(__name__)


class EmailNotifier:
    """Sends plain-text email through an SMTP relay."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        from_address: str = "",
        use_tls: bool = True,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_address = from_address
        self.use_tls = use_tls

    def send(self, to: str, subject: str, body: str) -> None:
        msg = MIMEText(body, "plain")
        msg["Subject"] = subject
        msg["From"] = self.from_address
        msg["To"] = to

        if self.port == 465:
            context = ssl.create_default_context()
            server = smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=30)
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=30)
            if self.use_tls:
                server.starttls(context=ssl.create_default_context())

        try:
            if self.username:
                server.login(self.username, self.password)
            server.sendmail(self.from_address.split("<")[-1].rstrip(">"), [to], msg.as_string())
        finally:
            server.quit()

        logger.info("Email '%s' sent to %s via %s", subject, to, self.host)


class LoggingNotifier:
    """Used when no SMTP relay is configured."""

    def send(self, to: str, subject: str, body: str) -> None:
        logger.info("Email delivery disabled; would send '%s' to %s", subject, to)


class BackgroundNotifier:
    """Defers delivery to FastAPI background tasks so it runs after the response."""

    def __init__(self, background_tasks: BackgroundTasks, notifier):
        self.background_tasks = background_tasks
        self.notifier = notifier

    def send(self, to: str, subject: str, body: str) -> None:
        self.background_tasks.add_task(deliver, self.notifier, to, subject, body)


def get_notifier():
    if config.SMTP_HOST:
        return EmailNotifier(
            host=config.SMTP_HOST,
            port=config.SMTP_PORT,
            username=config.SMTP_USERNAME,
            password=config.SMTP_PASSWORD,
            from_address=config.EMAIL_FROM_ADDRESS,
            use_tls=config.SMTP_USE_TLS,
        )
    return LoggingNotifier()


def deliver(notifier, to: str, subject: str, body: str) -> bool:
    try:
        notifier.send(to, subject, body)
        return True
    except Exception:
        logger.exception("Failed to send '%s' to %s", subject, to)
        return False


def _format_slot(appointment: Appointment) -> str:
    return appointment.appointment_datetime.strftime("%A, %B %d %Y at %H:%M")


def notify_booking_confirmed(db: Session, notifier, appointment: Appointment) -> bool:
    if notifier is None:
        return False

    try:
        patient = db.get(User, appointment.patient_id)
        doctor = db.get(User, appointment.doctor_id)
        if patient is None or not patient.email:
            logger.warning("No email on file for patient %s; skipping confirmation", appointment.patient_id)
            return False

        doctor_name = doctor.full_name if doctor else "your doctor"
        body = (
            f"Hello {patient.full_name},\n\n"
            f"Your {appointment.type or 'appointment'} with Dr. {doctor_name} is confirmed for "
            f"{_format_slot(appointment)} ({appointment.duration_minutes} minutes).\n\n"
            f"Appointment reference: #{appointment.id}\n"
        )
        return deliver(notifier, patient.email, "Appointment confirmation", body)
    except Exception:
        logger.exception("Failed to prepare booking confirmation for appointment %s", appointment.id)
        return False


def cancellation_recipients(appointment: Appointment, actor: Actor) -> list[int]:
    if actor.role is Role.PATIENT:
        return [appointment.doctor_id]
    if actor.role is Role.DOCTOR:
        return [appointment.patient_id]
    return [appointment.patient_id, appointment.doctor_id]


def notify_cancellation(db: Session, notifier, appointment: Appointment, actor: Actor) -> int:
    """Tell the other party about a cancellation; returns how many emails were handed off."""
    if notifier is None:
        return 0

    sent = 0
    for user_id in cancellation_recipients(appointment, actor):
        try:
            recipient = db.get(User, user_id)
            if recipient is None or not recipient.email:
                logger.warning("No email on file for user %s; skipping cancellation notice", user_id)
                continue

            body = (
                f"Hello {recipient.full_name},\n\n"
                f"The appointment #{appointment.id} on {_format_slot(appointment)} has been cancelled.\n"
                f"Reason: {appointment.cancellation_reason or 'not given'}\n"
            )
            if deliver(notifier, recipient.email, "Appointment cancelled", body):
                sent += 1
        except Exception:
            logger.exception("Failed to prepare cancellation notice for appointment %s", appointment.id)

    return sent
