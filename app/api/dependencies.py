"""
FastAPI dependencies for application-scoped services.

Services are built once in the application lifespan and stored on
app.state; routes receive them through these dependencies so tests can
override them.
"""

from fastapi import Request

from app.core.scheduling.reminders import ReminderScheduler
from app.core.scheduling.service import AppointmentService


def get_appointment_service(request: Request) -> AppointmentService:
    """FastAPI dependency that provides the appointment service."""
    return request.app.state.appointment_service


def get_reminder_scheduler(request: Request) -> ReminderScheduler:
    """FastAPI dependency that provides the reminder scheduler."""
    return request.app.state.reminder_scheduler
