"""Pydantic schemas for the scheduling core."""

from agenda.schemas.appointment import (
    Appointment,
    AppointmentCreate,
    AppointmentUpdate,
    AuthorizationResult,
    CalendarInfo,
    Patient,
    SyncResult,
)

__all__ = [
    "Appointment",
    "AppointmentCreate",
    "AppointmentUpdate",
    "AuthorizationResult",
    "CalendarInfo",
    "Patient",
    "SyncResult",
]
