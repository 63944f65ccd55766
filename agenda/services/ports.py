"""Collaborator ports consumed by the scheduling core.

Transport-agnostic: the core only depends on these protocols. The HTTP
implementation lives in ``agenda.services.api_client``; tests use in-memory
fakes.
"""

from __future__ import annotations

from typing import Protocol

from agenda.schemas.appointment import (
    Appointment,
    AppointmentCreate,
    AppointmentUpdate,
    AuthorizationResult,
    CalendarInfo,
    Patient,
    SyncResult,
)


class AppointmentRepository(Protocol):
    """Persistence for appointments (mirrored into the external calendar)."""

    async def list_all(self) -> list[Appointment]: ...

    async def list_upcoming(self, limit: int | None = None) -> list[Appointment]: ...

    async def list_monthly(self, year: int, month: int) -> list[Appointment]: ...

    async def get(self, appointment_id: str) -> Appointment: ...

    async def create(self, draft: AppointmentCreate) -> Appointment:
        """May raise SlotConflictError or UpstreamCalendarError."""
        ...

    async def update(self, appointment_id: str, patch: AppointmentUpdate) -> Appointment: ...

    async def mark_completed(self, appointment_id: str) -> Appointment: ...

    async def delete(self, appointment_id: str) -> None: ...


class PatientLookup(Protocol):
    async def by_id(self, patient_id: str) -> Patient: ...


class CalendarAuthorization(Protocol):
    """External calendar authorization and sync."""

    async def request_authorization(self) -> AuthorizationResult: ...

    async def sync(self) -> SyncResult: ...

    async def list_calendars(self) -> list[CalendarInfo]: ...

    async def disconnect(self) -> None: ...
