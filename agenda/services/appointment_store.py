"""Appointment store - canonical in-memory appointment list.

Handles:
- Fetching (upcoming, monthly, by patient, by id) from the repository
- Create / update / delete / complete through the repository
- Loading and error state for passive observers
- Selection kept consistent with the list

Write policy is reconcile-after-write: ``create`` never inserts locally (the
booking can still be rejected for a slot conflict or a calendar failure),
``update`` and ``delete`` splice the repository's authoritative answer into
the cached list, and callers refetch after every write. Two concurrent
updates of the same id race at the transport; the last response to arrive
wins.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, tzinfo
from typing import AsyncIterator

from agenda.core.errors import AgendaError
from agenda.core.state import StateContainer
from agenda.core.structured_logging import build_log_context
from agenda.schemas.appointment import Appointment, AppointmentCreate, AppointmentUpdate
from agenda.services.agenda_view_service import filter_today, group_by_day
from agenda.services.ports import AppointmentRepository

logger = logging.getLogger(__name__)


class AppointmentStore(StateContainer):
    """Single source of truth for appointments during one application session."""

    def __init__(
        self,
        repository: AppointmentRepository,
        *,
        therapist_id: str | None = None,
    ) -> None:
        super().__init__()
        self._repository = repository
        self._therapist_id = therapist_id
        self._appointments: tuple[Appointment, ...] = ()
        self._selected: Appointment | None = None
        self._in_flight = 0
        self._error: str | None = None

    # -------------------------------------------------------------------------
    # Read-only state
    # -------------------------------------------------------------------------

    @property
    def appointments(self) -> tuple[Appointment, ...]:
        return self._appointments

    @property
    def selected(self) -> Appointment | None:
        return self._selected

    @property
    def is_loading(self) -> bool:
        return self._in_flight > 0

    @property
    def error(self) -> str | None:
        return self._error

    def today(self, now: datetime, tz: tzinfo | str | None = None) -> tuple[Appointment, ...]:
        """Today's appointments ordered by time of day."""
        buckets = group_by_day(filter_today(self._appointments, now, tz), tz)
        return buckets[0].appointments if buckets else ()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def _operation(
        self,
        action: str,
        fallback_message: str,
        appointment_id: str | None = None,
    ) -> AsyncIterator[None]:
        self._in_flight += 1
        self._error = None
        self._notify()
        try:
            yield
        except Exception as exc:
            self._error = exc.message if isinstance(exc, AgendaError) else fallback_message
            logger.warning(
                "Appointment store %s failed: %s",
                action,
                type(exc).__name__,
                extra=build_log_context(
                    therapist_id=self._therapist_id,
                    appointment_id=appointment_id,
                    action=action,
                ),
            )
            raise
        finally:
            self._in_flight -= 1
            self._notify()

    def _replace_list(self, appointments: list[Appointment]) -> None:
        self._appointments = tuple(appointments)

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    async def fetch_upcoming(self, limit: int | None = None) -> None:
        """Replace the list with the repository's upcoming appointments."""
        async with self._operation("fetch_upcoming", "Error loading upcoming sessions"):
            appointments = await self._repository.list_upcoming(limit)
            self._replace_list(appointments)

    async def fetch_all(self) -> None:
        async with self._operation("fetch_all", "Error loading sessions"):
            appointments = await self._repository.list_all()
            self._replace_list(appointments)

    async def fetch_monthly(self, year: int, month: int) -> None:
        if not 1 <= month <= 12:
            raise ValueError(f"month must be 1-12, got {month}")
        async with self._operation("fetch_monthly", "Error loading sessions for the month"):
            appointments = await self._repository.list_monthly(year, month)
            self._replace_list(appointments)

    async def fetch_by_patient(self, patient_id: str) -> None:
        async with self._operation("fetch_by_patient", "Error loading patient sessions"):
            appointments = await self._repository.list_all()
            self._replace_list([a for a in appointments if a.patient_id == patient_id])

    async def fetch_by_id(self, appointment_id: str) -> Appointment:
        """Load one appointment and make it the selection."""
        async with self._operation("fetch_by_id", "Error loading session", appointment_id):
            appointment = await self._repository.get(appointment_id)
            self._selected = appointment
        return appointment

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def create(self, draft: AppointmentCreate) -> Appointment:
        """Book an appointment. The list is untouched until the next fetch."""
        async with self._operation("create", "Error creating session"):
            appointment = await self._repository.create(draft)
        logger.info(
            "Created appointment %s",
            appointment.id,
            extra=build_log_context(
                therapist_id=self._therapist_id,
                appointment_id=appointment.id,
                action="create",
            ),
        )
        return appointment

    async def update(self, appointment_id: str, patch: AppointmentUpdate) -> Appointment:
        """Apply a patch and splice the authoritative result in place."""
        async with self._operation("update", "Error updating session", appointment_id):
            updated = await self._repository.update(appointment_id, patch)
            self._apply_updated(appointment_id, updated)
        return updated

    async def mark_completed(self, appointment_id: str) -> Appointment:
        async with self._operation("mark_completed", "Error completing session", appointment_id):
            updated = await self._repository.mark_completed(appointment_id)
            self._apply_updated(appointment_id, updated)
        return updated

    async def delete(self, appointment_id: str) -> None:
        async with self._operation("delete", "Error deleting session", appointment_id):
            await self._repository.delete(appointment_id)
            self._appointments = tuple(a for a in self._appointments if a.id != appointment_id)
            if self._selected is not None and self._selected.id == appointment_id:
                self._selected = None

    def _apply_updated(self, appointment_id: str, updated: Appointment) -> None:
        # Applied against the list as it is when the response arrives.
        self._appointments = tuple(
            updated if a.id == appointment_id else a for a in self._appointments
        )
        if self._selected is not None and self._selected.id == appointment_id:
            self._selected = updated

    # -------------------------------------------------------------------------
    # Local state
    # -------------------------------------------------------------------------

    def select(self, appointment: Appointment | None) -> None:
        self._selected = appointment
        self._notify()

    def clear_error(self) -> None:
        self._error = None
        self._notify()

    def reset(self) -> None:
        """Drop all state (logout)."""
        self._appointments = ()
        self._selected = None
        self._error = None
        self._notify()
