"""Agenda session - wires the store, calendar coordinator, drawer and reveal.

One ``AgendaSession`` is built per login and closed on logout. It owns no
appointment state itself; it sequences user actions across the components:

    validate -> encode -> persist -> refetch

and routes calendar gating failures to the "connect your calendar" prompt.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from typing import Callable, Iterable

import anyio

from agenda.core.errors import (
    CALENDAR_GATING_ERRORS,
    AgendaError,
    CalendarTokenExpiredError,
)
from agenda.core.structured_logging import build_log_context
from agenda.enums import DrawerState, GatedAction
from agenda.schemas.appointment import (
    Appointment,
    AppointmentUpdate,
    Patient,
    SyncResult,
)
from agenda.services.agenda_view_service import AgendaView, DayBucket, ProjectionMemo
from agenda.services.appointment_store import AppointmentStore
from agenda.services.calendar_sync_service import CalendarSyncCoordinator
from agenda.services.edit_session_service import Draft, EditSession, NewDraft, Payload
from agenda.services.ports import AppointmentRepository, CalendarAuthorization, PatientLookup
from agenda.utils.datetime_parsing import resolve_timezone, utc_now
from agenda.utils.pagination import RevealController, RevealWindow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingAction:
    """A gated action parked until the calendar is connected."""
    action: GatedAction
    patient_id: str | None = None
    initial: datetime | date | None = None


class AgendaSession:
    """Per-login container for the agenda screen."""

    def __init__(
        self,
        repository: AppointmentRepository,
        patients: PatientLookup,
        calendar: CalendarAuthorization,
        *,
        therapist_id: str | None = None,
        tz: tzinfo | str | None = None,
        clock: Callable[[], datetime] = utc_now,
        reveal: RevealController | None = None,
        calendar_prompted: bool = False,
    ) -> None:
        self._tz = tz if isinstance(tz, tzinfo) else resolve_timezone(tz)
        self._clock = clock
        self._therapist_id = therapist_id
        self.store = AppointmentStore(repository, therapist_id=therapist_id)
        self.calendar = CalendarSyncCoordinator(calendar, therapist_id=therapist_id, clock=clock)
        self.drawer = EditSession(patients, tz=self._tz, clock=clock)
        self.reveal = reveal or RevealController()
        self._memo = ProjectionMemo()
        self._patients_index: dict[str, Patient] = {}
        self._search_term = ""
        self._pending: PendingAction | None = None
        self._prompt_visible = False
        self._calendar_prompted = calendar_prompted

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def search_term(self) -> str:
        return self._search_term

    @property
    def calendar_prompt_visible(self) -> bool:
        return self._prompt_visible

    @property
    def calendar_prompted(self) -> bool:
        """True once the first-visit calendar prompt was shown (persisted by the host)."""
        return self._calendar_prompted

    @property
    def pending_action(self) -> PendingAction | None:
        return self._pending

    @property
    def patients_index(self) -> dict[str, Patient]:
        return dict(self._patients_index)

    def _log_extra(self, action: str, appointment_id: str | None = None) -> dict:
        return build_log_context(
            therapist_id=self._therapist_id,
            appointment_id=appointment_id,
            action=action,
        )

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    async def load(self) -> None:
        """
        Fetch upcoming sessions and probe the calendar connection concurrently.

        A failed fetch is left on ``store.error``. A disconnected calendar on
        the first visit shows the connect prompt once.
        """
        async def fetch() -> None:
            try:
                await self.store.fetch_upcoming()
            except AgendaError as exc:
                # Kept on store.error for the view; load itself does not fail.
                logger.debug("Initial fetch failed: %s", type(exc).__name__)

        async with anyio.create_task_group() as tg:
            tg.start_soon(fetch)
            tg.start_soon(self.calendar.check_connection)

        if not self.calendar.connected and not self._calendar_prompted:
            self._calendar_prompted = True
            self._prompt_visible = True

    def set_patients(self, patients: Iterable[Patient]) -> None:
        self._patients_index = {p.id: p for p in patients}

    async def _refetch(self) -> None:
        try:
            await self.store.fetch_upcoming()
        except AgendaError as exc:
            # The write already succeeded; retrying it would duplicate the booking.
            logger.warning(
                "Refetch after write failed: %s",
                type(exc).__name__,
                extra=self._log_extra("refetch"),
            )

    # -------------------------------------------------------------------------
    # Calendar gating
    # -------------------------------------------------------------------------

    def _gate(self, pending: PendingAction) -> bool:
        if self.calendar.is_action_allowed(pending.action):
            return True
        self._pending = pending
        self._prompt_visible = True
        logger.info(
            "Calendar required for %s",
            pending.action.value,
            extra=self._log_extra("gate"),
        )
        return False

    async def request_new_appointment(self, patient_id: str | None = None) -> bool:
        """Open the drawer for a new session. Returns False when gated."""
        pending = PendingAction(GatedAction.CREATE, patient_id=patient_id)
        if not self._gate(pending):
            return False
        await self._open_new(pending)
        return True

    async def select_calendar_date(self, when: datetime | date) -> bool:
        """Start a new session from a calendar click. Returns False when gated."""
        pending = PendingAction(GatedAction.SELECT_DATE, initial=when)
        if not self._gate(pending):
            return False
        await self._open_new(pending)
        return True

    async def _open_new(self, pending: PendingAction) -> None:
        await self.drawer.open_new(patient_id=pending.patient_id, initial=pending.initial)

    async def connect_calendar(self) -> bool:
        """Authorize the calendar; a parked action then opens the drawer."""
        if not await self.calendar.connect():
            return False
        self._prompt_visible = False
        pending, self._pending = self._pending, None
        if pending is not None:
            await self._open_new(pending)
        return True

    def dismiss_calendar_prompt(self) -> None:
        self._prompt_visible = False
        self._pending = None

    async def disconnect_calendar(self) -> None:
        await self.calendar.disconnect()

    def _on_gating_error(self, exc: AgendaError) -> None:
        if isinstance(exc, CalendarTokenExpiredError):
            self.calendar.mark_disconnected()
        self._prompt_visible = True

    # -------------------------------------------------------------------------
    # Drawer actions
    # -------------------------------------------------------------------------

    async def open_existing(self, appointment: Appointment | str) -> Appointment:
        """Open the drawer on an existing session. Never gated."""
        if isinstance(appointment, str):
            appointment = await self.store.fetch_by_id(appointment)
        else:
            self.store.select(appointment)
        await self.drawer.open_edit(appointment)
        return appointment

    async def _persist(self, draft: Draft, payload: Payload) -> Appointment:
        if isinstance(draft, NewDraft):
            self.calendar.require(GatedAction.CREATE)
            saved = await self.store.create(payload)
        else:
            saved = await self.store.update(draft.original_id, payload)
        await self._refetch()
        return saved

    async def save(self) -> Appointment:
        """
        Save the drawer's draft.

        A slot conflict or upstream calendar failure leaves the drawer open
        with the same draft so the user can pick another time and retry.
        """
        if self.drawer.state == DrawerState.OPEN:
            self.drawer.request_save()
        try:
            return await self.drawer.confirm_save(self._persist)
        except CALENDAR_GATING_ERRORS as exc:
            self._on_gating_error(exc)
            raise

    async def delete(self, appointment_id: str) -> None:
        """Delete a session, then refetch. Never gated."""
        await self.store.delete(appointment_id)
        await self._refetch()

    async def confirm_delete(self) -> None:
        await self.drawer.confirm_delete(self.delete)

    async def mark_completed(self, appointment_id: str) -> Appointment:
        completed = await self.store.mark_completed(appointment_id)
        await self._refetch()
        return completed

    async def reschedule(self, appointment_id: str, start: datetime, end: datetime) -> Appointment:
        """Move a session (calendar drag and drop). Never gated."""
        patch = AppointmentUpdate(scheduled_from=start, scheduled_to=end)
        try:
            updated = await self.store.update(appointment_id, patch)
        except CALENDAR_GATING_ERRORS as exc:
            self._on_gating_error(exc)
            raise
        await self._refetch()
        return updated

    # -------------------------------------------------------------------------
    # View
    # -------------------------------------------------------------------------

    def set_search_term(self, term: str | None) -> None:
        """Change the search; the revealed window starts over."""
        self._search_term = term or ""
        self.reveal.reset()

    def view(self) -> AgendaView:
        return self._memo(
            self.store.appointments,
            self._clock(),
            self._search_term,
            self._patients_index,
            self._tz,
        )

    def visible_days(self) -> RevealWindow[DayBucket]:
        return self.reveal.window(self.view().upcoming_days)

    async def reveal_more(self) -> RevealWindow[DayBucket]:
        await self.reveal.advance(len(self.view().upcoming_days))
        return self.visible_days()

    async def sync_calendar(self) -> SyncResult | None:
        """Trigger one sync; imported events show up after the refetch."""
        try:
            result = await self.calendar.trigger_sync()
        except CALENDAR_GATING_ERRORS as exc:
            self._on_gating_error(exc)
            raise
        if result is not None:
            await self._refetch()
        return result

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Logout: drop every piece of session state."""
        self.drawer.close()
        self.store.reset()
        self.calendar.reset()
        self.reveal.reset()
        self._memo.clear()
        self._patients_index = {}
        self._search_term = ""
        self._pending = None
        self._prompt_visible = False
        logger.info("Agenda session closed", extra=self._log_extra("close"))
