"""Drawer edit session - composes one appointment create or edit.

State machine::

    closed -> open -> confirming_save -> closed
              open -> confirming_delete -> closed
    confirming_* -> open (cancel or failed persist)

The draft is a tagged variant (``NewDraft`` | ``EditingDraft``) so "am I
creating or editing" is decided by type, not by an optional id.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields as dataclass_fields, replace
from datetime import date, datetime, time, tzinfo
from decimal import Decimal
from typing import Any, Awaitable, Callable, TypeAlias

from pydantic import ValidationError as SchemaValidationError, validate_email

from agenda.core.config import settings
from agenda.core.errors import AgendaError, ValidationError, ValidationIssue
from agenda.enums import AppointmentStatus, DrawerState, SessionModality, can_transition
from agenda.schemas.appointment import Appointment, AppointmentCreate, AppointmentUpdate, Patient
from agenda.services.ports import PatientLookup
from agenda.services.time_slot_codec import (
    add_minutes_to_time,
    compose_local,
    parse_time_of_day,
    to_local_fields,
)
from agenda.utils.datetime_parsing import resolve_timezone, utc_now

logger = logging.getLogger(__name__)


# =============================================================================
# Drafts
# =============================================================================

@dataclass(frozen=True)
class DraftFields:
    """Local editable mirror of an appointment plus UI-only fields."""
    patient_id: str | None = None
    day: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    summary: str = ""
    modality: SessionModality | None = SessionModality.PRESENTIAL
    status: AppointmentStatus | None = AppointmentStatus.CONFIRMED
    cost: Decimal | None = None
    duration_minutes: int = 60


@dataclass(frozen=True)
class NewDraft:
    fields: DraftFields


@dataclass(frozen=True)
class EditingDraft:
    original: Appointment
    fields: DraftFields

    @property
    def original_id(self) -> str:
        return self.original.id


Draft: TypeAlias = NewDraft | EditingDraft
Payload: TypeAlias = AppointmentCreate | AppointmentUpdate
SaveHandler = Callable[[Draft, Payload], Awaitable[Appointment]]
DeleteHandler = Callable[[str], Awaitable[None]]

_EDITABLE_FIELDS = {f.name for f in dataclass_fields(DraftFields)} - {"duration_minutes"}

SUMMARY_MAX_LENGTH = 2000


def is_valid_contact(address: str | None) -> bool:
    """True when the address can receive a calendar invite."""
    if not address:
        return False
    try:
        validate_email(address)
    except ValueError:
        return False
    return True


def _schema_issues(exc: SchemaValidationError) -> list[ValidationIssue]:
    return [
        ValidationIssue(str(error["loc"][0]) if error["loc"] else "payload", error["type"])
        for error in exc.errors()
    ]


@dataclass
class _ContactLookup:
    patient_id: str | None = None
    loading: bool = False
    patient: Patient | None = None
    token: int = 0
    error: str | None = None


# =============================================================================
# Session
# =============================================================================

class EditSession:
    """Short-lived state for the appointment drawer."""

    def __init__(
        self,
        patients: PatientLookup,
        *,
        tz: tzinfo | str | None = None,
        clock: Callable[[], datetime] = utc_now,
        default_duration: int | None = None,
        default_cost: int | Decimal | None = None,
        default_start: str | None = None,
    ) -> None:
        self._patients = patients
        self._tz = tz if isinstance(tz, tzinfo) else resolve_timezone(tz)
        self._clock = clock
        self._default_duration = default_duration or settings.DEFAULT_SESSION_DURATION_MINUTES
        self._default_cost = Decimal(
            default_cost if default_cost is not None else settings.DEFAULT_SESSION_COST
        )
        self._default_start = parse_time_of_day(default_start or settings.DEFAULT_SESSION_START)
        self._state = DrawerState.CLOSED
        self._draft: Draft | None = None
        self._contact = _ContactLookup()
        self._saving = False
        self._error: str | None = None

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> DrawerState:
        return self._state

    @property
    def draft(self) -> Draft | None:
        return self._draft

    @property
    def fields(self) -> DraftFields:
        if self._draft is None:
            raise ValueError("Drawer is not open")
        return self._draft.fields

    @property
    def is_editing(self) -> bool:
        return isinstance(self._draft, EditingDraft)

    @property
    def duration_options(self) -> list[int]:
        """Durations offered by the drawer's duration select, in minutes."""
        options = settings.duration_options_list
        if self.fields.duration_minutes not in options:
            options = sorted([*options, self.fields.duration_minutes])
        return options

    @property
    def is_saving(self) -> bool:
        return self._saving

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def patient(self) -> Patient | None:
        return self._contact.patient

    @property
    def contact_loading(self) -> bool:
        return self._contact.loading

    @property
    def contact_error(self) -> str | None:
        return self._contact.error

    @property
    def can_save(self) -> bool:
        """
        Save button enabled.

        Disabled while the patient's contact lookup is pending or found no
        address, so a request is never sent with stale contact data.
        """
        return (
            self._state == DrawerState.OPEN
            and not self._saving
            and not self._contact.loading
            and self._contact.patient is not None
            and self._contact.patient.id == self.fields.patient_id
            and is_valid_contact(self._contact.patient.contact_address)
        )

    def _require_state(self, *allowed: DrawerState) -> None:
        if self._state not in allowed:
            raise ValueError(f"Drawer is {self._state.value}, expected {[s.value for s in allowed]}")

    # -------------------------------------------------------------------------
    # Opening
    # -------------------------------------------------------------------------

    async def open_new(
        self,
        patient_id: str | None = None,
        initial: datetime | date | None = None,
    ) -> None:
        """
        Open the drawer for a new appointment.

        ``initial`` comes from a calendar click: its date preselects the day
        and a non-midnight time preselects the start.
        """
        start = self._default_start
        day: date | None = None
        if isinstance(initial, datetime):
            local = initial.astimezone(self._tz) if initial.tzinfo else initial
            day = local.date()
            if local.hour or local.minute:
                start = time(local.hour, local.minute)
        elif isinstance(initial, date):
            day = initial

        fields = DraftFields(
            patient_id=patient_id or None,
            day=day,
            start_time=start,
            end_time=add_minutes_to_time(start, self._default_duration),
            cost=self._default_cost,
            duration_minutes=self._default_duration,
        )
        self._open(NewDraft(fields=fields))
        if fields.patient_id:
            await self._load_contact(fields.patient_id)

    async def open_edit(self, appointment: Appointment) -> None:
        start = to_local_fields(appointment.scheduled_from, self._tz)
        end = to_local_fields(appointment.scheduled_to, self._tz)
        fields = DraftFields(
            patient_id=appointment.patient_id,
            day=start.date,
            start_time=time(start.time.hour, start.time.minute),
            end_time=time(end.time.hour, end.time.minute),
            summary=appointment.summary or "",
            modality=appointment.modality,
            status=appointment.status,
            cost=appointment.cost if appointment.cost is not None else self._default_cost,
            duration_minutes=appointment.duration_minutes or self._default_duration,
        )
        self._open(EditingDraft(original=appointment, fields=fields))
        await self._load_contact(appointment.patient_id)

    def _open(self, draft: Draft) -> None:
        self._draft = draft
        self._state = DrawerState.OPEN
        self._error = None
        self._saving = False
        self._contact = _ContactLookup(token=self._contact.token + 1)

    # -------------------------------------------------------------------------
    # Editing
    # -------------------------------------------------------------------------

    def _set_fields(self, **changes: Any) -> DraftFields:
        self._require_state(DrawerState.OPEN)
        updated = replace(self.fields, **changes)
        self._draft = replace(self._draft, fields=updated)
        return updated

    def set_field(self, name: str, value: Any) -> DraftFields:
        """Set a plain field (day, end_time, summary, modality, status, cost)."""
        if name not in _EDITABLE_FIELDS:
            raise ValueError(f"Unknown draft field: {name}")
        if name in ("patient_id", "start_time"):
            raise ValueError(f"Use set_{name.removesuffix('_id')} to change {name}")
        if name == "end_time" and isinstance(value, str):
            value = parse_time_of_day(value)
        return self._set_fields(**{name: value})

    def set_start_time(self, start: time | str) -> DraftFields:
        """Change the start; the end follows using the selected duration."""
        if isinstance(start, str):
            start = parse_time_of_day(start)
        duration = self.fields.duration_minutes
        return self._set_fields(start_time=start, end_time=add_minutes_to_time(start, duration))

    def set_duration(self, minutes: int) -> DraftFields:
        """Select a duration; it sticks for later start-time changes."""
        if minutes <= 0:
            raise ValueError("Duration must be positive")
        start = self.fields.start_time
        end = add_minutes_to_time(start, minutes) if start is not None else self.fields.end_time
        return self._set_fields(duration_minutes=minutes, end_time=end)

    async def set_patient(self, patient_id: str | None) -> None:
        self._set_fields(patient_id=patient_id or None)
        if patient_id:
            await self._load_contact(patient_id)
        else:
            self._contact = _ContactLookup(token=self._contact.token + 1)

    async def _load_contact(self, patient_id: str) -> None:
        token = self._contact.token + 1
        self._contact = _ContactLookup(patient_id=patient_id, loading=True, token=token)
        try:
            patient = await self._patients.by_id(patient_id)
        except Exception as exc:
            if self._contact.token == token:
                message = exc.message if isinstance(exc, AgendaError) else "Error loading patient"
                self._contact = _ContactLookup(patient_id=patient_id, token=token, error=message)
            logger.warning("Patient contact lookup failed: %s", type(exc).__name__)
            raise
        # A newer selection superseded this lookup.
        if self._contact.token != token:
            return
        self._contact = _ContactLookup(patient_id=patient_id, patient=patient, token=token)

    # -------------------------------------------------------------------------
    # Validation and payloads
    # -------------------------------------------------------------------------

    def _start_instant(self, f: DraftFields) -> datetime | None:
        if f.day is None or f.start_time is None:
            return None
        return compose_local(f.day, f.start_time, self._tz)

    def validate(self) -> list[ValidationIssue]:
        f = self.fields
        issues: list[ValidationIssue] = []
        if not f.patient_id:
            issues.append(ValidationIssue("patient_id", "required"))
        if f.day is None:
            issues.append(ValidationIssue("day", "required"))
        if f.start_time is None or f.end_time is None:
            issues.append(ValidationIssue("time", "required"))
        elif f.end_time <= f.start_time:
            # Also catches durations that wrapped past midnight.
            issues.append(ValidationIssue("end_time", "not_after_start"))
        if isinstance(self._draft, NewDraft):
            start = self._start_instant(f)
            if start is not None and start < self._clock():
                issues.append(ValidationIssue("day", "in_past"))
        if f.modality is None:
            issues.append(ValidationIssue("modality", "required"))
        if f.status is None:
            issues.append(ValidationIssue("status", "required"))
        elif isinstance(self._draft, EditingDraft) and not can_transition(
            self._draft.original.status, f.status
        ):
            issues.append(ValidationIssue("status", "invalid_transition"))
        if f.cost is not None and f.cost < 0:
            issues.append(ValidationIssue("cost", "cost_negative"))
        if len(f.summary.strip()) > SUMMARY_MAX_LENGTH:
            issues.append(ValidationIssue("summary", "summary_too_long"))
        if f.patient_id:
            address = self._contact.patient.contact_address if self._contact.patient else None
            if self._contact.loading:
                issues.append(ValidationIssue("patient_id", "contact_loading"))
            elif not address:
                issues.append(ValidationIssue("patient_id", "no_contact"))
            elif not is_valid_contact(address):
                issues.append(ValidationIssue("patient_id", "invalid_contact"))
        return issues

    def _encode_interval(self) -> tuple[DraftFields, datetime, datetime]:
        issues = self.validate()
        if issues:
            raise ValidationError(issues)
        f = self.fields
        return f, compose_local(f.day, f.start_time, self._tz), compose_local(f.day, f.end_time, self._tz)

    def build_create(self) -> AppointmentCreate:
        if not isinstance(self._draft, NewDraft):
            raise ValueError("Draft is editing an existing appointment")
        f, start, end = self._encode_interval()
        return AppointmentCreate(
            patient_id=f.patient_id,
            scheduled_from=start,
            scheduled_to=end,
            attendee_email=self._contact.patient.contact_address,
            modality=f.modality,
            status=f.status,
            summary=f.summary.strip() or None,
            cost=f.cost,
        )

    def build_update(self) -> AppointmentUpdate:
        """
        Patch for an edit: interval fields only when they moved, status,
        modality and cost always, summary only when non-empty.
        """
        if not isinstance(self._draft, EditingDraft):
            raise ValueError("Draft is not editing an existing appointment")
        f, start, end = self._encode_interval()
        original = self._draft.original
        changes: dict[str, Any] = {"status": f.status, "modality": f.modality}
        if start != original.scheduled_from:
            changes["scheduled_from"] = start
        if end != original.scheduled_to:
            changes["scheduled_to"] = end
        if f.summary.strip():
            changes["summary"] = f.summary.strip()
        if f.cost is not None:
            changes["cost"] = f.cost
        return AppointmentUpdate(**changes)

    def build_payload(self) -> Payload:
        if isinstance(self._draft, NewDraft):
            return self.build_create()
        return self.build_update()

    # -------------------------------------------------------------------------
    # Save / delete
    # -------------------------------------------------------------------------

    def request_save(self) -> None:
        """Validation gate in front of the save confirmation."""
        self._require_state(DrawerState.OPEN)
        issues = self.validate()
        if issues:
            raise ValidationError(issues)
        self._state = DrawerState.CONFIRMING_SAVE

    async def confirm_save(self, on_save: SaveHandler) -> Appointment:
        """
        Encode and hand the payload to ``on_save``.

        On failure the drawer goes back to ``open`` with the same draft so
        the user can retry without re-entering fields.
        """
        self._require_state(DrawerState.CONFIRMING_SAVE)
        draft = self._draft
        try:
            payload = self.build_payload()
        except ValidationError:
            self._state = DrawerState.OPEN
            raise
        except SchemaValidationError as exc:
            self._state = DrawerState.OPEN
            raise ValidationError(_schema_issues(exc)) from exc
        self._saving = True
        self._error = None
        try:
            saved = await on_save(draft, payload)
        except Exception as exc:
            self._error = exc.message if isinstance(exc, AgendaError) else str(exc)
            self._state = DrawerState.OPEN
            raise
        finally:
            self._saving = False
        self.close()
        return saved

    def request_delete(self) -> None:
        self._require_state(DrawerState.OPEN)
        if not isinstance(self._draft, EditingDraft):
            raise ValueError("Only existing appointments can be deleted")
        self._state = DrawerState.CONFIRMING_DELETE

    async def confirm_delete(self, on_delete: DeleteHandler) -> None:
        self._require_state(DrawerState.CONFIRMING_DELETE)
        appointment_id = self._draft.original_id
        self._saving = True
        try:
            await on_delete(appointment_id)
        except Exception as exc:
            self._error = exc.message if isinstance(exc, AgendaError) else str(exc)
            self._state = DrawerState.OPEN
            raise
        finally:
            self._saving = False
        self.close()

    def cancel(self) -> None:
        """Leave a confirmation dialog, back to the open drawer."""
        self._require_state(DrawerState.CONFIRMING_SAVE, DrawerState.CONFIRMING_DELETE)
        self._state = DrawerState.OPEN

    def close(self) -> None:
        self._state = DrawerState.CLOSED
        self._draft = None
        self._saving = False
        self._contact = _ContactLookup(token=self._contact.token + 1)
