"""Appointment schemas - Pydantic models for sessions and their collaborators."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_serializer, field_validator, model_validator
from pydantic.alias_generators import to_camel

from agenda.enums import AppointmentStatus, SessionModality
from agenda.utils.datetime_parsing import format_with_offset, parse_instant

# Values the backend sends for fields that were never filled in.
_BLANK_MARKERS = {"", "undefined", "null"}


def _clean_optional_str(value: Any) -> Any:
    if isinstance(value, str) and value.strip() in _BLANK_MARKERS:
        return None
    return value


class WireModel(BaseModel):
    """Base for models exchanged with the backend (camelCase on the wire)."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


# =============================================================================
# Patients
# =============================================================================

class Patient(WireModel):
    """Patient as seen by the scheduling core."""
    id: str
    first_name: str = ""
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None

    @field_validator("last_name", "email", "phone", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        return _clean_optional_str(value)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()

    @property
    def contact_address(self) -> str | None:
        """Address used for external calendar invites."""
        return self.email


# =============================================================================
# Appointments
# =============================================================================

class Appointment(WireModel):
    """Schema for reading an appointment (session)."""
    id: str
    patient_id: str
    therapist_id: str | None = None
    patient_name: str | None = None
    scheduled_from: datetime
    scheduled_to: datetime
    modality: SessionModality = Field(SessionModality.PRESENTIAL, alias="sessionType")
    status: AppointmentStatus = AppointmentStatus.PENDING
    cost: Decimal | None = None
    summary: str | None = Field(None, alias="sessionSummary")
    external_event_id: str | None = None
    meet_link: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_relations(cls, data: Any) -> Any:
        # Backend nests patient/therapist objects; the core only keeps references.
        if not isinstance(data, dict):
            return data
        data = dict(data)
        patient = data.pop("patient", None)
        if isinstance(patient, dict):
            data.setdefault("patientId", patient.get("id"))
            name = f"{patient.get('firstName') or ''} {patient.get('lastName') or ''}".strip()
            if name:
                data.setdefault("patientName", name)
        therapist = data.pop("therapist", None)
        if isinstance(therapist, dict):
            data.setdefault("therapistId", therapist.get("id"))
        return data

    @field_validator("scheduled_from", "scheduled_to", mode="before")
    @classmethod
    def _aware_instant(cls, value: Any) -> Any:
        if isinstance(value, (str, datetime)):
            return parse_instant(value)
        return value

    @field_validator("summary", "external_event_id", "meet_link", "patient_name", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        return _clean_optional_str(value)

    @model_validator(mode="after")
    def _check_interval(self) -> Appointment:
        if self.scheduled_from >= self.scheduled_to:
            raise ValueError("scheduled_from must be before scheduled_to")
        return self

    @property
    def duration_minutes(self) -> int:
        return round((self.scheduled_to - self.scheduled_from).total_seconds() / 60)


class AppointmentCreate(WireModel):
    """Schema for creating an appointment.

    Instants are serialised with the offset they carry so a slot entered as
    14:00 local stays 14:00 local whatever the server timezone is.
    """
    patient_id: str = Field(..., min_length=1)
    scheduled_from: datetime
    scheduled_to: datetime
    attendee_email: EmailStr
    modality: SessionModality = Field(SessionModality.PRESENTIAL, alias="type")
    status: AppointmentStatus | None = None
    summary: str | None = Field(None, alias="sessionSummary", max_length=2000)
    cost: Decimal | None = Field(None, ge=0)

    @model_validator(mode="after")
    def _check_interval(self) -> AppointmentCreate:
        if self.scheduled_from.tzinfo is None or self.scheduled_to.tzinfo is None:
            raise ValueError("scheduled instants must be timezone-aware")
        if self.scheduled_from >= self.scheduled_to:
            raise ValueError("scheduled_from must be before scheduled_to")
        return self

    @field_serializer("scheduled_from", "scheduled_to")
    def _serialize_instant(self, value: datetime) -> str:
        return format_with_offset(value)

    @field_serializer("cost")
    def _serialize_cost(self, value: Decimal | None) -> float | None:
        return float(value) if value is not None else None


class AppointmentUpdate(WireModel):
    """Schema for patching an appointment. Only explicitly set fields are sent."""
    scheduled_from: datetime | None = None
    scheduled_to: datetime | None = None
    status: AppointmentStatus | None = None
    summary: str | None = Field(None, alias="sessionSummary", max_length=2000)
    cost: Decimal | None = Field(None, ge=0)
    modality: SessionModality | None = Field(None, alias="type")

    @model_validator(mode="after")
    def _check_interval(self) -> AppointmentUpdate:
        if (
            self.scheduled_from is not None
            and self.scheduled_to is not None
            and self.scheduled_from >= self.scheduled_to
        ):
            raise ValueError("scheduled_from must be before scheduled_to")
        return self

    @field_serializer("scheduled_from", "scheduled_to")
    def _serialize_instant(self, value: datetime | None) -> str | None:
        return format_with_offset(value) if value is not None else None

    @field_serializer("cost")
    def _serialize_cost(self, value: Decimal | None) -> float | None:
        return float(value) if value is not None else None

    def changes(self) -> dict[str, Any]:
        """Explicitly set fields, keyed by attribute name."""
        return {name: getattr(self, name) for name in self.model_fields_set}

    def is_empty(self) -> bool:
        return not self.model_fields_set


# =============================================================================
# Calendar
# =============================================================================

class SyncResult(WireModel):
    """Result of one external calendar sync."""
    synced_count: int = Field(0, alias="sessionsSynced")
    message: str | None = None


class CalendarInfo(WireModel):
    """A calendar exposed by the connected provider."""
    id: str
    summary: str = ""
    description: str | None = None
    primary: bool = False


class AuthorizationResult(WireModel):
    """Outcome of the external authorization flow."""
    success: bool
    auth_url: str | None = None
    message: str | None = None
