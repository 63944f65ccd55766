"""Enum definitions for scheduling constants."""

from enum import Enum


class AppointmentStatus(str, Enum):
    """
    Appointment lifecycle status.
    
    Flow: pending → confirmed → completed
              ↘ cancelled (from pending or confirmed)
    """
    PENDING = "pending"      # Booked, not yet confirmed by the patient
    CONFIRMED = "confirmed"  # Confirmed, scheduled
    COMPLETED = "completed"  # Session took place
    CANCELLED = "cancelled"  # Cancelled by patient or therapist


class SessionModality(str, Enum):
    """Where the session happens."""
    PRESENTIAL = "presential"
    REMOTE = "remote"


class CalendarSyncPhase(str, Enum):
    """External calendar connection phases."""
    DISCONNECTED = "disconnected"
    CONNECTED_IDLE = "connected-idle"
    CONNECTED_SYNCING = "connected-syncing"


class GatedAction(str, Enum):
    """Agenda actions checked against calendar connection state."""
    CREATE = "create"
    SELECT_DATE = "select_date"
    EDIT = "edit"
    DELETE = "delete"


class DrawerState(str, Enum):
    """Edit drawer state machine."""
    CLOSED = "closed"
    OPEN = "open"
    CONFIRMING_SAVE = "confirming_save"
    CONFIRMING_DELETE = "confirming_delete"


# Allowed status transitions (self-transitions are always allowed).
STATUS_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset({
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
    }),
    AppointmentStatus.CONFIRMED: frozenset({
        AppointmentStatus.PENDING,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
    }),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset({
        AppointmentStatus.PENDING,
        AppointmentStatus.CONFIRMED,
    }),
}


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    """Check whether a status change follows the lifecycle."""
    if current == target:
        return True
    return target in STATUS_TRANSITIONS[current]
