"""Agenda error kinds.

Every failed store or coordinator operation raises one of these after
recording its message, so callers can both react (keep a drawer open) and
observe passively (the store's ``error`` field).
"""

from __future__ import annotations

from dataclasses import dataclass


class AgendaError(Exception):
    """Base exception for scheduling core errors."""

    default_message = "Something went wrong"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


@dataclass(frozen=True)
class ValidationIssue:
    """A single failed pre-submit check."""
    field: str
    code: str


class ValidationError(AgendaError):
    """Draft failed local validation; never reaches the network."""

    default_message = "Appointment draft is not valid"

    def __init__(self, issues: list[ValidationIssue], message: str | None = None):
        self.issues = list(issues)
        if message is None and self.issues:
            message = ", ".join(f"{i.field}:{i.code}" for i in self.issues)
        super().__init__(message)


class SlotConflictError(AgendaError):
    """Requested time overlaps an existing booking."""

    default_message = "The selected time slot is already taken"


class CalendarNotConnectedError(AgendaError):
    """External calendar must be connected before booking."""

    default_message = "Calendar not connected"


class CalendarTokenExpiredError(AgendaError):
    """External calendar authorization expired; user must reconnect."""

    default_message = "Calendar authorization expired"


class UpstreamCalendarError(AgendaError):
    """External calendar provider failed transiently."""

    default_message = "Failed to create calendar event"


class NetworkError(AgendaError):
    """No connectivity to the backend."""

    default_message = "Network error"


class NotFoundError(AgendaError):
    """Requested record does not exist."""

    default_message = "Session not found"


class ApiError(AgendaError):
    """Backend rejected the request for any other reason."""

    def __init__(self, status_code: int, message: str | None = None):
        self.status_code = status_code
        super().__init__(message or f"Request failed with status {status_code}")


# Errors that should send the user to the "connect your calendar" prompt
# instead of a generic failure toast.
CALENDAR_GATING_ERRORS: tuple[type[AgendaError], ...] = (
    CalendarNotConnectedError,
    CalendarTokenExpiredError,
)
