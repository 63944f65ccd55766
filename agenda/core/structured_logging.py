"""Structured logging helpers (PHI-safe)."""

from typing import Any


def build_log_context(
    *,
    therapist_id: str | None = None,
    appointment_id: str | None = None,
    action: str | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Return a PHI-safe log context dict.

    Patient names and contact details are never accepted here.
    """
    context: dict[str, Any] = {}
    if therapist_id:
        context["therapist_id"] = therapist_id
    if appointment_id:
        context["appointment_id"] = appointment_id
    if action:
        context["action"] = action
    if request_id:
        context["request_id"] = request_id
    return context
