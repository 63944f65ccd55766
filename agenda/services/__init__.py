"""Service layer modules."""

from agenda.services.agenda_service import AgendaSession, PendingAction
from agenda.services.agenda_view_service import (
    AgendaView,
    DayBucket,
    ProjectionMemo,
    build_agenda_view,
    group_by_day,
)
from agenda.services.api_client import (
    ApiClient,
    HttpAppointmentRepository,
    HttpCalendarAuthorization,
    HttpPatientLookup,
)
from agenda.services.appointment_store import AppointmentStore
from agenda.services.calendar_sync_service import CalendarSyncCoordinator
from agenda.services.edit_session_service import (
    DraftFields,
    EditingDraft,
    EditSession,
    NewDraft,
)

# Import service modules (not individual functions) for cleaner access
from agenda.services import time_slot_codec

__all__ = [
    # Orchestration
    "AgendaSession",
    "PendingAction",
    # View-model
    "AgendaView",
    "DayBucket",
    "ProjectionMemo",
    "build_agenda_view",
    "group_by_day",
    # HTTP adapters
    "ApiClient",
    "HttpAppointmentRepository",
    "HttpCalendarAuthorization",
    "HttpPatientLookup",
    # State containers
    "AppointmentStore",
    "CalendarSyncCoordinator",
    # Drawer
    "DraftFields",
    "EditingDraft",
    "EditSession",
    "NewDraft",
    # Service modules
    "time_slot_codec",
]
