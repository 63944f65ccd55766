"""
Test configuration and fixtures.

Provides:
- In-memory fakes for the repository, patient lookup and calendar ports
- A fixed clock in the therapist's timezone
- An AgendaSession wired to the fakes
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

import anyio
import pytest

from agenda.core.errors import CalendarNotConnectedError, NotFoundError
from agenda.enums import AppointmentStatus, SessionModality
from agenda.schemas.appointment import (
    Appointment,
    AppointmentCreate,
    AppointmentUpdate,
    AuthorizationResult,
    CalendarInfo,
    Patient,
    SyncResult,
)
from agenda.services.agenda_service import AgendaSession
from agenda.utils.pagination import RevealController


TZ = ZoneInfo("America/Argentina/Buenos_Aires")
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=TZ)


# =============================================================================
# Builders
# =============================================================================

def make_appointment(
    appointment_id: str,
    day: date,
    start: str,
    *,
    minutes: int = 60,
    patient_id: str = "p1",
    patient_name: str | None = None,
    status: AppointmentStatus = AppointmentStatus.CONFIRMED,
    tz=TZ,
) -> Appointment:
    hours, mins = (int(part) for part in start.split(":"))
    begin = datetime.combine(day, time(hours, mins), tzinfo=tz)
    return Appointment(
        id=appointment_id,
        patient_id=patient_id,
        patient_name=patient_name,
        scheduled_from=begin,
        scheduled_to=begin + timedelta(minutes=minutes),
        status=status,
        cost=Decimal("8500"),
    )


PATIENTS = [
    Patient(id="p1", first_name="Ana", last_name="García", email="ana@example.com"),
    Patient(id="p2", first_name="Bruno", last_name="Díaz", email="bruno@example.com"),
    Patient(id="p3", first_name="Carla", last_name=None, email=None),
]


# =============================================================================
# Fakes
# =============================================================================

class FakeAppointmentRepository:
    """In-memory repository that records every call."""

    def __init__(self, appointments=()):
        self.items: dict[str, Appointment] = {a.id: a for a in appointments}
        self.calls: list[tuple] = []
        self.errors: dict[str, Exception] = {}
        self._next_id = 100

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if name in self.errors:
            raise self.errors[name]

    def called(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    async def list_all(self):
        self._record("list_all")
        return list(self.items.values())

    async def list_upcoming(self, limit=None):
        self._record("list_upcoming", limit)
        items = list(self.items.values())
        return items[:limit] if limit is not None else items

    async def list_monthly(self, year, month):
        self._record("list_monthly", year, month)
        return [
            a for a in self.items.values()
            if a.scheduled_from.year == year and a.scheduled_from.month == month
        ]

    async def get(self, appointment_id):
        self._record("get", appointment_id)
        if appointment_id not in self.items:
            raise NotFoundError()
        return self.items[appointment_id]

    async def create(self, draft: AppointmentCreate):
        self._record("create", draft)
        self._next_id += 1
        created = Appointment(
            id=str(self._next_id),
            patient_id=draft.patient_id,
            scheduled_from=draft.scheduled_from,
            scheduled_to=draft.scheduled_to,
            modality=draft.modality,
            status=draft.status or AppointmentStatus.PENDING,
            summary=draft.summary,
            cost=draft.cost,
        )
        self.items[created.id] = created
        return created

    async def update(self, appointment_id, patch: AppointmentUpdate):
        self._record("update", appointment_id, patch)
        if appointment_id not in self.items:
            raise NotFoundError()
        updated = self.items[appointment_id].model_copy(update=patch.changes())
        self.items[appointment_id] = updated
        return updated

    async def mark_completed(self, appointment_id):
        self._record("mark_completed", appointment_id)
        updated = self.items[appointment_id].model_copy(
            update={"status": AppointmentStatus.COMPLETED}
        )
        self.items[appointment_id] = updated
        return updated

    async def delete(self, appointment_id):
        self._record("delete", appointment_id)
        self.items.pop(appointment_id, None)


class FakePatientLookup:
    """Patient lookup; ``blockers`` hold a lookup until the event is set."""

    def __init__(self, patients=PATIENTS):
        self.patients = {p.id: p for p in patients}
        self.blockers: dict[str, anyio.Event] = {}
        self.calls: list[str] = []

    async def by_id(self, patient_id):
        self.calls.append(patient_id)
        if patient_id in self.blockers:
            await self.blockers[patient_id].wait()
        if patient_id not in self.patients:
            raise NotFoundError("Patient not found")
        return self.patients[patient_id]


class FakeCalendarAuthorization:
    def __init__(self, *, connected: bool = False, authorize: bool = True):
        self.connected = connected
        self.authorize = authorize
        self.synced_count = 3
        self.sync_error: Exception | None = None
        self.sync_calls = 0
        self.authorization_calls = 0
        self.disconnect_calls = 0

    async def request_authorization(self):
        self.authorization_calls += 1
        if self.authorize:
            self.connected = True
        return AuthorizationResult(
            success=self.authorize,
            auth_url="https://accounts.example.com/o/oauth2/auth",
        )

    async def sync(self):
        self.sync_calls += 1
        # Yield so a second trigger can observe the in-flight sync.
        await anyio.sleep(0)
        if self.sync_error is not None:
            raise self.sync_error
        return SyncResult(synced_count=self.synced_count, message="ok")

    async def list_calendars(self):
        if not self.connected:
            raise CalendarNotConnectedError()
        return [CalendarInfo(id="primary", summary="Sessions", primary=True)]

    async def disconnect(self):
        self.disconnect_calls += 1
        self.connected = False


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def tz() -> ZoneInfo:
    return TZ


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def repository() -> FakeAppointmentRepository:
    return FakeAppointmentRepository()


@pytest.fixture
def patients() -> FakePatientLookup:
    return FakePatientLookup()


@pytest.fixture
def calendar() -> FakeCalendarAuthorization:
    return FakeCalendarAuthorization()


@pytest.fixture
def agenda(repository, patients, calendar, clock) -> AgendaSession:
    return AgendaSession(
        repository,
        patients,
        calendar,
        therapist_id="t-1",
        tz=TZ,
        clock=clock,
        reveal=RevealController(page_size=2, step=2, debounce_seconds=0),
    )
