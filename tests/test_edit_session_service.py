"""Tests for the drawer edit session."""

import asyncio
from datetime import date, datetime, time, timedelta
from decimal import Decimal

import anyio
import pytest

from agenda.core.errors import NotFoundError, SlotConflictError, ValidationError
from agenda.enums import AppointmentStatus, DrawerState, SessionModality
from agenda.schemas.appointment import AppointmentCreate, AppointmentUpdate, Patient
from agenda.services.edit_session_service import EditingDraft, EditSession, NewDraft

from conftest import NOW, TZ, make_appointment


FUTURE = date(2026, 3, 12)


@pytest.fixture
def drawer(patients, clock):
    return EditSession(patients, tz=TZ, clock=clock)


def _codes(issues):
    return {(i.field, i.code) for i in issues}


async def _ready_new(drawer, patient_id="p1"):
    await drawer.open_new(patient_id=patient_id)
    drawer.set_field("day", FUTURE)
    return drawer


# =============================================================================
# Opening
# =============================================================================

@pytest.mark.asyncio
async def test_open_new_uses_defaults(drawer):
    await drawer.open_new()

    fields = drawer.fields
    assert drawer.state == DrawerState.OPEN
    assert isinstance(drawer.draft, NewDraft)
    assert (fields.start_time, fields.end_time) == (time(9, 0), time(10, 0))
    assert fields.duration_minutes == 60
    assert fields.modality == SessionModality.PRESENTIAL
    assert fields.status == AppointmentStatus.CONFIRMED
    assert fields.cost == Decimal("8500")
    assert fields.day is None


@pytest.mark.asyncio
async def test_open_new_from_calendar_time_uses_clicked_start(drawer):
    await drawer.open_new(initial=datetime(2026, 3, 12, 15, 30, tzinfo=TZ))

    assert drawer.fields.day == FUTURE
    assert drawer.fields.start_time == time(15, 30)
    assert drawer.fields.end_time == time(16, 30)


@pytest.mark.asyncio
async def test_open_new_from_calendar_midnight_keeps_default_start(drawer):
    await drawer.open_new(initial=datetime(2026, 3, 12, 0, 0, tzinfo=TZ))

    assert drawer.fields.day == FUTURE
    assert drawer.fields.start_time == time(9, 0)


@pytest.mark.asyncio
async def test_open_edit_mirrors_appointment(drawer):
    appointment = make_appointment("7", FUTURE, "14:00", minutes=90, patient_id="p2")

    await drawer.open_edit(appointment)

    assert isinstance(drawer.draft, EditingDraft)
    assert drawer.draft.original_id == "7"
    assert drawer.fields.start_time == time(14, 0)
    assert drawer.fields.end_time == time(15, 30)
    assert drawer.fields.duration_minutes == 90
    assert drawer.patient.id == "p2"


# =============================================================================
# Duration arithmetic
# =============================================================================

@pytest.mark.asyncio
async def test_duration_is_sticky_across_start_changes(drawer):
    await drawer.open_new()

    drawer.set_duration(45)
    assert drawer.fields.end_time == time(9, 45)

    drawer.set_start_time("11:00")
    assert drawer.fields.end_time == time(11, 45)


@pytest.mark.asyncio
async def test_duration_wrapping_past_midnight_is_rejected(drawer):
    await _ready_new(drawer)
    drawer.set_start_time(time(23, 30))
    drawer.set_duration(60)

    assert drawer.fields.end_time == time(0, 30)
    assert ("end_time", "not_after_start") in _codes(drawer.validate())
    with pytest.raises(ValidationError):
        drawer.request_save()
    assert drawer.state == DrawerState.OPEN


@pytest.mark.asyncio
async def test_set_field_rejects_unknown_and_routed_fields(drawer):
    await drawer.open_new()

    with pytest.raises(ValueError):
        drawer.set_field("colour", "red")
    with pytest.raises(ValueError):
        drawer.set_field("start_time", time(10, 0))


# =============================================================================
# Validation
# =============================================================================

@pytest.mark.asyncio
async def test_validate_reports_missing_fields(drawer):
    await drawer.open_new()
    drawer.set_field("modality", None)

    codes = _codes(drawer.validate())

    assert ("patient_id", "required") in codes
    assert ("day", "required") in codes
    assert ("modality", "required") in codes


@pytest.mark.asyncio
async def test_new_appointment_in_past_is_rejected(drawer):
    await drawer.open_new(patient_id="p1")
    drawer.set_field("day", NOW.date())
    drawer.set_start_time("08:00")

    assert ("day", "in_past") in _codes(drawer.validate())


@pytest.mark.asyncio
async def test_editing_past_appointment_is_allowed(drawer):
    past = make_appointment("9", NOW.date() - timedelta(days=3), "10:00")

    await drawer.open_edit(past)

    assert drawer.validate() == []


@pytest.mark.asyncio
async def test_completed_cannot_be_reopened(drawer):
    done = make_appointment("9", FUTURE, "10:00", status=AppointmentStatus.COMPLETED)
    await drawer.open_edit(done)

    drawer.set_field("status", AppointmentStatus.PENDING)

    assert ("status", "invalid_transition") in _codes(drawer.validate())


@pytest.mark.asyncio
async def test_patient_without_contact_disables_save(drawer):
    await _ready_new(drawer, patient_id="p3")

    assert not drawer.can_save
    assert ("patient_id", "no_contact") in _codes(drawer.validate())


@pytest.mark.asyncio
async def test_save_disabled_while_contact_loading(drawer, patients):
    patients.blockers["p2"] = anyio.Event()
    await _ready_new(drawer)
    assert drawer.can_save

    task = asyncio.create_task(drawer.set_patient("p2"))
    await asyncio.sleep(0)

    assert drawer.contact_loading
    assert not drawer.can_save
    assert ("patient_id", "contact_loading") in _codes(drawer.validate())

    patients.blockers["p2"].set()
    await task
    assert drawer.can_save


@pytest.mark.asyncio
async def test_stale_contact_lookup_is_discarded(drawer, patients):
    patients.blockers["p1"] = anyio.Event()
    await drawer.open_new()

    slow = asyncio.create_task(drawer.set_patient("p1"))
    await asyncio.sleep(0)
    await drawer.set_patient("p2")
    patients.blockers["p1"].set()
    await slow

    assert drawer.fields.patient_id == "p2"
    assert drawer.patient.id == "p2"


@pytest.mark.asyncio
async def test_failed_contact_lookup_raises(drawer):
    await drawer.open_new()

    with pytest.raises(NotFoundError):
        await drawer.set_patient("missing")

    assert not drawer.can_save
    assert drawer.contact_error == "Patient not found"


@pytest.mark.asyncio
async def test_unexpected_lookup_failure_stops_loading(drawer, patients):
    async def broken_by_id(patient_id):
        raise RuntimeError("bad payload")

    patients.by_id = broken_by_id
    await drawer.open_new()

    with pytest.raises(RuntimeError):
        await drawer.set_patient("p1")

    assert not drawer.contact_loading
    assert drawer.contact_error == "Error loading patient"
    assert ("patient_id", "no_contact") in _codes(drawer.validate())


@pytest.mark.asyncio
async def test_malformed_contact_address_disables_save(drawer, patients):
    patients.patients["p4"] = Patient(id="p4", first_name="Dora", email="not-an-email")

    await _ready_new(drawer, patient_id="p4")

    assert not drawer.can_save
    assert ("patient_id", "invalid_contact") in _codes(drawer.validate())


@pytest.mark.asyncio
async def test_negative_cost_and_long_summary_are_rejected(drawer):
    await _ready_new(drawer)
    drawer.set_field("cost", Decimal("-1"))
    drawer.set_field("summary", "x" * 2001)

    codes = _codes(drawer.validate())

    assert ("cost", "cost_negative") in codes
    assert ("summary", "summary_too_long") in codes
    with pytest.raises(ValidationError):
        drawer.request_save()
    assert drawer.state == DrawerState.OPEN


# =============================================================================
# Payloads
# =============================================================================

@pytest.mark.asyncio
async def test_build_create_encodes_local_offset(drawer):
    await _ready_new(drawer)
    drawer.set_start_time("14:00")
    drawer.set_field("summary", "  ")

    payload = drawer.build_payload()

    assert isinstance(payload, AppointmentCreate)
    body = payload.model_dump(mode="json", by_alias=True, exclude_none=True)
    assert body["scheduledFrom"] == "2026-03-12T14:00:00-03:00"
    assert body["scheduledTo"] == "2026-03-12T15:00:00-03:00"
    assert body["attendeeEmail"] == "ana@example.com"
    assert body["type"] == "presential"
    assert "sessionSummary" not in body


@pytest.mark.asyncio
async def test_build_update_sends_only_changed_interval(drawer):
    await drawer.open_edit(make_appointment("7", FUTURE, "14:00"))
    drawer.set_field("status", AppointmentStatus.CANCELLED)

    payload = drawer.build_update()

    assert isinstance(payload, AppointmentUpdate)
    sent = payload.changes()
    assert "scheduled_from" not in sent and "scheduled_to" not in sent
    assert sent["status"] == AppointmentStatus.CANCELLED
    assert sent["cost"] == Decimal("8500")
    assert "summary" not in sent


@pytest.mark.asyncio
async def test_build_update_includes_moved_interval(drawer):
    await drawer.open_edit(make_appointment("7", FUTURE, "14:00"))
    drawer.set_start_time("16:00")
    drawer.set_field("summary", "Moved")

    sent = drawer.build_update().changes()

    assert sent["scheduled_from"] == datetime(2026, 3, 12, 16, 0, tzinfo=TZ)
    assert sent["scheduled_to"] == datetime(2026, 3, 12, 17, 0, tzinfo=TZ)
    assert sent["summary"] == "Moved"


# =============================================================================
# Confirmation flow
# =============================================================================

@pytest.mark.asyncio
async def test_confirm_save_closes_on_success(drawer):
    await _ready_new(drawer)
    saved = make_appointment("100", FUTURE, "09:00")
    received = []

    async def on_save(draft, payload):
        received.append((draft, payload))
        return saved

    drawer.request_save()
    assert drawer.state == DrawerState.CONFIRMING_SAVE
    result = await drawer.confirm_save(on_save)

    assert result is saved
    assert drawer.state == DrawerState.CLOSED
    assert drawer.draft is None
    assert isinstance(received[0][1], AppointmentCreate)


@pytest.mark.asyncio
async def test_confirm_save_failure_keeps_draft(drawer):
    await _ready_new(drawer)
    draft_before = drawer.draft

    async def on_save(draft, payload):
        raise SlotConflictError()

    drawer.request_save()
    with pytest.raises(SlotConflictError):
        await drawer.confirm_save(on_save)

    assert drawer.state == DrawerState.OPEN
    assert drawer.draft == draft_before
    assert drawer.error == SlotConflictError.default_message
    assert not drawer.is_saving


@pytest.mark.asyncio
async def test_cancel_returns_to_open(drawer):
    await _ready_new(drawer)
    drawer.request_save()

    drawer.cancel()

    assert drawer.state == DrawerState.OPEN


@pytest.mark.asyncio
async def test_delete_only_for_existing(drawer):
    await _ready_new(drawer)
    with pytest.raises(ValueError):
        drawer.request_delete()

    await drawer.open_edit(make_appointment("7", FUTURE, "14:00"))
    deleted = []

    async def on_delete(appointment_id):
        deleted.append(appointment_id)

    drawer.request_delete()
    assert drawer.state == DrawerState.CONFIRMING_DELETE
    await drawer.confirm_delete(on_delete)

    assert deleted == ["7"]
    assert drawer.state == DrawerState.CLOSED


@pytest.mark.asyncio
async def test_confirm_requires_confirming_state(drawer):
    await _ready_new(drawer)

    async def on_save(draft, payload):
        return None

    with pytest.raises(ValueError):
        await drawer.confirm_save(on_save)


@pytest.mark.asyncio
async def test_payload_rejected_by_schema_reopens_drawer(drawer, monkeypatch):
    await _ready_new(drawer)
    drawer.request_save()
    monkeypatch.setattr(drawer, "build_payload", lambda: AppointmentUpdate(cost=Decimal("-1")))
    calls = []

    async def on_save(draft, payload):
        calls.append(payload)

    with pytest.raises(ValidationError) as excinfo:
        await drawer.confirm_save(on_save)

    assert excinfo.value.issues[0].field == "cost"
    assert drawer.state == DrawerState.OPEN
    assert calls == []
