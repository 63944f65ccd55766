"""Agenda view-models derived from the appointment list.

Everything here is a pure function of its inputs (appointments, now, search
term, timezone). Day buckets are recomputed on every change and never stored.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from itertools import groupby
from typing import Iterable, Mapping, NamedTuple, Sequence

from agenda.schemas.appointment import Appointment, Patient
from agenda.services.time_slot_codec import to_local_fields
from agenda.utils.datetime_parsing import resolve_timezone

TODAY_LABEL = "today"
TOMORROW_LABEL = "tomorrow"


# =============================================================================
# Types
# =============================================================================

class DayBucket(NamedTuple):
    """Appointments sharing one local calendar date, ordered by time of day."""
    date: date
    appointments: tuple[Appointment, ...]


@dataclass(frozen=True)
class AgendaView:
    """Projections rendered by the agenda screen."""
    today: tuple[Appointment, ...]
    upcoming_days: tuple[DayBucket, ...]
    calendar_feed: tuple[Appointment, ...]

    @property
    def upcoming_count(self) -> int:
        return sum(len(bucket.appointments) for bucket in self.upcoming_days)


def _zone(tz: tzinfo | str | None) -> tzinfo:
    if tz is None or isinstance(tz, str):
        return resolve_timezone(tz)
    return tz


# =============================================================================
# Grouping and filters
# =============================================================================

def group_by_day(
    appointments: Iterable[Appointment],
    tz: tzinfo | str | None = None,
) -> tuple[DayBucket, ...]:
    """
    Bucket appointments by local start date.

    Buckets ascend by date, appointments ascend by time of day. Python's sort
    is stable, so equal times keep their input order.
    """
    zone = _zone(tz)
    keyed = [(to_local_fields(appt.scheduled_from, zone), appt) for appt in appointments]
    keyed.sort(key=lambda item: (item[0].date, item[0].time))
    return tuple(
        DayBucket(date=day, appointments=tuple(appt for _, appt in items))
        for day, items in groupby(keyed, key=lambda item: item[0].date)
    )


def filter_upcoming(
    appointments: Iterable[Appointment],
    now: datetime,
    tz: tzinfo | str | None = None,
) -> list[Appointment]:
    """Appointments whose local date is today or later (date-only comparison)."""
    zone = _zone(tz)
    today = to_local_fields(now, zone).date
    return [a for a in appointments if to_local_fields(a.scheduled_from, zone).date >= today]


def filter_today(
    appointments: Iterable[Appointment],
    now: datetime,
    tz: tzinfo | str | None = None,
) -> list[Appointment]:
    """Appointments starting on today's local date (local midnight belongs to today)."""
    zone = _zone(tz)
    today = to_local_fields(now, zone).date
    return [a for a in appointments if to_local_fields(a.scheduled_from, zone).date == today]


def patient_display_name(
    appointment: Appointment,
    patients_index: Mapping[str, Patient] | None = None,
) -> str:
    patient = (patients_index or {}).get(appointment.patient_id)
    if patient is not None:
        return patient.display_name
    return appointment.patient_name or ""


def filter_by_search(
    appointments: Iterable[Appointment],
    patients_index: Mapping[str, Patient] | None,
    term: str | None,
) -> list[Appointment]:
    """Case-insensitive substring match on the patient's display name."""
    needle = (term or "").strip().lower()
    if not needle:
        return list(appointments)
    return [
        a for a in appointments
        if needle in patient_display_name(a, patients_index).lower()
    ]


# =============================================================================
# Composite view
# =============================================================================

def build_agenda_view(
    appointments: Sequence[Appointment],
    now: datetime,
    search_term: str | None = None,
    patients_index: Mapping[str, Patient] | None = None,
    tz: tzinfo | str | None = None,
) -> AgendaView:
    """
    Build today's agenda, the upcoming day buckets and the calendar feed.

    The search term narrows the upcoming list and the calendar feed; today's
    agenda always shows the whole day.
    """
    zone = _zone(tz)
    today = group_by_day(filter_today(appointments, now, zone), zone)
    searched = filter_by_search(appointments, patients_index, search_term)
    return AgendaView(
        today=today[0].appointments if today else (),
        upcoming_days=group_by_day(filter_upcoming(searched, now, zone), zone),
        calendar_feed=tuple(searched),
    )


def format_day_label(day: date, today: date) -> str:
    """Label key for a bucket header: today, tomorrow, or the ISO date."""
    if day == today:
        return TODAY_LABEL
    if day == today + timedelta(days=1):
        return TOMORROW_LABEL
    return day.isoformat()


class ProjectionMemo:
    """
    Remembers the last ``build_agenda_view`` call.

    Value-equal inputs return the previous ``AgendaView`` object, so
    observers comparing by identity skip redundant re-renders. Only the local
    date of ``now`` matters to the projections.
    """

    def __init__(self) -> None:
        self._key: tuple | None = None
        self._value: AgendaView | None = None
        self.hits = 0
        self.misses = 0

    def __call__(
        self,
        appointments: Sequence[Appointment],
        now: datetime,
        search_term: str | None = None,
        patients_index: Mapping[str, Patient] | None = None,
        tz: tzinfo | str | None = None,
    ) -> AgendaView:
        zone = _zone(tz)
        key = (
            tuple(appointments),
            to_local_fields(now, zone).date,
            (search_term or "").strip().lower(),
            dict(patients_index or {}),
            str(zone),
        )
        if self._value is not None and key == self._key:
            self.hits += 1
            return self._value
        self.misses += 1
        self._value = build_agenda_view(appointments, now, search_term, patients_index, zone)
        self._key = key
        return self._value

    def clear(self) -> None:
        self._key = None
        self._value = None
