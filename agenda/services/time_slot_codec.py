"""Time slot codec - instants <-> local calendar fields.

Handles:
- Splitting an instant into local date / time-of-day / UTC offset
- Rebuilding the instant from those fields
- Wire strings that keep the caller's offset (never normalised to UTC)
- Duration arithmetic on time-of-day values (wraps past midnight)
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import NamedTuple

from agenda.utils.datetime_parsing import format_with_offset, parse_instant, resolve_timezone

MINUTES_PER_DAY = 24 * 60


# =============================================================================
# Types
# =============================================================================

class LocalFields(NamedTuple):
    """Local calendar fields of an instant."""
    date: date
    time: time
    utc_offset_minutes: int


def _as_tz(tz: tzinfo | str | None) -> tzinfo:
    if tz is None or isinstance(tz, str):
        return resolve_timezone(tz)
    return tz


def fixed_offset(utc_offset_minutes: int) -> timezone:
    return timezone(timedelta(minutes=utc_offset_minutes))


# =============================================================================
# Instants <-> local fields
# =============================================================================

def to_local_fields(instant: datetime, tz: tzinfo | str | None = None) -> LocalFields:
    """Split an aware instant into local date, time-of-day and offset."""
    if instant.tzinfo is None:
        raise ValueError("instant must be timezone-aware")
    local = instant.astimezone(_as_tz(tz))
    offset = local.utcoffset() or timedelta(0)
    return LocalFields(
        date=local.date(),
        time=local.time(),
        utc_offset_minutes=int(offset.total_seconds() // 60),
    )


def to_instant(day: date, at: time, utc_offset_minutes: int) -> datetime:
    """Rebuild the instant for a local date + time at a fixed UTC offset."""
    return datetime.combine(day, at.replace(tzinfo=None), tzinfo=fixed_offset(utc_offset_minutes))


def compose_local(day: date, at: time, tz: tzinfo | str | None = None) -> datetime:
    """
    Instant for a wall-clock date + time in a named timezone.

    The result carries the fixed offset in force at that moment, which is
    what the wire format needs.
    """
    zone = _as_tz(tz)
    zoned = datetime.combine(day, at.replace(tzinfo=None), tzinfo=zone)
    offset = zoned.utcoffset() or timedelta(0)
    return zoned.astimezone(timezone(offset))


def local_date(instant: datetime, tz: tzinfo | str | None = None) -> date:
    return to_local_fields(instant, tz).date


# =============================================================================
# Wire format
# =============================================================================

def format_preserving_offset(instant: datetime, tz: tzinfo | str | None = None) -> str:
    """
    Render ``YYYY-MM-DDTHH:MM:SS±HH:MM`` in the caller's timezone.

    A slot entered as 14:00 local renders as 14:00 with the local offset,
    regardless of the server timezone.
    """
    if instant.tzinfo is None:
        raise ValueError("instant must be timezone-aware")
    return format_with_offset(instant.astimezone(_as_tz(tz)))


def parse_wire_instant(value: str) -> datetime:
    """Parse a backend/wire datetime string into an aware instant."""
    return parse_instant(value)


# =============================================================================
# Time-of-day helpers
# =============================================================================

def parse_time_of_day(value: str) -> time:
    """Parse ``HH:MM`` (drawer select values)."""
    try:
        hours_str, minutes_str = value.strip().split(":")[:2]
        return time(int(hours_str), int(minutes_str))
    except (ValueError, AttributeError) as exc:
        raise ValueError(f"Invalid time of day: {value!r}") from exc


def format_time_of_day(value: time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def add_minutes_to_time(start: time, minutes: int) -> time:
    """
    Time-of-day ``minutes`` after ``start``.

    Hours wrap modulo 24: 23:30 + 60 gives 00:30 with no day carry. Callers
    that compose the end instant on the start's date must reject
    ``end <= start`` themselves.
    """
    total = (start.hour * 60 + start.minute + minutes) % MINUTES_PER_DAY
    return time(total // 60, total % 60)


def wraps_past_midnight(start: time, minutes: int) -> bool:
    return start.hour * 60 + start.minute + minutes >= MINUTES_PER_DAY


def minutes_between(start: time, end: time) -> int:
    return (end.hour * 60 + end.minute) - (start.hour * 60 + start.minute)
