"""Datetime parsing helpers for backend payloads and wire strings."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from agenda.core.config import settings

logger = logging.getLogger(__name__)

FALLBACK_TIMEZONE = "UTC"


def resolve_timezone(name: str | None = None) -> ZoneInfo:
    """Get a ZoneInfo timezone with safe fallback."""
    tz_name = name or settings.DEFAULT_TIMEZONE
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone '%s', defaulting to %s", tz_name, FALLBACK_TIMEZONE)
        return ZoneInfo(FALLBACK_TIMEZONE)


def parse_instant(value: str | datetime, default_tz: tzinfo | None = None) -> datetime:
    """
    Parse an ISO 8601 value into a timezone-aware datetime.

    - Accepts a trailing ``Z`` as UTC.
    - Values without offset are interpreted in ``default_tz``
      (the configured therapist timezone when omitted).
    """
    if isinstance(value, datetime):
        dt = value
    else:
        raw = value.strip()
        if not raw:
            raise ValueError("Empty datetime value")
        dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=default_tz or resolve_timezone())
    return dt


def format_offset(offset: timedelta) -> str:
    """Render a UTC offset as ``±HH:MM`` (``±HH:MM:SS`` for sub-minute offsets)."""
    total_seconds = int(offset.total_seconds())
    sign = "+" if total_seconds >= 0 else "-"
    minutes, seconds = divmod(abs(total_seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if seconds:
        return f"{sign}{hours:02d}:{minutes:02d}:{seconds:02d}"
    return f"{sign}{hours:02d}:{minutes:02d}"


def format_with_offset(dt: datetime) -> str:
    """
    Render an aware datetime as ``YYYY-MM-DDTHH:MM:SS±HH:MM``.

    Uses the datetime's own offset, never ``Z``. Sub-second precision is kept
    only when present so whole-second values stay short on the wire.
    """
    if dt.tzinfo is None or dt.utcoffset() is None:
        raise ValueError("Cannot format a naive datetime with an offset")
    base = dt.strftime("%Y-%m-%dT%H:%M:%S")
    if dt.microsecond:
        base = f"{base}.{dt.microsecond:06d}"
    return f"{base}{format_offset(dt.utcoffset())}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
