"""Utility modules."""

from agenda.utils.datetime_parsing import (
    format_with_offset,
    parse_instant,
    resolve_timezone,
)
from agenda.utils.pagination import (
    RevealController,
    RevealWindow,
    has_more,
    visible_slice,
)

__all__ = [
    # Datetime parsing
    "format_with_offset",
    "parse_instant",
    "resolve_timezone",
    # Incremental reveal
    "RevealController",
    "RevealWindow",
    "has_more",
    "visible_slice",
]
