"""Lenient Date header parsing.

Real-world mailboxes carry Date headers that RFC parsers reject: offsets such
as ``+9960``, missing zones, two-digit junk. Parsing falls through a chain of
increasingly forgiving attempts and never raises.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

_OFFSET_RE = re.compile(r"([+-])(\d{2})(\d{2})")

_LEGACY_LAYOUTS = (
    "%a, %d %b %Y %H:%M:%S",
    "%d %b %Y %H:%M:%S",
    "%a, %d %b %Y %H:%M",
    "%d %b %Y %H:%M",
)


def normalize_tz_offset(value: str) -> str:
    """Clamp out-of-range ``+HHMM`` offsets to ``+2359``."""

    def _clamp(m: re.Match[str]) -> str:
        hh = min(int(m.group(2)), 23)
        mm = min(int(m.group(3)), 59)
        return f"{m.group(1)}{hh:02d}{mm:02d}"

    return _OFFSET_RE.sub(_clamp, value)


def _parse_rfc(value: str) -> datetime | None:
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError, OverflowError):
        return None
    if parsed is None:
        return None
    # "-0000" means "zone unknown" and yields a naive datetime.
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_date(value: str | None) -> datetime | None:
    """Parse a Date header into an aware datetime.

    Returns:
        The parsed timestamp, or None when no format matched.
    """

    if not value or not value.strip():
        return None

    parsed = _parse_rfc(value)
    if parsed is not None:
        return parsed

    normalized = normalize_tz_offset(value)
    parsed = _parse_rfc(normalized)
    if parsed is not None:
        return parsed

    without_zone = _OFFSET_RE.sub("", normalized).strip()
    for layout in _LEGACY_LAYOUTS:
        try:
            return datetime.strptime(without_zone, layout).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def display_date(when: datetime | None, raw: str) -> str:
    """Human date for listings: local ``YYYY-MM-DD HH:MM`` or the raw header."""

    if when is None:
        return raw.strip()
    return when.astimezone().strftime("%Y-%m-%d %H:%M")
