"""
Datetime parsing, formatting and timezone helpers shared by both adapters.

Everything handed to the sync core is timezone-aware and in UTC unless a
caller explicitly converts it to a user's local zone.
"""

import logging
import re
from datetime import datetime
from datetime import timedelta

import pytz

logger = logging.getLogger(__name__)

# Graph returns seven fractional digits; datetime.fromisoformat() accepts at most six
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def utc_now() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(pytz.UTC)


def resolve_timezone(name: str | None, default: str = "UTC"):
    """Return a pytz timezone for ``name``, falling back to ``default`` then UTC."""
    for candidate in (name, default):
        if not candidate:
            continue
        try:
            return pytz.timezone(candidate)
        except pytz.UnknownTimeZoneError:
            logger.warning(f"Unknown timezone {candidate!r}, falling back")
    return pytz.UTC


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC)


def parse_iso(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp into an aware UTC datetime (None for empty input)."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(r"\1", text)
    return ensure_utc(datetime.fromisoformat(text))


def parse_graph_datetime(value: str | None, tz_name: str | None = None) -> datetime | None:
    """
    Parse a Graph ``dateTimeTimeZone`` pair.

    Graph sends the wall-clock time without an offset and names the zone
    separately; the result is normalised to UTC.
    """
    if not value:
        return None
    text = _FRACTION_RE.sub(r"\1", value.strip())
    if text.endswith("Z"):
        text = text[:-1]
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        return parsed.astimezone(pytz.UTC)
    tz = resolve_timezone(tz_name)
    return tz.localize(parsed).astimezone(pytz.UTC)


def format_iso(dt: datetime | None) -> str | None:
    """Render ``dt`` as ISO-8601 in UTC, or None."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()


def format_graph_datetime(dt: datetime | None, tz_name: str | None = "UTC") -> str | None:
    """Render ``dt`` as the offset-free wall-clock string Graph expects for ``tz_name``."""
    if dt is None:
        return None
    local = ensure_utc(dt).astimezone(resolve_timezone(tz_name))
    return local.strftime("%Y-%m-%dT%H:%M:%S")


def local_midnight(day, tz) -> datetime:
    """Midnight at the start of ``day`` in ``tz``, as an aware datetime."""
    return tz.localize(datetime(day.year, day.month, day.day))


def utc_offset(tz, at: datetime) -> timedelta:
    """UTC offset of ``tz`` at instant ``at``."""
    return ensure_utc(at).astimezone(tz).utcoffset() or timedelta(0)
