"""Fixed-offset time helpers. Pure functions that never raise on bad input.

An offset is a signed number of minutes east of UTC (``+540`` for Tokyo,
``-300`` for New York winter time). It is a constant per request, read from
the client's ``tz_offset`` cookie, so there is no DST awareness: around a DST
switch a check-in can land on the neighbouring local date.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from urllib.parse import unquote
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

TZ_COOKIE = "tz"
TZ_OFFSET_COOKIE = "tz_offset"
DEFAULT_TZ = "UTC"
DEFAULT_OFFSET_MINUTES = 0
MS_PER_DAY = 86_400_000

_DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

Instant = datetime | int | float | str


@dataclass(frozen=True, slots=True)
class TimeSettings:
    time_zone: str
    offset_minutes: int  # positive = east of UTC


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_instant(value: Instant | None) -> datetime | None:
    """Coerce a datetime, epoch-milliseconds number or ISO string to aware UTC.

    Returns None for anything unparseable.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, datetime):
            if value.tzinfo is None:
                return value.replace(tzinfo=timezone.utc)
            return value.astimezone(timezone.utc)
        if isinstance(value, (int, float)):
            if not math.isfinite(value):
                return None
            return _EPOCH + timedelta(milliseconds=value)
        if isinstance(value, str):
            raw = value.strip()
            if not raw:
                return None
            if _DATE_KEY_RE.match(raw):
                d = date.fromisoformat(raw)
                return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)
            if raw.endswith(("Z", "z")):
                raw = raw[:-1] + "+00:00"
            parsed = datetime.fromisoformat(raw)
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        return None
    return None


def to_iso(value: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a ``Z`` suffix."""
    dt = parse_instant(value) or utc_now()
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def to_date_key(value: Instant | None, offset_minutes: int = DEFAULT_OFFSET_MINUTES) -> str:
    """Local calendar date (``YYYY-MM-DD``) of an instant, or ``""`` if unparseable."""
    dt = parse_instant(value)
    if dt is None:
        return ""
    try:
        return (dt + timedelta(minutes=offset_minutes)).date().isoformat()
    except OverflowError:
        return ""


def start_of_day_local_as_utc(
    value: Instant | None = None,
    offset_minutes: int = DEFAULT_OFFSET_MINUTES,
) -> datetime:
    """UTC instant of local 00:00 for the day containing ``value`` (default: now)."""
    dt = parse_instant(value) if value is not None else utc_now()
    if dt is None:
        dt = utc_now()
    shift = timedelta(minutes=offset_minutes)
    local = dt + shift
    local_midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return local_midnight - shift


def add_days_utc(value: datetime, days: int) -> datetime:
    return value + timedelta(milliseconds=days * MS_PER_DAY)


def today_key(offset_minutes: int = DEFAULT_OFFSET_MINUTES, now: datetime | None = None) -> str:
    return to_date_key(now or utc_now(), offset_minutes)


def build_date_keys(
    days: int,
    offset_minutes: int = DEFAULT_OFFSET_MINUTES,
    end: datetime | None = None,
) -> list[str]:
    """``days`` consecutive local date keys ending at ``end`` (default now), newest first."""
    end_dt = parse_instant(end) if end is not None else utc_now()
    end_dt = end_dt or utc_now()
    return [to_date_key(add_days_utc(end_dt, -i), offset_minutes) for i in range(max(days, 0))]


def is_date_key(value: object) -> bool:
    """True for a strict ``YYYY-MM-DD`` string naming a real calendar date."""
    if not isinstance(value, str) or not _DATE_KEY_RE.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


# ---------------------------------------------------------------------------
# Request offset / timezone resolution
# ---------------------------------------------------------------------------


def normalize_offset(value: object) -> int:
    """Round to whole minutes (half up); anything non-numeric becomes 0."""
    if value is None or isinstance(value, bool):
        return DEFAULT_OFFSET_MINUTES
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return DEFAULT_OFFSET_MINUTES
    if not math.isfinite(parsed):
        return DEFAULT_OFFSET_MINUTES
    return int(math.floor(parsed + 0.5))


def normalize_time_zone(name: str | None) -> str:
    if not name:
        return DEFAULT_TZ
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return DEFAULT_TZ
    return name


def _cookie_value(cookie_header: str | None, name: str) -> str | None:
    if not cookie_header:
        return None
    for part in cookie_header.split(";"):
        key, sep, raw = part.strip().partition("=")
        if sep and key == name:
            try:
                return unquote(raw, errors="strict")
            except UnicodeDecodeError:
                return raw
    return None


def read_offset_from_cookie_header(cookie_header: str | None) -> int:
    return normalize_offset(_cookie_value(cookie_header, TZ_OFFSET_COOKIE))


def read_time_zone_from_cookie_header(cookie_header: str | None) -> str:
    return normalize_time_zone(_cookie_value(cookie_header, TZ_COOKIE))


def resolve_request_time_settings(cookie_header: str | None) -> TimeSettings:
    return TimeSettings(
        time_zone=read_time_zone_from_cookie_header(cookie_header),
        offset_minutes=read_offset_from_cookie_header(cookie_header),
    )
