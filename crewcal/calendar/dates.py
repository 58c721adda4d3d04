"""
Timezone-aware date and range helpers for the calendar.

Everything here is pure: no store access, no clock reads. Day boundaries
are always projected through an explicit IANA zone, never the host's
local time. Instants returned by this module are aware UTC datetimes.
"""

import re
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from functools import lru_cache
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from crewcal.config import settings
from crewcal.errors import InvalidInputError

DEFAULT_CALENDAR_TIMEZONE = settings.calendar.timezone
DEFAULT_SLOT_MINUTES = 30
SUPPORTED_SLOT_MINUTES = (15, 30, 60, 90)
MINUTES_PER_DAY = 24 * 60

_DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_HHMM_RE = re.compile(r"^(\d{2}):(\d{2})$")
_UTC_SUFFIX_RE = re.compile(r"(?:[zZ]|[+-]\d{2}:\d{2})$")

DateLike = Union[str, date, datetime]


class CalendarView(str, Enum):
    """Calendar grid layouts supported by the scheduling UI."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"


def utc_now() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@lru_cache(maxsize=256)
def is_valid_timezone(value: Optional[str]) -> bool:
    """Check that ``value`` names a zone in the IANA database."""
    trimmed = value.strip() if isinstance(value, str) else ""
    if not trimmed:
        return False
    try:
        ZoneInfo(trimmed)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return False
    return True


def ensure_timezone(value: Optional[str]) -> str:
    """Return ``value`` if it is a valid zone, else the configured default."""
    trimmed = value.strip() if isinstance(value, str) else ""
    if trimmed and is_valid_timezone(trimmed):
        return trimmed
    return DEFAULT_CALENDAR_TIMEZONE


def _zone(time_zone: Optional[str]) -> ZoneInfo:
    return ZoneInfo(ensure_timezone(time_zone))


def clamp_slot_minutes(value: Optional[object]) -> int:
    """Normalize any input to a supported slot granularity.

    Rounds down to the nearest supported value, with 15 as the floor.
    ``None`` and unparseable values fall back to the default granularity.

    Examples:
        >>> [clamp_slot_minutes(v) for v in (0, 10, 15, 45, 61, 200)]
        [15, 15, 15, 30, 60, 90]
    """
    if value is None:
        return DEFAULT_SLOT_MINUTES
    try:
        minutes = int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return DEFAULT_SLOT_MINUTES
    eligible = [slot for slot in SUPPORTED_SLOT_MINUTES if slot <= minutes]
    return eligible[-1] if eligible else SUPPORTED_SLOT_MINUTES[0]


def clamp_week_starts_on(value: Optional[object]) -> int:
    """Return 1 (Monday) only for an explicit 1, otherwise 0 (Sunday)."""
    return 1 if value == 1 else 0


def parse_date_key(value: DateLike, field: str = "date") -> date:
    """Parse a ``YYYY-MM-DD`` key. Date and datetime inputs pass through."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    trimmed = value.strip() if isinstance(value, str) else ""
    if not _DATE_KEY_RE.match(trimmed):
        raise InvalidInputError(field, f"expected YYYY-MM-DD, got {value!r}")
    try:
        return date.fromisoformat(trimmed)
    except ValueError:
        raise InvalidInputError(field, f"not a calendar date: {value!r}") from None


def format_date_key(day: date) -> str:
    return day.isoformat()


def add_days_to_date_key(date_key: DateLike, offset: int) -> str:
    """Shift a date key by ``offset`` calendar days."""
    return format_date_key(parse_date_key(date_key) + timedelta(days=offset))


def day_of_week_for_date(date_key: DateLike) -> int:
    """Day of week with 0=Sunday through 6=Saturday."""
    return parse_date_key(date_key).isoweekday() % 7


def hhmm_to_minutes(value: str, field: str = "time") -> int:
    """Parse ``HH:MM`` into a minute-of-day offset (0-1439)."""
    match = _HHMM_RE.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise InvalidInputError(field, f"expected HH:MM, got {value!r}")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise InvalidInputError(field, f"out of range: {value!r}")
    return hours * 60 + minutes


def minutes_to_hhmm(minutes: int) -> str:
    """Format a minute-of-day offset as ``HH:MM``, clamped into 0-1439."""
    safe = max(0, min(MINUTES_PER_DAY - 1, int(minutes)))
    return f"{safe // 60:02d}:{safe % 60:02d}"


def local_minutes_to_utc(day: DateLike, minutes: int, time_zone: Optional[str]) -> datetime:
    """Project a wall-clock offset on ``day`` in ``time_zone`` to UTC.

    ``minutes`` may be 1440, meaning midnight at the end of the day.
    Ambiguous and skipped wall times follow zoneinfo's ``fold=0`` rule.
    """
    local_day = parse_date_key(day)
    wall = datetime(local_day.year, local_day.month, local_day.day) + timedelta(minutes=minutes)
    return wall.replace(tzinfo=_zone(time_zone)).astimezone(timezone.utc)


def to_utc_from_local_datetime(date: DateLike, time: str, time_zone: Optional[str]) -> datetime:
    """Interpret ``date`` + ``time`` as wall-clock time in ``time_zone``."""
    return local_minutes_to_utc(date, hhmm_to_minutes(time), time_zone)


def local_date_from_utc(instant: datetime, time_zone: Optional[str]) -> str:
    """Calendar day (``YYYY-MM-DD``) that ``instant`` falls on in ``time_zone``."""
    return ensure_utc(instant).astimezone(_zone(time_zone)).strftime("%Y-%m-%d")


def zoned_date_string(instant: datetime, time_zone: Optional[str]) -> str:
    return local_date_from_utc(instant, time_zone)


def zoned_time_string(instant: datetime, time_zone: Optional[str]) -> str:
    return ensure_utc(instant).astimezone(_zone(time_zone)).strftime("%H:%M")


def zoned_datetime_label(instant: datetime, time_zone: Optional[str]) -> str:
    """Human label such as ``Mar 2, 2026 9:30 AM``."""
    local = ensure_utc(instant).astimezone(_zone(time_zone))
    hour = local.hour % 12 or 12
    return f"{local:%b} {local.day}, {local.year} {hour}:{local:%M %p}"


def get_local_minutes_in_day(instant: datetime, time_zone: Optional[str]) -> int:
    local = ensure_utc(instant).astimezone(_zone(time_zone))
    return local.hour * 60 + local.minute


def get_utc_range_for_date(date_key: DateLike, time_zone: Optional[str]) -> tuple[datetime, datetime]:
    """UTC bounds ``[start, end)`` of a local calendar day.

    The span is 23 or 25 hours on DST transition days.
    """
    return (
        local_minutes_to_utc(date_key, 0, time_zone),
        local_minutes_to_utc(date_key, MINUTES_PER_DAY, time_zone),
    )


def parse_utc_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO instant that carries an explicit ``Z`` or offset suffix.

    Returns None for blank, offset-less, or malformed input.
    """
    if not value:
        return None
    trimmed = value.strip()
    if not trimmed or not _UTC_SUFFIX_RE.search(trimmed):
        return None
    if trimmed[-1] in "zZ":
        trimmed = trimmed[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(trimmed))
    except ValueError:
        return None


def add_duration(start_utc: datetime, duration_minutes: int) -> datetime:
    return start_utc + timedelta(minutes=duration_minutes)


def move_utc_preserving_local_time(source_utc: datetime, target_date: DateLike, time_zone: Optional[str]) -> datetime:
    """Move an instant to ``target_date`` keeping its local clock time.

    Used for drag-to-reschedule: 09:30 stays 09:30 local even when the
    target day sits on the other side of a DST change.
    """
    return local_minutes_to_utc(target_date, get_local_minutes_in_day(source_utc, time_zone), time_zone)


def _start_of_week(day: date, week_starts_on: int) -> date:
    offset = (day.isoweekday() % 7 - week_starts_on) % 7
    return day - timedelta(days=offset)


def _end_of_month(day: date) -> date:
    next_month = (day.replace(day=1) + timedelta(days=32)).replace(day=1)
    return next_month - timedelta(days=1)


def get_visible_range(view: Union[CalendarView, str], day: DateLike, week_starts_on: int) -> tuple[date, date]:
    """Visible ``[range_start, range_end)`` dates for a calendar view.

    Month view covers whole weeks, so leading and trailing days from the
    adjacent months are included.
    """
    try:
        resolved_view = CalendarView(view)
    except ValueError:
        raise InvalidInputError("view", f"unknown calendar view {view!r}") from None
    anchor = parse_date_key(day)
    starts_on = clamp_week_starts_on(week_starts_on)

    if resolved_view == CalendarView.DAY:
        return anchor, anchor + timedelta(days=1)

    if resolved_view == CalendarView.WEEK:
        week_start = _start_of_week(anchor, starts_on)
        return week_start, week_start + timedelta(days=7)

    month_start = anchor.replace(day=1)
    month_end = _end_of_month(anchor)
    return (
        _start_of_week(month_start, starts_on),
        _start_of_week(month_end, starts_on) + timedelta(days=7),
    )


def get_month_grid_days(day: DateLike, week_starts_on: int) -> list[date]:
    """Every date shown in the month grid containing ``day``."""
    range_start, range_end = get_visible_range(CalendarView.MONTH, day, week_starts_on)
    return [range_start + timedelta(days=i) for i in range((range_end - range_start).days)]
