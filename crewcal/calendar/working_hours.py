"""Projection of weekly working-hours templates onto concrete UTC windows."""

import logging
from typing import Iterable, Optional

from crewcal.calendar.dates import DateLike, day_of_week_for_date, local_minutes_to_utc, minutes_to_hhmm
from crewcal.calendar.intervals import Interval, merge_intervals
from crewcal.schemas.calendar_schema import WorkingHours

logger = logging.getLogger(__name__)


def windows_for_date(
    rows: Iterable[WorkingHours], date_key: DateLike, time_zone: Optional[str]
) -> list[Interval]:
    """UTC windows a worker is scheduled to work on ``date_key``.

    Rows for other weekdays and rows flagged ``is_working=False`` are
    skipped. A row's own timezone wins over ``time_zone``. Touching
    windows are merged. On a spring-forward day a row that starts inside
    the skipped hour can project to an end at or before its start; such
    rows contribute no window.
    """
    day_of_week = day_of_week_for_date(date_key)
    windows = []
    for row in rows:
        if row.day_of_week != day_of_week or not row.is_working:
            continue
        zone = row.timezone or time_zone
        start = local_minutes_to_utc(date_key, row.start_minute, zone)
        end = local_minutes_to_utc(date_key, row.end_minute, zone)
        if end <= start:
            logger.debug(
                "Skipping %s-%s on %s: window vanishes in the DST gap",
                minutes_to_hhmm(row.start_minute),
                minutes_to_hhmm(row.end_minute),
                date_key,
            )
            continue
        windows.append(Interval(start, end))
    merged = merge_intervals(windows)
    logger.debug("Working windows on %s (dow=%d): %d", date_key, day_of_week, len(merged))
    return merged


def describe_week(rows: Iterable[WorkingHours]) -> dict[int, list[str]]:
    """Readable weekly template, e.g. ``{1: ["08:00-12:00", "13:00-17:00"]}``."""
    week: dict[int, list[str]] = {}
    for row in sorted(rows, key=lambda r: (r.day_of_week, r.start_minute)):
        if not row.is_working:
            continue
        end_label = "24:00" if row.end_minute >= 24 * 60 else minutes_to_hhmm(row.end_minute)
        week.setdefault(row.day_of_week, []).append(f"{minutes_to_hhmm(row.start_minute)}-{end_label}")
    return week
