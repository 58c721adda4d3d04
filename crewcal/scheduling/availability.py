"""
Availability engine: open slot starts for one worker on one local day.

Free time = working-hours windows - time off - busy events/holds, computed
with the interval algebra. Candidate starts are walked at the slot
granularity from each working window's start, and kept when the whole
``[start, start + duration)`` fits inside free time.

Usage:
    engine = AvailabilityEngine(store)
    result = engine.compute_availability_for_worker("org_1", "w_1", "2026-03-02", 30)
    result.local_times()  # ["08:00", "08:30", "10:00", ...]
"""

from datetime import datetime, timedelta
from typing import Callable, Optional

from crewcal.calendar.dates import clamp_slot_minutes, format_date_key, parse_date_key, utc_now
from crewcal.calendar.intervals import Interval, subtract_intervals
from crewcal.calendar.working_hours import windows_for_date
from crewcal.errors import InvalidInputError
from crewcal.logging_context import get_context_logger, org_scoped
from crewcal.schemas.calendar_schema import OrgCalendarSettings
from crewcal.schemas.scheduling_schema import AvailabilityResult, BlockSource
from crewcal.scheduling.blocking import (
    find_worker_blocked_intervals,
    get_org_calendar_settings,
    require_worker,
    resolve_worker_timezone,
    validate_duration,
)
from crewcal.tools.calendar_store import CalendarStore

logger = get_context_logger(__name__)


def walk_slots(
    windows: list[Interval], free: list[Interval], duration_minutes: int, step_minutes: int
) -> list[datetime]:
    """Aligned starts whose full duration fits inside one free interval."""
    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=step_minutes)
    slots: set[datetime] = set()
    for window in windows:
        cursor = window.start
        while cursor + duration <= window.end:
            candidate = Interval(cursor, cursor + duration)
            if any(span.contains(candidate) for span in free):
                slots.add(cursor)
            cursor += step
    return sorted(slots)


class AvailabilityEngine:
    """Computes open slots from working hours, time off, and busy items."""

    def __init__(self, store: CalendarStore, clock: Callable[[], datetime] = utc_now) -> None:
        self.store = store
        self.clock = clock

    @org_scoped
    def compute_availability_for_worker(
        self,
        org_id: str,
        worker_id: str,
        date: str,
        duration_minutes: int,
        settings: Optional[OrgCalendarSettings] = None,
        step_minutes: Optional[int] = None,
        ignore_event_conflicts: bool = False,
        limit: Optional[int] = None,
    ) -> AvailabilityResult:
        """Open slot starts (UTC, ascending, unique) for ``worker_id`` on ``date``.

        ``date`` is a local calendar day in the worker's zone. An empty
        result means no window, or nothing long enough is left.
        """
        duration = validate_duration(duration_minutes)
        day = parse_date_key(date)
        if limit is not None and limit < 1:
            raise InvalidInputError("limit", f"must be positive, got {limit}")
        org_settings = settings or get_org_calendar_settings(self.store, org_id)
        worker = require_worker(self.store, org_id, worker_id)
        time_zone = resolve_worker_timezone(worker, org_settings)
        step = clamp_slot_minutes(step_minutes or org_settings.default_slot_minutes)

        result = AvailabilityResult(
            worker_id=worker.id,
            date=format_date_key(day),
            timezone=time_zone,
            duration_minutes=duration,
            step_minutes=step,
        )

        windows = windows_for_date(
            self.store.list_working_hours(org_id, worker.id), day, time_zone
        )
        if not windows:
            logger.debug("Worker %s has no working hours on %s", worker.id, result.date)
            return result

        blocked = find_worker_blocked_intervals(
            self.store,
            org_id,
            worker.id,
            windows[0].start,
            windows[-1].end,
            now=self.clock(),
            include_events=not (org_settings.allow_overlaps or ignore_event_conflicts),
        )
        time_off = [
            Interval(item.start_at, item.end_at)
            for item in blocked
            if item.source == BlockSource.TIME_OFF
        ]
        busy = [
            Interval(item.start_at, item.end_at)
            for item in blocked
            if item.source != BlockSource.TIME_OFF
        ]

        free = subtract_intervals(windows, time_off)
        free = subtract_intervals(free, busy)

        slots = walk_slots(windows, free, duration, step)
        if limit is not None:
            slots = slots[:limit]
        result.slots_utc = slots
        logger.debug(
            "Worker %s on %s: %d slot(s) of %d min at %d-min steps",
            worker.id,
            result.date,
            len(slots),
            duration,
            step,
        )
        return result
