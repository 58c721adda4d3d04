"""
Shared lookups for the scheduling engines.

Resolves org settings and worker timezones, validates common inputs, and
collects the events, holds, and time off that block a worker's time.
"""

from datetime import datetime
from typing import Optional

from crewcal.calendar.dates import ensure_timezone
from crewcal.config import settings
from crewcal.errors import InvalidInputError
from crewcal.logging_context import get_context_logger
from crewcal.schemas.calendar_schema import OrgCalendarSettings, Worker
from crewcal.schemas.scheduling_schema import BlockedInterval, BlockSource
from crewcal.tools.calendar_store import CalendarStore

logger = get_context_logger(__name__)


def get_org_calendar_settings(store: CalendarStore, org_id: str) -> OrgCalendarSettings:
    """Org settings from the store, or configured defaults when unset."""
    org_settings = store.get_org_settings(org_id)
    if org_settings is None:
        logger.debug("No calendar settings for org %s; using defaults", org_id)
        return OrgCalendarSettings()
    return org_settings


def require_worker(store: CalendarStore, org_id: str, worker_id: Optional[str]) -> Worker:
    """Look up a worker and check it belongs to ``org_id``."""
    if not worker_id or not worker_id.strip():
        raise InvalidInputError("worker_id", "is required")
    worker = store.get_worker(worker_id.strip())
    if worker is None:
        raise InvalidInputError("worker_id", f"unknown worker {worker_id!r}")
    if worker.org_id != org_id:
        raise InvalidInputError("worker_id", f"worker {worker_id!r} is not part of org {org_id!r}")
    return worker


def resolve_worker_timezone(worker: Worker, org_settings: OrgCalendarSettings) -> str:
    """Worker override when set, else the org zone."""
    return ensure_timezone(worker.timezone or org_settings.timezone)


def validate_duration(duration_minutes: object) -> int:
    """Positive whole minutes, capped by ``MAX_DURATION_MINUTES``."""
    if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
        raise InvalidInputError("duration_minutes", f"must be an integer, got {duration_minutes!r}")
    if duration_minutes <= 0:
        raise InvalidInputError("duration_minutes", f"must be positive, got {duration_minutes}")
    if duration_minutes > settings.resolver.max_duration_minutes:
        raise InvalidInputError(
            "duration_minutes",
            f"must be at most {settings.resolver.max_duration_minutes}, got {duration_minutes}",
        )
    return duration_minutes


def find_worker_blocked_intervals(
    store: CalendarStore,
    org_id: str,
    worker_id: str,
    start: datetime,
    end: datetime,
    *,
    now: datetime,
    include_events: bool = True,
    include_holds: bool = True,
    include_time_off: bool = True,
    exclude_event_id: Optional[str] = None,
    exclude_hold_id: Optional[str] = None,
) -> list[BlockedInterval]:
    """Everything occupying ``worker_id``'s time inside ``[start, end)``.

    Events count only while busy and not cancelled/no-show. Holds count
    only while ACTIVE and unexpired at ``now``. Intervals keep their full
    extent; callers clip as needed.
    """
    blocked: list[BlockedInterval] = []

    if include_events:
        for event in store.list_events(org_id, worker_id, start, end):
            if not event.blocks_availability or event.id == exclude_event_id:
                continue
            blocked.append(
                BlockedInterval(
                    worker_id=worker_id,
                    source=BlockSource.EVENT,
                    source_id=event.id,
                    start_at=event.start_at,
                    end_at=event.effective_end(),
                )
            )

    if include_holds:
        for hold in store.list_holds(org_id, worker_id, start, end):
            if not hold.is_blocking(now) or hold.id == exclude_hold_id:
                continue
            blocked.append(
                BlockedInterval(
                    worker_id=worker_id,
                    source=BlockSource.HOLD,
                    source_id=hold.id,
                    start_at=hold.start_at,
                    end_at=hold.end_at,
                )
            )

    if include_time_off:
        for entry in store.list_time_off(org_id, worker_id, start, end):
            blocked.append(
                BlockedInterval(
                    worker_id=worker_id,
                    source=BlockSource.TIME_OFF,
                    source_id=entry.id,
                    start_at=entry.start_at,
                    end_at=entry.end_at,
                )
            )

    blocked.sort(key=lambda item: (item.start_at, item.source.value, item.source_id))
    logger.debug(
        "Worker %s has %d blocked interval(s) in [%s, %s)",
        worker_id,
        len(blocked),
        start.isoformat(),
        end.isoformat(),
    )
    return blocked
