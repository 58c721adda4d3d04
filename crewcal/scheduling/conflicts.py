"""
Conflict detection for a proposed booking interval across workers.

The check is advisory and read-only. Callers must re-run it inside the
same transaction as the write (see ``crewcal.scheduling.booking``).
"""

from datetime import datetime
from typing import Callable, Iterable, Optional

from crewcal.calendar.dates import ensure_utc, utc_now
from crewcal.errors import InvalidInputError
from crewcal.logging_context import get_context_logger, org_scoped
from crewcal.schemas.scheduling_schema import Conflict
from crewcal.scheduling.blocking import (
    find_worker_blocked_intervals,
    get_org_calendar_settings,
    require_worker,
)
from crewcal.tools.calendar_store import CalendarStore
from crewcal.utils import normalize_worker_ids

logger = get_context_logger(__name__)


class ConflictDetector:
    """Finds existing events/holds that overlap a proposed interval."""

    def __init__(self, store: CalendarStore, clock: Callable[[], datetime] = utc_now) -> None:
        self.store = store
        self.clock = clock

    @org_scoped
    def detect_worker_conflicts(
        self,
        org_id: str,
        worker_ids: Iterable[str],
        start_at_utc: datetime,
        end_at_utc: datetime,
        include_events: bool = True,
        exclude_event_id: Optional[str] = None,
        exclude_hold_id: Optional[str] = None,
        *,
        force: bool = False,
        include_time_off: bool = False,
    ) -> list[Conflict]:
        """One Conflict per (worker, overlapping item), in worker order.

        Returns ``[]`` straight away when the org allows overlaps, unless
        ``force`` asks for the check anyway (warn-but-allow flows).
        ``include_events=False`` limits the check to holds.
        """
        start = ensure_utc(start_at_utc)
        end = ensure_utc(end_at_utc)
        if end <= start:
            raise InvalidInputError("end_at_utc", "must be after start_at_utc")
        ids = normalize_worker_ids(worker_ids)
        if not ids:
            raise InvalidInputError("worker_ids", "at least one worker is required")

        org_settings = get_org_calendar_settings(self.store, org_id)
        if org_settings.allow_overlaps and not force:
            logger.debug("Org %s allows overlaps; skipping conflict check", org_id)
            return []

        now = self.clock()
        seen: set[tuple[str, str, str]] = set()
        conflicts: list[Conflict] = []
        for worker_id in ids:
            require_worker(self.store, org_id, worker_id)
            blocked = find_worker_blocked_intervals(
                self.store,
                org_id,
                worker_id,
                start,
                end,
                now=now,
                include_events=include_events,
                include_holds=True,
                include_time_off=include_time_off,
                exclude_event_id=exclude_event_id,
                exclude_hold_id=exclude_hold_id,
            )
            for item in blocked:
                if not (item.start_at < end and start < item.end_at):
                    continue
                key = (worker_id, item.source.value, item.source_id)
                if key in seen:
                    continue
                seen.add(key)
                conflicts.append(
                    Conflict(
                        worker_id=worker_id,
                        source=item.source,
                        source_id=item.source_id,
                        start_at=item.start_at,
                        end_at=item.end_at,
                    )
                )

        if conflicts:
            logger.info(
                "Found %d conflict(s) for org %s in [%s, %s)",
                len(conflicts),
                org_id,
                start.isoformat(),
                end.isoformat(),
            )
        return conflicts
