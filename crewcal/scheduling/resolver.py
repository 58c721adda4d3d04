"""
Next-open-slot resolver with preferred-worker and round-robin fallback.

The search is greedy: day by day, preferred worker first. When the
preferred worker has nothing in the lookahead window, ROUND_ROBIN walks
the candidates starting one past the org's last-assigned worker and
takes the first one with any opening. The pointer is moved with a
compare-and-set so concurrent resolutions never both claim the same turn.

Usage:
    resolver = NextOpenSlotResolver(store)
    found = resolver.resolve(
        "org_1", "2026-03-02", 60, 7, "w_1",
        FallbackStrategy.ROUND_ROBIN, ["w_1", "w_2", "w_3"],
    )
"""

from datetime import datetime
from typing import Callable, Iterable, Optional, Union

from crewcal.calendar.dates import add_days_to_date_key, format_date_key, parse_date_key, utc_now
from crewcal.config import settings as app_settings
from crewcal.errors import ConcurrentUpdateError, InvalidInputError, SlotNotFoundError
from crewcal.logging_context import get_context_logger, org_scoped
from crewcal.schemas.calendar_schema import OrgCalendarSettings
from crewcal.schemas.scheduling_schema import (
    FallbackStrategy,
    NextOpenSlot,
    RoundRobinAssignment,
    RoundRobinReport,
    StrategyUsed,
)
from crewcal.scheduling.availability import AvailabilityEngine
from crewcal.scheduling.blocking import get_org_calendar_settings, require_worker, validate_duration
from crewcal.tools.calendar_store import CalendarStore
from crewcal.utils import normalize_worker_ids, rotate_from_index

logger = get_context_logger(__name__)

MAX_PREVIEW_ITERATIONS = 30


def round_robin_start_index(candidates: list[str], last_worker_id: Optional[str]) -> int:
    """Index just after the last-assigned worker, or 0 if it is not a candidate."""
    if last_worker_id and last_worker_id in candidates:
        return candidates.index(last_worker_id) + 1
    return 0


class NextOpenSlotResolver:
    """Finds the earliest bookable slot and the worker who should take it."""

    def __init__(
        self,
        store: CalendarStore,
        availability: Optional[AvailabilityEngine] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.clock = clock
        self.availability = availability or AvailabilityEngine(store, clock=clock)

    def _validate_lookahead(self, lookahead_days: Optional[int]) -> int:
        if lookahead_days is None:
            return app_settings.resolver.default_lookahead_days
        max_days = app_settings.resolver.max_lookahead_days
        if isinstance(lookahead_days, bool) or not isinstance(lookahead_days, int):
            raise InvalidInputError("lookahead_days", f"must be an integer, got {lookahead_days!r}")
        if not 1 <= lookahead_days <= max_days:
            raise InvalidInputError(
                "lookahead_days", f"must be between 1 and {max_days}, got {lookahead_days}"
            )
        return lookahead_days

    def _first_open_slot(
        self,
        org_id: str,
        worker_id: str,
        date_keys: list[str],
        duration_minutes: int,
        org_settings: OrgCalendarSettings,
        cache: dict[str, Optional[datetime]],
    ) -> Optional[datetime]:
        """Earliest future slot for a worker across ``date_keys``. Memoized per call."""
        if worker_id in cache:
            return cache[worker_id]
        now = self.clock()
        found: Optional[datetime] = None
        for date_key in date_keys:
            result = self.availability.compute_availability_for_worker(
                org_id, worker_id, date_key, duration_minutes, settings=org_settings
            )
            found = next((slot for slot in result.slots_utc if slot >= now), None)
            if found is not None:
                break
        cache[worker_id] = found
        return found

    def _candidate_ids(self, org_id: str, candidate_worker_ids: Optional[Iterable[str]]) -> list[str]:
        if candidate_worker_ids is None:
            return [worker.id for worker in self.store.list_workers(org_id)]
        ids = normalize_worker_ids(candidate_worker_ids)
        for worker_id in ids:
            require_worker(self.store, org_id, worker_id)
        return ids

    @org_scoped
    def resolve(
        self,
        org_id: str,
        date: str,
        duration_minutes: int,
        lookahead_days: Optional[int],
        preferred_worker_id: str,
        fallback_strategy: Union[FallbackStrategy, str] = FallbackStrategy.ROUND_ROBIN,
        candidate_worker_ids: Optional[Iterable[str]] = None,
    ) -> NextOpenSlot:
        """Earliest open slot for the preferred worker, else per fallback.

        Raises SlotNotFoundError when nobody has an opening in the window.
        ``candidate_worker_ids=None`` means every worker in the org.
        """
        start_day = parse_date_key(date)
        duration = validate_duration(duration_minutes)
        days = self._validate_lookahead(lookahead_days)
        try:
            strategy = FallbackStrategy(fallback_strategy)
        except ValueError:
            raise InvalidInputError(
                "fallback_strategy", f"unknown strategy {fallback_strategy!r}"
            ) from None
        preferred = require_worker(self.store, org_id, preferred_worker_id)
        org_settings = get_org_calendar_settings(self.store, org_id)
        date_keys = [add_days_to_date_key(start_day, offset) for offset in range(days)]
        cache: dict[str, Optional[datetime]] = {}

        slot = self._first_open_slot(org_id, preferred.id, date_keys, duration, org_settings, cache)
        if slot is not None:
            logger.info("Preferred worker %s open at %s", preferred.id, slot.isoformat())
            return NextOpenSlot(
                slot_utc=slot,
                worker_id=preferred.id,
                strategy_used=StrategyUsed.PREFERRED,
                duration_minutes=duration,
            )

        if strategy == FallbackStrategy.OWNER:
            logger.info("Preferred worker %s has no opening; OWNER strategy stops here", preferred.id)
            raise SlotNotFoundError(days)

        candidates = [
            worker_id
            for worker_id in self._candidate_ids(org_id, candidate_worker_ids)
            if worker_id != preferred.id
        ]
        if not candidates:
            raise SlotNotFoundError(days, "No round-robin fallback workers are available.")

        for attempt in range(1, app_settings.resolver.round_robin_max_retries + 1):
            pointer = self.store.get_round_robin_pointer(org_id)
            start_index = round_robin_start_index(candidates, pointer.last_worker_id)
            for worker_id in rotate_from_index(candidates, start_index):
                slot = self._first_open_slot(
                    org_id, worker_id, date_keys, duration, org_settings, cache
                )
                if slot is None:
                    continue
                if self.store.compare_and_set_round_robin_pointer(org_id, pointer.version, worker_id):
                    logger.info(
                        "Round-robin assigned %s at %s (org %s)", worker_id, slot.isoformat(), org_id
                    )
                    return NextOpenSlot(
                        slot_utc=slot,
                        worker_id=worker_id,
                        strategy_used=StrategyUsed.ROUND_ROBIN,
                        duration_minutes=duration,
                    )
                logger.info(
                    "Round-robin pointer for org %s moved concurrently (attempt %d); re-reading",
                    org_id,
                    attempt,
                )
                break
            else:
                raise SlotNotFoundError(days)

        raise ConcurrentUpdateError(
            f"Round-robin pointer for org {org_id} changed on every one of "
            f"{app_settings.resolver.round_robin_max_retries} attempts."
        )

    @org_scoped
    def preview_round_robin(
        self,
        org_id: str,
        date: str,
        iterations: int = 6,
        duration_minutes: Optional[int] = None,
        lookahead_days: Optional[int] = None,
        worker_ids: Optional[Iterable[str]] = None,
    ) -> RoundRobinReport:
        """Simulate ``iterations`` round-robin turns without moving the pointer.

        Workers with no opening in the window are reported as skipped.
        ``passed`` is true when the simulated turns match a plain cyclic
        walk of the eligible workers.
        """
        if not 1 <= iterations <= MAX_PREVIEW_ITERATIONS:
            raise InvalidInputError(
                "iterations", f"must be between 1 and {MAX_PREVIEW_ITERATIONS}, got {iterations}"
            )
        start_day = parse_date_key(date)
        org_settings = get_org_calendar_settings(self.store, org_id)
        duration = validate_duration(duration_minutes or org_settings.default_slot_minutes)
        days = self._validate_lookahead(lookahead_days)
        date_keys = [add_days_to_date_key(start_day, offset) for offset in range(days)]
        ordered = self._candidate_ids(org_id, worker_ids)
        if not ordered:
            raise InvalidInputError("worker_ids", f"no eligible workers found for org {org_id!r}")

        cache: dict[str, Optional[datetime]] = {}
        eligible = [
            worker_id
            for worker_id in ordered
            if self._first_open_slot(org_id, worker_id, date_keys, duration, org_settings, cache)
        ]
        skipped = [worker_id for worker_id in ordered if worker_id not in eligible]
        names = {worker.id: worker.display_name for worker in self.store.list_workers(org_id)}
        pointer = self.store.get_round_robin_pointer(org_id)

        assignments: list[RoundRobinAssignment] = []
        last_worker_id = pointer.last_worker_id
        for turn in range(1, iterations + 1):
            if not eligible:
                break
            selected = rotate_from_index(eligible, round_robin_start_index(eligible, last_worker_id))[0]
            assignments.append(
                RoundRobinAssignment(
                    turn=turn,
                    worker_id=selected,
                    worker_name=names.get(selected, selected),
                    slot_utc=cache.get(selected),
                )
            )
            last_worker_id = selected

        expected: list[str] = []
        if eligible:
            offset = round_robin_start_index(eligible, pointer.last_worker_id)
            expected = [eligible[(offset + i) % len(eligible)] for i in range(iterations)]
        actual = [item.worker_id for item in assignments]

        report = RoundRobinReport(
            org_id=org_id,
            start_date=format_date_key(start_day),
            iterations=iterations,
            duration_minutes=duration,
            lookahead_days=days,
            last_worker_id=pointer.last_worker_id,
            eligible_worker_ids=eligible,
            skipped_worker_ids=skipped,
            assignments=assignments,
            expected_sequence=expected,
            actual_sequence=actual,
            passed=bool(actual) and expected == actual,
        )
        logger.info("Round-robin preview for org %s: %s", org_id, report.summary)
        return report
