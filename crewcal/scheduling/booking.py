"""
Conflict-checked writes for holds and events.

Availability previews and conflict checks are advisory. Every write here
repeats the conflict check inside ``store.transaction()``, so two racing
bookings cannot both commit. The loser gets a conflict outcome, never a
silent overwrite. Time off counts as a conflict for every write here.
"""

from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional, Union

from crewcal.calendar.dates import ensure_utc, utc_now
from crewcal.config import settings
from crewcal.errors import HoldNotActiveError, InvalidInputError
from crewcal.logging_context import get_context_logger, org_scoped
from crewcal.schemas.calendar_schema import (
    CalendarEvent,
    CalendarHold,
    EventStatus,
    HoldSource,
    HoldStatus,
)
from crewcal.schemas.scheduling_schema import BookingOutcome
from crewcal.scheduling.blocking import require_worker
from crewcal.scheduling.conflicts import ConflictDetector
from crewcal.tools.calendar_store import CalendarStore
from crewcal.utils import normalize_worker_ids

logger = get_context_logger(__name__)


def _require_range(start_at: datetime, end_at: datetime) -> tuple[datetime, datetime]:
    start = ensure_utc(start_at)
    end = ensure_utc(end_at)
    if end <= start:
        raise InvalidInputError("end_at", "must be after start_at")
    return start, end


class BookingDesk:
    """Places, confirms, and releases holds; books and moves events."""

    def __init__(
        self,
        store: CalendarStore,
        conflicts: Optional[ConflictDetector] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.clock = clock
        self.conflicts = conflicts or ConflictDetector(store, clock=clock)

    def _hold_expiry(self, expires_at: Optional[datetime], expires_in_minutes: Optional[int]) -> datetime:
        now = self.clock()
        if expires_at is not None:
            expiry = ensure_utc(expires_at)
            if expiry <= now:
                raise InvalidInputError("expires_at", f"must be after {now.isoformat()}")
            return expiry
        if expires_in_minutes is None:
            minutes = settings.holds.default_expiry_minutes
        else:
            minutes = max(1, min(settings.holds.max_expiry_minutes, expires_in_minutes))
        return now + timedelta(minutes=minutes)

    def _get_hold(self, hold_id: str) -> CalendarHold:
        hold = self.store.get_hold(hold_id)
        if hold is None:
            raise InvalidInputError("hold_id", f"hold {hold_id!r} not found")
        return hold

    @org_scoped
    def place_hold(
        self,
        org_id: str,
        worker_id: str,
        start_at: datetime,
        end_at: datetime,
        *,
        expires_at: Optional[datetime] = None,
        expires_in_minutes: Optional[int] = None,
        lead_id: Optional[str] = None,
        title: Optional[str] = None,
        source: Union[HoldSource, str] = HoldSource.MANUAL,
    ) -> BookingOutcome:
        """Reserve a worker's time while a lead decides."""
        start, end = _require_range(start_at, end_at)
        worker = require_worker(self.store, org_id, worker_id)
        expiry = self._hold_expiry(expires_at, expires_in_minutes)
        with self.store.transaction():
            conflicts = self.conflicts.detect_worker_conflicts(
                org_id, [worker.id], start, end, include_time_off=True
            )
            if conflicts:
                logger.info("Hold for %s rejected: %d conflict(s)", worker.id, len(conflicts))
                return BookingOutcome(
                    ok=False, message="Hold conflicts with existing schedule.", conflicts=conflicts
                )
            hold = CalendarHold(
                org_id=org_id,
                worker_id=worker.id,
                start_at=start,
                end_at=end,
                expires_at=expiry,
                source=HoldSource(source),
                lead_id=lead_id,
                title=title,
            )
            self.store.save_hold(hold)
        logger.info("Hold %s placed for %s until %s", hold.id, worker.id, hold.expires_at.isoformat())
        return BookingOutcome(ok=True, message="Hold placed.", hold=hold)

    def confirm_hold(
        self,
        hold_id: str,
        *,
        worker_ids: Optional[Iterable[str]] = None,
        end_at: Optional[datetime] = None,
        status: Union[EventStatus, str] = EventStatus.CONFIRMED,
        busy: bool = True,
        title: Optional[str] = None,
    ) -> BookingOutcome:
        """Turn an active hold into an event, re-checking conflicts first.

        Raises HoldNotActiveError if the hold lapsed or was already used.
        """
        with self.store.transaction():
            hold = self._get_hold(hold_id)
            if hold.status == HoldStatus.ACTIVE and not hold.is_blocking(self.clock()):
                hold.status = HoldStatus.EXPIRED
                self.store.save_hold(hold)
                logger.info("Hold %s expired before confirmation", hold.id)
            if hold.status != HoldStatus.ACTIVE:
                raise HoldNotActiveError(hold.id, hold.status.value)

            targets = normalize_worker_ids(worker_ids) or [hold.worker_id]
            for worker_id in targets:
                require_worker(self.store, hold.org_id, worker_id)
            start, end = _require_range(hold.start_at, end_at or hold.end_at)

            if busy:
                conflicts = self.conflicts.detect_worker_conflicts(
                    hold.org_id, targets, start, end, exclude_hold_id=hold.id, include_time_off=True
                )
                if conflicts:
                    logger.info("Hold %s confirmation blocked: %d conflict(s)", hold.id, len(conflicts))
                    return BookingOutcome(
                        ok=False,
                        message="Confirming this hold would double-book a worker.",
                        conflicts=conflicts,
                        hold=hold,
                    )

            event = CalendarEvent(
                org_id=hold.org_id,
                title=title or hold.title,
                start_at=start,
                end_at=end,
                busy=busy,
                status=EventStatus(status),
                worker_ids=targets,
                hold_id=hold.id,
            )
            self.store.save_event(event)
            hold.status = HoldStatus.CONFIRMED
            hold.event_id = event.id
            self.store.save_hold(hold)
        logger.info("Hold %s confirmed as event %s", hold.id, event.id)
        return BookingOutcome(ok=True, message="Hold confirmed.", hold=hold, event=event)

    def release_hold(self, hold_id: str) -> CalendarHold:
        """Cancel an active hold. Holds in other states are returned unchanged."""
        with self.store.transaction():
            hold = self._get_hold(hold_id)
            if hold.status == HoldStatus.ACTIVE:
                hold.status = HoldStatus.CANCELLED
                self.store.save_hold(hold)
                logger.info("Hold %s released", hold.id)
        return hold

    @org_scoped
    def expire_lapsed_holds(self, org_id: str) -> int:
        """Mark every ACTIVE hold past its expiry as EXPIRED. Returns the count."""
        now = self.clock()
        expired = 0
        with self.store.transaction():
            for hold in self.store.list_holds(org_id):
                if hold.status == HoldStatus.ACTIVE and not hold.is_blocking(now):
                    hold.status = HoldStatus.EXPIRED
                    self.store.save_hold(hold)
                    expired += 1
        if expired:
            logger.info("Expired %d lapsed hold(s) for org %s", expired, org_id)
        return expired

    @org_scoped
    def book_event(
        self,
        org_id: str,
        worker_ids: Iterable[str],
        start_at: datetime,
        end_at: Optional[datetime] = None,
        *,
        busy: bool = True,
        status: Union[EventStatus, str] = EventStatus.SCHEDULED,
        title: Optional[str] = None,
    ) -> BookingOutcome:
        """Create an event after a conflict check. Non-busy events skip the check."""
        targets = normalize_worker_ids(worker_ids)
        if not targets:
            raise InvalidInputError("worker_ids", "at least one worker is required")
        for worker_id in targets:
            require_worker(self.store, org_id, worker_id)
        if end_at is not None:
            start_at, end_at = _require_range(start_at, end_at)
        event = CalendarEvent(
            org_id=org_id,
            title=title,
            start_at=start_at,
            end_at=end_at,
            busy=busy,
            status=EventStatus(status),
            worker_ids=targets,
        )
        with self.store.transaction():
            if event.blocks_availability:
                conflicts = self.conflicts.detect_worker_conflicts(
                    org_id, targets, event.start_at, event.effective_end(), include_time_off=True
                )
                if conflicts:
                    logger.info("Event for %s rejected: %d conflict(s)", targets, len(conflicts))
                    return BookingOutcome(
                        ok=False, message="Event conflicts with existing schedule.", conflicts=conflicts
                    )
            self.store.save_event(event)
        logger.info("Event %s booked for %s", event.id, ", ".join(targets))
        return BookingOutcome(ok=True, message="Event booked.", event=event)

    def reschedule_event(
        self, event_id: str, start_at: datetime, end_at: Optional[datetime] = None
    ) -> BookingOutcome:
        """Move an event, keeping its duration when ``end_at`` is omitted."""
        with self.store.transaction():
            current = self.store.get_event(event_id)
            if current is None:
                raise InvalidInputError("event_id", f"event {event_id!r} not found")
            start = ensure_utc(start_at)
            end = ensure_utc(end_at) if end_at else start + (current.effective_end() - current.start_at)
            moved = current.model_copy(update={"start_at": start, "end_at": end})
            start, end = _require_range(start, end)

            if moved.blocks_availability:
                conflicts = self.conflicts.detect_worker_conflicts(
                    moved.org_id,
                    moved.worker_ids,
                    start,
                    end,
                    exclude_event_id=moved.id,
                    include_time_off=True,
                )
                if conflicts:
                    logger.info("Reschedule of %s rejected: %d conflict(s)", moved.id, len(conflicts))
                    return BookingOutcome(
                        ok=False,
                        message="New time conflicts with existing schedule.",
                        conflicts=conflicts,
                        event=current,
                    )
            self.store.save_event(moved)
        logger.info("Event %s moved to %s", moved.id, start.isoformat())
        return BookingOutcome(ok=True, message="Event rescheduled.", event=moved)
