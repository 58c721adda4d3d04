"""
Storage collaborator for the scheduling core.

``CalendarStore`` is the contract the engines read through. In production
it is backed by the portal's database (one query per method). The
in-memory implementation here backs the tests and the CLI.

Range queries return every record overlapping ``[start, end)`` regardless
of status; filtering by busy/status/expiry is the core's job.
"""

import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import ContextManager, Iterator, Optional, Protocol, Union

from crewcal.calendar.intervals import overlaps
from crewcal.schemas.calendar_schema import (
    CalendarEvent,
    CalendarHold,
    CalendarSnapshot,
    OrgCalendarSettings,
    RoundRobinPointer,
    TimeOff,
    Worker,
    WorkingHours,
)

logger = logging.getLogger(__name__)


class CalendarStore(Protocol):
    """Read/write operations the scheduling core needs from persistence."""

    def get_org_settings(self, org_id: str) -> Optional[OrgCalendarSettings]: ...

    def get_worker(self, worker_id: str) -> Optional[Worker]: ...

    def list_workers(self, org_id: str) -> list[Worker]: ...

    def list_working_hours(self, org_id: str, worker_id: str) -> list[WorkingHours]: ...

    def list_time_off(
        self, org_id: str, worker_id: str, start: datetime, end: datetime
    ) -> list[TimeOff]: ...

    def list_events(
        self, org_id: str, worker_id: str, start: datetime, end: datetime
    ) -> list[CalendarEvent]: ...

    def list_holds(
        self,
        org_id: str,
        worker_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[CalendarHold]: ...

    def get_event(self, event_id: str) -> Optional[CalendarEvent]: ...

    def get_hold(self, hold_id: str) -> Optional[CalendarHold]: ...

    def save_event(self, event: CalendarEvent) -> CalendarEvent: ...

    def save_hold(self, hold: CalendarHold) -> CalendarHold: ...

    def get_round_robin_pointer(self, org_id: str) -> RoundRobinPointer: ...

    def compare_and_set_round_robin_pointer(
        self, org_id: str, expected_version: int, worker_id: str
    ) -> bool: ...

    def transaction(self) -> ContextManager[None]: ...


class InMemoryCalendarStore:
    """Thread-safe dict-backed ``CalendarStore``.

    Records are copied on the way in and out so callers cannot mutate
    stored state behind the store's back.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._settings: dict[str, OrgCalendarSettings] = {}
        self._workers: dict[str, Worker] = {}
        self._working_hours: dict[str, WorkingHours] = {}
        self._time_off: dict[str, TimeOff] = {}
        self._events: dict[str, CalendarEvent] = {}
        self._holds: dict[str, CalendarHold] = {}
        self._pointers: dict[str, RoundRobinPointer] = {}

    # --- Seeding ---

    def set_org_settings(self, org_id: str, org_settings: OrgCalendarSettings) -> None:
        with self._lock:
            self._settings[org_id] = org_settings

    def add_worker(self, worker: Worker) -> Worker:
        with self._lock:
            self._workers[worker.id] = worker.model_copy()
        return worker

    def add_working_hours(self, row: WorkingHours) -> WorkingHours:
        with self._lock:
            self._working_hours[row.id] = row.model_copy()
        return row

    def add_time_off(self, entry: TimeOff) -> TimeOff:
        with self._lock:
            self._time_off[entry.id] = entry.model_copy()
        return entry

    @classmethod
    def from_snapshot(cls, snapshot: Union[CalendarSnapshot, dict]) -> "InMemoryCalendarStore":
        if not isinstance(snapshot, CalendarSnapshot):
            snapshot = CalendarSnapshot.model_validate(snapshot)
        store = cls()
        for org_id, org_settings in snapshot.org_settings.items():
            store.set_org_settings(org_id, org_settings)
        for worker in snapshot.workers:
            store.add_worker(worker)
        for row in snapshot.working_hours:
            store.add_working_hours(row)
        for entry in snapshot.time_off:
            store.add_time_off(entry)
        for event in snapshot.events:
            store.save_event(event)
        for hold in snapshot.holds:
            store.save_hold(hold)
        for pointer in snapshot.round_robin:
            store._pointers[pointer.org_id] = pointer.model_copy()
        logger.info(
            "Loaded snapshot: %d org(s), %d worker(s), %d event(s), %d hold(s)",
            len(snapshot.org_settings),
            len(snapshot.workers),
            len(snapshot.events),
            len(snapshot.holds),
        )
        return store

    @classmethod
    def load_snapshot(cls, path: Union[str, Path]) -> "InMemoryCalendarStore":
        """Build a store from a JSON snapshot file."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls.from_snapshot(data)

    # --- Reads ---

    def get_org_settings(self, org_id: str) -> Optional[OrgCalendarSettings]:
        with self._lock:
            return self._settings.get(org_id)

    def get_worker(self, worker_id: str) -> Optional[Worker]:
        with self._lock:
            worker = self._workers.get(worker_id)
            return worker.model_copy() if worker else None

    def list_workers(self, org_id: str) -> list[Worker]:
        with self._lock:
            return [w.model_copy() for w in self._workers.values() if w.org_id == org_id]

    def list_working_hours(self, org_id: str, worker_id: str) -> list[WorkingHours]:
        with self._lock:
            return [
                row.model_copy()
                for row in self._working_hours.values()
                if row.org_id == org_id and row.worker_id == worker_id
            ]

    def list_time_off(
        self, org_id: str, worker_id: str, start: datetime, end: datetime
    ) -> list[TimeOff]:
        with self._lock:
            return [
                entry.model_copy()
                for entry in self._time_off.values()
                if entry.org_id == org_id
                and entry.worker_id == worker_id
                and overlaps(entry.start_at, entry.end_at, start, end)
            ]

    def list_events(
        self, org_id: str, worker_id: str, start: datetime, end: datetime
    ) -> list[CalendarEvent]:
        with self._lock:
            return [
                event.model_copy(deep=True)
                for event in self._events.values()
                if event.org_id == org_id
                and worker_id in event.worker_ids
                and overlaps(event.start_at, event.effective_end(), start, end)
            ]

    def list_holds(
        self,
        org_id: str,
        worker_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[CalendarHold]:
        with self._lock:
            holds = [h for h in self._holds.values() if h.org_id == org_id]
            if worker_id is not None:
                holds = [h for h in holds if h.worker_id == worker_id]
            if start is not None and end is not None:
                holds = [h for h in holds if overlaps(h.start_at, h.end_at, start, end)]
            return [h.model_copy() for h in holds]

    def get_event(self, event_id: str) -> Optional[CalendarEvent]:
        with self._lock:
            event = self._events.get(event_id)
            return event.model_copy(deep=True) if event else None

    def get_hold(self, hold_id: str) -> Optional[CalendarHold]:
        with self._lock:
            hold = self._holds.get(hold_id)
            return hold.model_copy() if hold else None

    # --- Writes ---

    def save_event(self, event: CalendarEvent) -> CalendarEvent:
        with self._lock:
            self._events[event.id] = event.model_copy(deep=True)
        return event

    def save_hold(self, hold: CalendarHold) -> CalendarHold:
        with self._lock:
            self._holds[hold.id] = hold.model_copy()
        return hold

    # --- Round-robin pointer ---

    def get_round_robin_pointer(self, org_id: str) -> RoundRobinPointer:
        with self._lock:
            pointer = self._pointers.get(org_id)
            return pointer.model_copy() if pointer else RoundRobinPointer(org_id=org_id)

    def compare_and_set_round_robin_pointer(
        self, org_id: str, expected_version: int, worker_id: str
    ) -> bool:
        """Move the pointer only if nobody else has moved it since it was read."""
        with self._lock:
            current = self._pointers.get(org_id) or RoundRobinPointer(org_id=org_id)
            if current.version != expected_version:
                logger.debug(
                    "Round-robin CAS rejected for org %s: expected v%d, found v%d",
                    org_id,
                    expected_version,
                    current.version,
                )
                return False
            self._pointers[org_id] = RoundRobinPointer(
                org_id=org_id, last_worker_id=worker_id, version=current.version + 1
            )
            return True

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Hold the store lock so a check-then-write runs without interleaving."""
        with self._lock:
            yield
