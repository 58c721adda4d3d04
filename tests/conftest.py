"""Shared test fixtures and helpers."""

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

import pytest

from crewcal.calendar.dates import hhmm_to_minutes
from crewcal.schemas.calendar_schema import (
    CalendarEvent,
    CalendarHold,
    EventStatus,
    HoldStatus,
    OrgCalendarSettings,
    TimeOff,
    Worker,
    WorkingHours,
)
from crewcal.tools.calendar_store import InMemoryCalendarStore

ORG = "org_1"
LA = "America/Los_Angeles"
WEEKDAYS = (1, 2, 3, 4, 5)

# Saturday 2026-02-28 16:00 in Los Angeles, before the Monday used in most tests.
NOW = datetime(2026, 3, 1, 0, 0, tzinfo=timezone.utc)


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    """Helper to build an aware UTC datetime."""
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: int) -> None:
        self.now += timedelta(minutes=minutes)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    """Empty store with LA org settings and overlaps disallowed."""
    store = InMemoryCalendarStore()
    store.set_org_settings(
        ORG, OrgCalendarSettings(timezone=LA, allow_overlaps=False, default_slot_minutes=30)
    )
    return store


@pytest.fixture
def crew_store(store):
    """Store with three workers (w1, w2, w3) on Mon-Fri 08:00-17:00."""
    for index in (1, 2, 3):
        make_worker(store, f"w{index}", name=f"Worker {index}")
        make_weekly_hours(store, f"w{index}")
    return store


def make_worker(
    store: InMemoryCalendarStore,
    worker_id: str,
    org_id: str = ORG,
    name: Optional[str] = None,
    timezone: Optional[str] = None,
) -> Worker:
    """Helper to add a Worker."""
    return store.add_worker(Worker(id=worker_id, org_id=org_id, name=name, timezone=timezone))


def make_weekly_hours(
    store: InMemoryCalendarStore,
    worker_id: str,
    days: Iterable[int] = WEEKDAYS,
    start: str = "08:00",
    end: str = "17:00",
    org_id: str = ORG,
    timezone: Optional[str] = None,
) -> list[WorkingHours]:
    """Helper to add the same working window on several weekdays (0=Sunday)."""
    end_minute = 24 * 60 if end == "24:00" else hhmm_to_minutes(end)
    rows = []
    for day in days:
        rows.append(
            store.add_working_hours(
                WorkingHours(
                    org_id=org_id,
                    worker_id=worker_id,
                    day_of_week=day,
                    start_minute=hhmm_to_minutes(start),
                    end_minute=end_minute,
                    timezone=timezone,
                )
            )
        )
    return rows


def make_event(
    store: InMemoryCalendarStore,
    worker_ids: list[str],
    start_at: datetime,
    end_at: Optional[datetime] = None,
    busy: bool = True,
    status: EventStatus = EventStatus.SCHEDULED,
    org_id: str = ORG,
    event_id: Optional[str] = None,
) -> CalendarEvent:
    """Helper to save a CalendarEvent directly, bypassing conflict checks."""
    fields = {"id": event_id} if event_id else {}
    return store.save_event(
        CalendarEvent(
            org_id=org_id,
            worker_ids=worker_ids,
            start_at=start_at,
            end_at=end_at,
            busy=busy,
            status=status,
            **fields,
        )
    )


def make_hold(
    store: InMemoryCalendarStore,
    worker_id: str,
    start_at: datetime,
    end_at: datetime,
    expires_at: Optional[datetime] = None,
    status: HoldStatus = HoldStatus.ACTIVE,
    org_id: str = ORG,
) -> CalendarHold:
    """Helper to save a CalendarHold; expires an hour after NOW by default."""
    return store.save_hold(
        CalendarHold(
            org_id=org_id,
            worker_id=worker_id,
            start_at=start_at,
            end_at=end_at,
            expires_at=expires_at or NOW + timedelta(hours=1),
            status=status,
        )
    )


def make_time_off(
    store: InMemoryCalendarStore,
    worker_id: str,
    start_at: datetime,
    end_at: datetime,
    org_id: str = ORG,
) -> TimeOff:
    """Helper to add a TimeOff entry."""
    return store.add_time_off(
        TimeOff(org_id=org_id, worker_id=worker_id, start_at=start_at, end_at=end_at)
    )
