"""Computed scheduling results: blocked intervals, conflicts, slots, reports."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from crewcal.calendar.dates import zoned_time_string
from crewcal.schemas.calendar_schema import CalendarEvent, CalendarHold


class BlockSource(str, Enum):
    EVENT = "EVENT"
    HOLD = "HOLD"
    TIME_OFF = "TIME_OFF"


class BlockedInterval(BaseModel):
    """A span of a worker's time taken by an event, hold, or time off."""

    worker_id: str
    source: BlockSource
    source_id: str
    start_at: datetime
    end_at: datetime


class Conflict(BaseModel):
    """An existing item that overlaps a proposed interval for one worker."""

    worker_id: str
    source: BlockSource
    source_id: str
    start_at: datetime
    end_at: datetime


class AvailabilityResult(BaseModel):
    """Open slot start instants for one worker on one local day."""

    worker_id: str
    date: str
    timezone: str
    duration_minutes: int
    step_minutes: int
    slots_utc: list[datetime] = Field(default_factory=list)

    def local_times(self) -> list[str]:
        """Slot starts as ``HH:MM`` in the worker's zone."""
        return [zoned_time_string(slot, self.timezone) for slot in self.slots_utc]


class FallbackStrategy(str, Enum):
    OWNER = "OWNER"
    ROUND_ROBIN = "ROUND_ROBIN"


class StrategyUsed(str, Enum):
    PREFERRED = "PREFERRED"
    ROUND_ROBIN = "ROUND_ROBIN"


class NextOpenSlot(BaseModel):
    """The resolver's answer: when, who, and how the worker was chosen."""

    slot_utc: datetime
    worker_id: str
    strategy_used: StrategyUsed
    duration_minutes: int


class RoundRobinAssignment(BaseModel):
    turn: int
    worker_id: str
    worker_name: str
    slot_utc: Optional[datetime] = None


class RoundRobinReport(BaseModel):
    """Dry-run of the round-robin rotation for diagnostics."""

    org_id: str
    start_date: str
    iterations: int
    duration_minutes: int
    lookahead_days: int
    last_worker_id: Optional[str] = None
    eligible_worker_ids: list[str] = Field(default_factory=list)
    skipped_worker_ids: list[str] = Field(default_factory=list)
    assignments: list[RoundRobinAssignment] = Field(default_factory=list)
    expected_sequence: list[str] = Field(default_factory=list)
    actual_sequence: list[str] = Field(default_factory=list)
    passed: bool = False

    @property
    def summary(self) -> str:
        if not self.assignments:
            return "No available workers found in lookahead window."
        return " -> ".join(item.worker_name for item in self.assignments)


class BookingOutcome(BaseModel):
    """Result of a conflict-checked write of a hold or event."""

    ok: bool
    message: str = ""
    conflicts: list[Conflict] = Field(default_factory=list)
    hold: Optional[CalendarHold] = None
    event: Optional[CalendarEvent] = None
