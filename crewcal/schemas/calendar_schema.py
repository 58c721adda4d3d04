"""Persisted calendar records: org settings, workers, hours, events, holds."""

import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from crewcal.calendar.dates import (
    DEFAULT_SLOT_MINUTES,
    MINUTES_PER_DAY,
    clamp_slot_minutes,
    clamp_week_starts_on,
    ensure_timezone,
    ensure_utc,
)
from crewcal.config import settings
from crewcal.errors import InvalidInputError
from crewcal.utils import normalize_worker_ids


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class EventStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    EN_ROUTE = "EN_ROUTE"
    ON_SITE = "ON_SITE"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


# Statuses whose events no longer hold a worker's time.
NON_BLOCKING_EVENT_STATUSES = frozenset({EventStatus.CANCELLED, EventStatus.NO_SHOW})


class HoldStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CONFIRMED = "CONFIRMED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class HoldSource(str, Enum):
    MANUAL = "MANUAL"
    SMS_AGENT = "SMS_AGENT"
    GOOGLE_SYNC = "GOOGLE_SYNC"


def validate_window(start_minute: int, end_minute: int) -> None:
    """Enforce ``0 <= start < end <= 1440`` for a working-hours window."""
    if not 0 <= start_minute < MINUTES_PER_DAY:
        raise InvalidInputError("start_minute", f"must be within 0-1439, got {start_minute}")
    if not 0 < end_minute <= MINUTES_PER_DAY:
        raise InvalidInputError("end_minute", f"must be within 1-1440, got {end_minute}")
    if end_minute <= start_minute:
        raise InvalidInputError(
            "end_minute", f"must be after start_minute ({start_minute}), got {end_minute}"
        )


class OrgCalendarSettings(BaseModel):
    """Per-tenant calendar configuration. Normalized on construction."""

    model_config = ConfigDict(frozen=True)

    timezone: str = Field(default_factory=lambda: settings.calendar.timezone)
    allow_overlaps: bool = Field(default_factory=lambda: settings.calendar.allow_overlaps)
    default_slot_minutes: int = Field(default_factory=lambda: settings.calendar.slot_minutes)
    default_untimed_start_hour: int = Field(
        default_factory=lambda: settings.calendar.untimed_start_hour
    )
    week_starts_on: int = Field(default_factory=lambda: settings.calendar.week_starts_on)

    @field_validator("timezone", mode="before")
    @classmethod
    def _normalize_timezone(cls, value: Optional[str]) -> str:
        return ensure_timezone(value)

    @field_validator("default_slot_minutes", mode="before")
    @classmethod
    def _normalize_slot_minutes(cls, value: object) -> int:
        return clamp_slot_minutes(value)

    @field_validator("default_untimed_start_hour", mode="before")
    @classmethod
    def _normalize_start_hour(cls, value: object) -> int:
        if value is None:
            return settings.calendar.untimed_start_hour
        return max(0, min(23, int(value)))  # type: ignore[call-overload]

    @field_validator("week_starts_on", mode="before")
    @classmethod
    def _normalize_week_start(cls, value: object) -> int:
        return clamp_week_starts_on(value)


class Worker(BaseModel):
    """A member of an organization who can be assigned calendar work."""

    id: str
    org_id: str
    name: Optional[str] = None
    timezone: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.id


class WorkingHours(BaseModel):
    """One recurring weekly availability window for a worker."""

    id: str = Field(default_factory=lambda: _new_id("wh"))
    org_id: str
    worker_id: str
    day_of_week: int = Field(ge=0, le=6)
    start_minute: int
    end_minute: int
    is_working: bool = True
    timezone: Optional[str] = None

    @model_validator(mode="after")
    def _check_window(self) -> "WorkingHours":
        validate_window(self.start_minute, self.end_minute)
        return self


class TimeOff(BaseModel):
    """A one-off exception removing a worker's availability."""

    id: str = Field(default_factory=lambda: _new_id("off"))
    org_id: str
    worker_id: str
    start_at: datetime
    end_at: datetime
    reason: Optional[str] = None

    @field_validator("start_at", "end_at")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_range(self) -> "TimeOff":
        if self.end_at <= self.start_at:
            raise InvalidInputError("end_at", "time off must end after it starts")
        return self


class CalendarEvent(BaseModel):
    """A unit of scheduled work assigned to one or more workers."""

    id: str = Field(default_factory=lambda: _new_id("evt"))
    org_id: str
    title: Optional[str] = None
    start_at: datetime
    end_at: Optional[datetime] = None
    busy: bool = True
    status: EventStatus = EventStatus.SCHEDULED
    worker_ids: list[str] = Field(min_length=1)
    hold_id: Optional[str] = None

    @field_validator("start_at", "end_at")
    @classmethod
    def _to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    @field_validator("worker_ids")
    @classmethod
    def _dedupe_workers(cls, value: list[str]) -> list[str]:
        ids = normalize_worker_ids(value)
        if not ids:
            raise InvalidInputError("worker_ids", "at least one worker is required")
        return ids

    @model_validator(mode="after")
    def _check_range(self) -> "CalendarEvent":
        if self.end_at is not None and self.end_at <= self.start_at:
            raise InvalidInputError("end_at", "event must end after it starts")
        return self

    def effective_end(self) -> datetime:
        """End instant, defaulting to one slot after start when unset."""
        return self.end_at or self.start_at + timedelta(minutes=DEFAULT_SLOT_MINUTES)

    @property
    def blocks_availability(self) -> bool:
        return self.busy and self.status not in NON_BLOCKING_EVENT_STATUSES

    @property
    def duration_minutes(self) -> int:
        return int((self.effective_end() - self.start_at).total_seconds() // 60)


class CalendarHold(BaseModel):
    """A short-lived reservation of one worker's time, pending confirmation."""

    id: str = Field(default_factory=lambda: _new_id("hold"))
    org_id: str
    worker_id: str
    start_at: datetime
    end_at: datetime
    expires_at: datetime
    status: HoldStatus = HoldStatus.ACTIVE
    source: HoldSource = HoldSource.MANUAL
    lead_id: Optional[str] = None
    title: Optional[str] = None
    event_id: Optional[str] = None

    @field_validator("start_at", "end_at", "expires_at")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_range(self) -> "CalendarHold":
        if self.end_at <= self.start_at:
            raise InvalidInputError("end_at", "hold must end after it starts")
        return self

    def is_blocking(self, now: datetime) -> bool:
        """Only active, unexpired holds reserve time."""
        return self.status == HoldStatus.ACTIVE and self.expires_at > ensure_utc(now)


class RoundRobinPointer(BaseModel):
    """Per-org record of the last worker assigned by round-robin fallback.

    ``version`` is the optimistic concurrency token for compare-and-set.
    """

    org_id: str
    last_worker_id: Optional[str] = None
    version: int = 0


class CalendarSnapshot(BaseModel):
    """Serializable dump of an org's calendar data, used to seed a store."""

    org_settings: dict[str, OrgCalendarSettings] = Field(default_factory=dict)
    workers: list[Worker] = Field(default_factory=list)
    working_hours: list[WorkingHours] = Field(default_factory=list)
    time_off: list[TimeOff] = Field(default_factory=list)
    events: list[CalendarEvent] = Field(default_factory=list)
    holds: list[CalendarHold] = Field(default_factory=list)
    round_robin: list[RoundRobinPointer] = Field(default_factory=list)
