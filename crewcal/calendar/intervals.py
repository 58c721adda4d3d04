"""
Ordered-interval algebra over half-open ``[start, end)`` ranges.

Free time is represented as a sorted list of non-overlapping intervals.
Every operation returns a new list; inputs are never mutated.

Usage:
    free = [Interval(nine, five)]
    free = subtract_intervals(free, [Interval(noon, one)])
    # -> [Interval(nine, noon), Interval(one, five)]
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from crewcal.errors import InvalidInputError


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open overlap test. Touching endpoints do not overlap."""
    return a_start < b_end and b_start < a_end


@dataclass(frozen=True, order=True)
class Interval:
    """A non-empty half-open time range."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise InvalidInputError(
                "interval", f"end {self.end.isoformat()} must be after start {self.start.isoformat()}"
            )

    def overlaps(self, other: "Interval") -> bool:
        return overlaps(self.start, self.end, other.start, other.end)

    def contains(self, other: "Interval") -> bool:
        return self.start <= other.start and other.end <= self.end

    def clip(self, bounds: "Interval") -> Optional["Interval"]:
        """The part of this interval inside ``bounds``, or None."""
        start = max(self.start, bounds.start)
        end = min(self.end, bounds.end)
        if end <= start:
            return None
        return Interval(start, end)

    @property
    def duration_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60


def merge_intervals(intervals: Iterable[Interval]) -> list[Interval]:
    """Sort and coalesce overlapping or touching intervals."""
    merged: list[Interval] = []
    for current in sorted(intervals):
        if merged and current.start <= merged[-1].end:
            last = merged[-1]
            if current.end > last.end:
                merged[-1] = Interval(last.start, current.end)
            continue
        merged.append(current)
    return merged


def subtract_interval(free: Iterable[Interval], blocked: Interval) -> list[Interval]:
    """Remove ``blocked`` from each free interval.

    A free interval survives whole, shrinks, splits in two, or disappears.
    """
    remaining: list[Interval] = []
    for window in free:
        if not window.overlaps(blocked):
            remaining.append(window)
            continue
        if window.start < blocked.start:
            remaining.append(Interval(window.start, blocked.start))
        if blocked.end < window.end:
            remaining.append(Interval(blocked.end, window.end))
    return remaining


def subtract_intervals(free: Iterable[Interval], blocked: Iterable[Interval]) -> list[Interval]:
    """Remove every blocked interval from ``free`` and return sorted results."""
    remaining = merge_intervals(free)
    for item in merge_intervals(blocked):
        remaining = subtract_interval(remaining, item)
    return remaining
