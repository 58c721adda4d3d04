"""Exception types raised by the scheduling core."""

from typing import Optional


class SchedulingError(Exception):
    """Base class for all scheduling core errors."""


class InvalidInputError(SchedulingError, ValueError):
    """Raised when a caller passes a malformed or out-of-range value.

    ``field`` names the offending input so API layers can point at it.
    Subclasses ValueError so pydantic validators surface it as a
    validation failure.
    """

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class SlotNotFoundError(SchedulingError):
    """No worker has an open slot inside the lookahead window."""

    def __init__(self, lookahead_days: int, message: Optional[str] = None) -> None:
        plural = "" if lookahead_days == 1 else "s"
        super().__init__(message or f"No open slots found in the next {lookahead_days} day{plural}.")
        self.lookahead_days = lookahead_days


class ConcurrentUpdateError(SchedulingError):
    """The round-robin pointer kept changing underneath the resolver."""


class HoldNotActiveError(SchedulingError):
    """A hold can no longer be confirmed (expired, confirmed, or released)."""

    def __init__(self, hold_id: str, status: str) -> None:
        super().__init__(f"Hold {hold_id} is {status.lower()} and cannot be confirmed.")
        self.hold_id = hold_id
        self.status = status
