from crewcal.scheduling.availability import AvailabilityEngine
from crewcal.scheduling.booking import BookingDesk
from crewcal.scheduling.conflicts import ConflictDetector
from crewcal.scheduling.resolver import NextOpenSlotResolver

__all__ = [
    "AvailabilityEngine", "BookingDesk", "ConflictDetector", "NextOpenSlotResolver",
]
