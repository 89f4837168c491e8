from .models import (
    DUPLICATE_CHECK_STATUSES,
    Address,
    Coordinates,
    EventCandidate,
    EventCategory,
    EventStatus,
    Venue,
    parse_timestamp,
)

__all__ = [
    "DUPLICATE_CHECK_STATUSES",
    "Address",
    "Coordinates",
    "EventCandidate",
    "EventCategory",
    "EventStatus",
    "Venue",
    "parse_timestamp",
]
