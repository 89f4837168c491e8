from .event_store import (
    EventQuery,
    EventStore,
    InMemoryEventStore,
    PgEventStore,
    merge_event_changes,
)

__all__ = [
    "EventQuery",
    "EventStore",
    "InMemoryEventStore",
    "PgEventStore",
    "merge_event_changes",
]
