"""Event Store - Read and write event documents in PostgreSQL."""

import json
import uuid
from collections.abc import Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

import asyncpg
import structlog

from .. import config
from ..errors import InvalidCandidate
from ..events.models import DUPLICATE_CHECK_STATUSES, EventCategory, EventStatus, parse_timestamp

logger = structlog.get_logger()


@dataclass
class EventQuery:
    """Filter for candidate events."""
    category: EventCategory
    start_from: datetime
    start_to: datetime
    statuses: tuple[EventStatus, ...] = DUPLICATE_CHECK_STATUSES
    exclude_event_id: str | None = None
    limit: int = 50

    def matches(self, record: dict[str, Any]) -> bool:
        """Check a plain event record against this filter.

        Records whose start time cannot be read never match.
        """
        if not isinstance(record, dict):
            return False
        if record.get("status") not in tuple(s.value for s in self.statuses):
            return False
        if record.get("category") != self.category.value:
            return False
        if self.exclude_event_id is not None and str(record.get("_id")) == self.exclude_event_id:
            return False
        start = record_start(record)
        if start is None:
            return False
        return self.start_from <= start <= self.start_to


def record_start(record: dict[str, Any]) -> datetime | None:
    """Start time of a stored record, or None when missing or unparseable."""
    date_data = record.get("dateTime")
    if not isinstance(date_data, dict) or date_data.get("start") is None:
        return None
    try:
        return parse_timestamp(date_data["start"])
    except InvalidCandidate:
        return None


class EventStore(Protocol):
    """Query capability the duplicate detector depends on."""

    async def find_events(self, query: EventQuery) -> list[dict[str, Any]]:
        ...


class PgEventStore:
    """PostgreSQL storage for events as JSONB documents.

    Indexed columns (status, category, start_at) are kept alongside the
    document so candidate lookups never scan the JSON.
    """

    def __init__(self, database_url: str | None = None):
        self.database_url = database_url or config.DATABASE_URL
        self.pool: asyncpg.Pool | None = None

    async def connect(self):
        """Initialize connection pool."""
        self.pool = await asyncpg.create_pool(
            self.database_url,
            min_size=2,
            max_size=10,
        )
        logger.info("connected_to_database")

    async def close(self):
        """Close connection pool."""
        if self.pool:
            await self.pool.close()
            logger.info("closed_database_connection")

    @asynccontextmanager
    async def connection(self):
        """Get a connection from the pool."""
        async with self.pool.acquire() as conn:
            yield conn

    async def initialize_schema(self):
        """Create tables and indexes."""
        async with self.connection() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    id VARCHAR(64) PRIMARY KEY,
                    status VARCHAR(32) NOT NULL DEFAULT 'draft',
                    category VARCHAR(32) NOT NULL,
                    start_at TIMESTAMPTZ NOT NULL,
                    organizer_id VARCHAR(64),
                    document JSONB NOT NULL,
                    created_at TIMESTAMPTZ DEFAULT NOW(),
                    updated_at TIMESTAMPTZ DEFAULT NOW()
                )
            """)

            await conn.execute("""
                CREATE INDEX IF NOT EXISTS events_candidate_idx
                ON events (category, status, start_at)
            """)

            logger.info("initialized_schema")

    async def find_events(self, query: EventQuery) -> list[dict[str, Any]]:
        """Find events matching status, category and start window."""
        async with self.connection() as conn:
            rows = await conn.fetch(
                """
                SELECT id, document
                FROM events
                WHERE status = ANY($1)
                  AND category = $2
                  AND start_at BETWEEN $3 AND $4
                  AND ($5::VARCHAR IS NULL OR id <> $5)
                ORDER BY start_at
                LIMIT $6
                """,
                [s.value for s in query.statuses],
                query.category.value,
                query.start_from,
                query.start_to,
                query.exclude_event_id,
                query.limit,
            )

        return [self._row_to_record(row) for row in rows]

    async def get_event(self, event_id: str) -> dict[str, Any] | None:
        """Get a single event document by ID."""
        async with self.connection() as conn:
            row = await conn.fetchrow(
                "SELECT id, document FROM events WHERE id = $1",
                event_id,
            )
        return self._row_to_record(row) if row else None

    async def insert_event(self, record: dict[str, Any]) -> dict[str, Any]:
        """Store a new event and return it with its assigned ID."""
        event_id = str(record.get("_id") or uuid.uuid4().hex)
        document = {**record, "_id": event_id}
        document.setdefault("status", EventStatus.DRAFT.value)

        async with self.connection() as conn:
            await conn.execute(
                """
                INSERT INTO events (id, status, category, start_at, organizer_id, document)
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                event_id,
                *self._indexed_columns(document),
                json.dumps(document, default=str),
            )

        logger.info("stored_event", event_id=event_id, title=document.get("title"))
        return document

    async def update_event(self, event_id: str, changes: dict[str, Any]) -> dict[str, Any] | None:
        """Merge changes into an existing event and return the new document."""
        current = await self.get_event(event_id)
        if current is None:
            return None

        document = merge_event_changes(current, changes)
        document["_id"] = event_id

        async with self.connection() as conn:
            await conn.execute(
                """
                UPDATE events
                SET status = $2, category = $3, start_at = $4, organizer_id = $5,
                    document = $6, updated_at = NOW()
                WHERE id = $1
                """,
                event_id,
                *self._indexed_columns(document),
                json.dumps(document, default=str),
            )

        logger.info("updated_event", event_id=event_id, fields=sorted(changes))
        return document

    def _indexed_columns(self, document: dict[str, Any]) -> tuple:
        organizer = document.get("organizer")
        return (
            document.get("status", EventStatus.DRAFT.value),
            document["category"],
            parse_timestamp(document["dateTime"]["start"]),
            str(organizer) if organizer is not None else None,
        )

    def _row_to_record(self, row: asyncpg.Record) -> dict[str, Any]:
        document = row["document"]
        # Handle document as string or dict
        if isinstance(document, str):
            document = json.loads(document) if document else {}
        return {**document, "_id": row["id"]}


def merge_event_changes(current: dict[str, Any], changes: dict[str, Any]) -> dict[str, Any]:
    """Overlay changed fields onto an event record, one level into sub-documents."""
    merged = dict(current)
    for key, value in changes.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


class InMemoryEventStore:
    """Event store over a list of records, such as a JSON export."""

    def __init__(self, records: Iterable[dict[str, Any]] | None = None):
        self.records: list[dict[str, Any]] = list(records or [])

    @classmethod
    def from_json_file(cls, path: str) -> "InMemoryEventStore":
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = data.get("events", [])
        return cls(data)

    async def find_events(self, query: EventQuery) -> list[dict[str, Any]]:
        ordered = sorted(
            (r for r in self.records if query.matches(r)),
            key=record_start,
        )
        return ordered[: query.limit]
