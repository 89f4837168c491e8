"""Shared test fixtures for campus event duplicate detection."""

import copy
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from campus_events.dedup.analyzer import DuplicateAnalyzer, PairScore, SimilarityFactors
from campus_events.events.models import EventCandidate
from campus_events.storage.event_store import EventQuery, InMemoryEventStore, merge_event_changes

BASE_START = datetime(2030, 3, 15, 10, 0, tzinfo=timezone.utc)


def make_event(**overrides: Any) -> dict[str, Any]:
    """Build a stored-event record; nested dicts in overrides replace wholesale."""
    record = {
        "_id": uuid.uuid4().hex,
        "title": "AI Workshop 2024",
        "description": "Learn about AI and ML for 2 hours",
        "category": "technology",
        "status": "published",
        "organizer": "organizer-1",
        "venue": {
            "name": "Tech Auditorium",
            "address": {"street": "12 College Road", "city": "Pune"},
            "coordinates": {"latitude": 18.5204, "longitude": 73.8567},
        },
        "dateTime": {"start": BASE_START.isoformat()},
    }
    record.update(overrides)
    return record


class FakeEventStore(InMemoryEventStore):
    """In-memory store that records queries and can be made to fail."""

    def __init__(self, records=None, fail: bool = False):
        super().__init__(records)
        self.fail = fail
        self.queries: list[EventQuery] = []

    async def find_events(self, query: EventQuery) -> list[dict[str, Any]]:
        self.queries.append(query)
        if self.fail:
            raise ConnectionError("database unreachable")
        return copy.deepcopy(await super().find_events(query))

    async def get_event(self, event_id: str) -> dict[str, Any] | None:
        for record in self.records:
            if record.get("_id") == event_id:
                return copy.deepcopy(record)
        return None

    async def insert_event(self, record: dict[str, Any]) -> dict[str, Any]:
        document = {**record, "_id": record.get("_id") or uuid.uuid4().hex}
        document.setdefault("status", "draft")
        self.records.append(document)
        return document

    async def update_event(self, event_id: str, changes: dict[str, Any]) -> dict[str, Any] | None:
        for i, record in enumerate(self.records):
            if record.get("_id") == event_id:
                self.records[i] = merge_event_changes(record, changes)
                return self.records[i]
        return None


class FixedScoreAnalyzer(DuplicateAnalyzer):
    """Analyzer returning preset probabilities keyed by event title."""

    def __init__(self, scores: dict[str, float]):
        super().__init__()
        self.scores = scores

    def score_pair(self, candidate: EventCandidate, existing: EventCandidate) -> PairScore:
        probability = self.scores[existing.title]
        factors = SimilarityFactors(
            title_similarity=probability,
            description_similarity=probability,
            date_proximity=1.0,
            venue_proximity=probability,
            category_match=1,
            organizer_match=0,
        )
        return PairScore(probability=probability, factors=factors)


@pytest.fixture
def candidate_record():
    """A draft event that has not been stored yet."""
    record = make_event()
    del record["_id"]
    del record["status"]
    return record


@pytest.fixture
def candidate(candidate_record):
    return EventCandidate.from_record(candidate_record)


@pytest.fixture
def scored_pool():
    """Stored events named by the probability a FixedScoreAnalyzer gives them."""
    def build(*probabilities: float):
        records = [
            make_event(title=f"event-{p}", _id=f"id-{i}")
            for i, p in enumerate(probabilities)
        ]
        scores = {r["title"]: p for r, p in zip(records, probabilities, strict=True)}
        return FakeEventStore(records), FixedScoreAnalyzer(scores)
    return build


@pytest.fixture
def future_start():
    return (datetime.now(timezone.utc) + timedelta(days=30)).replace(microsecond=0)
