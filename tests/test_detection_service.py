"""Tests for the duplicate detection service."""

import asyncio
from datetime import timedelta

import pytest

from campus_events.dedup.analyzer import ConfidenceTier
from campus_events.dedup.detection_service import (
    AnalysisResult,
    DuplicateCheckOptions,
    DuplicateDetectionService,
    recommend,
)
from campus_events.dedup.detector_config import DetectorConfig
from campus_events.errors import DetectionUnavailable, InvalidCandidate
from campus_events.events.models import EventCategory, EventStatus
from campus_events.storage.event_store import InMemoryEventStore

from conftest import BASE_START, FakeEventStore, make_event


def run(coro):
    return asyncio.run(coro)


class TestCandidateRetrieval:
    """Tests for the candidate pool query."""

    def test_query_bounds(self, candidate):
        """Test the candidate query built from the event."""
        store = FakeEventStore()
        service = DuplicateDetectionService(store)

        run(service.check_for_duplicates(candidate))

        query = store.queries[0]
        assert query.category == EventCategory.TECHNOLOGY
        assert query.start_from == BASE_START - timedelta(days=7)
        assert query.start_to == BASE_START + timedelta(days=7)
        assert set(query.statuses) == {EventStatus.DRAFT, EventStatus.PUBLISHED}
        assert query.exclude_event_id is None
        assert query.limit == 50

    def test_options_override_config(self, candidate):
        """Test per-call options over configured defaults."""
        store = FakeEventStore()
        service = DuplicateDetectionService(store, DetectorConfig(candidate_limit=20))

        result = run(service.check_for_duplicates(
            candidate,
            DuplicateCheckOptions(threshold=0.7, limit=10, exclude_event_id="evt-1"),
        ))

        assert store.queries[0].limit == 10
        assert store.queries[0].exclude_event_id == "evt-1"
        assert result.analysis.threshold == 0.7

    def test_store_filters_out_of_scope_events(self, candidate):
        """Test category, status, window and exclusion filters."""
        store = FakeEventStore([
            make_event(_id="same", title="Same"),
            make_event(_id="other-category", category="music"),
            make_event(_id="cancelled", status="cancelled"),
            make_event(_id="far", dateTime={"start": (BASE_START + timedelta(days=9)).isoformat()}),
            make_event(_id="excluded"),
        ])
        service = DuplicateDetectionService(store)

        result = run(service.check_for_duplicates(
            candidate, DuplicateCheckOptions(exclude_event_id="excluded")
        ))

        assert result.analysis.total_checked == 1

    def test_limit_caps_retrieval(self, candidate):
        """Test that the limit caps retrieved events."""
        store = FakeEventStore([make_event() for _ in range(8)])
        service = DuplicateDetectionService(store)

        result = run(service.check_for_duplicates(candidate, DuplicateCheckOptions(limit=3)))

        assert result.analysis.total_checked == 3

    def test_accepts_plain_record(self, candidate_record):
        """Test checking a plain record instead of a candidate."""
        store = FakeEventStore([make_event()])
        service = DuplicateDetectionService(store)

        result = run(service.check_for_duplicates(candidate_record))

        assert result.is_duplicate


class TestPartitioning:
    """Tests for duplicate/suggestion bucketing."""

    def test_duplicate_and_suggestion(self, candidate, scored_pool):
        """Test splitting scores into duplicates and suggestions."""
        store, analyzer = scored_pool(0.95, 0.65, 0.3)
        service = DuplicateDetectionService(store, analyzer=analyzer)

        result = run(service.check_for_duplicates(candidate, DuplicateCheckOptions(threshold=0.8)))

        assert result.is_duplicate is True
        assert [d.probability for d in result.duplicates] == [0.95]
        assert [s.probability for s in result.suggestions] == [0.65]
        assert result.duplicates[0].confidence == ConfidenceTier.VERY_HIGH
        assert result.suggestions[0].confidence == ConfidenceTier.MEDIUM
        assert result.analysis.total_checked == 3

    def test_suggestion_floor_is_fixed(self, candidate, scored_pool):
        """Test that the suggestion floor ignores the threshold."""
        store, analyzer = scored_pool(0.85, 0.55, 0.49)
        service = DuplicateDetectionService(store, analyzer=analyzer)

        result = run(service.check_for_duplicates(candidate, DuplicateCheckOptions(threshold=0.9)))

        assert result.is_duplicate is False
        assert [s.probability for s in result.suggestions] == [0.85, 0.55]

    def test_threshold_is_inclusive(self, candidate, scored_pool):
        """Test scores equal to a cut-off are included."""
        store, analyzer = scored_pool(0.8, 0.5)
        service = DuplicateDetectionService(store, analyzer=analyzer)

        result = run(service.check_for_duplicates(candidate))

        assert [d.probability for d in result.duplicates] == [0.8]
        assert [s.probability for s in result.suggestions] == [0.5]

    def test_truncation_keeps_top_five(self, candidate, scored_pool):
        """Test that only the five best duplicates are kept."""
        probabilities = [0.81, 0.99, 0.83, 0.97, 0.85, 0.95, 0.87, 0.93, 0.89, 0.91]
        store, analyzer = scored_pool(*probabilities)
        service = DuplicateDetectionService(store, analyzer=analyzer)

        result = run(service.check_for_duplicates(candidate))

        assert [d.probability for d in result.duplicates] == [0.99, 0.97, 0.95, 0.93, 0.91]
        assert result.analysis.total_checked == 10

    def test_truncation_keeps_top_three_suggestions(self, candidate, scored_pool):
        """Test that only the three best suggestions are kept."""
        store, analyzer = scored_pool(0.51, 0.72, 0.6, 0.77, 0.55)
        service = DuplicateDetectionService(store, analyzer=analyzer)

        result = run(service.check_for_duplicates(candidate))

        assert [s.probability for s in result.suggestions] == [0.77, 0.72, 0.6]

    def test_confidence_counts(self, candidate, scored_pool):
        """Test HIGH and MEDIUM duplicate counts."""
        store, analyzer = scored_pool(0.95, 0.85, 0.82, 0.65, 0.62)
        service = DuplicateDetectionService(store, analyzer=analyzer)

        result = run(service.check_for_duplicates(candidate, DuplicateCheckOptions(threshold=0.6)))

        # VERY_HIGH is not counted as high confidence
        assert result.analysis.high_confidence_duplicate_count == 2
        assert result.analysis.medium_confidence_duplicate_count == 2

    def test_counts_cover_truncated_duplicates(self, candidate, scored_pool):
        """Test counts include duplicates dropped by truncation."""
        store, analyzer = scored_pool(0.99, 0.98, 0.97, 0.96, 0.95, 0.85, 0.84)
        service = DuplicateDetectionService(store, analyzer=analyzer)

        result = run(service.check_for_duplicates(candidate))

        assert len(result.duplicates) == 5
        assert all(d.confidence == ConfidenceTier.VERY_HIGH for d in result.duplicates)
        assert result.analysis.high_confidence_duplicate_count == 2


class TestFailures:
    """Tests for invalid candidates and store failures."""

    def test_invalid_candidate_before_query(self, candidate_record):
        """Test an invalid candidate fails before the store is queried."""
        store = FakeEventStore()
        service = DuplicateDetectionService(store)
        del candidate_record["title"]

        with pytest.raises(InvalidCandidate) as exc_info:
            run(service.check_for_duplicates(candidate_record))

        assert exc_info.value.missing_fields == ["title"]
        assert store.queries == []

    def test_store_failure(self, candidate):
        """Test a store error becomes DetectionUnavailable."""
        service = DuplicateDetectionService(FakeEventStore(fail=True))

        with pytest.raises(DetectionUnavailable) as exc_info:
            run(service.check_for_duplicates(candidate))

        assert isinstance(exc_info.value.__cause__, ConnectionError)

    def test_malformed_record_is_skipped(self, candidate):
        """Test a stored event without a venue name is skipped."""
        broken = make_event(_id="broken")
        broken["venue"] = {"address": {"city": "Pune"}}
        store = FakeEventStore([broken, make_event(_id="good")])
        service = DuplicateDetectionService(store)

        result = run(service.check_for_duplicates(candidate))

        assert result.analysis.total_checked == 2
        assert [d.event.event_id for d in result.duplicates] == ["good"]
        assert result.suggestions == []

    @pytest.mark.parametrize("date_time", [
        {"start": "not a date"},
        {"start": 12345},
        "2030-03-15T10:00:00Z",
    ])
    def test_unreadable_start_is_skipped(self, candidate, date_time):
        """Test that a stored event with an unreadable start never reaches scoring."""
        store = InMemoryEventStore([
            make_event(_id="broken", dateTime=date_time),
            make_event(_id="good"),
        ])
        service = DuplicateDetectionService(store)

        result = run(service.check_for_duplicates(candidate))

        assert result.analysis.total_checked == 1
        assert [d.event.event_id for d in result.duplicates] == ["good"]

    def test_oversized_coordinates_are_skipped(self, candidate):
        """Test that coordinates too large for a float skip only that event."""
        broken = make_event(
            _id="broken",
            venue={"name": "Tech Auditorium", "coordinates": {"latitude": 10 ** 400, "longitude": 73.85}},
        )
        store = InMemoryEventStore([broken, make_event(_id="good")])
        service = DuplicateDetectionService(store)

        result = run(service.check_for_duplicates(candidate))

        assert result.analysis.total_checked == 2
        assert [d.event.event_id for d in result.duplicates] == ["good"]


class TestEndToEnd:
    """Real scoring through the service."""

    def test_punctuation_duplicate_detected(self, candidate):
        """Test real scoring finds a punctuation variant."""
        store = FakeEventStore([
            make_event(_id="existing", title="AI Workshop 2024!"),
            make_event(
                _id="unrelated",
                title="Robotics Hackathon Finals",
                description="Teams compete to build autonomous rovers over a weekend",
                venue={"name": "Innovation Lab"},
                organizer="organizer-9",
                dateTime={"start": (BASE_START + timedelta(days=6)).isoformat()},
            ),
        ])
        service = DuplicateDetectionService(store)

        result = run(service.check_for_duplicates(candidate))

        assert result.is_duplicate
        assert [d.event.event_id for d in result.duplicates] == ["existing"]
        top = result.duplicates[0]
        assert top.confidence == ConfidenceTier.VERY_HIGH
        assert "Events are in the same category" in service.explain(top)

    def test_to_dict_shape(self, candidate, scored_pool):
        """Test the serialized result shape."""
        store, analyzer = scored_pool(0.95, 0.65)
        service = DuplicateDetectionService(store, analyzer=analyzer)

        data = run(service.check_for_duplicates(candidate)).to_dict(analyzer=service.analyzer)

        assert data["isDuplicate"] is True
        assert data["analysis"] == {
            "totalChecked": 2,
            "threshold": 0.8,
            "highConfidenceDuplicates": 0,
            "mediumConfidenceDuplicates": 0,
        }
        duplicate = data["duplicates"][0]
        assert duplicate["confidence"] == "VERY_HIGH"
        assert duplicate["event"]["_id"] == "id-0"
        assert set(duplicate["factors"]) == {
            "titleSimilarity", "descriptionSimilarity", "dateProximity",
            "venueProximity", "categoryMatch", "organizerMatch",
        }
        assert "explanation" in duplicate


class TestRecommendations:
    """Tests for block/warn recommendations."""

    def test_block_on_very_high(self, candidate, scored_pool):
        """Test block recommendation on a very-high duplicate."""
        store, analyzer = scored_pool(0.92)
        service = DuplicateDetectionService(store, analyzer=analyzer)

        recommendations = recommend(run(service.check_for_duplicates(candidate)))

        assert recommendations.should_block is True
        assert recommendations.should_warn is True
        assert recommendations.message == "Similar events found. Please review before creating."

    def test_warn_on_suggestions_only(self, candidate, scored_pool):
        """Test warning when only suggestions exist."""
        store, analyzer = scored_pool(0.55)
        service = DuplicateDetectionService(store, analyzer=analyzer)

        recommendations = recommend(run(service.check_for_duplicates(candidate)))

        assert recommendations.should_block is False
        assert recommendations.should_warn is True
        assert recommendations.message.startswith("Some similar events found")

    def test_clear(self):
        """Test recommendation for an empty result."""
        recommendations = recommend(AnalysisResult.empty(0.7))

        assert recommendations.should_block is False
        assert recommendations.should_warn is False
        assert recommendations.message.startswith("No similar events found")
