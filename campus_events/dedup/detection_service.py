"""Duplicate Detection Service - Rank existing events that may duplicate a candidate."""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

import structlog

from ..errors import DetectionUnavailable, InvalidCandidate
from ..events.models import DUPLICATE_CHECK_STATUSES, EventCandidate
from ..storage.event_store import EventQuery, EventStore
from .analyzer import ConfidenceTier, DuplicateAnalyzer, DuplicateVerdict
from .detector_config import DetectorConfig

logger = structlog.get_logger()

# Three independent cut points: the caller's bucketing threshold, the fixed
# floor for advisory suggestions, and the fixed bar for blocking.
SUGGESTION_THRESHOLD = 0.5
BLOCK_THRESHOLD = 0.9

# Thresholds used by the two workflow call sites
ADVISORY_THRESHOLD = 0.7
GATE_THRESHOLD = 0.8

MAX_DUPLICATES = 5
MAX_SUGGESTIONS = 3


@dataclass
class DuplicateCheckOptions:
    """Per-call options; unset values fall back to the detector config."""
    threshold: float | None = None
    limit: int | None = None
    exclude_event_id: str | None = None


@dataclass
class AnalysisSummary:
    """Counts describing one duplicate check."""
    total_checked: int
    threshold: float
    high_confidence_duplicate_count: int
    medium_confidence_duplicate_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalChecked": self.total_checked,
            "threshold": self.threshold,
            "highConfidenceDuplicates": self.high_confidence_duplicate_count,
            "mediumConfidenceDuplicates": self.medium_confidence_duplicate_count,
        }


@dataclass
class AnalysisResult:
    """Ranked duplicates and suggestions for a candidate event."""
    is_duplicate: bool
    duplicates: list[DuplicateVerdict]
    suggestions: list[DuplicateVerdict]
    analysis: AnalysisSummary

    @classmethod
    def empty(cls, threshold: float) -> "AnalysisResult":
        return cls(
            is_duplicate=False,
            duplicates=[],
            suggestions=[],
            analysis=AnalysisSummary(
                total_checked=0,
                threshold=threshold,
                high_confidence_duplicate_count=0,
                medium_confidence_duplicate_count=0,
            ),
        )

    def to_dict(self, analyzer: DuplicateAnalyzer | None = None) -> dict[str, Any]:
        """Serialize, attaching explanations when an analyzer is given."""
        def verdicts(items: list[DuplicateVerdict]) -> list[dict[str, Any]]:
            return [
                v.to_dict(explanation=analyzer.explain(v) if analyzer else None)
                for v in items
            ]

        return {
            "isDuplicate": self.is_duplicate,
            "duplicates": verdicts(self.duplicates),
            "suggestions": verdicts(self.suggestions),
            "analysis": self.analysis.to_dict(),
        }


@dataclass
class Recommendations:
    """What the caller should do with an analysis result."""
    should_block: bool
    should_warn: bool
    message: str = field(default="")

    def to_dict(self) -> dict[str, Any]:
        return {
            "shouldBlock": self.should_block,
            "shouldWarn": self.should_warn,
            "message": self.message,
        }


def recommend(result: AnalysisResult) -> Recommendations:
    """Derive block/warn recommendations from an analysis result."""
    if result.is_duplicate:
        message = "Similar events found. Please review before creating."
    elif result.suggestions:
        message = "Some similar events found. You may want to review them."
    else:
        message = "No similar events found. You can proceed with creating this event."

    return Recommendations(
        should_block=any(
            d.confidence == ConfidenceTier.VERY_HIGH for d in result.duplicates
        ),
        should_warn=bool(result.duplicates or result.suggestions),
        message=message,
    )


class DuplicateDetectionService:
    """Check a candidate event against existing events in the store.

    Retrieval is bounded to the candidate's category and a window of
    ``date_proximity_days`` around its start. Every retrieved event is
    scored; those at or above the threshold become duplicates, those at
    or above SUGGESTION_THRESHOLD become suggestions.
    """

    def __init__(
        self,
        store: EventStore,
        config: DetectorConfig | None = None,
        analyzer: DuplicateAnalyzer | None = None,
    ):
        self.store = store
        self.config = config or DetectorConfig()
        self.analyzer = analyzer or DuplicateAnalyzer(self.config)

    def build_query(
        self, candidate: EventCandidate, limit: int, exclude_event_id: str | None = None
    ) -> EventQuery:
        """Candidate pool filter: same category, start within the window."""
        window = timedelta(days=self.config.date_proximity_days)
        return EventQuery(
            category=candidate.category,
            start_from=candidate.start - window,
            start_to=candidate.start + window,
            statuses=DUPLICATE_CHECK_STATUSES,
            exclude_event_id=exclude_event_id,
            limit=limit,
        )

    async def check_for_duplicates(
        self,
        candidate: EventCandidate | dict[str, Any],
        options: DuplicateCheckOptions | None = None,
    ) -> AnalysisResult:
        """Find likely duplicates of a candidate event.

        Args:
            candidate: Candidate event, or a plain record to parse into one
            options: Threshold, retrieval limit and event ID to exclude

        Returns:
            AnalysisResult with top duplicates and suggestions

        Raises:
            InvalidCandidate: If the candidate lacks required fields
            DetectionUnavailable: If the event store query fails
        """
        if not isinstance(candidate, EventCandidate):
            candidate = EventCandidate.from_record(candidate)

        options = options or DuplicateCheckOptions()
        threshold = (
            options.threshold if options.threshold is not None
            else self.config.similarity_threshold
        )
        limit = options.limit if options.limit is not None else self.config.candidate_limit

        query = self.build_query(candidate, limit, options.exclude_event_id)

        try:
            existing_events = await self.store.find_events(query)
        except Exception as e:
            logger.error(
                "duplicate_detection_store_failed",
                event_title=candidate.title,
                error=str(e),
            )
            raise DetectionUnavailable("Failed to check for duplicate events") from e

        duplicates: list[DuplicateVerdict] = []
        suggestions: list[DuplicateVerdict] = []

        for record in existing_events:
            try:
                existing = EventCandidate.from_record(record)
                verdict = self.analyzer.build_verdict(candidate, existing)
            except (InvalidCandidate, TypeError, ValueError, OverflowError, AttributeError) as e:
                logger.warning(
                    "skipped_malformed_event",
                    event_id=str(record.get("_id")) if isinstance(record, dict) else None,
                    error=str(e),
                )
                continue

            if verdict.probability >= threshold:
                duplicates.append(verdict)
            elif verdict.probability >= SUGGESTION_THRESHOLD:
                suggestions.append(verdict)

        duplicates.sort(key=lambda v: v.probability, reverse=True)
        suggestions.sort(key=lambda v: v.probability, reverse=True)

        result = AnalysisResult(
            is_duplicate=len(duplicates) > 0,
            duplicates=duplicates[:MAX_DUPLICATES],
            suggestions=suggestions[:MAX_SUGGESTIONS],
            analysis=AnalysisSummary(
                total_checked=len(existing_events),
                threshold=threshold,
                high_confidence_duplicate_count=sum(
                    1 for d in duplicates if d.confidence == ConfidenceTier.HIGH
                ),
                medium_confidence_duplicate_count=sum(
                    1 for d in duplicates if d.confidence == ConfidenceTier.MEDIUM
                ),
            ),
        )

        logger.info(
            "duplicate_detection_analysis",
            event_title=candidate.title,
            checked=len(existing_events),
            duplicates_found=len(duplicates),
            suggestions_found=len(suggestions),
            highest_probability=f"{duplicates[0].probability:.3f}" if duplicates else 0,
        )

        return result

    def explain(self, verdict: DuplicateVerdict) -> str:
        """Human-readable rationale for a verdict."""
        return self.analyzer.explain(verdict)
