"""Duplicate Analyzer - Combine field similarities into a duplicate probability."""

import math
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, ClassVar

import structlog

from ..events.models import EventCandidate
from .detector_config import DetectorConfig
from .similarity import combined_text_similarity, date_proximity, venue_proximity

logger = structlog.get_logger()


class ConfidenceTier(str, Enum):
    """Ordinal confidence that an event pair is a duplicate."""
    VERY_LOW = "VERY_LOW"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, ConfidenceTier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, ConfidenceTier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, ConfidenceTier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, ConfidenceTier):
            return NotImplemented
        return self.rank >= other.rank


_TIER_ORDER = [
    ConfidenceTier.VERY_LOW,
    ConfidenceTier.LOW,
    ConfidenceTier.MEDIUM,
    ConfidenceTier.HIGH,
    ConfidenceTier.VERY_HIGH,
]

# Lower bound of each tier, highest first
TIER_BREAKPOINTS: list[tuple[float, ConfidenceTier]] = [
    (0.9, ConfidenceTier.VERY_HIGH),
    (0.8, ConfidenceTier.HIGH),
    (0.6, ConfidenceTier.MEDIUM),
    (0.4, ConfidenceTier.LOW),
]


@dataclass
class SimilarityFactors:
    """Per-field similarity scores for one event pair, each in [0, 1]."""
    title_similarity: float
    description_similarity: float
    date_proximity: float
    venue_proximity: float
    category_match: int
    organizer_match: int

    def to_dict(self) -> dict[str, float]:
        return {
            "titleSimilarity": self.title_similarity,
            "descriptionSimilarity": self.description_similarity,
            "dateProximity": self.date_proximity,
            "venueProximity": self.venue_proximity,
            "categoryMatch": self.category_match,
            "organizerMatch": self.organizer_match,
        }


@dataclass
class PairScore:
    """Weighted duplicate probability with the factors behind it."""
    probability: float
    factors: SimilarityFactors


@dataclass
class DuplicateVerdict:
    """An existing event scored against a candidate."""
    event: EventCandidate
    probability: float
    factors: SimilarityFactors
    confidence: ConfidenceTier

    def to_dict(self, explanation: str | None = None) -> dict[str, Any]:
        data: dict[str, Any] = {
            "event": self.event.to_record(),
            "probability": self.probability,
            "factors": self.factors.to_dict(),
            "confidence": self.confidence.value,
        }
        if explanation is not None:
            data["explanation"] = explanation
        return data


def round_half_up(value: float) -> int:
    """Round half up, so 0.5 goes to 1 and 84.5 goes to 85."""
    return math.floor(value + 0.5)


class DuplicateAnalyzer:
    """Score event pairs and explain the result.

    Probability is a fixed weighted sum of six factors:
    - Title: combined text similarity of titles
    - Description: combined text similarity of descriptions
    - Date: start-date proximity within the configured window
    - Venue: name, coordinate and address proximity
    - Category: exact category match
    - Organizer: same organizer identity
    """

    FACTOR_WEIGHTS: ClassVar[dict[str, float]] = {
        "title": 0.35,
        "description": 0.20,
        "date": 0.15,
        "venue": 0.15,
        "category": 0.10,
        "organizer": 0.05,
    }

    FALLBACK_EXPLANATION = "General similarity detected"

    def __init__(self, config: DetectorConfig | None = None):
        self.config = config or DetectorConfig()

    def score_pair(self, candidate: EventCandidate, existing: EventCandidate) -> PairScore:
        """Compute the duplicate probability of ``existing`` against ``candidate``."""
        factors = SimilarityFactors(
            title_similarity=combined_text_similarity(candidate.title, existing.title),
            description_similarity=combined_text_similarity(
                candidate.description, existing.description
            ),
            date_proximity=date_proximity(
                candidate.start, existing.start, self.config.date_proximity_days
            ),
            venue_proximity=venue_proximity(
                candidate.venue, existing.venue, self.config.venue_proximity_km
            ),
            category_match=1 if candidate.category == existing.category else 0,
            organizer_match=1 if (
                candidate.organizer_id is not None
                and candidate.organizer_id == existing.organizer_id
            ) else 0,
        )

        weights = self.FACTOR_WEIGHTS
        probability = (
            factors.title_similarity * weights["title"]
            + factors.description_similarity * weights["description"]
            + factors.date_proximity * weights["date"]
            + factors.venue_proximity * weights["venue"]
            + factors.category_match * weights["category"]
            + factors.organizer_match * weights["organizer"]
        )

        # Float error can push an all-ones sum past 1.0
        return PairScore(probability=min(probability, 1.0), factors=factors)

    def classify(self, probability: float) -> ConfidenceTier:
        """Map a probability onto its confidence tier."""
        for lower_bound, tier in TIER_BREAKPOINTS:
            if probability >= lower_bound:
                return tier
        return ConfidenceTier.VERY_LOW

    def build_verdict(
        self, candidate: EventCandidate, existing: EventCandidate
    ) -> DuplicateVerdict:
        """Score and classify one pair."""
        score = self.score_pair(candidate, existing)
        verdict = DuplicateVerdict(
            event=existing,
            probability=score.probability,
            factors=score.factors,
            confidence=self.classify(score.probability),
        )

        logger.debug(
            "event_pair_scored",
            existing_event_id=existing.event_id,
            probability=f"{score.probability:.3f}",
            confidence=verdict.confidence.value,
            **{k: f"{v:.3f}" for k, v in asdict(score.factors).items()},
        )

        return verdict

    def explain(self, verdict: DuplicateVerdict) -> str:
        """Human-readable reasons a pair looks like a duplicate."""
        factors = verdict.factors
        reasons = []

        if factors.title_similarity > 0.8:
            reasons.append(
                f"Event titles are {round_half_up(factors.title_similarity * 100)}% similar"
            )
        if factors.description_similarity > 0.7:
            reasons.append(
                f"Event descriptions are {round_half_up(factors.description_similarity * 100)}% similar"
            )
        if factors.date_proximity > 0.8:
            reasons.append("Events are scheduled very close in time")
        if factors.venue_proximity > 0.8:
            reasons.append("Events are at the same or very similar venue")
        if factors.category_match == 1:
            reasons.append("Events are in the same category")
        if factors.organizer_match == 1:
            reasons.append("Events have the same organizer")

        return ", ".join(reasons) if reasons else self.FALLBACK_EXPLANATION
