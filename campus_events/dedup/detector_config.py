"""Detector configuration - tunable constants of duplicate detection."""

from dataclasses import dataclass

from .. import config


@dataclass(frozen=True)
class DetectorConfig:
    """Tunable constants shared by the analyzer and the detection service."""
    similarity_threshold: float = 0.8
    date_proximity_days: int = 7
    venue_proximity_km: float = 5.0
    candidate_limit: int = 50

    @classmethod
    def from_env(cls) -> "DetectorConfig":
        """Build from the environment-driven settings module."""
        return cls(
            similarity_threshold=config.DUPLICATE_SIMILARITY_THRESHOLD,
            date_proximity_days=config.DUPLICATE_DATE_WINDOW_DAYS,
            venue_proximity_km=config.DUPLICATE_VENUE_RADIUS_KM,
            candidate_limit=config.DUPLICATE_CANDIDATE_LIMIT,
        )
