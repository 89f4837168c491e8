"""Deduplication module - Detect likely duplicate campus events."""

from .analyzer import (
    ConfidenceTier,
    DuplicateAnalyzer,
    DuplicateVerdict,
    PairScore,
    SimilarityFactors,
)
from .detection_service import (
    ADVISORY_THRESHOLD,
    BLOCK_THRESHOLD,
    GATE_THRESHOLD,
    SUGGESTION_THRESHOLD,
    AnalysisResult,
    AnalysisSummary,
    DuplicateCheckOptions,
    DuplicateDetectionService,
    Recommendations,
    recommend,
)
from .detector_config import DetectorConfig
from .gate import AdvisoryReport, DuplicateGate, GateDecision, has_significant_changes

__all__ = [
    "ADVISORY_THRESHOLD",
    "BLOCK_THRESHOLD",
    "GATE_THRESHOLD",
    "SUGGESTION_THRESHOLD",
    "AdvisoryReport",
    "AnalysisResult",
    "AnalysisSummary",
    "ConfidenceTier",
    "DetectorConfig",
    "DuplicateAnalyzer",
    "DuplicateCheckOptions",
    "DuplicateDetectionService",
    "DuplicateGate",
    "DuplicateVerdict",
    "GateDecision",
    "PairScore",
    "Recommendations",
    "SimilarityFactors",
    "has_significant_changes",
    "recommend",
]
