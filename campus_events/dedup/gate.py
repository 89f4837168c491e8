"""Duplicate Gate - Apply duplicate detection to event creation and updates.

Two call sites use the detector:
- advisory: shown to the organizer before they confirm a new event
- gate: runs when an event is actually created or updated and blocks only
  very-high-confidence duplicates

Both fail open. A detector outage never blocks an organizer.
"""

from dataclasses import dataclass, field
from typing import Any

import structlog

from ..errors import DetectionUnavailable
from ..events.models import EventCandidate
from ..storage.event_store import merge_event_changes
from .analyzer import DuplicateVerdict
from .detection_service import (
    ADVISORY_THRESHOLD,
    BLOCK_THRESHOLD,
    GATE_THRESHOLD,
    AnalysisResult,
    DuplicateCheckOptions,
    DuplicateDetectionService,
    Recommendations,
    recommend,
)

logger = structlog.get_logger()

# Updates only re-run the check when one of these fields changes
SIGNIFICANT_UPDATE_FIELDS = ("title", "description", "dateTime", "venue", "category")

BLOCK_MESSAGE = (
    "A very similar event already exists. Please review the existing event "
    "or modify your event details."
)


@dataclass
class AdvisoryReport:
    """Pre-submit duplicate check shown to the organizer."""
    result: AnalysisResult
    recommendations: Recommendations
    degraded: bool = False

    def to_dict(self, service: DuplicateDetectionService) -> dict[str, Any]:
        return {
            **self.result.to_dict(analyzer=service.analyzer),
            "recommendations": self.recommendations.to_dict(),
        }


@dataclass
class GateDecision:
    """Outcome of the duplicate gate for a create or update."""
    checked: bool
    blocked: bool = False
    duplicates: list[DuplicateVerdict] = field(default_factory=list)
    warnings: list[DuplicateVerdict] = field(default_factory=list)
    error: str | None = None

    def to_dict(self, service: DuplicateDetectionService) -> dict[str, Any]:
        data: dict[str, Any] = {
            "duplicates": [
                d.to_dict(explanation=service.explain(d)) for d in self.duplicates
            ],
        }
        if self.blocked:
            data.update(
                message=BLOCK_MESSAGE,
                code="DUPLICATE_DETECTED",
                canOverride=True,
            )
        return data


def has_significant_changes(changes: dict[str, Any]) -> bool:
    """Whether an update touches any field that affects duplicate scoring."""
    return any(changes.get(name) is not None for name in SIGNIFICANT_UPDATE_FIELDS)


class DuplicateGate:
    """Run duplicate detection inside the event create/update workflow."""

    def __init__(self, service: DuplicateDetectionService):
        self.service = service

    async def advisory_check(
        self,
        candidate: EventCandidate | dict[str, Any],
        exclude_event_id: str | None = None,
    ) -> AdvisoryReport:
        """Check a draft before submission using the lower advisory threshold."""
        try:
            result = await self.service.check_for_duplicates(
                candidate,
                DuplicateCheckOptions(
                    threshold=ADVISORY_THRESHOLD,
                    exclude_event_id=exclude_event_id,
                ),
            )
        except DetectionUnavailable as e:
            logger.warning("advisory_duplicate_check_unavailable", error=str(e))
            result = AnalysisResult.empty(ADVISORY_THRESHOLD)
            return AdvisoryReport(
                result=result, recommendations=recommend(result), degraded=True
            )

        return AdvisoryReport(result=result, recommendations=recommend(result))

    async def check_create(
        self,
        candidate: EventCandidate | dict[str, Any],
        skip_duplicate_check: bool = False,
    ) -> GateDecision:
        """Gate a new event; blocks on a very-high-confidence duplicate."""
        if skip_duplicate_check:
            logger.info("duplicate_check_skipped")
            return GateDecision(checked=False)

        return await self._gate(candidate)

    async def check_update(
        self,
        existing: dict[str, Any],
        changes: dict[str, Any],
        skip_duplicate_check: bool = False,
    ) -> GateDecision:
        """Gate an update to a stored event.

        Args:
            existing: The stored event record, including its ``_id``
            changes: Fields being changed
            skip_duplicate_check: Organizer opted out of the check
        """
        if skip_duplicate_check or not has_significant_changes(changes):
            return GateDecision(checked=False)

        updated = merge_event_changes(existing, changes)
        updated["organizer"] = existing.get("organizer")
        event_id = existing.get("_id")

        return await self._gate(
            updated, exclude_event_id=str(event_id) if event_id is not None else None
        )

    async def _gate(
        self,
        candidate: EventCandidate | dict[str, Any],
        exclude_event_id: str | None = None,
    ) -> GateDecision:
        try:
            result = await self.service.check_for_duplicates(
                candidate,
                DuplicateCheckOptions(
                    threshold=GATE_THRESHOLD,
                    exclude_event_id=exclude_event_id,
                ),
            )
        except DetectionUnavailable as e:
            logger.warning("duplicate_gate_unavailable", error=str(e))
            return GateDecision(checked=False, error=str(e))

        blocking = [d for d in result.duplicates if d.probability >= BLOCK_THRESHOLD]
        if blocking:
            logger.warning(
                "event_blocked_as_duplicate",
                duplicate_event_id=blocking[0].event.event_id,
                probability=f"{blocking[0].probability:.3f}",
                excluded_event_id=exclude_event_id,
            )
            return GateDecision(checked=True, blocked=True, duplicates=blocking)

        if result.duplicates:
            logger.info("event_allowed_with_duplicate_warning", duplicates_found=len(result.duplicates))

        return GateDecision(checked=True, warnings=result.duplicates)
