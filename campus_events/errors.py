"""Errors raised by duplicate detection."""


class DuplicateDetectionError(Exception):
    """Base class for duplicate detection failures."""


class InvalidCandidate(DuplicateDetectionError):
    """Candidate event is missing fields required for scoring."""

    def __init__(self, message: str, missing_fields: list[str] | None = None):
        super().__init__(message)
        self.missing_fields = missing_fields or []


class DetectionUnavailable(DuplicateDetectionError):
    """The event store could not be queried for candidate events."""
