"""Data models for the import pipeline."""

from .event import (
    DuplicateLogEntry,
    EventMetadata,
    ImportRunResult,
    OrganizerMatch,
    QualityAssessment,
    RawEvent,
    StoredEvent,
    ValidationError,
)

__all__ = [
    "DuplicateLogEntry",
    "EventMetadata",
    "ImportRunResult",
    "OrganizerMatch",
    "QualityAssessment",
    "RawEvent",
    "StoredEvent",
    "ValidationError",
]
