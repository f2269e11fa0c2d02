"""Varberg event import - dedup, categorize, score and store scraped events."""

from .classifier import CategoryAssigner, CategoryCache, KeywordCategoryClassifier
from .deduplicator import DeduplicationResult, DuplicateResult, EventDeduplicator
from .importer import EventImporter
from .organizer_matcher import OrganizerDirectory, OrganizerMatcher
from .quality import QualityAssessor, TrustedOrganizerPolicy

__version__ = "1.0.0"

__all__ = [
    "CategoryAssigner",
    "CategoryCache",
    "DeduplicationResult",
    "DuplicateResult",
    "EventDeduplicator",
    "EventImporter",
    "KeywordCategoryClassifier",
    "OrganizerDirectory",
    "OrganizerMatcher",
    "QualityAssessor",
    "TrustedOrganizerPolicy",
]
