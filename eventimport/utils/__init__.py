"""Utility modules for the import pipeline."""

from .http import ApiClient, ApiError, RateLimiter
from .identifiers import IdentifierGenerator, generate_base_identifier
from .text import (
    dice_coefficient,
    event_name_similarity,
    extract_venue_keyword,
    normalize_event_name,
    normalize_venue_name,
)

__all__ = [
    "ApiClient",
    "ApiError",
    "IdentifierGenerator",
    "RateLimiter",
    "dice_coefficient",
    "event_name_similarity",
    "extract_venue_keyword",
    "generate_base_identifier",
    "normalize_event_name",
    "normalize_venue_name",
]
