"""Organizer resolution for events from multi-organizer sources.

The directory is loaded from organizers.yaml; the matcher walks a fixed
ladder of strategies (name, venue, contact, fuzzy venue) and falls back
to the source's own organizer.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import yaml

from .logger import get_logger
from .models.event import EventMetadata, OrganizerMatch
from .storage import InfrastructureError
from .utils.text import dice_coefficient, normalize_venue_name, strip_phone

logger = get_logger(__name__)

FUZZY_THRESHOLD = 0.80

CONFIDENCE_EXACT = 1.0
CONFIDENCE_VENUE = 0.9
CONFIDENCE_CONTACT = 0.95
CONFIDENCE_DEFAULT = 0.5


@dataclass(frozen=True)
class Organizer:
    id: int
    name: str
    venue_name: str | None = None
    email: str | None = None
    phone: str | None = None


class OrganizerLookup(Protocol):
    """Queries the matcher needs from the organizer directory."""

    def find_by_name(self, name: str) -> int | None: ...

    def find_by_venue(self, venue: str) -> int | None: ...

    def find_by_contact(self, email: str | None, phone: str | None) -> int | None: ...

    def list_all_with_venue(self) -> list[Organizer]: ...


class OrganizerDirectory:
    """Known organizers, usually loaded from a YAML list with ``load``."""

    def __init__(self, organizers: list[Organizer] | None = None):
        self.organizers: list[Organizer] = list(organizers or [])

    @classmethod
    def load(cls, organizers_path: Path | str) -> "OrganizerDirectory":
        """
        Read organizers.yaml.

        Raises:
            InfrastructureError: If the file is missing or malformed
        """
        organizers_path = Path(organizers_path)
        try:
            with open(organizers_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or []
        except (OSError, yaml.YAMLError) as e:
            raise InfrastructureError(
                f"Organizer directory unavailable ({organizers_path}): {e}"
            ) from e

        if not isinstance(data, list):
            raise InfrastructureError(
                f"Unexpected organizers data format: {type(data).__name__}"
            )

        organizers = []
        for entry in data:
            if not isinstance(entry, dict) or not entry.get("id") or not entry.get("name"):
                logger.warning(f"Skipping organizer without id/name: {entry}")
                continue
            organizers.append(
                Organizer(
                    id=int(entry["id"]),
                    name=str(entry["name"]),
                    venue_name=entry.get("venue_name"),
                    email=entry.get("email"),
                    phone=str(entry["phone"]) if entry.get("phone") else None,
                )
            )
        logger.info(f"Loaded {len(organizers)} organizers from {organizers_path}")
        return cls(organizers)

    def find_by_name(self, name: str) -> int | None:
        wanted = name.strip().lower()
        for org in self.organizers:
            if org.name.strip().lower() == wanted:
                return org.id
        return None

    def find_by_venue(self, venue: str) -> int | None:
        wanted = venue.strip().lower()
        for org in self.organizers:
            if org.venue_name and org.venue_name.strip().lower() == wanted:
                return org.id
        return None

    def find_by_contact(self, email: str | None, phone: str | None) -> int | None:
        if email:
            wanted = email.strip().lower()
            for org in self.organizers:
                if org.email and org.email.strip().lower() == wanted:
                    return org.id

        if phone:
            wanted = strip_phone(phone)
            if wanted:
                for org in self.organizers:
                    if org.phone and strip_phone(org.phone) == wanted:
                        return org.id
        return None

    def list_all_with_venue(self) -> list[Organizer]:
        return [org for org in self.organizers if org.venue_name]


class OrganizerMatcher:
    """
    Maps event metadata to a known organizer.

    Order, first hit wins:
    1. Organizer name, case-insensitive (confidence 1.0)
    2. Registered venue name, case-insensitive (0.9)
    3. Email, then phone with separators removed (0.95)
    4. Fuzzy venue name against every organizer's venue and name (>= 0.80)
    5. The source's default organizer (0.5)
    """

    def __init__(self, directory: OrganizerLookup, fuzzy_threshold: float = FUZZY_THRESHOLD):
        self.directory = directory
        self.fuzzy_threshold = fuzzy_threshold

    def match(
        self,
        metadata: EventMetadata | None,
        default_organizer_id: int,
        name_cache: dict[str, int] | None = None,
    ) -> OrganizerMatch:
        """
        Args:
            metadata: Organizer hints from the source adapter
            default_organizer_id: Organizer owning the source
            name_cache: Run-scoped cache of organizer name -> id
        """
        if metadata is None or metadata.is_empty():
            return self._default(default_organizer_id)

        if metadata.organizer_name:
            organizer_id = self._find_by_name(metadata.organizer_name, name_cache)
            if organizer_id is not None:
                return OrganizerMatch(organizer_id, "exact", CONFIDENCE_EXACT, "organizer_name")

        if metadata.venue_name:
            organizer_id = self.directory.find_by_venue(metadata.venue_name)
            if organizer_id is not None:
                return OrganizerMatch(organizer_id, "venue", CONFIDENCE_VENUE, "venue_name")

        # One field per lookup so the audit record names the field that hit
        for matched_field, email, phone in (
            ("email", metadata.email, None),
            ("phone", None, metadata.phone),
        ):
            if not (email or phone):
                continue
            organizer_id = self.directory.find_by_contact(email, phone)
            if organizer_id is not None:
                return OrganizerMatch(organizer_id, "contact", CONFIDENCE_CONTACT, matched_field)

        if metadata.venue_name:
            fuzzy = self._fuzzy_match_venue(metadata.venue_name)
            if fuzzy is not None:
                organizer_id, similarity = fuzzy
                return OrganizerMatch(organizer_id, "fuzzy", similarity, "venue_name")

        return self._default(default_organizer_id)

    def _default(self, default_organizer_id: int) -> OrganizerMatch:
        return OrganizerMatch(default_organizer_id, "default", CONFIDENCE_DEFAULT)

    def _find_by_name(self, name: str, name_cache: dict[str, int] | None) -> int | None:
        key = name.strip().lower()
        if name_cache is not None and key in name_cache:
            return name_cache[key]

        organizer_id = self.directory.find_by_name(name)
        if organizer_id is not None and name_cache is not None:
            name_cache[key] = organizer_id
        return organizer_id

    def _fuzzy_match_venue(self, venue_name: str) -> tuple[int, float] | None:
        normalized = normalize_venue_name(venue_name)
        if not normalized:
            return None

        best: tuple[int, float] | None = None
        for org in self.directory.list_all_with_venue():
            for candidate in (org.venue_name or "", org.name):
                similarity = dice_coefficient(normalized, normalize_venue_name(candidate))
                if similarity >= self.fuzzy_threshold and (best is None or similarity > best[1]):
                    best = (org.id, similarity)
        return best

    def log_match(self, match: OrganizerMatch, event_name: str, metadata: EventMetadata) -> None:
        """Audit record for a non-default match."""
        matched_value = metadata.get(match.matched_field) if match.matched_field else None
        logger.info(
            f"Organizer match for '{event_name}': ID {match.organizer_id} "
            f"({match.match_type}, {match.confidence:.0%} confidence)",
            extra={
                "event_name": event_name,
                "organizer_id": match.organizer_id,
                "match_type": match.match_type,
                "confidence": round(match.confidence, 3),
                "matched_field": match.matched_field,
                "matched_value": matched_value,
            },
        )
