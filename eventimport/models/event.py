"""Data model for events flowing through the import pipeline."""

from dataclasses import asdict, dataclass, field
from datetime import UTC, date, datetime
from typing import Any

# Publication statuses decided by the quality assessment
STATUS_PUBLISHED = "published"
STATUS_PENDING = "pending_approval"
STATUS_DRAFT = "draft"

REQUIRED_FIELDS = ("name", "date_time", "location")


class ValidationError(ValueError):
    """Raised when an event lacks a field required for import."""

    def __init__(self, event_name: str, missing: list[str]):
        self.event_name = event_name
        self.missing = missing
        super().__init__(
            f"Invalid event: {event_name} - missing required fields ({', '.join(missing)})"
        )


def parse_event_datetime(value: str | None) -> datetime | None:
    """
    Parse an ISO-8601 event timestamp.

    Naive values are taken to be UTC. Returns None for empty or
    unparseable input.
    """
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def date_part(value: str | None) -> str:
    """Return the calendar-date part of an ISO timestamp string."""
    if not value:
        return ""
    return value.split("T")[0].strip()


def utc_day(value: str | None) -> date | None:
    """Return the UTC calendar day of an ISO timestamp, or None."""
    dt = parse_event_datetime(value)
    if dt is None:
        return None
    return dt.astimezone(UTC).date()


@dataclass(frozen=True)
class EventMetadata:
    """Organizer hints attached to an event by multi-organizer sources."""

    organizer_name: str | None = None
    venue_name: str | None = None
    phone: str | None = None
    email: str | None = None

    def get(self, field_name: str) -> str | None:
        return getattr(self, field_name, None)

    def is_empty(self) -> bool:
        return not any((self.organizer_name, self.venue_name, self.phone, self.email))

    @classmethod
    def from_dict(cls, data: dict | None) -> "EventMetadata | None":
        if not data:
            return None
        return cls(
            organizer_name=data.get("organizerName") or data.get("organizer_name"),
            venue_name=data.get("venueName") or data.get("venue_name"),
            phone=data.get("phone"),
            email=data.get("email"),
        )


@dataclass(frozen=True)
class RawEvent:
    """
    An event as delivered by a source adapter.

    Instances are immutable; every pipeline stage derives new values
    instead of editing the record it was handed.
    """

    name: str
    date_time: str
    location: str
    description: str | None = None
    venue_name: str | None = None
    price: str | None = None
    image_url: str | None = None
    source_url: str | None = None
    metadata: EventMetadata | None = None

    @property
    def venue_or_location(self) -> str:
        return self.venue_name or self.location or ""

    @property
    def normalized_name(self) -> str:
        """Grouping key used by the category cache."""
        return (self.name or "").strip().lower()

    @property
    def dedupe_key(self) -> str:
        """Exact composite key used to collapse repeats inside one batch."""
        name = (self.name or "").strip().lower()
        venue = self.venue_or_location.strip().lower()
        return f"{name}|{date_part(self.date_time)}|{venue}"

    def missing_required_fields(self) -> list[str]:
        return [f for f in REQUIRED_FIELDS if not (getattr(self, f) or "").strip()]

    def validate(self) -> None:
        """Raise ValidationError if name, date_time or location is missing."""
        missing = self.missing_required_fields()
        if missing:
            raise ValidationError(self.name or "<unnamed>", missing)

    @classmethod
    def from_dict(cls, data: dict) -> "RawEvent":
        """Build from adapter JSON (camelCase or snake_case keys)."""
        return cls(
            name=data.get("name") or "",
            date_time=data.get("date_time") or data.get("dateTime") or "",
            location=data.get("location") or "",
            description=data.get("description"),
            venue_name=data.get("venue_name") or data.get("venueName"),
            price=data.get("price"),
            image_url=data.get("image_url") or data.get("imageUrl"),
            source_url=(
                data.get("source_url")
                or data.get("sourceUrl")
                or data.get("organizer_event_url")
            ),
            metadata=EventMetadata.from_dict(data.get("metadata")),
        )


@dataclass
class QualityAssessment:
    """Outcome of scoring one event."""

    status: str
    score: int
    issues: list[str] = field(default_factory=list)
    auto_published: bool = False

    @property
    def issues_text(self) -> str:
        return "; ".join(self.issues)


@dataclass(frozen=True)
class OrganizerMatch:
    """Organizer resolved for an event, with how it was found."""

    organizer_id: int
    match_type: str  # "exact", "venue", "contact", "fuzzy", "default"
    confidence: float
    matched_field: str | None = None

    @property
    def is_default(self) -> bool:
        return self.match_type == "default"


@dataclass
class DuplicateLogEntry:
    """Audit record for an event skipped as a duplicate of a stored one."""

    source_name: str
    scraper_event_name: str
    scraper_event_url: str
    existing_event_id: str
    existing_event_name: str
    existing_event_url: str
    similarity_score: float
    match_type: str  # "url" or "fuzzy_name"
    timestamp: str = field(
        default_factory=lambda: datetime.now(UTC).isoformat().replace("+00:00", "Z")
    )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class StoredEvent:
    """
    An event as held by the persisted store.

    ``event_id`` is the public identifier (slug); pass-through fields keep
    the adapter's values.
    """

    event_id: str
    name: str
    date_time: str
    location: str
    description: str | None = None
    venue_name: str | None = None
    price: str | None = None
    image_url: str | None = None
    source_url: str | None = None
    category: str | None = None
    organizer_id: int | None = None
    status: str = STATUS_DRAFT
    quality_score: int | None = None
    quality_issues: str = ""
    auto_published: bool = False
    featured: bool = False
    description_format: str = "markdown"
    tags: list[str] = field(default_factory=list)

    @property
    def venue_field(self) -> str:
        return self.venue_name or self.location or ""

    def to_front_matter(self) -> dict[str, Any]:
        """Serialize to a YAML-friendly dict (None values dropped)."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_front_matter(cls, data: dict) -> "StoredEvent":
        date_time = data.get("date_time", "")
        if isinstance(date_time, datetime):
            date_time = date_time.isoformat()
        return cls(
            event_id=str(data.get("event_id", "")),
            name=data.get("name", ""),
            date_time=str(date_time),
            location=data.get("location", ""),
            description=data.get("description"),
            venue_name=data.get("venue_name"),
            price=data.get("price"),
            image_url=data.get("image_url"),
            source_url=data.get("source_url"),
            category=data.get("category"),
            organizer_id=data.get("organizer_id"),
            status=data.get("status", STATUS_DRAFT),
            quality_score=data.get("quality_score"),
            quality_issues=data.get("quality_issues", ""),
            auto_published=data.get("auto_published", False),
            featured=data.get("featured", False),
            description_format=data.get("description_format", "markdown"),
            tags=list(data.get("tags") or []),
        )


@dataclass
class ImportRunResult:
    """Summary returned to the caller for one import run."""

    source: str
    success: bool = True
    events_found: int = 0
    events_imported: int = 0
    duplicates_skipped: int = 0
    errors: list[str] = field(default_factory=list)
    statistics: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
