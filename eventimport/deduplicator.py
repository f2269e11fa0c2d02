"""Duplicate event detection within a batch and against the event store."""

from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING

from .logger import get_logger
from .models.event import DuplicateLogEntry, RawEvent, StoredEvent, date_part
from .utils.text import event_name_similarity, extract_venue_keyword

if TYPE_CHECKING:
    from .storage import EventStore

logger = get_logger(__name__)


@dataclass
class DuplicateResult:
    """Result of checking one event against the store."""

    is_duplicate: bool
    similarity: float = 0.0
    match_type: str | None = None  # "url" or "fuzzy_name"
    existing: StoredEvent | None = None


@dataclass
class DeduplicationResult:
    """Survivors of both dedup phases plus the audit trail."""

    unique_events: list[RawEvent]
    duplicate_logs: list[DuplicateLogEntry] = field(default_factory=list)
    internal_duplicates: int = 0

    @property
    def store_duplicates(self) -> int:
        return len(self.duplicate_logs)


class EventDeduplicator:
    """
    Two-phase duplicate detection.

    1. In-batch: events sharing an exact name|date|venue key are collapsed
       to their first occurrence.
    2. Store: each survivor is looked up by source URL, then by fuzzy name
       match among stored events on the same day at a venue containing the
       same keyword.

    Store errors are not caught here; a failing store aborts the run.
    Survivors are only compared with stored events, never with each other.
    """

    FUZZY_THRESHOLD = 0.85

    def __init__(self, store: "EventStore", fuzzy_threshold: float = FUZZY_THRESHOLD):
        """
        Args:
            store: Persisted event catalog
            fuzzy_threshold: Minimum name similarity for a fuzzy duplicate
        """
        self.store = store
        self.fuzzy_threshold = fuzzy_threshold

    def deduplicate(self, events: list[RawEvent], source_name: str) -> DeduplicationResult:
        internally_unique = self.deduplicate_internally(events)
        unique, logs = self.check_store_duplicates(internally_unique, source_name)
        return DeduplicationResult(
            unique_events=unique,
            duplicate_logs=logs,
            internal_duplicates=len(events) - len(internally_unique),
        )

    def deduplicate_internally(self, events: list[RawEvent]) -> list[RawEvent]:
        """Keep the first event for each dedupe key, preserving order."""
        seen: set[str] = set()
        unique: list[RawEvent] = []

        for event in events:
            key = event.dedupe_key
            if key in seen:
                logger.debug(f"In-batch duplicate: {event.name}")
                continue
            seen.add(key)
            unique.append(event)

        logger.info(f"After in-batch dedup: {len(unique)} of {len(events)} events remain")
        return unique

    def check_store_duplicates(
        self, events: list[RawEvent], source_name: str
    ) -> tuple[list[RawEvent], list[DuplicateLogEntry]]:
        """Drop events that already exist in the store, logging each hit."""
        unique: list[RawEvent] = []
        logs: list[DuplicateLogEntry] = []

        for event in events:
            result = self.check_duplicate(event)
            if not result.is_duplicate:
                unique.append(event)
                continue
            logs.append(self._log_entry(event, result, source_name))

        logger.info(
            f"After store dedup: {len(unique)} new events, {len(logs)} already stored"
        )
        return unique, logs

    def check_duplicate(self, event: RawEvent) -> DuplicateResult:
        # 1. Exact source URL
        if event.source_url:
            existing = self.store.find_by_url(event.source_url)
            if existing is not None:
                logger.info(f"URL duplicate: {event.source_url}")
                return DuplicateResult(
                    is_duplicate=True, similarity=1.0, match_type="url", existing=existing
                )

        # 2. Same day + venue keyword + similar name
        keyword = extract_venue_keyword(event.venue_or_location)
        if not keyword:
            return DuplicateResult(is_duplicate=False)

        day = self._event_day(event)
        if day is None:
            return DuplicateResult(is_duplicate=False)

        best: StoredEvent | None = None
        best_score = 0.0
        for candidate in self.store.find_by_day_and_venue(day, keyword):
            score = event_name_similarity(event.name, candidate.name)
            if score >= self.fuzzy_threshold and score > best_score:
                best, best_score = candidate, score

        if best is None:
            return DuplicateResult(is_duplicate=False)

        logger.info(
            f"Fuzzy duplicate ({best_score:.0%} match): new '{event.name}', "
            f"existing '{best.name}' [{day.isoformat()} | {keyword}]"
        )
        return DuplicateResult(
            is_duplicate=True, similarity=best_score, match_type="fuzzy_name", existing=best
        )

    def _event_day(self, event: RawEvent) -> date | None:
        try:
            return date.fromisoformat(date_part(event.date_time))
        except ValueError:
            logger.debug(f"Unparseable date '{event.date_time}' for '{event.name}'")
            return None

    def _log_entry(
        self, event: RawEvent, result: DuplicateResult, source_name: str
    ) -> DuplicateLogEntry:
        existing = result.existing
        return DuplicateLogEntry(
            source_name=source_name,
            scraper_event_name=event.name,
            scraper_event_url=event.source_url or "",
            existing_event_id=existing.event_id,
            existing_event_name=existing.name,
            existing_event_url=existing.source_url or "",
            similarity_score=result.similarity,
            match_type=result.match_type,
        )
