"""
Import orchestration for one batch of scraped events.

Stages run strictly in sequence over the whole batch:
deduplicating -> categorizing -> quality scoring -> matching_organizers
-> importing (validate, identify, persist) -> completed.

A failure while persisting one event is recorded and the batch carries
on. Failures of the store itself abort the run after a ``failed``
progress entry has been written.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .classifier import CategoryAssigner, CategoryCache
from .deduplicator import EventDeduplicator
from .logger import get_logger
from .models.event import (
    STATUS_DRAFT,
    STATUS_PENDING,
    STATUS_PUBLISHED,
    ImportRunResult,
    QualityAssessment,
    RawEvent,
    StoredEvent,
    ValidationError,
)
from .organizer_matcher import OrganizerMatcher
from .progress import ProgressLogger, TimeEstimator
from .quality import QualityAssessor
from .storage import InfrastructureError
from .utils.identifiers import IdentifierGenerator

if TYPE_CHECKING:
    from .config import Source
    from .storage import DuplicateLogSink, EventStore

logger = get_logger(__name__)

IMPORT_PROGRESS_INTERVAL = 10


@dataclass
class RunContext:
    """State owned by a single import run and discarded with it."""

    run_id: str | None = None
    category_cache: CategoryCache = field(default_factory=CategoryCache)
    organizer_name_cache: dict[str, int] = field(default_factory=dict)
    estimator: TimeEstimator = field(default_factory=TimeEstimator)


@dataclass
class ScoredEvent:
    """A surviving event with everything decided before persistence."""

    event: RawEvent
    category: str
    assessment: QualityAssessment
    organizer_id: int


class EventImporter:
    """Runs the import pipeline over one source's batch."""

    def __init__(
        self,
        deduplicator: EventDeduplicator,
        category_assigner: CategoryAssigner,
        quality_assessor: QualityAssessor,
        organizer_matcher: OrganizerMatcher,
        identifier_generator: IdentifierGenerator,
        store: "EventStore",
        progress_logger: ProgressLogger | None = None,
        duplicate_log_sink: "DuplicateLogSink | None" = None,
        import_progress_interval: int = IMPORT_PROGRESS_INTERVAL,
    ):
        self.deduplicator = deduplicator
        self.category_assigner = category_assigner
        self.quality_assessor = quality_assessor
        self.organizer_matcher = organizer_matcher
        self.identifier_generator = identifier_generator
        self.store = store
        self.progress = progress_logger or ProgressLogger()
        self.duplicate_log_sink = duplicate_log_sink
        self.import_progress_interval = import_progress_interval

    def import_events(
        self, events: list[RawEvent], source: "Source", run_id: str | None = None
    ) -> ImportRunResult:
        """
        Import a batch of raw events from ``source``.

        Args:
            events: Events as produced by the source adapter
            source: Source configuration (default organizer, aggregator flag)
            run_id: Run identifier for progress telemetry; None disables it

        Returns:
            ImportRunResult with counts, per-event errors and statistics

        Raises:
            InfrastructureError: If the store fails; the run is aborted
        """
        context = RunContext(run_id=run_id)
        result = ImportRunResult(source=source.name, events_found=len(events))

        logger.info(f"Starting import of {len(events)} events from {source.name}")
        self.progress.log_start(run_id, source.name)
        context.estimator.start()
        self.progress.log_events_found(run_id, len(events), context.estimator)

        try:
            self._run(events, source, context, result)
        except Exception as e:
            logger.error(f"Import from {source.name} aborted: {e}")
            self.progress.log_error(run_id, str(e))
            raise

        return result

    def _run(
        self,
        events: list[RawEvent],
        source: "Source",
        context: RunContext,
        result: ImportRunResult,
    ) -> None:
        run_id = context.run_id

        # Deduplication
        dedup = self.deduplicator.deduplicate(events, source.name)
        unique = dedup.unique_events
        result.duplicates_skipped = len(events) - len(unique)
        self.progress.log_deduplicating(run_id, len(unique), result.duplicates_skipped, len(events))
        logger.info(
            f"{len(unique)} unique events "
            f"({dedup.internal_duplicates} in-batch, {dedup.store_duplicates} already stored)"
        )

        # Categorization
        self.progress.log_categorizing(run_id, len(unique))
        categories = self._categorize(unique, source, context)

        # Quality and organizers
        self.progress.log_matching_organizers(run_id, len(unique))
        scored = [
            ScoredEvent(
                event=event,
                category=categories[event.normalized_name],
                assessment=self.quality_assessor.assess(event, source.organizer_id),
                organizer_id=self._resolve_organizer(event, source, context),
            )
            for event in unique
        ]

        # Persistence
        for item in scored:
            if self._import_one(item, result):
                result.events_imported += 1
                if result.events_imported % self.import_progress_interval == 0:
                    self.progress.log_importing(
                        run_id, result.events_imported, len(scored), context.estimator
                    )

        result.statistics = compute_statistics([item.assessment for item in scored])
        stats = result.statistics
        logger.info(
            f"Import from {source.name} finished: {result.events_imported} imported, "
            f"{result.duplicates_skipped} duplicates, {len(result.errors)} errors | "
            f"published={stats['published']} pending={stats['pending_approval']} "
            f"draft={stats['draft']} avg_score={stats['avg_score']}"
        )

        self._save_duplicate_logs(dedup.duplicate_logs)
        self.progress.log_completed(
            run_id,
            result.events_imported,
            {
                **stats,
                "events_found": result.events_found,
                "duplicates_skipped": result.duplicates_skipped,
                "errors": len(result.errors),
            },
        )

    def _categorize(
        self, events: list[RawEvent], source: "Source", context: RunContext
    ) -> dict[str, str]:
        """Return normalized name -> category for every event."""
        categories: dict[str, str] = {}
        for assignment in self.category_assigner.assign(events, context.category_cache):
            category = assignment.category
            if assignment.fallback and source.default_category:
                category = source.default_category
            categories[assignment.normalized_name] = category
        return categories

    def _resolve_organizer(self, event: RawEvent, source: "Source", context: RunContext) -> int:
        if not source.multi_organizer or event.metadata is None:
            return source.organizer_id

        match = self.organizer_matcher.match(
            event.metadata, source.organizer_id, context.organizer_name_cache
        )
        if not match.is_default:
            self.organizer_matcher.log_match(match, event.name, event.metadata)
        return match.organizer_id

    def _import_one(self, item: ScoredEvent, result: ImportRunResult) -> bool:
        """Validate, identify and persist one event. Returns True if stored."""
        event = item.event
        try:
            event.validate()
        except ValidationError as e:
            logger.warning(str(e))
            result.errors.append(str(e))
            return False

        try:
            event_id = self.identifier_generator.generate(event.name)
            self.store.insert(
                StoredEvent(
                    event_id=event_id,
                    name=event.name,
                    date_time=event.date_time,
                    location=event.location,
                    description=event.description,
                    venue_name=event.venue_name,
                    price=event.price,
                    image_url=event.image_url,
                    source_url=event.source_url,
                    category=item.category,
                    organizer_id=item.organizer_id,
                    status=item.assessment.status,
                    quality_score=item.assessment.score,
                    quality_issues=item.assessment.issues_text,
                    auto_published=item.assessment.auto_published,
                )
            )
        except InfrastructureError:
            raise
        except Exception as e:
            message = f"Error importing {event.name}: {e}"
            logger.error(message)
            result.errors.append(message)
            return False

        logger.debug(
            f"Imported '{event.name}' as {event_id} "
            f"[{item.category}, {item.assessment.status}, score {item.assessment.score}]"
        )
        return True

    def _save_duplicate_logs(self, entries: list) -> None:
        if not entries or self.duplicate_log_sink is None:
            return
        try:
            self.duplicate_log_sink.save(entries)
        except Exception as e:
            logger.error(f"Failed to save {len(entries)} duplicate log entries: {e}")


def compute_statistics(assessments: list[QualityAssessment]) -> dict[str, int]:
    """Status counts and rounded average score."""
    statuses = [a.status for a in assessments]
    avg_score = round(sum(a.score for a in assessments) / len(assessments)) if assessments else 0
    return {
        "published": statuses.count(STATUS_PUBLISHED),
        "pending_approval": statuses.count(STATUS_PENDING),
        "draft": statuses.count(STATUS_DRAFT),
        "avg_score": avg_score,
    }
