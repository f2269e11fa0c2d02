"""Tests for the import orchestrator."""

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from eventimport.classifier import DEFAULT_CATEGORY, CategoryAssigner, ClassifierError
from eventimport.config import Source
from eventimport.deduplicator import EventDeduplicator
from eventimport.importer import EventImporter, compute_statistics
from eventimport.models.event import EventMetadata, QualityAssessment, StoredEvent
from eventimport.organizer_matcher import Organizer, OrganizerDirectory, OrganizerMatcher
from eventimport.progress import ProgressLogger
from eventimport.quality import QualityAssessor, TrustedOrganizerPolicy
from eventimport.storage import InfrastructureError
from eventimport.utils.http import RateLimiter
from eventimport.utils.identifiers import IdentifierGenerator

from conftest import FakeClock, InMemoryEventStore, ListSink, RecordingClassifier, make_event

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)

ORGANIZERS = [
    Organizer(id=5, name="Arena Varberg", venue_name="Arena Varberg"),
    Organizer(id=49, name="Societén", venue_name="Societetshuset", email="info@societen.se"),
]


class Pipeline:
    """An importer wired with in-memory collaborators."""

    def __init__(self, store=None, classifier=None, matcher=None, interval=10):
        self.store = store if store is not None else InMemoryEventStore()
        self.classifier = classifier or RecordingClassifier()
        self.clock = FakeClock()
        self.progress_sink = ListSink()
        self.duplicate_sink = ListSink()
        self.matcher = matcher or OrganizerMatcher(OrganizerDirectory(ORGANIZERS))
        self.importer = EventImporter(
            deduplicator=EventDeduplicator(self.store),
            category_assigner=CategoryAssigner(
                self.classifier,
                RateLimiter(default_delay=0.5, clock=self.clock, sleep=self.clock.sleep),
            ),
            quality_assessor=QualityAssessor(
                trusted_policy=TrustedOrganizerPolicy.of([5, 6, 7]), now=lambda: NOW
            ),
            organizer_matcher=self.matcher,
            identifier_generator=IdentifierGenerator(self.store),
            store=self.store,
            progress_logger=ProgressLogger(self.progress_sink),
            duplicate_log_sink=self.duplicate_sink,
            import_progress_interval=interval,
        )

    def run(self, events, source, run_id="run-1"):
        return self.importer.import_events(events, source, run_id=run_id)

    @property
    def steps(self):
        return [entry.step for entry in self.progress_sink.items]

    def stored(self, name):
        return next(e for e in self.store.events.values() if e.name == name)


def numbered_events(count, **overrides):
    return [
        make_event(
            name=f"Evenemang nummer {i}",
            source_url=f"https://arenavarberg.se/e/{i}",
            **overrides,
        )
        for i in range(count)
    ]


class TestImportHappyPath:
    def test_imports_all_events(self, source):
        pipeline = Pipeline()
        result = pipeline.run(numbered_events(3), source)

        assert result.success is True
        assert result.source == "Arena Varberg"
        assert result.events_found == 3
        assert result.events_imported == 3
        assert result.duplicates_skipped == 0
        assert result.errors == []
        assert len(pipeline.store.events) == 3

    def test_persisted_fields(self, source):
        pipeline = Pipeline(classifier=RecordingClassifier(default="Konst"))
        event = make_event(name="Vernissage: Ljus & Hav", price="100 kr")
        pipeline.run([event], source)

        stored = pipeline.stored("Vernissage: Ljus & Hav")
        assert stored.event_id == "vernissage-ljus-hav"
        assert stored.category == "Konst"
        assert stored.organizer_id == 5
        assert stored.status == "published"
        assert stored.quality_score == 100
        assert stored.quality_issues == ""
        assert stored.auto_published is True
        assert stored.price == "100 kr"
        assert stored.source_url == event.source_url
        assert stored.venue_name == event.venue_name

    def test_quality_issues_joined(self, source):
        pipeline = Pipeline()
        pipeline.run([make_event(name="Loppis", image_url=None, description=None)], source)
        stored = pipeline.stored("Loppis")
        assert stored.status == "draft"
        assert stored.quality_score == 45
        assert stored.quality_issues == "Beskrivning saknas; Bild saknas"

    def test_identifier_collisions(self, source):
        store = InMemoryEventStore([StoredEvent("kent", "Kent", "2020-01-01", "Arena")])
        pipeline = Pipeline(store=store)
        events = [
            make_event(name="Kent", date_time="2099-03-01T19:00:00Z", source_url="u1"),
            make_event(name="Kent", date_time="2099-03-02T19:00:00Z", source_url="u2"),
        ]
        pipeline.run(events, source)
        assert {"kent", "kent-1", "kent-2"} == set(store.events)


class TestDuplicates:
    def test_identical_events_collapse(self, source):
        pipeline = Pipeline()
        event = make_event()
        result = pipeline.run([event, event], source)
        assert result.duplicates_skipped == 1
        assert result.events_imported == 1

    def test_url_duplicate_logged(self, source):
        existing = StoredEvent(
            "kent", "Kent", "2099-03-01T19:00:00Z", "Arena", source_url="https://a.se/kent"
        )
        pipeline = Pipeline(store=InMemoryEventStore([existing]))
        result = pipeline.run([make_event(name="Kent!", source_url="https://a.se/kent")], source)

        assert result.events_imported == 0
        assert result.duplicates_skipped == 1
        [entry] = pipeline.duplicate_sink.items
        assert entry.match_type == "url"
        assert entry.similarity_score == 1.0
        assert entry.existing_event_id == "kent"

    def test_julmarknad_fuzzy_duplicate(self, aggregator_source):
        existing = StoredEvent(
            "julmarknad-varberg",
            "Julmarknad Varberg",
            "2025-12-13T10:00:00Z",
            "Stadsparken Varberg",
        )
        pipeline = Pipeline(store=InMemoryEventStore([existing]))
        event = make_event(
            name="Julmarknad i Varberg",
            date_time="2025-12-13T11:00:00Z",
            location="Stadsparken",
            venue_name=None,
            source_url="https://visitvarberg.se/e/julmarknad-2025",
        )
        result = pipeline.run([event], aggregator_source)

        assert result.events_imported == 0
        assert result.duplicates_skipped == 1
        [entry] = pipeline.duplicate_sink.items
        assert entry.match_type == "fuzzy_name"
        assert entry.source_name == "Visit Varberg"
        assert entry.similarity_score >= 0.85

    def test_duplicate_log_saved_once(self, source):
        existing = [
            StoredEvent(f"e{i}", f"E{i}", "2099-01-01", "Arena", source_url=f"https://a.se/{i}")
            for i in range(3)
        ]
        store = InMemoryEventStore(existing)
        pipeline = Pipeline(store=store)
        pipeline.importer.duplicate_log_sink = MagicMock()
        events = [make_event(name=f"E{i}", source_url=f"https://a.se/{i}") for i in range(3)]
        pipeline.run(events, source)
        pipeline.importer.duplicate_log_sink.save.assert_called_once()
        assert len(pipeline.importer.duplicate_log_sink.save.call_args.args[0]) == 3

    def test_duplicate_log_failure_not_fatal(self, source):
        existing = StoredEvent("kent", "Kent", "2099-01-01", "Arena", source_url="https://a.se/k")
        pipeline = Pipeline(store=InMemoryEventStore([existing]))
        pipeline.duplicate_sink.error = OSError("disk full")
        result = pipeline.run(
            [make_event(source_url="https://a.se/k"), *numbered_events(2)], source
        )
        assert result.success is True
        assert result.events_imported == 2
        assert pipeline.steps[-1] == "completed"


class TestCategorization:
    def test_one_classifier_call_per_name(self, source):
        pipeline = Pipeline()
        events = [
            make_event(name="Sagostund", date_time=f"2099-02-0{day}T10:00:00Z", source_url=f"u{day}")
            for day in range(1, 6)
        ]
        result = pipeline.run(events, source)
        assert result.events_imported == 5
        assert len(pipeline.classifier.calls) == 1

    def test_cache_is_run_scoped(self, source):
        pipeline = Pipeline()
        pipeline.run([make_event(name="Sagostund", source_url="u1")], source)
        pipeline.run(
            [make_event(name="Sagostund", date_time="2099-09-09T10:00:00Z", source_url="u2")],
            source,
        )
        assert len(pipeline.classifier.calls) == 2

    def test_classifier_failure_uses_default_category(self):
        classifier = RecordingClassifier()
        classifier.error = ClassifierError("rate limited")
        pipeline = Pipeline(classifier=classifier)
        source = Source(name="Test", id="test", url="https://t.se", organizer_id=5)
        events = [
            make_event(name="Kent", date_time="2099-03-01T19:00:00Z", source_url="u1"),
            make_event(name="Kent", date_time="2099-03-02T19:00:00Z", source_url="u2"),
        ]
        result = pipeline.run(events, source)

        assert result.errors == []
        assert result.events_imported == 2
        assert {e.category for e in pipeline.store.events.values()} == {DEFAULT_CATEGORY}

    def test_classifier_failure_prefers_source_default(self, source):
        classifier = RecordingClassifier()
        classifier.error = RuntimeError("unexpected")
        pipeline = Pipeline(classifier=classifier)
        pipeline.run([make_event(name="Kent")], source)
        assert pipeline.stored("Kent").category == "Scen"


class TestOrganizers:
    def test_aggregator_matches_organizer(self, aggregator_source):
        pipeline = Pipeline()
        event = make_event(name="Afterwork", metadata=EventMetadata(organizer_name="Societén"))
        pipeline.run([event], aggregator_source)
        assert pipeline.stored("Afterwork").organizer_id == 49

    def test_aggregator_without_metadata_uses_default(self, aggregator_source):
        pipeline = Pipeline()
        pipeline.run([make_event(name="Afterwork")], aggregator_source)
        assert pipeline.stored("Afterwork").organizer_id == 7

    def test_quality_uses_source_organizer(self, aggregator_source):
        # Societén (49) is not trusted, but the aggregator (7) is
        pipeline = Pipeline()
        event = make_event(name="Afterwork", metadata=EventMetadata(email="info@societen.se"))
        pipeline.run([event], aggregator_source)
        stored = pipeline.stored("Afterwork")
        assert stored.organizer_id == 49
        assert stored.status == "published"

    def test_single_organizer_source_skips_matcher(self, source):
        matcher = MagicMock()
        pipeline = Pipeline(matcher=matcher)
        event = make_event(name="Kent", metadata=EventMetadata(organizer_name="Societén"))
        pipeline.run([event], source)
        matcher.match.assert_not_called()
        assert pipeline.stored("Kent").organizer_id == 5

    def test_only_non_default_matches_logged(self, aggregator_source):
        matcher = MagicMock(wraps=OrganizerMatcher(OrganizerDirectory(ORGANIZERS)))
        pipeline = Pipeline(matcher=matcher)
        events = [
            make_event(name="Afterwork", metadata=EventMetadata(organizer_name="Societén"), source_url="u1"),
            make_event(name="Okänd", metadata=EventMetadata(organizer_name="Ingen"), source_url="u2"),
        ]
        pipeline.run(events, aggregator_source)
        assert matcher.match.call_count == 2
        assert matcher.log_match.call_count == 1


class TestFailureIsolation:
    def test_one_of_ten_persistence_failures(self, source):
        pipeline = Pipeline()
        pipeline.store.fail_on = {"Evenemang nummer 3"}
        result = pipeline.run(numbered_events(10), source)

        assert result.events_imported == 9
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Error importing Evenemang nummer 3:")
        assert result.success is True

    def test_invalid_event_recorded(self, source):
        pipeline = Pipeline()
        events = [make_event(name="Utan plats", location=""), *numbered_events(2)]
        result = pipeline.run(events, source)

        assert result.events_imported == 2
        assert len(result.errors) == 1
        assert result.errors[0].startswith(
            "Invalid event: Utan plats - missing required fields"
        )

    def test_store_lookup_failure_aborts(self, source):
        pipeline = Pipeline()
        pipeline.store.lookup_error = InfrastructureError("database unreachable")
        with pytest.raises(InfrastructureError):
            pipeline.run(numbered_events(2), source)

        assert pipeline.steps[-1] == "failed"
        assert pipeline.progress_sink.items[-1].metadata == {"error": "database unreachable"}
        assert pipeline.store.events == {}

    def test_store_insert_infrastructure_failure_aborts(self, source):
        pipeline = Pipeline()
        pipeline.store.insert = MagicMock(side_effect=InfrastructureError("volume gone"))
        with pytest.raises(InfrastructureError):
            pipeline.run(numbered_events(2), source)
        assert pipeline.steps[-1] == "failed"

    def test_telemetry_failure_never_aborts(self, source):
        pipeline = Pipeline()
        pipeline.progress_sink.error = OSError("telemetry down")
        result = pipeline.run(numbered_events(3), source)
        assert result.events_imported == 3


class TestProgressTelemetry:
    def test_step_sequence(self, source):
        pipeline = Pipeline()
        pipeline.run(numbered_events(3), source)
        assert pipeline.steps == [
            "starting",
            "scraping",
            "deduplicating",
            "categorizing",
            "matching_organizers",
            "completed",
        ]

    def test_importing_every_interval(self, source):
        pipeline = Pipeline()
        pipeline.run(numbered_events(25), source)
        importing = [e for e in pipeline.progress_sink.items if e.step == "importing"]
        assert [e.progress_current for e in importing] == [10, 20]
        assert all(e.progress_total == 25 for e in importing)
        assert all(e.estimated_time_remaining_ms is not None for e in importing)

    def test_custom_interval(self, source):
        pipeline = Pipeline(interval=2)
        pipeline.run(numbered_events(5), source)
        assert pipeline.steps.count("importing") == 2

    def test_completed_carries_statistics(self, source):
        pipeline = Pipeline()
        events = [*numbered_events(2), make_event(name="Loppis", image_url=None, description=None)]
        result = pipeline.run(events, source)

        completed = pipeline.progress_sink.items[-1]
        assert completed.step == "completed"
        assert completed.metadata["published"] == 2
        assert completed.metadata["draft"] == 1
        assert completed.metadata["events_found"] == 3
        assert result.statistics == {
            "published": 2,
            "pending_approval": 0,
            "draft": 1,
            "avg_score": 82,
        }

    def test_no_run_id_no_telemetry(self, source):
        pipeline = Pipeline()
        result = pipeline.run(numbered_events(2), source, run_id=None)
        assert result.events_imported == 2
        assert pipeline.progress_sink.items == []


class TestComputeStatistics:
    def test_empty(self):
        assert compute_statistics([]) == {
            "published": 0,
            "pending_approval": 0,
            "draft": 0,
            "avg_score": 0,
        }

    def test_negative_scores_count(self):
        stats = compute_statistics(
            [QualityAssessment("draft", -25), QualityAssessment("pending_approval", 60)]
        )
        assert stats["avg_score"] == 18
        assert stats["draft"] == 1
