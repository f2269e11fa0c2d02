"""Shared fixtures and in-memory fakes for pipeline tests."""

from datetime import date

import pytest

from eventimport.config import Source
from eventimport.models.event import RawEvent, StoredEvent, utc_day
from eventimport.quality import ModerationResult
from eventimport.storage import PersistenceError


class InMemoryEventStore:
    """EventStore fake that keeps events in a dict."""

    def __init__(self, events: list[StoredEvent] | None = None):
        self.events: dict[str, StoredEvent] = {}
        self.fail_on: set[str] = set()
        self.lookup_error: Exception | None = None
        for event in events or []:
            self.events[event.event_id] = event

    def find_by_url(self, url):
        if self.lookup_error:
            raise self.lookup_error
        for event in self.events.values():
            if url and event.source_url == url:
                return event
        return None

    def find_by_day_and_venue(self, day: date, keyword: str):
        if self.lookup_error:
            raise self.lookup_error
        return [
            event
            for event in self.events.values()
            if utc_day(event.date_time) == day and keyword.lower() in event.venue_field.lower()
        ]

    def exists_by_identifier(self, event_id):
        return event_id in self.events

    def insert(self, event: StoredEvent):
        if event.name in self.fail_on:
            raise PersistenceError(f"disk full while writing {event.event_id}")
        if event.event_id in self.events:
            raise PersistenceError(f"Identifier already exists: {event.event_id}")
        self.events[event.event_id] = event


class RecordingClassifier:
    """TextClassifier fake returning fixed labels and recording calls."""

    def __init__(self, labels: dict[str, str] | None = None, default: str = "Scen"):
        self.labels = labels or {}
        self.default = default
        self.calls: list[tuple[str, str, str]] = []
        self.error: Exception | None = None

    def classify(self, name, description, venue):
        self.calls.append((name, description, venue))
        if self.error:
            raise self.error
        return self.labels.get(name, self.default)


class StubModerator:
    def __init__(self, result: ModerationResult | None = None, error: Exception | None = None):
        self.result = result or ModerationResult(flagged=False)
        self.error = error
        self.texts: list[str] = []

    def moderate(self, text):
        self.texts.append(text)
        if self.error:
            raise self.error
        return self.result


class ListSink:
    """Collects progress entries or duplicate-log batches."""

    def __init__(self, error: Exception | None = None):
        self.items: list = []
        self.error = error

    def write(self, entry):
        if self.error:
            raise self.error
        self.items.append(entry)

    def save(self, entries):
        if self.error:
            raise self.error
        self.items.extend(entries)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_event(**overrides) -> RawEvent:
    """A complete, future event; override any field."""
    fields = {
        "name": "Vårkonsert med Varbergs Kammarkör",
        "date_time": "2099-04-12T19:00:00Z",
        "location": "Varbergs Kyrka, Kyrkogatan 1",
        "description": "Kören framför ett vårligt program med svensk och nordisk körmusik.",
        "venue_name": "Varbergs Kyrka",
        "image_url": "https://example.com/img/varkonsert.jpg",
        "source_url": "https://example.com/events/varkonsert",
    }
    fields.update(overrides)
    return RawEvent(**fields)


@pytest.fixture
def event_store():
    return InMemoryEventStore()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def source():
    return Source(
        name="Arena Varberg",
        id="arena-varberg",
        url="https://arenavarberg.se/evenemang-varberg/",
        organizer_id=5,
        default_category="Scen",
    )


@pytest.fixture
def aggregator_source():
    return Source(
        name="Visit Varberg",
        id="visit-varberg",
        url="https://visitvarberg.se/evenemang",
        organizer_id=7,
        default_category="Okategoriserad",
        multi_organizer=True,
    )
