"""Persisted event store and append-only audit sinks."""

import json
from datetime import date
from pathlib import Path
from typing import Protocol

import frontmatter

from .logger import get_logger
from .models.event import DuplicateLogEntry, StoredEvent, parse_event_datetime, utc_day

logger = get_logger(__name__)


class PersistenceError(Exception):
    """Raised when a single event cannot be written."""


class InfrastructureError(Exception):
    """Raised when the store or a directory it depends on is unusable."""


class EventStore(Protocol):
    """Operations the pipeline needs from the persisted event catalog."""

    def find_by_url(self, url: str) -> StoredEvent | None: ...

    def find_by_day_and_venue(self, day: date, keyword: str) -> list[StoredEvent]: ...

    def exists_by_identifier(self, event_id: str) -> bool: ...

    def insert(self, event: StoredEvent) -> None: ...


class DuplicateLogSink(Protocol):
    def save(self, entries: list[DuplicateLogEntry]) -> None: ...


class MarkdownEventStore:
    """
    Event catalog kept as Markdown files with YAML front matter.

    Layout: ``<content_dir>/YYYY/MM/DD/<event_id>.md``. All files are
    indexed at start-up so lookups never touch the disk; ``insert`` writes
    the file and updates the index.
    """

    def __init__(self, content_dir: str | Path):
        """
        Args:
            content_dir: Root directory of event files (created if missing)

        Raises:
            InfrastructureError: If the directory cannot be created or read
        """
        self.content_dir = Path(content_dir)
        self._by_url: dict[str, StoredEvent] = {}
        self._by_id: dict[str, StoredEvent] = {}
        self._by_day: dict[date, list[StoredEvent]] = {}
        self._build_index()

    def _build_index(self) -> None:
        try:
            self.content_dir.mkdir(parents=True, exist_ok=True)
            md_files = sorted(self.content_dir.rglob("*.md"))
        except OSError as e:
            raise InfrastructureError(
                f"Event store unavailable at {self.content_dir}: {e}"
            ) from e

        for md_file in md_files:
            if md_file.name.startswith("_"):
                continue
            try:
                post = frontmatter.load(md_file)
                event = StoredEvent.from_front_matter(post.metadata)
            except Exception as e:
                logger.warning(f"Failed to index {md_file}: {e}")
                continue
            if not event.event_id:
                event.event_id = md_file.stem
            self._index(event)

        logger.info(
            f"Indexed {len(self._by_id)} stored events "
            f"({len(self._by_url)} URLs, {len(self._by_day)} days)"
        )

    def _index(self, event: StoredEvent) -> None:
        self._by_id[event.event_id] = event
        if event.source_url:
            self._by_url[event.source_url] = event
        day = utc_day(event.date_time)
        if day is not None:
            self._by_day.setdefault(day, []).append(event)

    def find_by_url(self, url: str) -> StoredEvent | None:
        if not url:
            return None
        return self._by_url.get(url)

    def find_by_day_and_venue(self, day: date, keyword: str) -> list[StoredEvent]:
        """Events on the given UTC day whose venue contains ``keyword``."""
        keyword = keyword.lower()
        return [
            event
            for event in self._by_day.get(day, [])
            if keyword in event.venue_field.lower()
        ]

    def exists_by_identifier(self, event_id: str) -> bool:
        return event_id in self._by_id

    def insert(self, event: StoredEvent) -> None:
        """
        Write a new event file.

        Raises:
            PersistenceError: If the identifier is taken or the write fails
        """
        if event.event_id in self._by_id:
            raise PersistenceError(f"Identifier already exists: {event.event_id}")

        path = self._path_for(event)
        post = frontmatter.Post(event.description or "", **event.to_front_matter())
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(frontmatter.dumps(post), encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"Failed to write {path}: {e}") from e

        self._index(event)
        logger.debug(f"Stored event {event.event_id} at {path}")

    def _path_for(self, event: StoredEvent) -> Path:
        dt = parse_event_datetime(event.date_time)
        if dt is None:
            return self.content_dir / "undated" / f"{event.event_id}.md"
        return (
            self.content_dir
            / f"{dt.year}"
            / f"{dt.month:02d}"
            / f"{dt.day:02d}"
            / f"{event.event_id}.md"
        )

    def get_stats(self) -> dict[str, int]:
        return {
            "total_events": len(self._by_id),
            "total_urls": len(self._by_url),
            "total_days": len(self._by_day),
        }


class JsonlDuplicateLogSink:
    """Appends duplicate-log entries to a JSON Lines file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def save(self, entries: list[DuplicateLogEntry]) -> None:
        if not entries:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            for entry in entries:
                f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")
        logger.info(f"Saved {len(entries)} duplicate log entries to {self.path}")
