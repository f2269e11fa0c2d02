"""Run progress telemetry: entries, sinks, and time-remaining estimates."""

import json
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from .logger import get_logger

logger = get_logger(__name__)

STEPS = (
    "starting",
    "scraping",
    "deduplicating",
    "categorizing",
    "matching_organizers",
    "importing",
    "completed",
    "failed",
)


@dataclass
class ProgressLogEntry:
    """One progress record for an import run."""

    run_id: str
    step: str
    message: str
    progress_current: int | None = None
    progress_total: int | None = None
    estimated_time_remaining_ms: int | None = None
    metadata: dict[str, Any] | None = None
    created_at: str = field(
        default_factory=lambda: datetime.now(UTC).isoformat().replace("+00:00", "Z")
    )

    def __post_init__(self):
        if self.step not in STEPS:
            raise ValueError(f"Unknown progress step: {self.step}")

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


class ProgressSink(Protocol):
    def write(self, entry: ProgressLogEntry) -> None: ...


class JsonlProgressSink:
    """Appends progress entries to a JSON Lines file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def write(self, entry: ProgressLogEntry) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")


class TimeEstimator:
    """Linear estimate of the time left in a run."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._started_at: float | None = None

    def start(self) -> None:
        self._started_at = self._clock()

    def estimate_remaining_ms(self, processed: int, total: int) -> int | None:
        """elapsed / processed * remaining, or None before any progress."""
        if self._started_at is None or processed <= 0 or total <= 0:
            return None
        elapsed = self._clock() - self._started_at
        remaining = max(total - processed, 0)
        return round(elapsed / processed * remaining * 1000)


class ProgressLogger:
    """
    Writes progress entries for runs that have a run id.

    Sink failures are logged and dropped; telemetry never aborts a run.
    """

    def __init__(self, sink: ProgressSink | None = None):
        self.sink = sink

    def log(
        self,
        run_id: str | None,
        step: str,
        message: str,
        current: int | None = None,
        total: int | None = None,
        metadata: dict[str, Any] | None = None,
        estimator: TimeEstimator | None = None,
    ) -> None:
        if not run_id or self.sink is None:
            return

        eta = None
        if estimator is not None and current and total:
            eta = estimator.estimate_remaining_ms(current, total)

        try:
            entry = ProgressLogEntry(
                run_id=run_id,
                step=step,
                message=message,
                progress_current=current,
                progress_total=total,
                estimated_time_remaining_ms=eta,
                metadata=metadata,
            )
            self.sink.write(entry)
        except Exception as e:
            logger.warning(f"Failed to write progress entry ({step}) for run {run_id}: {e}")

    def log_start(self, run_id: str | None, source_name: str) -> None:
        self.log(run_id, "starting", f"Startar import från {source_name}")

    def log_events_found(
        self, run_id: str | None, count: int, estimator: TimeEstimator | None = None
    ) -> None:
        self.log(
            run_id,
            "scraping",
            f"Hittade {count} evenemang",
            current=0,
            total=count,
            metadata={"events_found": count},
            estimator=estimator,
        )

    def log_deduplicating(
        self, run_id: str | None, unique: int, duplicates: int, total: int
    ) -> None:
        self.log(
            run_id,
            "deduplicating",
            f"{unique} unika evenemang, {duplicates} dubbletter",
            current=unique,
            total=total,
            metadata={"unique": unique, "duplicates": duplicates},
        )

    def log_categorizing(self, run_id: str | None, count: int) -> None:
        self.log(run_id, "categorizing", f"Kategoriserar {count} evenemang", total=count)

    def log_matching_organizers(self, run_id: str | None, count: int) -> None:
        self.log(
            run_id, "matching_organizers", f"Matchar arrangörer för {count} evenemang", total=count
        )

    def log_importing(
        self,
        run_id: str | None,
        current: int,
        total: int,
        estimator: TimeEstimator | None = None,
    ) -> None:
        self.log(
            run_id,
            "importing",
            f"Importerar {current}/{total}",
            current=current,
            total=total,
            estimator=estimator,
        )

    def log_completed(
        self, run_id: str | None, imported: int, statistics: dict[str, Any] | None = None
    ) -> None:
        self.log(
            run_id,
            "completed",
            f"Klart: {imported} evenemang importerade",
            current=imported,
            total=imported,
            metadata=statistics,
        )

    def log_error(self, run_id: str | None, error: str) -> None:
        self.log(run_id, "failed", f"Import misslyckades: {error}", metadata={"error": error})
