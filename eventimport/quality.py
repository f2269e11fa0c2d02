"""Event quality scoring and publication status decision."""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

from .logger import get_logger
from .models.event import (
    STATUS_DRAFT,
    STATUS_PENDING,
    STATUS_PUBLISHED,
    QualityAssessment,
    RawEvent,
    parse_event_datetime,
)
from .utils.http import ApiError

if TYPE_CHECKING:
    from .utils.http import ApiClient

logger = get_logger(__name__)

# Score thresholds
PUBLISH_THRESHOLD = 80
REVIEW_THRESHOLD = 50

# Penalties
PENALTY_NAME = 30
PENALTY_DESCRIPTION_MISSING = 30
PENALTY_DESCRIPTION_SHORT = 20
PENALTY_DATE_MISSING = 30
PENALTY_DATE_PAST = 15
PENALTY_IMAGE = 25
PENALTY_VENUE = 10
PENALTY_UNSAFE = 50

MIN_NAME_LENGTH = 5
MIN_DESCRIPTION_LENGTH = 50
MIN_VENUE_LENGTH = 3

# Moderation category -> issue text, in reporting order
MODERATION_ISSUES: dict[str, str] = {
    "hate": "Potentiellt hatiskt innehåll",
    "hate/threatening": "Potentiellt hotfullt innehåll",
    "harassment": "Potentiell trakassering",
    "sexual": "Olämpligt sexuellt innehåll",
    "violence": "Våldsamt innehåll",
    "self-harm": "Innehåll om självskadande beteende",
}


class ContentSafetyCheckFailure(Exception):
    """Raised when the content-safety service cannot give an answer."""


@dataclass(frozen=True)
class ModerationResult:
    flagged: bool
    categories: frozenset[str] = field(default_factory=frozenset)


class ContentModerator(Protocol):
    def moderate(self, text: str) -> ModerationResult: ...


@dataclass(frozen=True)
class TrustedOrganizerPolicy:
    """Organizers whose events may be published without review."""

    organizer_ids: frozenset[int] = field(default_factory=frozenset)

    @classmethod
    def of(cls, ids: Iterable[int]) -> "TrustedOrganizerPolicy":
        return cls(frozenset(int(i) for i in ids))

    def is_trusted(self, organizer_id: int | None) -> bool:
        return organizer_id in self.organizer_ids


class OpenAIModerator:
    """Content-safety check backed by the moderation endpoint."""

    def __init__(self, api_client: "ApiClient", model: str = "omni-moderation-latest"):
        self.api_client = api_client
        self.model = model

    def moderate(self, text: str) -> ModerationResult:
        try:
            response = self.api_client.post_json(
                "moderations", {"model": self.model, "input": text}
            )
            result = response["results"][0]
        except ApiError as e:
            raise ContentSafetyCheckFailure(str(e)) from e
        except (KeyError, IndexError, TypeError) as e:
            raise ContentSafetyCheckFailure(f"Unexpected moderation response: {e}") from e

        categories = frozenset(
            name for name, hit in (result.get("categories") or {}).items() if hit
        )
        return ModerationResult(flagged=bool(result.get("flagged")), categories=categories)


class QualityAssessor:
    """
    Scores an event from 100 downwards and decides its publication status.

    The score is not clamped and can go negative. Content flagged by the
    moderator costs 50 points and blocks auto-publishing; a moderator that
    fails is treated as having found nothing.
    """

    def __init__(
        self,
        moderator: ContentModerator | None = None,
        trusted_policy: TrustedOrganizerPolicy | None = None,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        """
        Args:
            moderator: Content-safety service; None skips the check
            trusted_policy: Organizers eligible for auto-publishing
            now: Clock used for the past-date check
        """
        self.moderator = moderator
        self.trusted_policy = trusted_policy or TrustedOrganizerPolicy()
        self.now = now

    def assess(self, event: RawEvent, organizer_id: int | None) -> QualityAssessment:
        score = 100
        issues: list[str] = []

        if not event.name or len(event.name) < MIN_NAME_LENGTH:
            score -= PENALTY_NAME
            issues.append("Titel för kort eller saknas")

        if not event.description:
            score -= PENALTY_DESCRIPTION_MISSING
            issues.append("Beskrivning saknas")
        elif len(event.description) < MIN_DESCRIPTION_LENGTH:
            score -= PENALTY_DESCRIPTION_SHORT
            issues.append(f"Beskrivning för kort (minst {MIN_DESCRIPTION_LENGTH} tecken)")

        event_dt = parse_event_datetime(event.date_time)
        if event_dt is None:
            score -= PENALTY_DATE_MISSING
            issues.append("Datum saknas")
        elif event_dt < self.now():
            score -= PENALTY_DATE_PAST
            issues.append("Eventet är i det förflutna")

        if not event.image_url:
            score -= PENALTY_IMAGE
            issues.append("Bild saknas")

        if not event.venue_name or len(event.venue_name) < MIN_VENUE_LENGTH:
            score -= PENALTY_VENUE
            issues.append("Plats saknas eller för kort")

        safe, safety_issues = self.check_content_safety(event)
        if not safe:
            score -= PENALTY_UNSAFE
            issues.extend(safety_issues)

        if score >= PUBLISH_THRESHOLD and safe and self.trusted_policy.is_trusted(organizer_id):
            status, auto_published = STATUS_PUBLISHED, True
        elif score >= REVIEW_THRESHOLD:
            status, auto_published = STATUS_PENDING, False
        else:
            status, auto_published = STATUS_DRAFT, False

        return QualityAssessment(
            status=status, score=score, issues=issues, auto_published=auto_published
        )

    def check_content_safety(self, event: RawEvent) -> tuple[bool, list[str]]:
        """Return (safe, issues). Fails open."""
        if self.moderator is None:
            return True, []

        text = f"{event.name or ''}\n\n{event.description or ''}"
        try:
            result = self.moderator.moderate(text)
        except ContentSafetyCheckFailure as e:
            logger.warning(f"Content check failed for '{event.name}', treating as safe: {e}")
            return True, []

        if not result.flagged:
            return True, []

        issues = [
            message for category, message in MODERATION_ISSUES.items()
            if category in result.categories
        ]
        logger.info(f"Content flagged for '{event.name}': {sorted(result.categories)}")
        return False, issues
