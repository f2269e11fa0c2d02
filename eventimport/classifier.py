"""Category assignment: text classifiers and the run-scoped category cache."""

import json
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from .logger import get_logger
from .models.event import RawEvent
from .utils.http import ApiError

if TYPE_CHECKING:
    from .utils.http import ApiClient, RateLimiter

logger = get_logger(__name__)

# Closed set of category labels
CATEGORIES = (
    "Scen",
    "Nattliv",
    "Sport",
    "Utställningar",
    "Konst",
    "Föreläsningar",
    "Barn & Familj",
    "Mat & Dryck",
    "Jul",
    "Film & bio",
    "Djur & Natur",
    "Guidade visningar",
    "Marknader",
    "Okategoriserad",
)

DEFAULT_CATEGORY = "Okategoriserad"

CLASSIFIER_RATE_KEY = "classifier"


class ClassifierError(Exception):
    """Raised when a text classifier cannot produce a valid label."""


class TextClassifier(Protocol):
    def classify(self, name: str, description: str, venue: str) -> str: ...


@dataclass
class ClassificationResult:
    """Scored keyword classification."""

    category: str
    confidence: float
    reason: str


class KeywordCategoryClassifier:
    """
    Offline classifier using Swedish keyword and venue hints.

    Signals, strongest first:
    1. Venue hints (+3.0)
    2. Keywords in the event name (+2.0 each)
    3. Keywords in the description (+1.0 each, if not already in the name)
    """

    CATEGORY_KEYWORDS: dict[str, list[str]] = {
        "Scen": [
            "teater",
            "musikal",
            "standup",
            "stand-up",
            "komedi",
            "föreställning",
            "konsert",
            "livemusik",
            "opera",
            "revy",
            "dans",
            "balett",
            "kör",
            "orkester",
        ],
        "Nattliv": ["klubb", "nattklubb", "dj", "fest", "party", "disco"],
        "Sport": [
            "match",
            "fotboll",
            "handboll",
            "innebandy",
            "löpning",
            "lopp",
            "träning",
            "turnering",
            "cup",
            "padel",
            "simning",
        ],
        "Utställningar": ["utställning", "vernissage", "galleri", "konsthall", "museum"],
        "Konst": ["konst", "konsthantverk", "måleri", "skulptur", "keramik", "installation"],
        "Föreläsningar": [
            "föreläsning",
            "föredrag",
            "seminarium",
            "workshop",
            "kurs",
            "samtal",
            "talk",
        ],
        "Barn & Familj": [
            "barn",
            "familj",
            "sagostund",
            "barnteater",
            "lekland",
            "sportlov",
            "höstlov",
        ],
        "Mat & Dryck": [
            "mat",
            "middag",
            "vinprovning",
            "ölprovning",
            "provning",
            "brunch",
            "afterwork",
            "restaurang",
        ],
        "Jul": ["jul", "lucia", "advent", "tomte", "julmarknad", "julkonsert"],
        "Film & bio": ["film", "bio", "biograf", "filmvisning", "filmfestival"],
        "Djur & Natur": ["natur", "vandring", "fågel", "djur", "djurpark", "skog"],
        "Guidade visningar": ["guidad", "guidning", "visning", "stadsvandring", "rundtur"],
        "Marknader": ["marknad", "loppis", "loppmarknad", "antikmarknad", "bondens"],
    }

    VENUE_CATEGORIES: dict[str, str | None] = {
        "teater": "Scen",
        "komedianten": "Scen",
        "arena": "Scen",
        "societén": "Nattliv",
        "bio": "Film & bio",
        "konsthall": "Utställningar",
        "museum": "Utställningar",
        "fästning": "Guidade visningar",
        # Multi-purpose venues (no hint)
        "stadsparken": None,
        "torget": None,
    }

    def __init__(
        self,
        keyword_mappings: dict[str, list[str]] | None = None,
        venue_mappings: dict[str, str | None] | None = None,
        default_category: str = DEFAULT_CATEGORY,
    ):
        self.keyword_mappings = {k: list(v) for k, v in self.CATEGORY_KEYWORDS.items()}
        for category, keywords in (keyword_mappings or {}).items():
            self.keyword_mappings.setdefault(category, []).extend(keywords)

        self.venue_mappings = {**self.VENUE_CATEGORIES, **(venue_mappings or {})}
        self.default_category = default_category

    def classify(self, name: str, description: str = "", venue: str = "") -> str:
        return self.score(name, description, venue).category

    def score(self, name: str, description: str = "", venue: str = "") -> ClassificationResult:
        scores: dict[str, float] = dict.fromkeys(self.keyword_mappings, 0.0)

        name_words = self._normalize(name)
        desc_words = self._normalize(description)
        venue_norm = " ".join(self._normalize(venue))

        venue_match = None
        for venue_key, category in self.venue_mappings.items():
            if venue_key in venue_norm:
                if category:
                    scores[category] += 3.0
                    venue_match = venue_key
                break

        for category, keywords in self.keyword_mappings.items():
            for keyword in keywords:
                in_name = self._match_weight(name_words, keyword)
                if in_name:
                    scores[category] += 2.0 * in_name
                else:
                    scores[category] += self._match_weight(desc_words, keyword)

        ranked = sorted(scores.items(), key=lambda x: x[1], reverse=True)
        best_category, best_score = ranked[0]

        if best_score == 0:
            return ClassificationResult(
                category=self.default_category,
                confidence=0.3,
                reason="No category keywords matched, using default",
            )

        total = sum(scores.values())
        confidence = min(best_score / total, 0.95)
        reason = f"Matched venue '{venue_match}'" if venue_match else "Matched keywords"
        logger.debug(f"Keyword classification: '{name[:40]}' -> {best_category} ({confidence:.2f})")

        return ClassificationResult(
            category=best_category,
            confidence=confidence,
            reason=reason,
        )

    def _normalize(self, text: str) -> list[str]:
        if not text:
            return []
        return re.sub(r"[^\w\s&-]", " ", text.lower()).split()

    def _match_weight(self, words: list[str], keyword: str) -> float:
        """
        1.0 for a whole-word match, 0.5 when a keyword of 4+ letters only
        matches as a compound prefix ("lopp" in "loppis"), else 0.0.
        """
        if " " in keyword:
            return 1.0 if keyword in " ".join(words) else 0.0
        if keyword in words:
            return 1.0
        if len(keyword) >= 4 and any(word.startswith(keyword) for word in words):
            return 0.5
        return 0.0


class OpenAICategoryClassifier:
    """Classifies events with a chat-completion model returning JSON."""

    SYSTEM_PROMPT = (
        "Du är en expert på att kategorisera svenska evenemang. "
        "Välj den kategori som passar bäst. "
        "Svara ENDAST med JSON i formatet {\"category\": \"<kategori>\"}."
    )

    def __init__(
        self,
        api_client: "ApiClient",
        model: str = "gpt-4o-mini",
        categories: tuple[str, ...] = CATEGORIES,
        temperature: float = 0.2,
    ):
        self.api_client = api_client
        self.model = model
        self.categories = categories
        self.temperature = temperature

    def classify(self, name: str, description: str, venue: str) -> str:
        """
        Raises:
            ClassifierError: On API failure or an answer outside the set
        """
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.SYSTEM_PROMPT},
                {"role": "user", "content": self.build_prompt(name, description, venue)},
            ],
            "temperature": self.temperature,
            "max_tokens": 60,
            "response_format": {"type": "json_object"},
        }
        try:
            response = self.api_client.post_json("chat/completions", payload)
            content = response["choices"][0]["message"]["content"]
        except ApiError as e:
            raise ClassifierError(f"Classification request failed: {e}") from e
        except (KeyError, IndexError, TypeError) as e:
            raise ClassifierError(f"Unexpected classifier response: {e}") from e

        return self.parse_response(content)

    def parse_response(self, content: str | None) -> str:
        if not content:
            raise ClassifierError("Empty classifier response")
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as e:
            raise ClassifierError(f"Classifier returned invalid JSON: {content[:100]}") from e

        label = parsed.get("category") if isinstance(parsed, dict) else None
        if label is None and isinstance(parsed, dict) and parsed.get("categories"):
            label = parsed["categories"][0]
        if label not in self.categories:
            raise ClassifierError(f"Label outside category set: {label!r}")
        return label

    def build_prompt(self, name: str, description: str, venue: str) -> str:
        labels = "\n".join(f"- {c}" for c in self.categories if c != DEFAULT_CATEGORY)
        return (
            "Kategorisera detta svenska evenemang.\n\n"
            f"Titel: {name}\n"
            f"Plats: {venue}\n"
            f"Beskrivning: {(description or '')[:300]}\n\n"
            "Tillgängliga kategorier (använd EXAKT dessa namn):\n"
            f"{labels}\n\n"
            "Konserter och musikföreställningar är Scen, inte Nattliv."
        )


class CategoryCache:
    """Normalized event name -> category label, valid for one run."""

    def __init__(self):
        self._labels: dict[str, str] = {}

    def get(self, normalized_name: str) -> str | None:
        return self._labels.get(normalized_name)

    def set(self, normalized_name: str, category: str) -> None:
        self._labels[normalized_name] = category


@dataclass
class CategoryAssignment:
    """Label chosen for a group of same-named events."""

    normalized_name: str
    category: str
    events: list[RawEvent]
    from_cache: bool = False
    fallback: bool = False


class CategoryAssigner:
    """
    Assigns one category per group of same-named events.

    Each distinct normalized name costs at most one classifier call per
    cache; the rate limiter is consulted only before such calls.
    """

    def __init__(
        self,
        classifier: TextClassifier,
        rate_limiter: "RateLimiter",
        default_category: str = DEFAULT_CATEGORY,
        categories: tuple[str, ...] = CATEGORIES,
    ):
        self.classifier = classifier
        self.rate_limiter = rate_limiter
        self.default_category = default_category
        self.categories = categories

    def assign(self, events: list[RawEvent], cache: CategoryCache) -> list[CategoryAssignment]:
        groups = group_by_name(events)
        logger.info(f"{len(events)} events grouped into {len(groups)} distinct names")

        assignments = []
        for normalized_name, group in groups.items():
            assignments.append(self._assign_group(normalized_name, group, cache))
        return assignments

    def _assign_group(
        self, normalized_name: str, group: list[RawEvent], cache: CategoryCache
    ) -> CategoryAssignment:
        cached = cache.get(normalized_name)
        if cached is not None:
            logger.debug(f"Cached category for '{group[0].name}': {cached} ({len(group)} occasions)")
            return CategoryAssignment(normalized_name, cached, group, from_cache=True)

        first = group[0]
        self.rate_limiter.wait(CLASSIFIER_RATE_KEY)
        fallback = False
        try:
            category = self.classifier.classify(
                first.name, first.description or "", first.venue_or_location
            )
            if category not in self.categories:
                raise ClassifierError(f"Label outside category set: {category!r}")
        except Exception as e:
            logger.warning(
                f"Classification failed for '{first.name}', using '{self.default_category}': {e}"
            )
            category = self.default_category
            fallback = True

        cache.set(normalized_name, category)
        logger.info(f"Categorized '{first.name}': {category} ({len(group)} occasions)")
        return CategoryAssignment(normalized_name, category, group, fallback=fallback)


def group_by_name(events: list[RawEvent]) -> dict[str, list[RawEvent]]:
    """Group events by normalized name, keeping first-seen order."""
    groups: dict[str, list[RawEvent]] = {}
    for event in events:
        groups.setdefault(event.normalized_name, []).append(event)
    return groups
