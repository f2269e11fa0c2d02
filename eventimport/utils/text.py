"""Text normalization and fuzzy string similarity."""

import re
from collections import Counter

# Filler words dropped before comparing event names
EVENT_NAME_STOP_WORDS = frozenset(
    {"med", "och", "i", "på", "till", "från", "live", "konsert", "show", "presenterar"}
)

# Filler words dropped before comparing venue / organizer names
VENUE_STOP_WORDS = frozenset({"i", "på", "varberg", "sweden", "sverige"})

_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_VENUE_SPLIT_RE = re.compile(r"[,\-]")


def normalize_for_matching(text: str, stop_words: frozenset[str]) -> str:
    """
    Lowercase, drop punctuation (letters such as å/ä/ö survive), collapse
    whitespace and remove the given stop words.
    """
    if not text:
        return ""
    text = _PUNCTUATION_RE.sub("", text.lower()).replace("_", "")
    return " ".join(word for word in text.split() if word not in stop_words)


def normalize_event_name(name: str) -> str:
    return normalize_for_matching(name, EVENT_NAME_STOP_WORDS)


def normalize_venue_name(name: str) -> str:
    return normalize_for_matching(name, VENUE_STOP_WORDS)


def dice_coefficient(first: str, second: str) -> float:
    """
    Sørensen-Dice similarity over character bigrams, in [0, 1].

    Whitespace is ignored. Identical strings score 1.0; strings shorter
    than two characters cannot share a bigram and score 0.0.
    """
    first = re.sub(r"\s+", "", first or "")
    second = re.sub(r"\s+", "", second or "")

    if first == second:
        return 1.0 if first else 0.0
    if len(first) < 2 or len(second) < 2:
        return 0.0

    first_bigrams = Counter(first[i : i + 2] for i in range(len(first) - 1))

    intersection = 0
    for i in range(len(second) - 1):
        bigram = second[i : i + 2]
        if first_bigrams[bigram] > 0:
            first_bigrams[bigram] -= 1
            intersection += 1

    return (2.0 * intersection) / (len(first) + len(second) - 2)


def event_name_similarity(name1: str, name2: str) -> float:
    """Similarity of two event names after stop-word normalization."""
    return dice_coefficient(normalize_event_name(name1), normalize_event_name(name2))


def extract_venue_keyword(venue: str | None) -> str:
    """
    First word of the venue before any comma or hyphen.

    "Arena Varberg, Getterövägen 2" -> "Arena"
    "Sparbankshallen Varberg" -> "Sparbankshallen"
    """
    if not venue:
        return ""
    head = _VENUE_SPLIT_RE.split(venue, maxsplit=1)[0].strip()
    words = head.split()
    return words[0] if words else ""


def strip_phone(phone: str | None) -> str:
    """Keep only the letters and digits of a phone number."""
    if not phone:
        return ""
    return re.sub(r"[^0-9A-Za-z]", "", phone)
