"""Public event identifier (slug) generation."""

from collections.abc import Iterable
from typing import Protocol

from slugify import slugify

from ..logger import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_LENGTH = 80
FALLBACK_IDENTIFIER = "event"


class IdentifierLookup(Protocol):
    def exists_by_identifier(self, event_id: str) -> bool: ...


def generate_base_identifier(
    name: str,
    max_length: int = DEFAULT_MAX_LENGTH,
    strip_prefixes: Iterable[str] = (),
) -> str:
    """
    Turn an event name into a URL-safe ASCII slug.

    Diacritics are transliterated ("Julmarknad på Torget" ->
    "julmarknad-pa-torget"), configured prefixes are removed and the
    result is cut to ``max_length`` without a trailing hyphen.
    """
    slug = slugify(name or "")

    for prefix in strip_prefixes:
        prefix_slug = slugify(prefix)
        if prefix_slug and slug.startswith(f"{prefix_slug}-"):
            slug = slug[len(prefix_slug) + 1 :]
            break

    slug = slug[:max_length].strip("-")
    return slug or FALLBACK_IDENTIFIER


class IdentifierGenerator:
    """Generates identifiers that are unique within the event store."""

    def __init__(
        self,
        lookup: IdentifierLookup,
        max_length: int = DEFAULT_MAX_LENGTH,
        strip_prefixes: Iterable[str] = (),
    ):
        self.lookup = lookup
        self.max_length = max_length
        self.strip_prefixes = tuple(strip_prefixes)

    def generate(self, name: str) -> str:
        """Return ``base``, or ``base-1``, ``base-2``... whichever is free."""
        base = generate_base_identifier(name, self.max_length, self.strip_prefixes)
        candidate = base
        counter = 1
        while self.lookup.exists_by_identifier(candidate):
            candidate = f"{base}-{counter}"
            counter += 1
        if candidate != base:
            logger.debug(f"Identifier '{base}' taken, using '{candidate}'")
        return candidate
