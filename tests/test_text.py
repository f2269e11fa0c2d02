"""Tests for text normalization and similarity helpers."""

import pytest

from eventimport.utils.text import (
    dice_coefficient,
    event_name_similarity,
    extract_venue_keyword,
    normalize_event_name,
    normalize_venue_name,
    strip_phone,
)


class TestNormalizeEventName:
    def test_lowercases_and_strips_punctuation(self):
        assert normalize_event_name("Jazz-Kväll!") == "jazzkväll"

    def test_keeps_swedish_letters(self):
        assert normalize_event_name("Höstmarknad på Torget") == "höstmarknad torget"

    def test_removes_stop_words(self):
        assert normalize_event_name("Live: Kent presenterar") == "kent"

    def test_collapses_whitespace(self):
        assert normalize_event_name("  Stand   up  ") == "stand up"

    def test_empty(self):
        assert normalize_event_name("") == ""


class TestNormalizeVenueName:
    def test_drops_town_and_country(self):
        assert normalize_venue_name("Societén i Varberg, Sverige") == "societén"

    def test_keeps_other_words(self):
        assert normalize_venue_name("Kulturhuset Komedianten") == "kulturhuset komedianten"


class TestDiceCoefficient:
    def test_identical(self):
        assert dice_coefficient("marknad", "marknad") == 1.0

    def test_disjoint(self):
        assert dice_coefficient("abc", "xyz") == 0.0

    def test_partial_overlap(self):
        # ni ig gh ht / na ac ch ht
        assert dice_coefficient("night", "nacht") == pytest.approx(0.25)

    def test_whitespace_ignored(self):
        assert dice_coefficient("ab cd", "abcd") == 1.0

    def test_short_strings(self):
        assert dice_coefficient("a", "b") == 0.0

    def test_both_empty(self):
        assert dice_coefficient("", "") == 0.0

    def test_symmetric(self):
        a, b = "julmarknad", "julmarknaden"
        assert dice_coefficient(a, b) == dice_coefficient(b, a)


class TestEventNameSimilarity:
    def test_stop_words_do_not_matter(self):
        assert event_name_similarity("Julmarknad i Varberg", "Julmarknad Varberg") == 1.0

    def test_punctuation_does_not_matter(self):
        assert event_name_similarity("Stand-up: Kväll!", "Standup Kväll") == 1.0

    def test_different_events(self):
        assert event_name_similarity("Vinprovning", "Fotbollsmatch") < 0.3


class TestExtractVenueKeyword:
    @pytest.mark.parametrize(
        "venue,expected",
        [
            ("Arena Varberg, Getterövägen 2", "Arena"),
            ("Stadsparken", "Stadsparken"),
            ("Komedianten - Kulturhuset", "Komedianten"),
            ("  Societén Varberg", "Societén"),
            ("", ""),
            (None, ""),
            (", Varberg", ""),
        ],
    )
    def test_keyword(self, venue, expected):
        assert extract_venue_keyword(venue) == expected


class TestStripPhone:
    def test_removes_separators(self):
        assert strip_phone("0340-886 00") == "034088600"

    def test_plus_and_parentheses(self):
        assert strip_phone("+46 (0)340 88600") == "46034088600"

    def test_none(self):
        assert strip_phone(None) == ""
