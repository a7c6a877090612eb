"""Tests for the similarity scorer."""

import pytest

from partnermap.services.similarity import (
    extract_domain,
    levenshtein_distance,
    name_similarity,
    normalize_name,
    similarity,
)


class TestLevenshteinDistance:
    """Tests for raw edit distance."""

    def test_identical(self):
        assert levenshtein_distance("hotel", "hotel") == 0

    def test_one_insertion(self):
        assert levenshtein_distance("hotel", "hotels") == 1

    def test_substitution(self):
        assert levenshtein_distance("kitten", "sitten") == 1

    def test_classic_example(self):
        assert levenshtein_distance("kitten", "sitting") == 3

    def test_empty(self):
        assert levenshtein_distance("", "abc") == 3
        assert levenshtein_distance("abc", "") == 3


class TestSimilarity:
    """Tests for normalized similarity."""

    @pytest.mark.parametrize("value", ["", "a", "Hotel", "Example Hotel PMS", "  x  "])
    def test_identity(self, value):
        assert similarity(value, value) == 1.0

    @pytest.mark.parametrize(
        ("a", "b"),
        [("Hotel", "Hotels"), ("Acme", "Apex"), ("SiteMinder", "Site Minder"), ("", "abc")],
    )
    def test_symmetric(self, a, b):
        assert similarity(a, b) == similarity(b, a)

    def test_case_and_whitespace_ignored(self):
        assert similarity("  HOTEL ", "hotel") == 1.0

    def test_one_edit_suffix(self):
        assert similarity("Hotel", "Hotels") > 0.7

    def test_unrelated(self):
        assert similarity("Hotel", "Airline") < 0.5

    def test_exact_value(self):
        # one edit over ten characters
        assert similarity("abcdefghij", "abcdefghiX") == pytest.approx(0.9)

    def test_bounded(self):
        assert similarity("abc", "xyz") == 0.0
        assert similarity("", "abc") == 0.0


class TestNormalizeName:
    """Tests for punctuation-insensitive normalization."""

    def test_strips_punctuation(self):
        assert normalize_name("Acme, Inc.") == "acme inc"

    def test_collapses_whitespace(self):
        assert normalize_name("  Acme   Hotel ") == "acme hotel"

    def test_empty(self):
        assert normalize_name("") == ""

    def test_name_similarity_ignores_punctuation(self):
        assert name_similarity("Acme-Hotel", "Acme Hotel") < 1.0
        assert name_similarity("Acme Hotel!", "acme hotel") == 1.0

    def test_blank_never_matches(self):
        assert name_similarity("", "") == 0.0
        assert name_similarity("...", "Acme") == 0.0


class TestExtractDomain:
    """Tests for domain extraction."""

    def test_full_url(self):
        assert extract_domain("https://www.Example-Hotel.com/contact") == "example-hotel.com"

    def test_bare_domain(self):
        assert extract_domain("example-hotel.com") == "example-hotel.com"

    def test_port_removed(self):
        assert extract_domain("http://acme.com:8080/x") == "acme.com"

    def test_empty(self):
        assert extract_domain("") is None
        assert extract_domain(None) is None
