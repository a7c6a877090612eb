"""Tests for canonical name selection."""

import pytest

from partnermap.services.canonical import choose_canonical, resolve_canonical


class TestChooseCanonical:
    """Tests for picking the display name."""

    def test_shortest_clean_name(self):
        assert choose_canonical(["ABC Corp", "abc.com", "ABC"]) == "ABC"

    def test_baseline_kept_when_no_shorter_name(self):
        assert choose_canonical(["ABC", "ABC Corp"]) == "ABC"

    def test_baseline_kept_even_if_it_has_a_dot(self):
        # the first name is never discarded, only replaced by a shorter clean one
        assert choose_canonical(["a.b", "abcd"]) == "a.b"

    def test_shorter_name_with_underscore_ignored(self):
        assert choose_canonical(["Acme Hotel", "acme_h"]) == "Acme Hotel"

    def test_equal_length_does_not_replace(self):
        assert choose_canonical(["Acme", "ACME"]) == "Acme"

    def test_empty_list(self):
        with pytest.raises(ValueError):
            choose_canonical([])


class TestResolveCanonical:
    """Tests for canonical name plus alias set."""

    def test_aliases_are_other_names(self):
        canonical, aliases = resolve_canonical(["ABC Corp", "abc.com", "ABC"])

        assert canonical == "ABC"
        assert set(aliases) == {"ABC Corp", "abc.com"}

    def test_existing_aliases_included(self):
        canonical, aliases = resolve_canonical(["Acme", "Acme Inc"], ["ACME Group"])

        assert canonical == "Acme"
        assert aliases == ["Acme Inc", "ACME Group"]

    def test_dedup_is_case_sensitive(self):
        _, aliases = resolve_canonical(["Acme", "Acme Ltd"], ["Acme Ltd", "acme ltd"])

        assert aliases == ["Acme Ltd", "acme ltd"]

    def test_canonical_never_in_aliases(self):
        canonical, aliases = resolve_canonical(["Acme Hotels", "Acme"], ["Acme"])

        assert canonical == "Acme"
        assert "Acme" not in aliases
