"""Tests for the shared validation module."""

from __future__ import annotations

from datetime import date

import pytest

from etraxis.validation import clean_email, clean_text, parse_iso_date, sanitize_actor


class TestSanitizeActor:
    """sanitize_actor() pure function tests."""

    def test_valid_email(self) -> None:
        cleaned, err = sanitize_actor("alice@example.com")
        assert cleaned == "alice@example.com"
        assert err is None

    def test_strips_and_lowercases(self) -> None:
        cleaned, err = sanitize_actor("  Alice@Example.COM  ")
        assert cleaned == "alice@example.com"
        assert err is None

    def test_over_max_length(self) -> None:
        cleaned, err = sanitize_actor("a" * 255)
        assert cleaned == ""
        assert err is not None
        assert "254" in err

    def test_whitespace_only(self) -> None:
        cleaned, err = sanitize_actor("   ")
        assert cleaned == ""
        assert err is not None
        assert "empty" in err

    def test_not_a_string(self) -> None:
        cleaned, err = sanitize_actor(None)
        assert cleaned == ""
        assert err is not None
        assert "string" in err

    def test_control_char(self) -> None:
        cleaned, err = sanitize_actor("\x00bad@example.com")
        assert cleaned == ""
        assert err is not None
        assert "control" in err.lower()


class TestCleanText:
    def test_strips(self) -> None:
        assert clean_text("  Support  ", "name", 25) == "Support"

    def test_required_rejects_blank(self) -> None:
        with pytest.raises(ValueError, match="name cannot be empty"):
            clean_text("   ", "name", 25)

    def test_optional_allows_blank(self) -> None:
        assert clean_text(None, "description", 100, required=False) == ""

    def test_too_long(self) -> None:
        with pytest.raises(ValueError, match="at most 5 characters"):
            clean_text("ABCDEF", "prefix", 5)

    def test_newlines_only_when_multiline(self) -> None:
        assert clean_text("line one\nline two", "body", 100, multiline=True) == "line one\nline two"
        with pytest.raises(ValueError, match="control characters"):
            clean_text("line one\nline two", "subject", 100)

    def test_rejects_non_string(self) -> None:
        with pytest.raises(ValueError, match="must be a string"):
            clean_text(42, "name", 25)


class TestCleanEmail:
    def test_lowercases(self) -> None:
        assert clean_email("Bob@Example.com") == "bob@example.com"

    @pytest.mark.parametrize("value", ["bob", "bob@", "@example.com", "bob smith@example.com"])
    def test_rejects_malformed(self, value: str) -> None:
        with pytest.raises(ValueError):
            clean_email(value)


class TestParseIsoDate:
    def test_valid(self) -> None:
        assert parse_iso_date("2030-02-28") == date(2030, 2, 28)

    def test_wrong_format(self) -> None:
        with pytest.raises(ValueError, match="YYYY-MM-DD"):
            parse_iso_date("28/02/2030", "resume date")

    def test_impossible_day(self) -> None:
        with pytest.raises(ValueError, match="not a valid calendar date"):
            parse_iso_date("2030-02-30")
