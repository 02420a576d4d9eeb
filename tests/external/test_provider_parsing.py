"""
Tests for the lenient provider value parsers.
"""

from datetime import date

import pytest

from bookmeta.infrastructure.external.parsing import parse_published_date, text, to_bool, to_float, to_int


class TestParsePublishedDate:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("2024-06-15", date(2024, 6, 15)),
            ("2024-06-15T10:30:00Z", date(2024, 6, 15)),
            ("2024-06", date(2024, 6, 1)),
            ("2024", date(2024, 1, 1)),
            ("June 15, 2024", date(2024, 6, 15)),
            ("Jun 2024", date(2024, 6, 1)),
            ("Copyright 1965, reprinted", date(1965, 1, 1)),
        ],
    )
    def test_supported_formats(self, raw, expected):
        assert parse_published_date(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", "unknown", "2024-13-40", "0000", "printing 0000"])
    def test_unusable_values(self, raw):
        assert parse_published_date(raw) is None


class TestScalarParsers:
    def test_text(self):
        assert text("  Dune ") == "Dune"
        assert text("   ") is None
        assert text(None) is None
        assert text(1965) == "1965"

    def test_to_int(self):
        assert to_int("604") == 604
        assert to_int(604) == 604
        assert to_int("six hundred") is None
        assert to_int(True) is None

    def test_to_float(self):
        assert to_float("4.5") == 4.5
        assert to_float(None) is None
        assert to_float("n/a") is None

    def test_to_bool(self):
        assert to_bool(True) is True
        assert to_bool(False) is False
        assert to_bool("true") is None
