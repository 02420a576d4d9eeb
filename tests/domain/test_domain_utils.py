"""
Tests for the pure domain helpers: ISBNs, slugs, categories, dimensions,
cover quality and URL normalization.
"""

import pytest

from bookmeta.domain.utils import categories, covers, dimensions, isbn, slugs
from bookmeta.domain.utils.urls import normalize_to_https


# =============================================================================
# ISBN
# =============================================================================


class TestIsbnSanitize:
    """Tests for ISBN sanitization."""

    def test_hyphens_and_spaces_removed(self):
        """Formatted and bare ISBNs sanitize to the same string."""
        assert isbn.sanitize("978-0-545-01022-1") == "9780545010221"
        assert isbn.sanitize("978 0 545 01022 1") == "9780545010221"
        assert isbn.sanitize("9780545010221") == "9780545010221"

    def test_lowercase_check_digit_is_uppercased(self):
        assert isbn.sanitize("0-8044-2957-x") == "080442957X"

    def test_x_only_kept_as_check_digit(self):
        assert isbn.sanitize("08X0442957") == "080442957"

    def test_blank_and_none_become_none(self):
        assert isbn.sanitize(None) is None
        assert isbn.sanitize("") is None
        assert isbn.sanitize(" - ") is None

    def test_sanitize_isbn13_rejects_wrong_length(self):
        assert isbn.sanitize_isbn13("978-0-545-01022-1") == "9780545010221"
        assert isbn.sanitize_isbn13("0545010225") is None

    def test_sanitize_isbn10_accepts_x_check_digit(self):
        assert isbn.sanitize_isbn10("080442957X") == "080442957X"
        assert isbn.sanitize_isbn10("9780545010221") is None

    def test_work_prefix_is_first_eleven_digits(self):
        assert isbn.work_prefix("978-0-545-01022-1") == "97805450102"
        assert isbn.work_prefix("0545010225") is None
        assert isbn.work_prefix(None) is None


# =============================================================================
# Slugs
# =============================================================================


class TestSlugs:
    """Tests for slug generation."""

    def test_slugify_folds_accents_and_ampersand(self):
        assert slugs.slugify("Cien Años de Soledad") == "cien-anos-de-soledad"
        assert slugs.slugify("Harry Potter & the Philosopher's Stone") == "harry-potter-and-the-philosophers-stone"

    def test_book_slug_appends_first_author(self):
        slug = slugs.generate_book_slug("Dune", ["Frank Herbert", "Brian Herbert"])
        assert slug == "dune-frank-herbert"

    def test_book_slug_none_for_symbol_only_title(self):
        assert slugs.generate_book_slug("!!!", ["Someone"]) is None

    def test_long_title_truncated_at_word_boundary(self):
        title = " ".join(["word"] * 30)
        slug = slugs.generate_book_slug(title)

        assert len(slug) <= slugs.MAX_TITLE_LENGTH
        assert not slug.endswith("-")
        assert slugs.is_valid_slug(slug)

    def test_make_unique_appends_counter(self):
        assert slugs.make_unique("dune-frank-herbert", 2) == "dune-frank-herbert-2"

    @pytest.mark.parametrize(
        "value,expected",
        [("dune-frank-herbert", True), ("Dune", False), ("dune--herbert", False), ("", False)],
    )
    def test_is_valid_slug(self, value, expected):
        assert slugs.is_valid_slug(value) is expected


# =============================================================================
# Categories
# =============================================================================


class TestCategories:
    """Tests for category normalization and deduplication."""

    def test_compound_categories_split_and_deduplicated(self):
        result = categories.normalize_and_deduplicate(
            ["Fiction / Science Fiction", "fiction", "Science  Fiction"]
        )
        assert result == ["Fiction", "Science Fiction"]

    def test_classification_codes_dropped(self):
        result = categories.normalize_and_deduplicate(["823.7", "700=aacr2", "89.70 relations", "History"])
        assert result == ["History"]

    def test_empty_input(self):
        assert categories.normalize_and_deduplicate(None) == []
        assert categories.normalize_and_deduplicate(["", "   "]) == []

    def test_normalize_for_database(self):
        assert categories.normalize_for_database("Science Fiction & Fantasy") == "science-fiction-fantasy"
        assert categories.normalize_for_database("   ") == ""


# =============================================================================
# Dimensions
# =============================================================================


class TestDimensions:
    """Tests for free-text dimension parsing."""

    @pytest.mark.parametrize(
        "text,expected",
        [("24.00 cm", 24.0), ("240 mm", 24.0), ("10 inches", 25.4), ("15", 15.0)],
    )
    def test_units_converted_to_centimeters(self, text, expected):
        assert dimensions.parse_to_centimeters(text) == pytest.approx(expected)

    def test_unparseable_values_are_none(self):
        assert dimensions.parse_to_centimeters("unknown") is None
        assert dimensions.parse_to_centimeters("  ") is None

    def test_parse_all_reports_any_dimension(self):
        parsed = dimensions.parse_all("24 cm", None, "garbage")

        assert parsed.height == pytest.approx(24.0)
        assert parsed.thickness is None
        assert parsed.has_any_dimension()
        assert not dimensions.parse_all(None, "n/a", "").has_any_dimension()


# =============================================================================
# Covers
# =============================================================================


class TestCoverQuality:
    """Tests for cover ranking and the replace-only-if-better rule."""

    def test_placeholder_and_null_urls_not_renderable(self):
        assert not covers.is_renderable("null")
        assert not covers.is_renderable("https://x.test/placeholder-book-cover.png")
        assert covers.is_renderable("https://books.google.com/cover.jpg")

    def test_rank_tiers(self):
        assert covers.rank_url(None) == 0
        assert covers.rank_url("https://books.google.com/a.jpg", 128, 192) == 2
        assert covers.rank_url("https://books.google.com/a.jpg", 200, 300) == 3
        assert covers.rank_url("https://books.google.com/a.jpg", 600, 900) == 4
        assert covers.rank_url("https://cdn.example.com/a.jpg", 600, 900) == 5

    def test_wide_image_rejected_by_aspect_ratio(self):
        assert covers.rank_url("https://books.google.com/banner.jpg", 900, 300) == 0

    def test_strictly_better_requires_improvement(self):
        large = covers.CoverQualitySnapshot.of("https://books.google.com/l.jpg", 600, 900, True)
        same = covers.CoverQualitySnapshot.of("https://books.google.com/l2.jpg", 600, 900, True)
        thumb = covers.CoverQualitySnapshot.of("https://books.google.com/t.jpg", 128, 192, False)

        assert large.is_strictly_better_than(thumb)
        assert not thumb.is_strictly_better_than(large)
        assert not same.is_strictly_better_than(large)
        assert thumb.is_strictly_better_than(None)

    def test_incoming_quality_uses_best_size_estimate(self):
        quality = covers.incoming_quality(
            {"thumbnail": "https://books.google.com/t.jpg", "large": "https://books.google.com/l.jpg"}
        )
        assert quality.score == 4
        assert quality.pixel_area == 600 * 900

    def test_preferred_image_follows_size_priority(self):
        links = {
            "smallThumbnail": "https://x.test/s.jpg",
            "large": "https://x.test/l.jpg",
            "thumbnail": "null",
        }
        assert covers.select_preferred_image_url(links) == "https://x.test/l.jpg"
        assert covers.select_preferred_image_url({}) is None


class TestNormalizeToHttps:
    def test_upgrades_http_and_protocol_relative(self):
        assert normalize_to_https("http://books.google.com/x") == "https://books.google.com/x"
        assert normalize_to_https("//covers.test/x") == "https://covers.test/x"
        assert normalize_to_https("https://a.test") == "https://a.test"
        assert normalize_to_https("  ") is None
