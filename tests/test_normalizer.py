"""Tests for the text normalizer module."""

import pytest

from wine_offers.offers.normalizer import (
    collapse_whitespace,
    extract_size,
    extract_vintage,
    normalize_for_match,
    normalize_pdp_title,
    normalize_producer,
    normalize_wine_name,
    strip_accents,
    strip_vintage,
    tokenize,
)


class TestNormalizeForMatch:
    """Tests for normalize_for_match."""

    def test_accent_and_whitespace_invariance(self) -> None:
        """Accents, case and spacing do not change the normalized form."""
        assert normalize_for_match("Château Margaux") == normalize_for_match("chateau   margaux")
        assert normalize_for_match("Château Margaux") == "chateau margaux"

    @pytest.mark.parametrize(
        "text",
        [
            "Château Margaux",
            "Puligny-Montrachet 1er Cru (2020)",
            "  Côte-Rôtie  «La Landonne» ",
            "Grüner_Veltliner / Smaragd",
            "",
            "!!!",
        ],
    )
    def test_idempotent(self, text: str) -> None:
        """Normalizing twice gives the same result as normalizing once."""
        once = normalize_for_match(text)
        assert normalize_for_match(once) == once

    def test_punctuation_becomes_space(self) -> None:
        """Hyphens, underscores and quotes separate tokens."""
        assert normalize_for_match("Puligny-Montrachet") == "puligny montrachet"
        assert normalize_for_match("Grüner_Veltliner") == "gruner veltliner"
        assert normalize_for_match("L'Ermite") == "l ermite"

    def test_empty_input(self) -> None:
        """None and empty strings normalize to an empty string."""
        assert normalize_for_match(None) == ""
        assert normalize_for_match("") == ""
        assert normalize_producer(None) == ""

    def test_strip_accents(self) -> None:
        """Combining marks are removed but base letters kept."""
        assert strip_accents("Crémant Rosé") == "Cremant Rose"
        assert strip_accents(None) == ""

    def test_collapse_whitespace(self) -> None:
        """Runs of whitespace collapse to one space."""
        assert collapse_whitespace("  a \t b\n c ") == "a b c"


class TestVintageHandling:
    """Tests for vintage stripping and extraction."""

    def test_vintage_strip_symmetry(self) -> None:
        """Parenthesized and bare years normalize identically."""
        assert normalize_wine_name("Rocalhas (2020)") == normalize_wine_name("Rocalhas 2020")
        assert normalize_wine_name("Rocalhas (2020)") == "rocalhas"

    def test_strip_vintage_keeps_other_numbers(self) -> None:
        """Only 19xx/20xx years are removed."""
        assert strip_vintage("Cuvée 1531 2019") == "Cuvée 1531"
        assert strip_vintage("Barolo ( 1998 )") == "Barolo"

    def test_extract_vintage(self) -> None:
        """The first 19xx/20xx year is returned."""
        assert extract_vintage("Domaine Leflaive Puligny-Montrachet 2020") == "2020"
        assert extract_vintage("Vintage Port 1977 bottled 2001") == "1977"
        assert extract_vintage("Non vintage Champagne") is None
        assert extract_vintage(None) is None

    def test_extract_vintage_ignores_embedded_digits(self) -> None:
        """Years inside longer numbers are not matched."""
        assert extract_vintage("Art. 120201") is None


class TestSizeExtraction:
    """Tests for bottle size extraction."""

    def test_ml_and_cl(self) -> None:
        """Sizes are lowercased and spaces removed."""
        assert extract_size("Barolo 750 ML") == "750ml"
        assert extract_size("Magnum 150cl") == "150cl"
        assert extract_size("Half bottle 37,5 cl") == "37.5cl"

    def test_units_not_converted(self) -> None:
        """75cl and 750ml are different tokens."""
        assert extract_size("75cl") != extract_size("750ml")

    def test_no_size(self) -> None:
        """Titles without a size give None."""
        assert extract_size("Chablis Premier Cru 2021") is None
        assert extract_size(None) is None


class TestPdpTitle:
    """Tests for product page title normalization."""

    def test_drops_store_suffix(self) -> None:
        """Everything after the last pipe is the store name."""
        assert normalize_pdp_title("Chablis 2021 | Vinbutiken") == "chablis 2021"
        assert normalize_pdp_title("A | B | Shop") == "a b"

    def test_pipe_only_title(self) -> None:
        """A title that is only a suffix is still normalized."""
        assert normalize_pdp_title("| Vinbutiken") == "vinbutiken"

    def test_empty(self) -> None:
        """Empty titles give an empty string."""
        assert normalize_pdp_title(None) == ""


class TestTokenize:
    """Tests for tokenize."""

    def test_tokens_are_normalized(self) -> None:
        """Tokens are lowercase, accent-free words."""
        assert tokenize("Château Puligny-Montrachet") == {"chateau", "puligny", "montrachet"}

    def test_empty(self) -> None:
        """Empty input yields no tokens."""
        assert tokenize("") == set()
        assert tokenize(None) == set()
