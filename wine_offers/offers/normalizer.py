"""
Text Normalizer Module
======================

Pure string transforms shared by the query pack, the matcher and the
adapters. None of these functions raise; empty or missing input yields
an empty string (or None for the extractors).
"""

from __future__ import annotations

import re
import unicodedata

_YEAR_RE = re.compile(r"\b((?:19|20)\d{2})\b")
_PAREN_YEAR_RE = re.compile(r"\(\s*(?:19|20)\d{2}\s*\)")
_SIZE_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*(cl|ml)\b", re.IGNORECASE)
_NON_WORD_RE = re.compile(r"[^\w\s]|_", re.UNICODE)
_WHITESPACE_RE = re.compile(r"\s+")


def strip_accents(text: str | None) -> str:
    """Remove combining marks (é -> e, â -> a)."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def collapse_whitespace(text: str | None) -> str:
    """Collapse runs of whitespace to a single space and trim."""
    if not text:
        return ""
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_for_match(text: str | None) -> str:
    """
    Normalize a string for token comparison.

    Lowercases, strips accents, turns punctuation into spaces and
    collapses whitespace, so "Château  Margaux" == "chateau margaux".
    Applying it twice gives the same result as applying it once.

    Args:
        text: Raw string, may be None

    Returns:
        Normalized string ("" for empty input)
    """
    if not text:
        return ""
    result = strip_accents(text).lower()
    result = _NON_WORD_RE.sub(" ", result)
    return collapse_whitespace(result)


def normalize_producer(name: str | None) -> str:
    """Normalize a producer (or vendor) name."""
    return normalize_for_match(name)


def strip_vintage(text: str | None) -> str:
    """
    Remove a year from a string, parenthesized or bare.

    "Rocalhas (2020)" and "Rocalhas 2020" both become "Rocalhas".
    """
    if not text:
        return ""
    result = _PAREN_YEAR_RE.sub(" ", text)
    result = _YEAR_RE.sub(" ", result)
    return collapse_whitespace(result)


def normalize_wine_name(name: str | None) -> str:
    """Normalize a catalog wine name with any vintage removed."""
    return normalize_for_match(strip_vintage(name))


def normalize_pdp_title(title: str | None) -> str:
    """
    Normalize a product page title.

    Store names are usually appended after a pipe ("Wine 2020 | Shop"),
    so everything after the last "|" is dropped first.
    """
    if not title:
        return ""
    if "|" in title:
        head = title.rsplit("|", 1)[0]
        if head.strip():
            title = head
    return normalize_for_match(title)


def extract_vintage(text: str | None) -> str | None:
    """Extract the first 19xx/20xx year from a string."""
    if not text:
        return None
    match = _YEAR_RE.search(text)
    return match.group(1) if match else None


def extract_size(text: str | None) -> str | None:
    """
    Extract a bottle size token such as "750ml" or "75cl".

    The number and unit are returned without spaces and lowercased so
    "750 ML" and "750ml" compare equal. Units are not converted.
    """
    if not text:
        return None
    match = _SIZE_RE.search(text)
    if match is None:
        return None
    number = match.group(1).replace(",", ".")
    return f"{number}{match.group(2).lower()}"


def tokenize(text: str | None) -> set[str]:
    """Split a string into a set of normalized word tokens."""
    normalized = normalize_for_match(text)
    if not normalized:
        return set()
    return set(normalized.split(" "))
