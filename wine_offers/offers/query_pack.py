"""Search query construction for a catalog wine."""

from __future__ import annotations

from wine_offers.core.schema import WineForMatch
from wine_offers.offers.normalizer import collapse_whitespace


def _join(*parts: str | None) -> str:
    return collapse_whitespace(" ".join(p.strip() for p in parts if p and p.strip()))


def build_query_pack(wine: WineForMatch) -> list[str]:
    """
    Build the ordered list of search strings for a wine.

    Most specific first: producer+name+vintage, producer+name,
    name+vintage, producer+vintage, name. A combination is skipped when
    any of its parts is empty, and duplicates (case-insensitive) are
    dropped keeping the first occurrence.

    Args:
        wine: Wine to search for

    Returns:
        List of non-empty, unique query strings
    """
    producer = collapse_whitespace(wine.producer_name)
    name = collapse_whitespace(wine.wine_name)
    vintage = collapse_whitespace(wine.vintage)

    combos: list[tuple[str, ...]] = [
        (producer, name, vintage),
        (producer, name),
        (name, vintage),
        (producer, vintage),
        (name,),
    ]

    seen: set[str] = set()
    queries: list[str] = []
    for combo in combos:
        if not all(combo):
            continue
        query = _join(*combo)
        key = query.lower()
        if query and key not in seen:
            seen.add(key)
            queries.append(query)
    return queries
