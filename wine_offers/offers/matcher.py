"""
Offer Matcher Module
====================

Scores how likely a product listing found on a third-party site is the
same wine as a catalog entry, and decides whether to accept it.

The score combines a producer sub-score and a wine-name sub-score.
Vintage is extracted from both sides for display only: a listing of the
same wine in another vintage is an acceptable candidate.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Mapping

from wine_offers.core.enums import RejectReason
from wine_offers.core.schema import WineForMatch
from wine_offers.offers.adapters.base import NormalizedOffer
from wine_offers.offers.normalizer import (
    extract_size,
    extract_vintage,
    normalize_pdp_title,
    normalize_producer,
    normalize_wine_name,
    tokenize,
)

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.35
DEFAULT_PRODUCER_WEIGHT = 0.35
DEFAULT_WINE_NAME_WEIGHT = 0.45
CONTAINMENT_BOOST = 1.2


@dataclass(frozen=True)
class MatchWeights:
    """Relative weights of the producer and wine-name sub-scores."""

    producer: float = DEFAULT_PRODUCER_WEIGHT
    wine_name: float = DEFAULT_WINE_NAME_WEIGHT


@dataclass
class MatchBreakdown:
    """Per-component detail of a match score."""

    producer_score: float = 0.0
    wine_name_score: float = 0.0
    vintage_score: float = 0.0  # always 0: vintage is informational only
    vintage_our: str | None = None
    vintage_pdp: str | None = None
    size_our: str | None = None
    size_pdp: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)


@dataclass
class MatchEvaluation:
    """Score plus accept/reject decision for one listing."""

    accepted: bool
    score: float
    breakdown: MatchBreakdown
    reject_reason: RejectReason | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "accepted": self.accepted,
            "score": self.score,
            "breakdown": self.breakdown.to_dict(),
            "reject_reason": self.reject_reason.value if self.reject_reason else None,
        }


def token_similarity(a: str, b: str) -> float:
    """
    Jaccard overlap of the word tokens of two strings.

    Returns:
        |A ∩ B| / |A ∪ B|, or 0.0 if either side has no tokens
    """
    if not a or not b:
        return 0.0
    tokens_a = tokenize(a)
    tokens_b = tokenize(b)
    if not tokens_a or not tokens_b:
        return 0.0
    intersection = len(tokens_a & tokens_b)
    union = len(tokens_a | tokens_b)
    return intersection / union if union else 0.0


def containment_score(needle: str, haystack: str) -> float:
    """
    Share of the haystack covered by the needle, if the needle occurs in it.

    Returns:
        len(needle) / len(haystack) when needle is a substring, else 0.0
    """
    if not needle:
        return 0.0
    n = needle.strip().lower()
    h = haystack.strip().lower()
    if not n or not h:
        return 0.0
    if n not in h:
        return 0.0
    return min(1.0, len(n) / len(h))


def _round_score(value: float) -> float:
    """Round half-up to two decimals and clamp to [0, 1]."""
    rounded = math.floor(value * 100 + 0.5) / 100
    return max(0.0, min(1.0, rounded))


def score_match_with_breakdown(
    wine: WineForMatch,
    pdp_title: str,
    vendor: str | None = None,
    size: str | None = None,
    weights: MatchWeights | None = None,
) -> tuple[float, MatchBreakdown]:
    """
    Score a product title against a catalog wine.

    Args:
        wine: Catalog wine
        pdp_title: Raw title of the product page
        vendor: Optional vendor/producer reported by the site
        size: Optional bottle size reported by the site
        weights: Sub-score weights (defaults 0.35 / 0.45)

    Returns:
        Tuple of (score in [0, 1] rounded to 2 decimals, breakdown)
    """
    weights = weights or MatchWeights()
    pdp_title = pdp_title or ""

    producer_norm = normalize_producer(wine.producer_name)
    vendor_norm = normalize_producer(vendor)
    wine_name_norm = normalize_wine_name(wine.wine_name)
    pdp_norm = normalize_pdp_title(pdp_title)

    producer_score = 0.0
    if producer_norm or vendor_norm:
        contain = containment_score(producer_norm, pdp_norm) or containment_score(
            vendor_norm, pdp_norm
        )
        similarity = token_similarity(producer_norm, pdp_norm) or token_similarity(
            vendor_norm, pdp_norm
        )
        producer_score = max(contain, similarity)

    wine_name_score = 0.0
    if wine_name_norm:
        similarity = token_similarity(wine_name_norm, pdp_norm)
        contain = containment_score(wine_name_norm, pdp_norm)
        wine_name_score = max(similarity, contain * CONTAINMENT_BOOST)

    weight_sum = (weights.producer if (producer_norm or vendor_norm) else 0.0) + (
        weights.wine_name if wine_name_norm else 0.0
    )
    raw = (producer_score * weights.producer + wine_name_score * weights.wine_name) / (
        weight_sum or 1.0
    )

    breakdown = MatchBreakdown(
        producer_score=producer_score,
        wine_name_score=wine_name_score,
        vintage_score=0.0,
        vintage_our=wine.vintage.strip() or None,
        vintage_pdp=extract_vintage(pdp_title) or extract_vintage(pdp_norm),
        size_our=extract_size(wine.wine_name),
        size_pdp=extract_size(size) if size else extract_size(pdp_title),
    )
    return _round_score(raw), breakdown


def score_match(
    wine: WineForMatch,
    pdp_title: str,
    weights: MatchWeights | None = None,
) -> float:
    """Score a product title against a catalog wine (no vendor/size hints)."""
    score, _ = score_match_with_breakdown(wine, pdp_title, weights=weights)
    return score


def evaluate_match(
    wine: WineForMatch,
    offer: NormalizedOffer,
    threshold: float | None = None,
    weights: MatchWeights | None = None,
) -> MatchEvaluation:
    """
    Score an extracted offer and apply the reject rules.

    Rules, in order:
    1. Both sides carry a bottle size and the sizes differ -> size_mismatch
    2. Score below threshold -> below_threshold
    3. Otherwise accepted

    Args:
        wine: Catalog wine
        offer: Offer extracted from a product page
        threshold: Minimum accepted score (default 0.35)
        weights: Sub-score weights

    Returns:
        MatchEvaluation with decision and breakdown
    """
    if threshold is None:
        threshold = DEFAULT_THRESHOLD

    score, breakdown = score_match_with_breakdown(
        wine,
        offer.title_raw or "",
        vendor=offer.vendor,
        size=offer.size,
        weights=weights,
    )

    if breakdown.size_our and breakdown.size_pdp and breakdown.size_our != breakdown.size_pdp:
        return MatchEvaluation(False, score, breakdown, RejectReason.SIZE_MISMATCH)
    if score < threshold:
        return MatchEvaluation(False, score, breakdown, RejectReason.BELOW_THRESHOLD)
    return MatchEvaluation(True, score, breakdown, None)


def is_above_threshold(
    wine: WineForMatch,
    pdp_title: str,
    threshold: float = DEFAULT_THRESHOLD,
) -> bool:
    """Check whether a title scores at or above the threshold."""
    return score_match(wine, pdp_title) >= threshold


def _config_float(config: Mapping[str, Any] | None, key: str) -> float | None:
    if not config or config.get(key) is None:
        return None
    try:
        return float(config[key])
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-numeric source config {key}={config[key]!r}")
        return None


def resolve_threshold(
    explicit: float | None,
    source_config: Mapping[str, Any] | None,
    default: float = DEFAULT_THRESHOLD,
) -> float:
    """
    Pick the effective match threshold.

    Explicit override first, then the source's "matchThreshold" config,
    then the global default.
    """
    if explicit is not None:
        return explicit
    configured = _config_float(source_config, "matchThreshold")
    return configured if configured is not None else default


def resolve_weights(
    source_config: Mapping[str, Any] | None,
    default: MatchWeights | None = None,
) -> MatchWeights:
    """Apply per-source "producerWeight" / "wineNameWeight" overrides."""
    default = default or MatchWeights()
    producer = _config_float(source_config, "producerWeight")
    wine_name = _config_float(source_config, "wineNameWeight")
    return MatchWeights(
        producer=producer if producer is not None else default.producer,
        wine_name=wine_name if wine_name is not None else default.wine_name,
    )
