"""
Wine Offers Pipeline
====================

Finds catalog wines for sale on third-party shops and records the best
matching offer per (wine, shop) pair.

Pipeline Stages:
1. Query - Build search strings from the wine's name, vintage and producer
2. Search - Adapters collect candidate product pages from a shop
3. Fetch - Polite client with timeouts, retries, backoff and caching
4. Extract - Adapters parse price, currency and availability from each page
5. Match - Score the listing title against the wine and apply a threshold
6. Persist - Upsert the first accepted offer for the pair
"""

from wine_offers.offers.normalizer import normalize_for_match, normalize_pdp_title, tokenize
from wine_offers.offers.query_pack import build_query_pack
from wine_offers.offers.matcher import (
    MatchBreakdown,
    MatchEvaluation,
    MatchWeights,
    evaluate_match,
    is_above_threshold,
    score_match,
    score_match_with_breakdown,
)
from wine_offers.offers.fetcher import (
    FetchRecord,
    FetchResponse,
    PoliteFetcher,
    get_default_fetcher,
)
from wine_offers.offers.service import (
    OfferRefreshService,
    RefreshAllResult,
    RefreshResult,
    RefreshWineResult,
)
from wine_offers.offers.diagnostics import DiagnosticOutput, run_diagnostic
from wine_offers.offers.detect import PlatformDetection, detect_platform

__all__ = [
    "normalize_for_match",
    "normalize_pdp_title",
    "tokenize",
    "build_query_pack",
    "MatchBreakdown",
    "MatchEvaluation",
    "MatchWeights",
    "evaluate_match",
    "is_above_threshold",
    "score_match",
    "score_match_with_breakdown",
    "FetchRecord",
    "FetchResponse",
    "PoliteFetcher",
    "get_default_fetcher",
    "OfferRefreshService",
    "RefreshAllResult",
    "RefreshResult",
    "RefreshWineResult",
    "DiagnosticOutput",
    "run_diagnostic",
    "PlatformDetection",
    "detect_platform",
]
