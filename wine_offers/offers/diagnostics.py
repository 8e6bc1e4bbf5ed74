"""
Diagnostic Runner
=================

Re-runs the search/fetch/score pipeline for one (wine, source) pair with
request recording switched on, and returns a full trace for an operator:
every HTTP exchange plus, per candidate, the fetch metadata, the
extracted offer and the match decision.

Only one diagnostic should run at a time: the recorder is process-wide.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from wine_offers.core.enums import MatchDecision, RejectReason
from wine_offers.core.schema import PriceSource, WineForMatch
from wine_offers.db.repositories import CatalogRepository, PriceSourceRepository
from wine_offers.offers.adapters import get_adapter
from wine_offers.offers.fetcher import (
    FetchRecord,
    PoliteFetcher,
    diagnostic_recording,
    get_default_fetcher,
)
from wine_offers.offers.matcher import (
    MatchBreakdown,
    MatchWeights,
    evaluate_match,
    resolve_threshold,
    resolve_weights,
)
from wine_offers.offers.service import AdapterFactory
from wine_offers.offers.settings import OffersConfig, get_default_config

logger = logging.getLogger(__name__)


@dataclass
class DiagnosticCandidate:
    """Trace of one candidate URL."""

    pdp_url: str
    fetch_status: int = 0
    fetch_byte_length: int = 0
    fetch_snippet: str = ""
    bot_block_detected: bool = False
    extracted: dict[str, Any] | None = None
    match_score: float = 0.0
    match_breakdown: MatchBreakdown = field(default_factory=MatchBreakdown)
    decision: MatchDecision = MatchDecision.REJECTED
    reject_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "pdp_url": self.pdp_url,
            "fetch_status": self.fetch_status,
            "fetch_byte_length": self.fetch_byte_length,
            "fetch_snippet": self.fetch_snippet,
            "bot_block_detected": self.bot_block_detected,
            "extracted": self.extracted,
            "match_score": self.match_score,
            "match_breakdown": self.match_breakdown.to_dict(),
            "decision": self.decision.value,
            "reject_reason": self.reject_reason,
        }


@dataclass
class DiagnosticOutput:
    """Full trace of a diagnostic run."""

    wine: WineForMatch | None = None
    source: PriceSource | None = None
    error: str | None = None
    requests: list[FetchRecord] = field(default_factory=list)
    search_request_count: int = 0
    candidate_count: int = 0
    candidates: list[DiagnosticCandidate] = field(default_factory=list)
    threshold_used: float = 0.35

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "wine": self.wine.model_dump(mode="json") if self.wine else None,
            "source": self.source.model_dump(mode="json") if self.source else None,
            "error": self.error,
            "requests": [r.to_dict() for r in self.requests],
            "search_request_count": self.search_request_count,
            "candidate_count": self.candidate_count,
            "candidates": [c.to_dict() for c in self.candidates],
            "threshold_used": self.threshold_used,
        }


def _with_fetch_record(candidate: DiagnosticCandidate, record: FetchRecord | None) -> DiagnosticCandidate:
    if record is not None:
        candidate.fetch_status = record.status
        candidate.fetch_byte_length = record.body_byte_length
        candidate.fetch_snippet = record.body_snippet
        candidate.bot_block_detected = record.bot_block_detected
    return candidate


async def run_diagnostic(
    session: Session,
    wine_id: str,
    source_id: str,
    fetcher: PoliteFetcher | None = None,
    config: OffersConfig | None = None,
    adapter_factory: AdapterFactory | None = None,
    match_threshold: float | None = None,
) -> DiagnosticOutput:
    """
    Trace the refresh pipeline for one wine against one source.

    Unlike a refresh, every candidate is evaluated (no cap, no early
    exit) and nothing is written to the database. Candidate i is
    paired with captured request (search_request_count + i); a candidate
    with no request at that position keeps zeroed fetch fields.

    Args:
        session: Database session for wine and source lookups
        wine_id: Catalog wine ID
        source_id: Price source ID
        fetcher: Fetch client (defaults to the process-wide one)
        config: Pipeline settings
        adapter_factory: Adapter lookup (defaults to the registry)
        match_threshold: Optional threshold override

    Returns:
        DiagnosticOutput; unknown IDs are reported in error, never raised
    """
    config = config or get_default_config()
    fetcher = fetcher or get_default_fetcher()
    adapter_factory = adapter_factory or get_adapter
    default_threshold = config.match.default_threshold

    with diagnostic_recording() as requests:
        wine = CatalogRepository(session).get_wine_for_match(wine_id)
        source = PriceSourceRepository(session).get_by_id(source_id)

        if wine is None:
            return DiagnosticOutput(
                source=source, error=f"Wine not found: {wine_id}", threshold_used=default_threshold
            )
        if source is None:
            return DiagnosticOutput(
                wine=wine,
                error=f"Price source not found: {source_id}",
                threshold_used=default_threshold,
            )

        threshold = resolve_threshold(match_threshold, source.config, default_threshold)
        weights = resolve_weights(
            source.config,
            MatchWeights(producer=config.match.producer_weight, wine_name=config.match.wine_name_weight),
        )

        adapter = adapter_factory(source.adapter_type, fetcher=fetcher, config=config)
        if adapter is None:
            return DiagnosticOutput(
                wine=wine,
                source=source,
                error=f"Unknown adapter type: {source.adapter_type}",
                threshold_used=threshold,
            )

        try:
            candidate_urls = await adapter.search_candidates(wine, source)
        except Exception as e:
            logger.exception(f"Diagnostic search failed for wine={wine_id} source={source.slug}")
            return DiagnosticOutput(
                wine=wine,
                source=source,
                error=f"{source.name}: {e}",
                requests=list(requests),
                search_request_count=len(requests),
                threshold_used=threshold,
            )
        search_request_count = len(requests)

        candidates: list[DiagnosticCandidate] = []
        for pdp_url in candidate_urls:
            candidate = DiagnosticCandidate(pdp_url=pdp_url)
            try:
                offer = await adapter.fetch_offer(pdp_url, source)
            except Exception as e:
                offer = None
                candidate.reject_reason = str(e) or type(e).__name__
            else:
                if offer is None:
                    candidate.reject_reason = RejectReason.NO_OFFER_EXTRACTED.value

            if offer is not None:
                evaluation = evaluate_match(wine, offer, threshold=threshold, weights=weights)
                candidate.extracted = offer.to_dict()
                candidate.match_score = evaluation.score
                candidate.match_breakdown = evaluation.breakdown
                candidate.decision = (
                    MatchDecision.ACCEPTED if evaluation.accepted else MatchDecision.REJECTED
                )
                candidate.reject_reason = (
                    evaluation.reject_reason.value if evaluation.reject_reason else None
                )
            candidates.append(candidate)

        for index, candidate in enumerate(candidates):
            position = search_request_count + index
            _with_fetch_record(candidate, requests[position] if position < len(requests) else None)

        return DiagnosticOutput(
            wine=wine,
            source=source,
            requests=list(requests),
            search_request_count=search_request_count,
            candidate_count=len(candidate_urls),
            candidates=candidates,
            threshold_used=threshold,
        )
