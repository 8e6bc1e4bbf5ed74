"""
Offer Refresh Service
=====================

Finds, scores and stores third-party offers for catalog wines.

For each (wine, active source): search candidates, fetch and score them
in order, stop at the first accepted match and upsert it. Sources are
processed concurrently for one wine; wines are processed one at a time
in a batch so that at most (active source count) crawls run at once.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wine_offers.core.schema import ExternalOffer, PriceSource, WineForMatch
from wine_offers.db.repositories import (
    CatalogRepository,
    ExternalOfferRepository,
    PriceSourceRepository,
)
from wine_offers.offers.adapters import get_adapter, reset_adapter_caches
from wine_offers.offers.adapters.base import NormalizedOffer, SourceAdapter
from wine_offers.offers.fetcher import PoliteFetcher, get_default_fetcher
from wine_offers.offers.matcher import (
    MatchEvaluation,
    MatchWeights,
    evaluate_match,
    resolve_threshold,
    resolve_weights,
)
from wine_offers.offers.settings import OffersConfig, get_default_config

logger = logging.getLogger(__name__)

AdapterFactory = Callable[..., SourceAdapter | None]


@dataclass
class RefreshResult:
    """Outcome of refreshing one wine against one source."""

    wine_id: str
    source_id: str
    source_name: str
    offers_updated: int = 0
    candidates_checked: int = 0
    best_confidence: float | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)


@dataclass
class RefreshWineResult:
    """Outcome of refreshing one wine against all (or one) active sources."""

    wine_id: str
    results: list[RefreshResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def offers_updated(self) -> int:
        return sum(r.offers_updated for r in self.results)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "wine_id": self.wine_id,
            "offers_updated": self.offers_updated,
            "results": [r.to_dict() for r in self.results],
            "errors": self.errors,
        }


@dataclass
class RefreshAllResult:
    """Outcome of a batch refresh."""

    processed: int = 0
    total_wines: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)


class OfferRefreshService:
    """
    Orchestrates offer discovery for catalog wines.

    Usage:
        with get_session() as session:
            service = OfferRefreshService(session)
            result = await service.refresh_wine(wine_id)

    Failures of one source never abort the others; they are reported as
    "<source name>: <message>" strings in the result.
    """

    def __init__(
        self,
        session: Session,
        config: OffersConfig | None = None,
        fetcher: PoliteFetcher | None = None,
        adapter_factory: AdapterFactory | None = None,
    ) -> None:
        self.session = session
        self.config = config or get_default_config()
        self.fetcher = fetcher or get_default_fetcher()
        self.adapter_factory = adapter_factory or get_adapter

        self.sources = PriceSourceRepository(session)
        self.offers = ExternalOfferRepository(session)
        self.catalog = CatalogRepository(session)

    def get_adapter(self, source: PriceSource) -> SourceAdapter:
        """Create the adapter for a source, raising ValueError for unknown types."""
        adapter = self.adapter_factory(source.adapter_type, fetcher=self.fetcher, config=self.config)
        if adapter is None:
            raise ValueError(f"Unknown adapter type: {source.adapter_type}")
        return adapter

    def threshold_for(self, source: PriceSource, explicit: float | None = None) -> float:
        """Effective match threshold for a source."""
        return resolve_threshold(explicit, source.config, self.config.match.default_threshold)

    def weights_for(self, source: PriceSource) -> MatchWeights:
        """Effective sub-score weights for a source."""
        default = MatchWeights(
            producer=self.config.match.producer_weight,
            wine_name=self.config.match.wine_name_weight,
        )
        return resolve_weights(source.config, default)

    async def refresh_wine_source(
        self,
        wine: WineForMatch,
        source: PriceSource,
        match_threshold: float | None = None,
    ) -> RefreshResult:
        """
        Refresh one wine against one source.

        Candidates are capped, evaluated in order and the first accepted
        one is stored. The source's last_crawled_at is updated whatever
        the outcome.

        Args:
            wine: Catalog wine
            source: Site to search
            match_threshold: Optional override of the source/global threshold

        Returns:
            RefreshResult; error is set if the adapter failed
        """
        threshold = self.threshold_for(source, match_threshold)
        weights = self.weights_for(source)
        result = RefreshResult(wine_id=wine.id, source_id=source.id, source_name=source.name)

        try:
            adapter = self.get_adapter(source)
            candidates = await adapter.search_candidates(wine, source)
            candidates = candidates[: self.config.refresh.max_candidates_per_source]

            best: tuple[NormalizedOffer, MatchEvaluation] | None = None
            for url in candidates:
                try:
                    offer = await adapter.fetch_offer(url, source)
                except Exception as e:
                    logger.warning(f"fetch_offer failed for {url}: {e!r}")
                    continue

                result.candidates_checked += 1
                if offer is None:
                    continue

                evaluation = evaluate_match(wine, offer, threshold=threshold, weights=weights)
                if evaluation.accepted and (best is None or evaluation.score > best[1].score):
                    best = (offer, evaluation)
                    if self.config.refresh.stop_after_first_match:
                        break

            if best is not None:
                offer, evaluation = best
                self.offers.upsert(
                    ExternalOffer(
                        wine_id=wine.id,
                        price_source_id=source.id,
                        pdp_url=offer.pdp_url,
                        price_amount=offer.price_amount,
                        currency=offer.currency,
                        available=offer.available,
                        title_raw=offer.title_raw,
                        match_confidence=evaluation.score,
                    )
                )
                result.offers_updated = 1
                result.best_confidence = evaluation.score
                logger.info(
                    f"wine={wine.id} source={source.slug} "
                    f"confidence={evaluation.score} url={offer.pdp_url}"
                )
            else:
                logger.info(
                    f"wine={wine.id} source={source.slug} no match above threshold "
                    f"(candidates={result.candidates_checked})"
                )
        except Exception as e:
            logger.exception(f"Refresh failed for wine={wine.id} source={source.slug}")
            self.session.rollback()
            result = RefreshResult(
                wine_id=wine.id,
                source_id=source.id,
                source_name=source.name,
                error=f"{source.name}: {e}",
            )
        finally:
            self._record_crawl(source)

        return result

    async def refresh_wine(
        self,
        wine_id: str,
        match_threshold: float | None = None,
        source_id: str | None = None,
    ) -> RefreshWineResult:
        """
        Refresh one wine against every active source concurrently.

        Args:
            wine_id: Catalog wine ID
            match_threshold: Optional threshold override
            source_id: Only refresh against this source

        Returns:
            RefreshWineResult with per-source results and error strings
        """
        wine = self.catalog.get_wine_for_match(wine_id)
        if wine is None:
            return RefreshWineResult(wine_id=wine_id, errors=[f"Wine not found: {wine_id}"])

        sources = self.sources.list_active()
        if source_id:
            sources = [s for s in sources if s.id == source_id]
            if not sources:
                return RefreshWineResult(
                    wine_id=wine_id,
                    errors=[f"Price source not found or inactive: {source_id}"],
                )

        results = await asyncio.gather(
            *(self.refresh_wine_source(wine, source, match_threshold) for source in sources)
        )
        return RefreshWineResult(
            wine_id=wine_id,
            results=list(results),
            errors=[r.error for r in results if r.error],
        )

    async def refresh_all_wines(
        self,
        match_threshold: float | None = None,
        batch_size: int | None = None,
        source_id: str | None = None,
    ) -> RefreshAllResult:
        """
        Refresh every catalog wine, one wine at a time.

        The fetch cache and adapter caches are cleared once before the
        batch starts.

        Args:
            match_threshold: Optional threshold override
            batch_size: Only process the first N wines (by ID)
            source_id: Only refresh against this source

        Returns:
            RefreshAllResult with processed/total counts and all errors
        """
        wine_ids = self.catalog.list_wine_ids()
        to_process = wine_ids if batch_size is None else wine_ids[:batch_size]

        self.fetcher.clear_cache()
        reset_adapter_caches(fetcher=self.fetcher, config=self.config)

        result = RefreshAllResult(total_wines=len(wine_ids))
        for wine_id in to_process:
            wine_result = await self.refresh_wine(
                wine_id, match_threshold=match_threshold, source_id=source_id
            )
            result.processed += 1
            result.errors.extend(wine_result.errors)

        logger.info(
            f"Batch refresh done: processed={result.processed}/{result.total_wines} "
            f"errors={len(result.errors)}"
        )
        return result

    def _record_crawl(self, source: PriceSource) -> None:
        try:
            self.sources.touch_last_crawled(source.id)
            self.session.commit()
        except (SQLAlchemyError, ValueError) as e:
            self.session.rollback()
            logger.error(f"Could not record crawl of source {source.slug}: {e}")
