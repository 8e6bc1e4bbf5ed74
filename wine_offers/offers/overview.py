"""Operator overview of stored offers with a recomputed match breakdown."""

from __future__ import annotations

from sqlalchemy.orm import Session

from wine_offers.core.schema import OfferOverviewRow, WineForMatch
from wine_offers.db.repositories import ExternalOfferRepository
from wine_offers.offers.matcher import MatchWeights, score_match_with_breakdown
from wine_offers.offers.settings import OffersConfig, get_default_config


def build_offer_overview(
    session: Session,
    config: OffersConfig | None = None,
    limit: int | None = None,
) -> list[OfferOverviewRow]:
    """
    List stored offers, newest first, with match flags for display.

    The title score is recomputed against the current catalog row, and
    producer_match / wine_name_match are set when the corresponding
    sub-score reaches the label threshold (0.5 by default).
    """
    config = config or get_default_config()
    weights = MatchWeights(
        producer=config.match.producer_weight,
        wine_name=config.match.wine_name_weight,
    )
    label_threshold = config.match.label_threshold

    rows = []
    for row in ExternalOfferRepository(session).list_all(limit=limit):
        wine = WineForMatch(
            id=row.wine_id,
            wine_name=row.wine_name or "",
            vintage=row.vintage or "",
            producer_name=row.producer_name,
        )
        score, breakdown = score_match_with_breakdown(wine, row.title_raw or "", weights=weights)
        rows.append(
            row.model_copy(
                update={
                    "match_confidence": score,
                    "producer_match": breakdown.producer_score >= label_threshold,
                    "wine_name_match": breakdown.wine_name_score >= label_threshold,
                }
            )
        )
    return rows
