"""Tests for the offer matcher."""

import pytest

from wine_offers.core.enums import RejectReason
from wine_offers.core.schema import WineForMatch
from wine_offers.offers.adapters.base import NormalizedOffer
from wine_offers.offers.matcher import (
    DEFAULT_THRESHOLD,
    MatchWeights,
    containment_score,
    evaluate_match,
    is_above_threshold,
    resolve_threshold,
    resolve_weights,
    score_match,
    score_match_with_breakdown,
    token_similarity,
)

TITLE_MATCH = "Domaine Leflaive Puligny-Montrachet 1er Cru 2020"
TITLE_OTHER = "Some Other Producer Random Wine 2019"


@pytest.fixture
def leflaive() -> WineForMatch:
    """Catalog wine used across the scoring tests."""
    return WineForMatch(
        id="wine-1",
        wine_name="Puligny-Montrachet 1er Cru",
        vintage="2020",
        producer_name="Domaine Leflaive",
    )


def _offer(title: str, **kwargs) -> NormalizedOffer:
    return NormalizedOffer(pdp_url="https://shop.example/products/x", title_raw=title, **kwargs)


class TestSimilarityPrimitives:
    """Tests for token_similarity and containment_score."""

    def test_token_similarity_is_jaccard(self) -> None:
        """Shared tokens over all tokens."""
        assert token_similarity("domaine leflaive", "domaine leflaive chablis") == pytest.approx(2 / 3)
        assert token_similarity("a b", "c d") == 0.0

    def test_token_similarity_empty(self) -> None:
        """Empty sides score zero."""
        assert token_similarity("", "anything") == 0.0
        assert token_similarity("anything", "") == 0.0

    def test_containment_score(self) -> None:
        """Needle length over haystack length when contained."""
        assert containment_score("abc", "abcdef") == pytest.approx(0.5)
        assert containment_score("xyz", "abcdef") == 0.0
        assert containment_score("", "abcdef") == 0.0
        assert containment_score("abcdef", "abcdef") == 1.0


class TestScoreMatch:
    """Tests for score_match and score_match_with_breakdown."""

    def test_score_monotonicity(self, leflaive: WineForMatch) -> None:
        """A title with producer and name beats a title with neither."""
        good = score_match(leflaive, TITLE_MATCH)
        bad = score_match(leflaive, TITLE_OTHER)

        assert good >= 0.4
        assert bad < 0.6
        assert good > bad

    def test_known_score(self, leflaive: WineForMatch) -> None:
        """Producer containment 16/48 and boosted name containment 0.65 combine to 0.51."""
        score, breakdown = score_match_with_breakdown(leflaive, TITLE_MATCH)

        assert score == 0.51
        assert breakdown.producer_score == pytest.approx(16 / 48)
        assert breakdown.wine_name_score == pytest.approx(0.65)

    def test_store_suffix_ignored(self, leflaive: WineForMatch) -> None:
        """A "| Shop" suffix does not lower the score."""
        assert score_match(leflaive, TITLE_MATCH + " | Vinbutiken") == score_match(leflaive, TITLE_MATCH)

    def test_score_clamped_to_one(self) -> None:
        """The containment boost cannot push the score above 1."""
        wine = WineForMatch(id="w", wine_name="Rocalhas 2020")
        assert score_match(wine, "Rocalhas") == 1.0

    def test_score_rounded_to_two_decimals(self, leflaive: WineForMatch) -> None:
        """Scores carry at most two decimals."""
        for title in (TITLE_MATCH, "Leflaive Puligny", "Puligny-Montrachet Village 2018"):
            score = score_match(leflaive, title)
            assert 0.0 <= score <= 1.0
            assert round(score, 2) == score

    def test_vendor_counts_as_producer(self) -> None:
        """Without a catalog producer, the site vendor found in the title scores."""
        wine = WineForMatch(id="w", wine_name="Chablis")
        with_vendor, breakdown = score_match_with_breakdown(
            wine, "William Fevre Chablis", vendor="William Fevre"
        )
        without_vendor = score_match(wine, "William Fevre Chablis")

        assert breakdown.producer_score > 0
        assert with_vendor != without_vendor

    def test_custom_weights(self, leflaive: WineForMatch) -> None:
        """With all weight on the wine name, the score is the name sub-score."""
        assert score_match(leflaive, TITLE_MATCH, weights=MatchWeights(producer=0.0, wine_name=1.0)) == 0.65

    def test_breakdown_reports_vintages_and_sizes(self, leflaive: WineForMatch) -> None:
        """Vintages and sizes are extracted for display only."""
        _, breakdown = score_match_with_breakdown(leflaive, TITLE_MATCH.replace("2020", "2019") + " 75cl")

        assert breakdown.vintage_our == "2020"
        assert breakdown.vintage_pdp == "2019"
        assert breakdown.vintage_score == 0.0
        assert breakdown.size_our is None
        assert breakdown.size_pdp == "75cl"

    def test_is_above_threshold(self, leflaive: WineForMatch) -> None:
        """Threshold comparison is inclusive."""
        assert is_above_threshold(leflaive, TITLE_MATCH, 0.51)
        assert not is_above_threshold(leflaive, TITLE_MATCH, 0.52)
        assert not is_above_threshold(leflaive, TITLE_OTHER)


class TestEvaluateMatch:
    """Tests for evaluate_match reject rules."""

    def test_accepts_good_match(self, leflaive: WineForMatch) -> None:
        """A matching title above the default threshold is accepted."""
        evaluation = evaluate_match(leflaive, _offer(TITLE_MATCH))

        assert evaluation.accepted
        assert evaluation.reject_reason is None
        assert evaluation.score == 0.51

    def test_below_threshold(self, leflaive: WineForMatch) -> None:
        """Unrelated titles are rejected as below_threshold."""
        evaluation = evaluate_match(leflaive, _offer(TITLE_OTHER))

        assert not evaluation.accepted
        assert evaluation.reject_reason == RejectReason.BELOW_THRESHOLD

    def test_vintage_independence(self, leflaive: WineForMatch) -> None:
        """Changing only the listing vintage does not change the decision."""
        v2020 = evaluate_match(leflaive, _offer(TITLE_MATCH), threshold=0.3)
        v2019 = evaluate_match(leflaive, _offer(TITLE_MATCH.replace("2020", "2019")), threshold=0.3)

        assert v2020.accepted and v2019.accepted
        assert v2020.score == v2019.score
        assert "vintage_mismatch" not in {r.value for r in RejectReason}

    def test_size_mismatch_rejected_even_at_zero_threshold(self) -> None:
        """Different bottle sizes on both sides are a hard reject."""
        wine = WineForMatch(id="w", wine_name="Barolo 750ml", producer_name="Vietti")
        evaluation = evaluate_match(wine, _offer("Vietti Barolo 1500ml"), threshold=0.0)

        assert not evaluation.accepted
        assert evaluation.reject_reason == RejectReason.SIZE_MISMATCH

    def test_size_from_offer_field(self) -> None:
        """The offer's size field wins over the title."""
        wine = WineForMatch(id="w", wine_name="Barolo 750ml", producer_name="Vietti")
        evaluation = evaluate_match(wine, _offer("Vietti Barolo", size="1500 ml"), threshold=0.0)

        assert evaluation.reject_reason == RejectReason.SIZE_MISMATCH
        assert evaluation.breakdown.size_pdp == "1500ml"

    def test_size_on_one_side_only(self) -> None:
        """A size on only one side is not a mismatch."""
        wine = WineForMatch(id="w", wine_name="Barolo", producer_name="Vietti")
        evaluation = evaluate_match(wine, _offer("Vietti Barolo 1500ml"), threshold=0.0)

        assert evaluation.accepted

    def test_missing_title(self, leflaive: WineForMatch) -> None:
        """An offer without a title scores zero instead of failing."""
        evaluation = evaluate_match(leflaive, _offer(None))

        assert evaluation.score == 0.0
        assert evaluation.reject_reason == RejectReason.BELOW_THRESHOLD

    def test_to_dict(self, leflaive: WineForMatch) -> None:
        """Serialized evaluations carry the reason value."""
        data = evaluate_match(leflaive, _offer(TITLE_OTHER)).to_dict()

        assert data["accepted"] is False
        assert data["reject_reason"] == "below_threshold"
        assert "producer_score" in data["breakdown"]


class TestThresholdResolution:
    """Tests for per-source threshold and weight overrides."""

    def test_explicit_wins(self) -> None:
        """An explicit threshold overrides the source config."""
        assert resolve_threshold(0.6, {"matchThreshold": 0.2}) == 0.6

    def test_source_config(self) -> None:
        """matchThreshold from the source config, numeric strings allowed."""
        assert resolve_threshold(None, {"matchThreshold": 0.5}) == 0.5
        assert resolve_threshold(None, {"matchThreshold": "0.45"}) == 0.45

    def test_default(self) -> None:
        """Missing or invalid config falls back to the default."""
        assert resolve_threshold(None, None) == DEFAULT_THRESHOLD
        assert resolve_threshold(None, {"matchThreshold": "high"}) == DEFAULT_THRESHOLD
        assert resolve_threshold(None, {}, default=0.4) == 0.4

    def test_weights(self) -> None:
        """Each weight can be overridden independently."""
        weights = resolve_weights({"producerWeight": 0.5})
        assert weights == MatchWeights(producer=0.5, wine_name=0.45)
        assert resolve_weights(None) == MatchWeights()
