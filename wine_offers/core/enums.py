"""Enumerations for Wine Offers domain models."""

from enum import Enum


class AdapterType(str, Enum):
    """Site convention a price source is crawled with."""

    SHOPIFY = "shopify"
    WOOCOMMERCE = "woocommerce"
    UNKNOWN = "unknown"


class RejectReason(str, Enum):
    """Why a candidate listing was not accepted as a match."""

    SIZE_MISMATCH = "size_mismatch"
    BELOW_THRESHOLD = "below_threshold"
    NO_OFFER_EXTRACTED = "no_offer_extracted"


class MatchDecision(str, Enum):
    """Outcome of evaluating one candidate in a diagnostic run."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"
