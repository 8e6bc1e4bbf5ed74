"""
Platform detection for new price sources.

Fetches a shop's home page once and looks for platform signatures so the
admin surface can pre-fill PriceSource.adapter_type.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

import httpx

from wine_offers.core.enums import AdapterType
from wine_offers.offers.fetcher import PoliteFetcher, get_default_fetcher

logger = logging.getLogger(__name__)

DETECT_TIMEOUT_MS = 10_000

# (marker, label) pairs; markers are matched against the lowercased page
SHOPIFY_SIGNATURES: list[tuple[str, str]] = [
    ("cdn.shopify.com", "shopify_cdn"),
    ("shopify.theme", "shopify_theme_script"),
    ("myshopify.com", "myshopify_domain"),
    ("shopify-section", "shopify_section_class"),
    ('content="shopify"', "generator_meta"),
    ("/cart.js", "cart_js_endpoint"),
]

WOOCOMMERCE_SIGNATURES: list[tuple[str, str]] = [
    ("wp-content/plugins/woocommerce", "woocommerce_plugin_assets"),
    ("woocommerce", "woocommerce_marker"),
    ("wc-block", "wc_block_class"),
    ("/wp-json/wc/", "wc_rest_api"),
    ('content="woocommerce', "generator_meta"),
]


@dataclass
class PlatformDetection:
    """Result of classifying a shop's platform."""

    adapter_type: str = AdapterType.UNKNOWN.value
    signals: list[str] = field(default_factory=list)
    status: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)


def _matched(text: str, signatures: list[tuple[str, str]]) -> list[str]:
    return [label for marker, label in signatures if marker in text]


def classify_platform(html: str) -> tuple[str, list[str]]:
    """
    Classify page HTML as shopify, woocommerce or unknown.

    The platform with more matching signatures wins; Shopify wins a tie
    since its markers are more specific.

    Returns:
        Tuple of (adapter type tag, matched signal labels)
    """
    text = (html or "").lower()
    shopify = _matched(text, SHOPIFY_SIGNATURES)
    woocommerce = _matched(text, WOOCOMMERCE_SIGNATURES)

    if not shopify and not woocommerce:
        return AdapterType.UNKNOWN.value, []
    if len(shopify) >= len(woocommerce):
        return AdapterType.SHOPIFY.value, [f"shopify:{s}" for s in shopify]
    return AdapterType.WOOCOMMERCE.value, [f"woocommerce:{s}" for s in woocommerce]


async def detect_platform(base_url: str, fetcher: PoliteFetcher | None = None) -> PlatformDetection:
    """
    Fetch a shop's base URL once and classify its platform.

    Network failures are reported in the result rather than raised.
    """
    fetcher = fetcher or get_default_fetcher()
    url = base_url.strip()
    if not url.startswith(("http://", "https://")):
        url = "https://" + url

    try:
        response = await fetcher.fetch_with_retries(url, timeout_ms=DETECT_TIMEOUT_MS, max_retries=1)
    except httpx.HTTPError as e:
        logger.warning(f"Platform detection failed for {url}: {e!r}")
        return PlatformDetection(error=str(e) or type(e).__name__)

    if not response.ok:
        return PlatformDetection(status=response.status, error=f"HTTP {response.status}")

    adapter_type, signals = classify_platform(response.text)
    logger.info(f"Detected platform {adapter_type} for {url} ({len(signals)} signals)")
    return PlatformDetection(adapter_type=adapter_type, signals=signals, status=response.status)
