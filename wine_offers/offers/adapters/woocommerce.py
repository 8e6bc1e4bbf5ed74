"""
WooCommerce Adapter Module
==========================

Adapter for WordPress/WooCommerce shops.

Discovery: WordPress product search (?s=<query>&post_type=product). A
search that redirects straight to a product page is taken as a single
strong candidate; otherwise product links are scraped from the result
page. Falls back to the sitemap when search finds nothing.

PDP extraction: JSON-LD first, then WooCommerce price markup with a
currency sniff.
"""

from __future__ import annotations

import logging
import re
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup

from wine_offers.core.schema import PriceSource, WineForMatch
from wine_offers.offers.adapters.base import (
    NormalizedOffer,
    SourceAdapter,
    get_product_urls_from_sitemap,
    is_http_url,
    meta_content,
    page_title,
    parse_json_ld_product,
    parse_price_text,
)
from wine_offers.offers.query_pack import build_query_pack

logger = logging.getLogger(__name__)

MAX_CANDIDATES_TOTAL = 12
SEARCH_TIMEOUT_MS = 12_000
PDP_TIMEOUT_MS = 12_000
DEFAULT_SNIFF_CURRENCY = "DKK"

# /product/<slug> (WooCommerce default) or /shop/<slug> (common permalink setting),
# with the slug as the last path segment; /shop/page/<n> is archive pagination
_PRODUCT_PATH_RE = re.compile(r"/(?:product|shop)/(?!page/?$)[^/?#]+/?$")
_UNAVAILABLE_RE = re.compile(r"out of stock|udsolgt|sold out", re.IGNORECASE)


def is_product_url(url: str) -> bool:
    """Check for a /product/<slug> or /shop/<slug> path."""
    try:
        path = urlsplit(url).path
    except ValueError:
        return False
    return bool(_PRODUCT_PATH_RE.search(path))


def canonical_product_url(url: str) -> str:
    """Origin and path without trailing slash, query or fragment."""
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}{parts.path.rstrip('/')}"


def extract_product_urls_from_search_html(html: str, base: str) -> list[str]:
    """
    Scrape product links from a WooCommerce search result page.

    When the page has no product links (a single-product page rendered
    at the search URL), the canonical link or og:url is used if it
    points at a product.

    Args:
        html: Search result HTML
        base: Shop base URL used to resolve relative links

    Returns:
        Product URLs in page order, de-duplicated
    """
    if not html:
        return []
    soup = BeautifulSoup(html, "html.parser")
    base = base.rstrip("/") + "/"

    seen: set[str] = set()
    urls: list[str] = []
    for link in soup.find_all("a", href=True):
        href = link["href"].strip()
        if "/product/" not in href and "/shop/" not in href:
            continue
        full = urljoin(base, href)
        if not is_http_url(full) or not is_product_url(full):
            continue
        url = canonical_product_url(full)
        if url not in seen:
            seen.add(url)
            urls.append(url)

    if not urls:
        canonical = soup.find("link", rel="canonical")
        candidate = canonical.get("href") if canonical is not None else None
        candidate = candidate or meta_content(soup, "og:url")
        if candidate:
            full = urljoin(base, candidate.strip())
            if is_http_url(full) and is_product_url(full):
                urls.append(canonical_product_url(full))

    return urls


def parse_woocommerce_html(
    html: str,
    pdp_url: str,
    default_currency: str = "SEK",
    sniff_currency: str | None = DEFAULT_SNIFF_CURRENCY,
) -> NormalizedOffer | None:
    """
    Fallback extraction from WooCommerce price markup.

    Price comes from og:price:amount, then the first <bdi> amount, then
    .woocommerce-Price-amount, then the .price block. Without an
    og:price:currency tag the currency is default_currency, switched to
    sniff_currency when that code appears in the page text.

    Returns:
        NormalizedOffer, or None when neither a title nor a price is found
    """
    if not html:
        return None
    soup = BeautifulSoup(html, "html.parser")
    title = page_title(soup)

    price_amount = parse_price_text(meta_content(soup, "og:price:amount"))
    if price_amount is None:
        for selector in ("bdi", ".woocommerce-Price-amount", ".price"):
            # skip zero amounts such as an empty mini-cart total
            for element in soup.select(selector):
                amount = parse_price_text(element.get_text(" ", strip=True))
                if amount:
                    price_amount = amount
                    break
            if price_amount is not None:
                break

    if title is None and price_amount is None:
        return None

    currency = meta_content(soup, "og:price:currency")
    if currency is None:
        currency = default_currency
        if (
            sniff_currency
            and sniff_currency != default_currency
            and re.search(rf"\b{re.escape(sniff_currency)}\b", html, re.IGNORECASE)
        ):
            currency = sniff_currency

    return NormalizedOffer(
        pdp_url=pdp_url,
        title_raw=title,
        price_amount=price_amount,
        currency=currency,
        available=not _UNAVAILABLE_RE.search(html),
        extraction_method="html",
    )


class WooCommerceAdapter(SourceAdapter):
    """
    Adapter for WooCommerce shops.

    Uses full-page site search, so each search call costs a rendered
    HTML page; candidates are capped at 12.
    """

    ADAPTER_NAME = "woocommerce"
    ADAPTER_VERSION = "1.0.0"
    DEFAULT_SEARCH_PATH = "/?s={query}&post_type=product"

    async def search_candidates(self, wine: WineForMatch, source: PriceSource) -> list[str]:
        urls = await self._search_candidates(wine, source)
        if urls:
            return urls

        logger.info(f"No search results on {source.slug}, falling back to sitemap")
        sitemap_urls = await get_product_urls_from_sitemap(
            self.fetcher,
            source.resolved_sitemap_url,
            MAX_CANDIDATES_TOTAL,
            is_product_url,
            child_keywords=("product", "shop", "sitemap"),
        )
        return [canonical_product_url(url) for url in sitemap_urls]

    async def fetch_offer(self, pdp_url: str, source: PriceSource) -> NormalizedOffer | None:
        await self.wait_before_pdp(source)

        response = await self.fetcher.fetch_with_cache(
            pdp_url, timeout_ms=PDP_TIMEOUT_MS, max_retries=2
        )
        if not response.ok or not response.text:
            return None

        currency = self.default_currency(source)
        offer = parse_json_ld_product(
            response.text, pdp_url, currency, allow_comma_decimal=True
        )
        if offer is not None:
            return offer
        return parse_woocommerce_html(
            response.text, pdp_url, currency, self._sniff_currency(source)
        )

    def _sniff_currency(self, source: PriceSource) -> str | None:
        configured = source.config.get("sniffCurrency") if source.config else None
        if isinstance(configured, str):
            return configured.strip().upper() or None
        return DEFAULT_SNIFF_CURRENCY

    async def _search_candidates(self, wine: WineForMatch, source: PriceSource) -> list[str]:
        """Run the query pack through site search, capped at 12 URLs."""
        seen: set[str] = set()
        urls: list[str] = []

        def add(url: str) -> bool:
            if url not in seen:
                seen.add(url)
                urls.append(url)
            return len(urls) >= MAX_CANDIDATES_TOTAL

        for i, query in enumerate(build_query_pack(wine)):
            if i > 0:
                await self.wait_between_searches()

            response = await self.fetcher.fetch_with_retries(
                self.build_search_url(source, query),
                timeout_ms=SEARCH_TIMEOUT_MS,
                max_retries=2,
            )
            if not response.ok or not response.text:
                logger.debug(f"Search on {source.slug} returned {response.status} for {query!r}")
                continue

            # WordPress redirects a search with exactly one hit to the product itself
            if is_product_url(response.url) and add(canonical_product_url(response.url)):
                return urls

            for url in extract_product_urls_from_search_html(response.text, source.base):
                if add(url):
                    return urls

        return urls
