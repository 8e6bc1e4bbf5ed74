"""
Shopify Adapter Module
======================

Adapter for storefront-API style shops (Shopify and lookalikes).

Discovery: predictive search (/search/suggest.json) for every query in
the query pack, then a sitemap fallback that fetches every product page
up front into a per-source offer cache.

PDP extraction: the product .js document first, then JSON-LD, then
meta tags and price attributes.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import httpx
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
    parse_price,
    url_key,
)
from wine_offers.offers.cache import TTLCache
from wine_offers.offers.query_pack import build_query_pack

logger = logging.getLogger(__name__)

SUGGEST_LIMIT = 10
MAX_CANDIDATES_TOTAL = 30
MAX_SITEMAP_PRODUCTS = 200
SEARCH_TIMEOUT_MS = 10_000
PDP_TIMEOUT_MS = 10_000
SEARCH_CACHE_TTL_MS = 5 * 60 * 1000

_SIZE_OPTION_RE = re.compile(r"\d+\s*(ml|cl)", re.IGNORECASE)
_STOCK_HINT_RE = re.compile(r"sold.out|out.of.stock|add.to.cart|buy.now", re.IGNORECASE)
_UNAVAILABLE_RE = re.compile(r"sold.out|out.of.stock|currently.unavailable", re.IGNORECASE)

# source id -> {pdp url -> offer}, filled by the sitemap fallback
_sitemap_offer_cache: TTLCache[str, dict[str, NormalizedOffer]] = TTLCache(
    default_ttl_ms=60 * 60 * 1000
)


def clear_sitemap_offer_cache() -> None:
    """Forget all sitemap-primed offers."""
    _sitemap_offer_cache.clear()


def is_product_url(url: str) -> bool:
    """Shopify product paths are /products/<handle>; some themes use /product/."""
    return "/products/" in url or "/product/" in url


def parse_suggest_response(json_text: str, base: str) -> list[str]:
    """
    Read product URLs from a predictive-search response.

    Uses resources.results.products[].url, or /products/<handle> when a
    product has no url. Relative paths are resolved against base; query
    strings (search tracking parameters) are dropped and duplicates
    removed by origin and path.

    Args:
        json_text: Body of /search/suggest.json
        base: Shop base URL without trailing slash

    Returns:
        Product URLs in response order
    """
    try:
        data = json.loads(json_text)
    except ValueError:
        return []

    resources = data.get("resources") if isinstance(data, dict) else None
    results = resources.get("results") if isinstance(resources, dict) else None
    products = results.get("products") if isinstance(results, dict) else None
    if not isinstance(products, list):
        return []

    base = base.rstrip("/")
    seen: set[str] = set()
    urls: list[str] = []
    for product in products:
        if not isinstance(product, dict):
            continue
        path = product.get("url")
        if not path and product.get("handle"):
            path = f"/products/{product['handle']}"
        if not isinstance(path, str) or not path:
            continue

        full = path if path.startswith("http") else base + (path if path.startswith("/") else "/" + path)
        if not is_http_url(full):
            continue
        key = url_key(full)
        if key not in seen:
            seen.add(key)
            urls.append(key)
    return urls


def parse_product_js(
    json_text: str,
    pdp_url: str,
    default_currency: str = "SEK",
) -> NormalizedOffer | None:
    """
    Parse a Shopify product .js document.

    The first variant supplies price, availability and, when option1 or
    option2 looks like "75cl" / "750 ml", the bottle size. The price is
    taken as given.

    Returns:
        NormalizedOffer, or None if the body is not a JSON object
    """
    try:
        data: Any = json.loads(json_text)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None

    title = data.get("title") if isinstance(data.get("title"), str) else ""
    vendor = data.get("vendor") if isinstance(data.get("vendor"), str) else None

    price_amount = None
    available = True
    size = None
    variants = data.get("variants") if isinstance(data.get("variants"), list) else []
    variant = variants[0] if variants and isinstance(variants[0], dict) else None
    if variant is not None:
        price_amount = parse_price(variant.get("price"))
        if isinstance(variant.get("available"), bool):
            available = variant["available"]
        option = variant.get("option1") or variant.get("option2") or ""
        if isinstance(option, str) and _SIZE_OPTION_RE.search(option):
            size = option

    return NormalizedOffer(
        pdp_url=pdp_url,
        title_raw=title,
        price_amount=price_amount,
        currency=default_currency,
        available=available,
        vendor=vendor or None,
        size=size,
        extraction_method="product_js",
    )


def parse_shopify_html(
    html: str,
    pdp_url: str,
    default_currency: str = "SEK",
) -> NormalizedOffer | None:
    """
    Fallback extraction from meta tags and price attributes.

    Price comes from og:price:amount, then data-product-price, then an
    itemprop="price" content attribute. Availability is only judged when
    the page shows stock or cart wording at all.

    Returns:
        NormalizedOffer, or None when neither a title nor a price is found
    """
    if not html:
        return None
    soup = BeautifulSoup(html, "html.parser")
    title = page_title(soup)

    price_amount = parse_price(meta_content(soup, "og:price:amount"))
    if price_amount is None:
        tag = soup.find(attrs={"data-product-price": True})
        if tag is not None:
            price_amount = parse_price(tag.get("data-product-price"), allow_comma_decimal=True)
    if price_amount is None:
        tag = soup.find(attrs={"itemprop": "price", "content": True})
        if tag is not None:
            price_amount = parse_price(tag.get("content"), allow_comma_decimal=True)

    if title is None and price_amount is None:
        return None

    currency = meta_content(soup, "og:price:currency") or default_currency

    available = True
    if _STOCK_HINT_RE.search(html):
        available = not _UNAVAILABLE_RE.search(html)

    return NormalizedOffer(
        pdp_url=pdp_url,
        title_raw=title,
        price_amount=price_amount,
        currency=currency,
        available=available,
        extraction_method="html",
    )


def product_js_url(pdp_url: str) -> str:
    """The .js document URL for a product page URL."""
    parts = urlsplit(pdp_url)
    path = parts.path.rstrip("/")
    if not path.endswith(".js"):
        path += ".js"
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, ""))


class ShopifyAdapter(SourceAdapter):
    """
    Adapter for Shopify-style storefronts.

    Search goes through the predictive-search JSON endpoint; when that
    finds nothing the sitemap is crawled once per source and every
    product page is parsed into an in-memory offer cache, which
    fetch_offer consults before any live request.
    """

    ADAPTER_NAME = "shopify"
    ADAPTER_VERSION = "1.0.0"
    DEFAULT_SEARCH_PATH = (
        "/search/suggest.json?q={query}"
        f"&resources[type]=product&resources[limit]={SUGGEST_LIMIT}"
    )

    async def search_candidates(self, wine: WineForMatch, source: PriceSource) -> list[str]:
        urls = await self._suggest_candidates(wine, source)
        if urls:
            return urls

        logger.info(f"No predictive-search results on {source.slug}, falling back to sitemap")
        offers = await self._prime_sitemap_cache(source)
        return list(offers)

    async def fetch_offer(self, pdp_url: str, source: PriceSource) -> NormalizedOffer | None:
        primed = _sitemap_offer_cache.get(source.id)
        if primed and pdp_url in primed:
            logger.debug(f"Sitemap cache hit for {pdp_url}")
            return primed[pdp_url]

        currency = self.default_currency(source)
        await self.wait_before_pdp(source)

        js_response = await self.fetcher.fetch_with_cache(
            product_js_url(pdp_url), timeout_ms=PDP_TIMEOUT_MS, max_retries=1
        )
        if js_response.ok and js_response.text:
            offer = parse_product_js(js_response.text, pdp_url, currency)
            if offer is not None:
                return offer

        response = await self.fetcher.fetch_with_cache(
            pdp_url, timeout_ms=PDP_TIMEOUT_MS, max_retries=2
        )
        if not response.ok or not response.text:
            return None

        return parse_json_ld_product(response.text, pdp_url, currency) or parse_shopify_html(
            response.text, pdp_url, currency
        )

    def reset_caches(self) -> None:
        clear_sitemap_offer_cache()

    async def _suggest_candidates(self, wine: WineForMatch, source: PriceSource) -> list[str]:
        """Run the query pack through predictive search, capped at 30 URLs."""
        seen: set[str] = set()
        urls: list[str] = []

        for i, query in enumerate(build_query_pack(wine)):
            if i > 0:
                await self.wait_between_searches()

            response = await self.fetcher.fetch_with_cache(
                self.build_search_url(source, query),
                timeout_ms=SEARCH_TIMEOUT_MS,
                max_retries=2,
                cache_ttl_ms=SEARCH_CACHE_TTL_MS,
            )
            if not response.ok:
                logger.debug(f"Search on {source.slug} returned {response.status} for {query!r}")
                continue

            for url in parse_suggest_response(response.text, source.base):
                if url not in seen:
                    seen.add(url)
                    urls.append(url)
                if len(urls) >= MAX_CANDIDATES_TOTAL:
                    return urls

        return urls

    async def _prime_sitemap_cache(self, source: PriceSource) -> dict[str, NormalizedOffer]:
        """Fetch and parse every sitemap product page of a source once."""
        primed = _sitemap_offer_cache.get(source.id)
        if primed is not None:
            return primed

        product_urls = await get_product_urls_from_sitemap(
            self.fetcher,
            source.resolved_sitemap_url,
            MAX_SITEMAP_PRODUCTS,
            is_product_url,
        )

        currency = self.default_currency(source)
        offers: dict[str, NormalizedOffer] = {}
        for url in product_urls:
            await self.wait_before_pdp(source)
            try:
                response = await self.fetcher.fetch_with_cache(
                    url, timeout_ms=PDP_TIMEOUT_MS, max_retries=1
                )
            except httpx.HTTPError as e:
                logger.debug(f"Skipping sitemap product {url}: {e!r}")
                continue
            if not response.ok or not response.text:
                continue
            offer = parse_json_ld_product(response.text, url, currency) or parse_shopify_html(
                response.text, url, currency
            )
            if offer is not None:
                offers[url] = offer

        _sitemap_offer_cache.set(source.id, offers, self.config.refresh.sitemap_cache_ttl_ms)
        logger.info(
            f"Primed sitemap cache for {source.slug}: "
            f"{len(offers)} offers from {len(product_urls)} product URLs"
        )
        return offers
