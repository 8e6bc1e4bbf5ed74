"""
Source Adapter Base Module
==========================

Defines the abstract base class for site-specific offer adapters and the
parsing helpers they share. Adapters are responsible for:
1. Finding candidate product page (PDP) URLs for a catalog wine
2. Extracting a normalized offer (price, currency, availability, title)
   from a single PDP
"""

from __future__ import annotations

import html as html_lib
import json
import logging
import math
import re
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Callable
from urllib.parse import quote, urlsplit

from bs4 import BeautifulSoup

from wine_offers.core.schema import PriceSource, WineForMatch
from wine_offers.offers.fetcher import PoliteFetcher, get_default_fetcher
from wine_offers.offers.settings import OffersConfig, get_default_config

logger = logging.getLogger(__name__)

JSON_LD_PRODUCT_TYPES = {"Product", "https://schema.org/Product", "http://schema.org/Product"}
SITEMAP_TIMEOUT_MS = 15_000
SITEMAP_MAX_RETRIES = 2
MAX_CHILD_SITEMAPS = 5

_PRICE_RE = re.compile(r"-?\d+(?:\.\d+)?")
_PRICE_TEXT_RE = re.compile(r"\d+(?:[.,\u00a0\u202f]\d+)*")
_LOC_RE = re.compile(r"<loc>\s*([^<]+?)\s*</loc>", re.IGNORECASE)
_UNAVAILABLE_SCHEMA_RE = re.compile(r"soldout|outofstock|out.of.stock", re.IGNORECASE)


@dataclass
class NormalizedOffer:
    """
    Offer extracted from one product page.

    Ephemeral: produced by an adapter and consumed by the matcher, never
    stored as-is.
    """

    pdp_url: str
    title_raw: str | None = None
    price_amount: float | None = None
    currency: str = "SEK"
    available: bool = True
    vendor: str | None = None
    size: str | None = None
    extraction_method: str | None = None  # "product_js", "jsonld", "html"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)


def _finite(value: Any) -> float | None:
    """float(value), or None when it overflows or is not a finite number."""
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def parse_price(value: Any, allow_comma_decimal: bool = False) -> float | None:
    """
    Parse a price from a JSON number or a price string.

    Strings are read up to the first non-numeric character ("899.00 SEK"
    gives 899.0). With allow_comma_decimal, "360,00" is read as 360.0.

    Returns:
        Price as float, or None if nothing numeric is found
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return _finite(value)
    if not isinstance(value, str):
        return None

    text = value.strip().replace("\u00a0", "").replace(" ", "")
    if allow_comma_decimal:
        text = text.replace(",", ".", 1)
    match = _PRICE_RE.match(text)
    return _finite(match.group()) if match else None


def parse_price_text(text: str | None) -> float | None:
    """
    Parse the first price in display text such as "1.299,00 kr." or "$1,299.00".

    The right-most separator followed by one or two digits is taken as
    the decimal separator; other separators are thousands separators.
    """
    if not text:
        return None
    match = _PRICE_TEXT_RE.search(text)
    if match is None:
        return None
    number = re.sub(r"[\u00a0\u202f]", "", match.group())
    decimal_match = re.search(r"[.,](\d{1,2})$", number)
    if decimal_match:
        whole = re.sub(r"[.,]", "", number[: decimal_match.start()])
        return _finite(f"{whole}.{decimal_match.group(1)}")
    return _finite(re.sub(r"[.,]", "", number))


def url_key(url: str) -> str:
    """Dedup key for a URL: scheme, host and path, without query or fragment."""
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}{parts.path}"


def is_http_url(url: str) -> bool:
    """Check that a string is an absolute http(s) URL with a host."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def meta_content(soup: BeautifulSoup, key: str) -> str | None:
    """Content of a <meta property=key> or <meta name=key> tag."""
    tag = soup.find("meta", attrs={"property": key}) or soup.find("meta", attrs={"name": key})
    if tag is None:
        return None
    content = tag.get("content")
    if not isinstance(content, str) or not content.strip():
        return None
    return content.strip()


def page_title(soup: BeautifulSoup) -> str | None:
    """Title from og:title, else the <title> element."""
    title = meta_content(soup, "og:title")
    if title:
        return title
    if soup.title and soup.title.string:
        text = " ".join(soup.title.string.split())
        return text or None
    return None


def _is_product_node(node: Any) -> bool:
    if not isinstance(node, dict):
        return False
    node_type = node.get("@type")
    if isinstance(node_type, list):
        return any(t in JSON_LD_PRODUCT_TYPES for t in node_type)
    return node_type in JSON_LD_PRODUCT_TYPES


def _find_product_node(data: Any) -> dict[str, Any] | None:
    if isinstance(data, list):
        for item in data:
            found = _find_product_node(item)
            if found is not None:
                return found
        return None
    if not isinstance(data, dict):
        return None
    if _is_product_node(data):
        return data
    graph = data.get("@graph")
    if isinstance(graph, list):
        for item in graph:
            if _is_product_node(item):
                return item
    return None


def _brand_name(brand: Any) -> str | None:
    if isinstance(brand, str):
        return brand.strip() or None
    if isinstance(brand, dict) and isinstance(brand.get("name"), str):
        return brand["name"].strip() or None
    return None


def parse_json_ld_product(
    html: str,
    pdp_url: str,
    default_currency: str = "SEK",
    allow_comma_decimal: bool = False,
) -> NormalizedOffer | None:
    """
    Extract an offer from schema.org Product markup.

    Looks at every <script type="application/ld+json"> block, including
    @graph containers, and uses the first Product node found. When
    "offers" is a list, the first entry is used.

    Args:
        html: Page HTML
        pdp_url: URL the page was fetched from
        default_currency: Currency when the markup has no priceCurrency
        allow_comma_decimal: Read "360,00" as 360.0

    Returns:
        NormalizedOffer, or None if no Product node is present
    """
    if not html:
        return None
    soup = BeautifulSoup(html, "html.parser")

    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = (script.string or script.get_text() or "").strip()
        if not raw:
            continue
        try:
            data = json.loads(raw)
        except ValueError:
            logger.debug(f"Skipping malformed JSON-LD block on {pdp_url}")
            continue

        product = _find_product_node(data)
        if product is None:
            continue

        name = product.get("name")
        price_amount = None
        currency = default_currency
        available = True

        offers = product.get("offers")
        offer = offers[0] if isinstance(offers, list) and offers else offers
        if isinstance(offer, dict):
            price_amount = parse_price(offer.get("price"), allow_comma_decimal)
            if price_amount is None:
                price_amount = parse_price(offer.get("lowPrice"), allow_comma_decimal)
            if isinstance(offer.get("priceCurrency"), str) and offer["priceCurrency"].strip():
                currency = offer["priceCurrency"].strip()
            if isinstance(offer.get("availability"), str):
                available = not _UNAVAILABLE_SCHEMA_RE.search(offer["availability"])

        return NormalizedOffer(
            pdp_url=pdp_url,
            title_raw=html_lib.unescape(name).strip() if isinstance(name, str) else "",
            price_amount=price_amount,
            currency=currency,
            available=available,
            vendor=_brand_name(product.get("brand")),
            extraction_method="jsonld",
        )

    return None


def extract_sitemap_locs(xml_text: str) -> list[str]:
    """All <loc> values of a sitemap or sitemap index, in document order."""
    return [html_lib.unescape(m.group(1)).strip() for m in _LOC_RE.finditer(xml_text or "")]


async def get_product_urls_from_sitemap(
    fetcher: PoliteFetcher,
    sitemap_url: str,
    limit: int,
    is_product_url: Callable[[str], bool],
    child_keywords: tuple[str, ...] = ("product", "sitemap"),
    _depth: int = 0,
) -> list[str]:
    """
    Collect product URLs from a sitemap.

    If the sitemap itself lists no product URLs but looks like a sitemap
    index, up to five child sitemaps whose URL contains one of
    child_keywords are read (one level deep only).

    Args:
        fetcher: Fetch client
        sitemap_url: Sitemap or sitemap-index URL
        limit: Maximum URLs to return
        is_product_url: Predicate selecting product URLs
        child_keywords: Substrings that mark relevant child sitemaps

    Returns:
        Up to limit product URLs in sitemap order
    """
    if limit <= 0:
        return []

    response = await fetcher.fetch_with_retries(
        sitemap_url, timeout_ms=SITEMAP_TIMEOUT_MS, max_retries=SITEMAP_MAX_RETRIES
    )
    if not response.ok or not response.text:
        return []

    locs = extract_sitemap_locs(response.text)
    urls = [loc for loc in locs if is_product_url(loc) and is_http_url(loc)][:limit]

    if not urls and _depth == 0 and "sitemap" in response.text and locs:
        children = [
            loc
            for loc in locs
            if loc.lower().endswith(".xml") and any(k in loc.lower() for k in child_keywords)
        ]
        for child in children[:MAX_CHILD_SITEMAPS]:
            urls.extend(
                await get_product_urls_from_sitemap(
                    fetcher,
                    child,
                    limit - len(urls),
                    is_product_url,
                    child_keywords,
                    _depth=1,
                )
            )
            if len(urls) >= limit:
                break

    return urls[:limit]


class SourceAdapter(ABC):
    """
    Abstract base class for site-specific offer adapters.

    Subclasses must implement:
    - search_candidates: Find candidate PDP URLs for a wine
    - fetch_offer: Extract a normalized offer from one PDP

    Both are async and go through the shared PoliteFetcher. Adapters
    wait the source's rate_limit_delay_ms before every PDP fetch.
    """

    # Adapter identification (override in subclasses)
    ADAPTER_NAME: str = "base"
    ADAPTER_VERSION: str = "1.0.0"
    DEFAULT_SEARCH_PATH: str = ""

    def __init__(
        self,
        fetcher: PoliteFetcher | None = None,
        config: OffersConfig | None = None,
    ) -> None:
        """
        Initialize the adapter.

        Args:
            fetcher: Fetch client (defaults to the process-wide one)
            config: Pipeline settings (defaults to the loaded offers.yaml)
        """
        self.fetcher = fetcher or get_default_fetcher()
        self.config = config or get_default_config()

    @abstractmethod
    async def search_candidates(self, wine: WineForMatch, source: PriceSource) -> list[str]:
        """
        Find candidate PDP URLs for a wine on one source.

        Args:
            wine: Catalog wine to look for
            source: Site to search

        Returns:
            Candidate URLs, most promising first
        """
        pass

    @abstractmethod
    async def fetch_offer(self, pdp_url: str, source: PriceSource) -> NormalizedOffer | None:
        """
        Fetch one PDP and extract its offer.

        Parse failures fall through to the next extraction strategy;
        None is returned when nothing can be extracted.

        Args:
            pdp_url: Product page URL
            source: Site the URL belongs to

        Returns:
            NormalizedOffer, or None
        """
        pass

    def reset_caches(self) -> None:
        """Drop adapter-level caches. Called at the start of a batch run."""

    def default_currency(self, source: PriceSource) -> str:
        """Currency assumed when a page does not state one."""
        configured = source.config.get("currency") if source.config else None
        if isinstance(configured, str) and configured.strip():
            return configured.strip().upper()
        return self.config.refresh.default_currency

    def build_search_url(self, source: PriceSource, query: str) -> str:
        """
        Build the search URL for one query.

        Uses the source's search_url_template when set ("{query}" is
        replaced by the URL-encoded query), else DEFAULT_SEARCH_PATH.
        """
        template = source.search_url_template or self.DEFAULT_SEARCH_PATH
        if not is_http_url(template):
            template = source.base + "/" + template.lstrip("/")
        return template.replace("{query}", quote(query, safe=""))

    async def wait_before_pdp(self, source: PriceSource) -> None:
        """Honor the source's rate limit before a product page request."""
        await self.fetcher.delay(source.rate_limit_delay_ms)

    async def wait_between_searches(self) -> None:
        """Short fixed pause between search calls."""
        await self.fetcher.delay(self.config.refresh.search_delay_ms)

    def get_info(self) -> dict[str, str]:
        """
        Get adapter information.

        Returns:
            Dictionary with adapter name and version
        """
        return {
            "name": self.ADAPTER_NAME,
            "version": self.ADAPTER_VERSION,
        }
