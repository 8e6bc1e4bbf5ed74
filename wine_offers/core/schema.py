"""Pydantic v2 models for Wine Offers.

These models define the entities that cross the persistence boundary:
- WineForMatch (read-only projection of a catalog wine)
- PriceSource (configuration of one third-party site)
- ExternalOffer (persisted best match for a wine/source pair)
- OfferOverviewRow (offer joined with wine and source names)
"""

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from wine_offers.core.enums import AdapterType


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def _generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid4())


class WineForMatch(BaseModel):
    """
    Catalog wine as seen by the matcher.

    Owned by the catalog; borrowed for the duration of one refresh call.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    wine_name: str
    vintage: str = ""
    producer_name: str | None = None
    grape_varieties: str | None = None
    color: str | None = None

    @field_validator("vintage", mode="before")
    @classmethod
    def vintage_as_string(cls, v: Any) -> str:
        if v is None:
            return ""
        return str(v).strip()


class PriceSource(BaseModel):
    """
    Configuration for one third-party site to crawl.

    Managed by the admin surface; this package only writes last_crawled_at.
    """

    id: str = Field(default_factory=_generate_uuid)
    name: str
    slug: str
    base_url: str
    search_url_template: str | None = None
    sitemap_url: str | None = None
    adapter_type: str = AdapterType.SHOPIFY.value
    is_active: bool = True
    rate_limit_delay_ms: int = Field(default=2000, ge=0)
    last_crawled_at: datetime | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    @field_validator("name", "slug")
    @classmethod
    def not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("value cannot be empty")
        return v.strip()

    @field_validator("base_url")
    @classmethod
    def base_url_is_http(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got {v!r}")
        return v

    @property
    def base(self) -> str:
        """Base URL without trailing slash."""
        return self.base_url.rstrip("/")

    @property
    def resolved_sitemap_url(self) -> str:
        """Configured sitemap URL, or the conventional /sitemap.xml."""
        if self.sitemap_url and self.sitemap_url.strip():
            return self.sitemap_url.strip()
        return f"{self.base}/sitemap.xml"


class ExternalOffer(BaseModel):
    """Best accepted listing for one (wine, source) pair."""

    id: str = Field(default_factory=_generate_uuid)
    wine_id: str
    price_source_id: str
    pdp_url: str
    price_amount: float | None = None
    currency: str = "SEK"
    available: bool = True
    title_raw: str | None = None
    match_confidence: float = Field(ge=0.0, le=1.0)
    last_fetched_at: datetime = Field(default_factory=_utc_now)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class OfferOverviewRow(ExternalOffer):
    """Offer joined with its source and wine for the operator overview."""

    source_name: str | None = None
    source_slug: str | None = None
    wine_name: str | None = None
    vintage: str | None = None
    producer_name: str | None = None
    producer_match: bool = False
    wine_name_match: bool = False


class PriceSourceUpdate(BaseModel):
    """Partial update of a price source from the admin API."""

    name: str | None = None
    slug: str | None = None
    base_url: str | None = None
    search_url_template: str | None = None
    sitemap_url: str | None = None
    adapter_type: str | None = None
    is_active: bool | None = None
    rate_limit_delay_ms: int | None = Field(default=None, ge=0)
    config: dict[str, Any] | None = None

    def apply_to(self, source: PriceSource) -> PriceSource:
        """Return a validated copy of source with the set fields replaced."""
        data = source.model_dump()
        data.update(self.model_dump(exclude_unset=True))
        return PriceSource.model_validate(data)
