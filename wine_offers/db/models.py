"""SQLAlchemy ORM models for Wine Offers database."""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def _generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ============================================================================
# Catalog projection (owned by the storefront, read-only here)
# ============================================================================


class ProducerDB(Base):
    """Producer row of the storefront catalog."""

    __tablename__ = "producers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    def __repr__(self) -> str:
        return f"<ProducerDB(id={self.id}, name='{self.name}')>"


class WineDB(Base):
    """Wine row of the storefront catalog."""

    __tablename__ = "wines"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    wine_name: Mapped[str] = mapped_column(String(255), nullable=False)
    vintage: Mapped[str] = mapped_column(String(20), default="")
    grape_varieties: Mapped[str | None] = mapped_column(String(255), nullable=True)
    color: Mapped[str | None] = mapped_column(String(20), nullable=True)
    producer_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("producers.id"), nullable=True, index=True
    )

    def __repr__(self) -> str:
        return f"<WineDB(id={self.id}, wine_name='{self.wine_name}', vintage='{self.vintage}')>"


# ============================================================================
# Offer tables
# ============================================================================


class PriceSourceDB(Base):
    """
    Database model for price sources.

    One row per third-party site that is searched for offers.
    """

    __tablename__ = "price_sources"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    base_url: Mapped[str] = mapped_column(String(500), nullable=False)
    search_url_template: Mapped[str | None] = mapped_column(String(500), nullable=True)
    sitemap_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    adapter_type: Mapped[str] = mapped_column(String(50), default="shopify")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    rate_limit_delay_ms: Mapped[int] = mapped_column(Integer, default=2000)
    last_crawled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    config_json: Mapped[str] = mapped_column(Text, default="{}")  # JSON object

    def __repr__(self) -> str:
        return f"<PriceSourceDB(id={self.id}, slug='{self.slug}', adapter='{self.adapter_type}')>"


class ExternalOfferDB(Base):
    """
    Database model for external offers.

    At most one row per (wine, price source); refreshes overwrite it.
    """

    __tablename__ = "external_offers"
    __table_args__ = (
        UniqueConstraint("wine_id", "price_source_id", name="uq_external_offers_wine_source"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    wine_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    price_source_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("price_sources.id", ondelete="CASCADE"), nullable=False, index=True
    )
    pdp_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    price_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="SEK")
    available: Mapped[bool] = mapped_column(Boolean, default=True)
    title_raw: Mapped[str | None] = mapped_column(Text, nullable=True)
    match_confidence: Mapped[float] = mapped_column(Float, default=0.0)
    last_fetched_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, index=True)

    def __repr__(self) -> str:
        return (
            f"<ExternalOfferDB(wine_id={self.wine_id}, source={self.price_source_id}, "
            f"price={self.price_amount} {self.currency})>"
        )
