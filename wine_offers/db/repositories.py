"""Repository classes for price source, offer and catalog database operations."""

import json
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from wine_offers.core.schema import ExternalOffer, OfferOverviewRow, PriceSource, WineForMatch
from wine_offers.db.models import ExternalOfferDB, PriceSourceDB, ProducerDB, WineDB


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


class PriceSourceRepository:
    """Repository for PriceSource CRUD operations."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, source: PriceSource) -> PriceSource:
        """Create a new price source."""
        db_item = PriceSourceDB(
            id=source.id,
            name=source.name,
            slug=source.slug,
            base_url=source.base_url,
            search_url_template=source.search_url_template,
            sitemap_url=source.sitemap_url,
            adapter_type=source.adapter_type,
            is_active=source.is_active,
            rate_limit_delay_ms=source.rate_limit_delay_ms,
            last_crawled_at=source.last_crawled_at,
            config_json=json.dumps(source.config),
            created_at=source.created_at,
            updated_at=source.updated_at,
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def get_by_id(self, source_id: str) -> PriceSource | None:
        """Get a price source by ID."""
        stmt = select(PriceSourceDB).where(PriceSourceDB.id == str(source_id))
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def get_by_slug(self, slug: str) -> PriceSource | None:
        """Get a price source by slug."""
        stmt = select(PriceSourceDB).where(PriceSourceDB.slug == slug)
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def list_all(self, active_only: bool = False) -> list[PriceSource]:
        """List price sources ordered by name."""
        stmt = select(PriceSourceDB).order_by(PriceSourceDB.name)
        if active_only:
            stmt = stmt.where(PriceSourceDB.is_active.is_(True))
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(s) for s in result]

    def list_active(self) -> list[PriceSource]:
        """List active price sources ordered by name."""
        return self.list_all(active_only=True)

    def update(self, source: PriceSource) -> PriceSource:
        """Update an existing price source."""
        stmt = select(PriceSourceDB).where(PriceSourceDB.id == source.id)
        db_item = self.session.execute(stmt).scalar_one_or_none()
        if db_item is None:
            raise ValueError(f"Price source with id {source.id} not found")

        db_item.name = source.name
        db_item.slug = source.slug
        db_item.base_url = source.base_url
        db_item.search_url_template = source.search_url_template
        db_item.sitemap_url = source.sitemap_url
        db_item.adapter_type = source.adapter_type
        db_item.is_active = source.is_active
        db_item.rate_limit_delay_ms = source.rate_limit_delay_ms
        db_item.config_json = json.dumps(source.config)
        db_item.updated_at = _utc_now()

        self.session.flush()
        return self._to_domain(db_item)

    def delete(self, source_id: str) -> bool:
        """Delete a price source by ID together with its offers."""
        stmt = select(PriceSourceDB).where(PriceSourceDB.id == str(source_id))
        db_item = self.session.execute(stmt).scalar_one_or_none()
        if db_item is None:
            return False
        self.session.execute(
            delete(ExternalOfferDB).where(ExternalOfferDB.price_source_id == db_item.id)
        )
        self.session.delete(db_item)
        self.session.flush()
        return True

    def touch_last_crawled(self, source_id: str, when: datetime | None = None) -> None:
        """Record a crawl attempt on a source."""
        stmt = select(PriceSourceDB).where(PriceSourceDB.id == str(source_id))
        db_item = self.session.execute(stmt).scalar_one_or_none()
        if db_item is None:
            raise ValueError(f"Price source with id {source_id} not found")
        db_item.last_crawled_at = when or _utc_now()
        self.session.flush()

    def _to_domain(self, db_item: PriceSourceDB) -> PriceSource:
        """Convert database model to domain model."""
        return PriceSource(
            id=db_item.id,
            name=db_item.name,
            slug=db_item.slug,
            base_url=db_item.base_url,
            search_url_template=db_item.search_url_template,
            sitemap_url=db_item.sitemap_url,
            adapter_type=db_item.adapter_type,
            is_active=db_item.is_active,
            rate_limit_delay_ms=db_item.rate_limit_delay_ms,
            last_crawled_at=db_item.last_crawled_at,
            config=json.loads(db_item.config_json or "{}"),
            created_at=db_item.created_at,
            updated_at=db_item.updated_at,
        )


class ExternalOfferRepository:
    """Repository for ExternalOffer operations."""

    _UPSERT_COLUMNS = (
        "pdp_url",
        "price_amount",
        "currency",
        "available",
        "title_raw",
        "match_confidence",
        "last_fetched_at",
        "updated_at",
    )

    def __init__(self, session: Session):
        self.session = session

    def upsert(self, offer: ExternalOffer) -> ExternalOffer:
        """
        Insert or overwrite the offer for (wine_id, price_source_id).

        Uses INSERT ... ON CONFLICT DO UPDATE on SQLite and PostgreSQL, so
        the pair never holds more than one row.
        """
        now = _utc_now()
        values: dict[str, Any] = {
            "id": offer.id,
            "wine_id": offer.wine_id,
            "price_source_id": offer.price_source_id,
            "pdp_url": offer.pdp_url,
            "price_amount": offer.price_amount,
            "currency": offer.currency,
            "available": offer.available,
            "title_raw": offer.title_raw,
            "match_confidence": offer.match_confidence,
            "last_fetched_at": now,
            "created_at": now,
            "updated_at": now,
        }

        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            insert_stmt = postgresql.insert(ExternalOfferDB)
        elif dialect == "sqlite":
            insert_stmt = sqlite.insert(ExternalOfferDB)
        else:
            raise NotImplementedError(f"Offer upsert is not supported on {dialect}")

        stmt = insert_stmt.values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[ExternalOfferDB.wine_id, ExternalOfferDB.price_source_id],
            set_={column: stmt.excluded[column] for column in self._UPSERT_COLUMNS},
        )
        self.session.execute(stmt)
        self.session.flush()

        stored = self.get_for_pair(offer.wine_id, offer.price_source_id)
        if stored is None:
            raise RuntimeError(
                f"Upserted offer for wine {offer.wine_id} / source {offer.price_source_id} not found"
            )
        return stored

    def get_for_pair(self, wine_id: str, price_source_id: str) -> ExternalOffer | None:
        """Get the stored offer for a (wine, source) pair."""
        stmt = (
            select(ExternalOfferDB)
            .where(
                ExternalOfferDB.wine_id == str(wine_id),
                ExternalOfferDB.price_source_id == str(price_source_id),
            )
            .execution_options(populate_existing=True)
        )
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def list_by_wine(self, wine_id: str) -> list[OfferOverviewRow]:
        """Offers for a wine with source name/slug, cheapest first, unpriced last."""
        stmt = (
            select(ExternalOfferDB, PriceSourceDB.name, PriceSourceDB.slug)
            .outerjoin(PriceSourceDB, PriceSourceDB.id == ExternalOfferDB.price_source_id)
            .where(ExternalOfferDB.wine_id == str(wine_id))
            .order_by(ExternalOfferDB.price_amount.is_(None), ExternalOfferDB.price_amount.asc())
        )
        rows = self.session.execute(stmt).all()
        return [
            OfferOverviewRow(
                **self._to_domain(offer).model_dump(),
                source_name=source_name,
                source_slug=source_slug,
            )
            for offer, source_name, source_slug in rows
        ]

    def list_all(self, limit: int | None = None) -> list[OfferOverviewRow]:
        """All offers joined with source and wine names, most recently fetched first."""
        stmt = (
            select(
                ExternalOfferDB,
                PriceSourceDB.name,
                PriceSourceDB.slug,
                WineDB.wine_name,
                WineDB.vintage,
                ProducerDB.name,
            )
            .outerjoin(PriceSourceDB, PriceSourceDB.id == ExternalOfferDB.price_source_id)
            .outerjoin(WineDB, WineDB.id == ExternalOfferDB.wine_id)
            .outerjoin(ProducerDB, ProducerDB.id == WineDB.producer_id)
            .order_by(ExternalOfferDB.last_fetched_at.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        rows = self.session.execute(stmt).all()
        return [
            OfferOverviewRow(
                **self._to_domain(offer).model_dump(),
                source_name=source_name,
                source_slug=source_slug,
                wine_name=wine_name,
                vintage=vintage,
                producer_name=producer_name,
            )
            for offer, source_name, source_slug, wine_name, vintage, producer_name in rows
        ]

    def count(self) -> int:
        """Get total count of offers."""
        stmt = select(func.count()).select_from(ExternalOfferDB)
        return self.session.execute(stmt).scalar() or 0

    def _to_domain(self, db_item: ExternalOfferDB) -> ExternalOffer:
        """Convert database model to domain model."""
        return ExternalOffer(
            id=db_item.id,
            wine_id=db_item.wine_id,
            price_source_id=db_item.price_source_id,
            pdp_url=db_item.pdp_url,
            price_amount=db_item.price_amount,
            currency=db_item.currency,
            available=db_item.available,
            title_raw=db_item.title_raw,
            match_confidence=db_item.match_confidence,
            last_fetched_at=db_item.last_fetched_at,
            created_at=db_item.created_at,
            updated_at=db_item.updated_at,
        )


class CatalogRepository:
    """Read-only access to the storefront catalog projection."""

    def __init__(self, session: Session):
        self.session = session

    def get_wine_for_match(self, wine_id: str) -> WineForMatch | None:
        """Load a wine with its producer name."""
        stmt = (
            select(WineDB, ProducerDB.name)
            .outerjoin(ProducerDB, ProducerDB.id == WineDB.producer_id)
            .where(WineDB.id == str(wine_id))
        )
        row = self.session.execute(stmt).first()
        if row is None:
            return None
        wine, producer_name = row
        return WineForMatch(
            id=wine.id,
            wine_name=wine.wine_name,
            vintage=wine.vintage,
            producer_name=producer_name,
            grape_varieties=wine.grape_varieties,
            color=wine.color,
        )

    def list_wine_ids(self, limit: int | None = None) -> list[str]:
        """Wine IDs in ascending order."""
        stmt = select(WineDB.id).order_by(WineDB.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars().all())

    def count_wines(self) -> int:
        """Get total count of catalog wines."""
        stmt = select(func.count()).select_from(WineDB)
        return self.session.execute(stmt).scalar() or 0
