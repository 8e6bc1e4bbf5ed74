"""Database initialization and persistence layer."""

from wine_offers.db.engine import (
    get_database_url,
    get_engine,
    get_session,
    init_db,
    reset_engine,
    run_migrations,
)
from wine_offers.db.models import (
    Base,
    ExternalOfferDB,
    PriceSourceDB,
    ProducerDB,
    WineDB,
)
from wine_offers.db.repositories import (
    CatalogRepository,
    ExternalOfferRepository,
    PriceSourceRepository,
)

__all__ = [
    # Engine
    "get_database_url",
    "get_engine",
    "get_session",
    "init_db",
    "reset_engine",
    "run_migrations",
    # Models
    "Base",
    "PriceSourceDB",
    "ExternalOfferDB",
    "ProducerDB",
    "WineDB",
    # Repositories
    "PriceSourceRepository",
    "ExternalOfferRepository",
    "CatalogRepository",
]
