"""
Database Engine
===============

One lazily created engine per process, shared by the CLI, the admin API
and the arq worker. The location comes from DATABASE_URL, which may be a
SQLite file path or a full SQLAlchemy URL; without it the offers database
lives under ~/.wine_offers.

Schema management: the admin API creates missing tables on startup
(init_db); deployments run the Alembic revisions under db/migrations
(run_migrations / `wine-offers init-db --migrate`).
"""

import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

DEFAULT_DB_PATH = Path.home() / ".wine_offers" / "wine_offers.db"

_MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def get_database_url() -> str:
    """SQLAlchemy URL from DATABASE_URL, else the default SQLite file."""
    configured = os.environ.get("DATABASE_URL", "").strip()
    if "://" in configured:
        return configured

    path = Path(configured).expanduser() if configured else DEFAULT_DB_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{path}"


def get_engine() -> Engine:
    """The process-wide engine, created on first use."""
    global _engine, _session_factory
    if _engine is None:
        url = get_database_url()
        # Refresh batches hand one session between asyncio tasks on the loop thread
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        _engine = create_engine(url, connect_args=connect_args)
        _session_factory = sessionmaker(bind=_engine, autoflush=False)
    return _engine


def reset_engine() -> None:
    """Dispose the engine so the next use re-reads DATABASE_URL."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


@contextmanager
def get_session() -> Iterator[Session]:
    """
    Open a session on the shared engine and close it afterwards.

    Nothing is committed here. OfferRefreshService commits each offer
    upsert and last_crawled update itself (and rolls back a failed
    source), the admin routes and CLI commit their price-source edits,
    and the diagnostic runner never writes.

    Usage:
        with get_session() as session:
            result = await OfferRefreshService(session).refresh_wine(wine_id)
    """
    get_engine()
    session = _session_factory()
    try:
        yield session
    finally:
        session.close()


def init_db() -> None:
    """Create the price source, offer and catalog projection tables if missing."""
    from wine_offers.db.models import Base

    Base.metadata.create_all(bind=get_engine())


def run_migrations(revision: str = "head") -> None:
    """Upgrade the configured database with the bundled Alembic revisions."""
    config = Config()
    config.set_main_option("script_location", str(_MIGRATIONS_DIR))
    config.set_main_option("sqlalchemy.url", get_database_url())
    command.upgrade(config, revision)
