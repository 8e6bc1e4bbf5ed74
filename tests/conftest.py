"""Shared fixtures: temporary database, fake shop transport, clean global state."""

import tempfile
from pathlib import Path
from typing import Callable

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from wine_offers.core.schema import PriceSource
from wine_offers.db.models import Base, ProducerDB, WineDB
from wine_offers.db.repositories import PriceSourceRepository
from wine_offers.offers.adapters.shopify import clear_sitemap_offer_cache
from wine_offers.offers.fetcher import PoliteFetcher, reset_default_fetcher, set_diagnostic_recorder
from wine_offers.offers.settings import FetchConfig, OffersConfig, reset_default_config

Handler = Callable[[httpx.Request], httpx.Response]


class FakeShop:
    """
    In-memory HTTP responder for httpx.MockTransport.

    Routes are keyed by host + path; the query string is ignored unless a
    route is a callable that inspects the request itself.
    """

    def __init__(self) -> None:
        self.routes: dict[str, Handler] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self,
        url: str,
        body: str = "",
        status: int = 200,
        content_type: str = "text/html; charset=utf-8",
        headers: dict[str, str] | None = None,
    ) -> None:
        def respond(request: httpx.Request) -> httpx.Response:
            all_headers = {"content-type": content_type, **(headers or {})}
            return httpx.Response(status, text=body, headers=all_headers)

        self.routes[self._key(httpx.URL(url))] = respond

    def add_json(self, url: str, body: str, status: int = 200) -> None:
        self.add(url, body, status=status, content_type="application/json")

    def add_handler(self, url: str, handler: Handler) -> None:
        self.routes[self._key(httpx.URL(url))] = handler

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(self._key(request.url))
        if route is None:
            return httpx.Response(404, text="Not Found")
        return route(request)

    def urls(self) -> list[str]:
        return [str(r.url) for r in self.requests]

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    @staticmethod
    def _key(url: httpx.URL) -> str:
        return f"{url.host}{url.path}"


@pytest.fixture(autouse=True)
def reset_global_state():
    """Module-level caches and the diagnostic slot must not leak between tests."""
    yield
    clear_sitemap_offer_cache()
    set_diagnostic_recorder(None)
    reset_default_config()
    reset_default_fetcher()


@pytest.fixture
def shop() -> FakeShop:
    """Fake shop served through httpx.MockTransport."""
    return FakeShop()


@pytest.fixture
def fetcher(shop: FakeShop) -> PoliteFetcher:
    """Fetcher wired to the fake shop; delays are recorded instead of slept."""
    client = PoliteFetcher(FetchConfig(), transport=httpx.MockTransport(shop.handler))
    client.delays = []

    async def record_delay(ms: float) -> None:
        client.delays.append(ms)

    client.delay = record_delay
    return client


@pytest.fixture
def offers_config() -> OffersConfig:
    """Default pipeline settings, independent of any offers.yaml on disk."""
    return OffersConfig()


@pytest.fixture
def temp_db_path():
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test.db"


@pytest.fixture
def test_engine(temp_db_path):
    """Create a test database engine."""
    engine = create_engine(f"sqlite:///{temp_db_path}", echo=False)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def test_session(test_engine):
    """Create a database session for testing."""
    SessionLocal = sessionmaker(bind=test_engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def add_wine(test_session):
    """Factory inserting a catalog wine (and its producer) and returning the wine ID."""

    def _add(wine_name: str, vintage: str = "", producer: str | None = None, wine_id: str | None = None) -> str:
        producer_id = None
        if producer:
            producer_row = ProducerDB(name=producer)
            test_session.add(producer_row)
            test_session.flush()
            producer_id = producer_row.id
        wine = WineDB(wine_name=wine_name, vintage=vintage, producer_id=producer_id)
        if wine_id:
            wine.id = wine_id
        test_session.add(wine)
        test_session.commit()
        return wine.id

    return _add


@pytest.fixture
def add_source(test_session):
    """Factory inserting a price source and returning it."""

    def _add(
        name: str = "Vinbutiken",
        base_url: str = "https://vinbutiken.example",
        adapter_type: str = "shopify",
        **kwargs,
    ) -> PriceSource:
        kwargs.setdefault("slug", name.lower().replace(" ", "-"))
        source = PriceSourceRepository(test_session).create(
            PriceSource(name=name, base_url=base_url, adapter_type=adapter_type, **kwargs)
        )
        test_session.commit()
        return source

    return _add
