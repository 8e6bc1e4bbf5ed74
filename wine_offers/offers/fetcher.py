"""
Polite Fetch Module
===================

HTTP GET with timeouts, bounded retries with exponential backoff,
a per-URL response cache and bot-block heuristics. Used by the source
adapters so that competitor sites are not overloaded.

A single process-wide diagnostic recorder can be installed to capture
every completed exchange; it is only set during a diagnostic run.
"""

from __future__ import annotations

import asyncio
import logging
import re
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Any, Callable, Iterator

import httpx

from wine_offers.offers.cache import TTLCache
from wine_offers.offers.settings import FetchConfig, get_default_config

logger = logging.getLogger(__name__)

ACCEPT_HEADER = "text/html, application/xhtml+xml, application/json, application/ld+json"
MAX_BACKOFF_MS = 10_000
BOT_BLOCK_SCAN_CHARS = 5000

_BOT_BLOCK_PATTERNS = [
    re.compile(r"cloudflare|checking your browser|cf-challenge|challenge-platform"),
    re.compile(r"enable javascript|please enable js"),
    re.compile(r"captcha|recaptcha|hcaptcha"),
    re.compile(r"access denied|you have been blocked|request blocked|are you a robot|\bbot\b"),
]


@dataclass
class FetchResponse:
    """Outcome of one GET request."""

    ok: bool
    status: int
    text: str
    url: str


@dataclass
class FetchRecord:
    """Diagnostic metadata for one completed HTTP exchange."""

    request_url: str
    status: int
    content_type: str | None
    final_url: str
    body_byte_length: int
    body_snippet: str
    bot_block_detected: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)


DiagnosticRecorder = Callable[[FetchRecord], None]

_diagnostic_recorder: DiagnosticRecorder | None = None


def set_diagnostic_recorder(recorder: DiagnosticRecorder | None) -> None:
    """Install (or, with None, remove) the process-wide fetch recorder."""
    global _diagnostic_recorder
    if recorder is not None and _diagnostic_recorder is not None:
        logger.warning("Replacing an installed diagnostic recorder; diagnostics are not reentrant")
    _diagnostic_recorder = recorder


def get_diagnostic_recorder() -> DiagnosticRecorder | None:
    """Return the installed recorder, if any."""
    return _diagnostic_recorder


@contextmanager
def diagnostic_recording() -> Iterator[list[FetchRecord]]:
    """
    Capture every fetch made inside the block.

    Usage:
        with diagnostic_recording() as records:
            await adapter.search_candidates(wine, source)
        # records holds one FetchRecord per completed request

    The recorder is removed on every exit path, including exceptions.
    """
    records: list[FetchRecord] = []
    set_diagnostic_recorder(records.append)
    try:
        yield records
    finally:
        set_diagnostic_recorder(None)


def detect_bot_block(text: str) -> bool:
    """
    Heuristically detect an anti-bot challenge page.

    Only the first 5000 characters are scanned. The result is
    informational and never turns a successful response into a failure.
    """
    if not text:
        return False
    head = text[:BOT_BLOCK_SCAN_CHARS].lower()
    return any(pattern.search(head) for pattern in _BOT_BLOCK_PATTERNS)


def safe_snippet(text: str, max_chars: int = 300) -> str:
    """Whitespace-collapsed prefix of a body, with "..." when truncated."""
    collapsed = re.sub(r"\s+", " ", text or "").strip()
    snippet = collapsed[:max_chars]
    return snippet if len(snippet) == len(collapsed) else snippet + "..."


def compute_backoff_ms(attempt: int) -> int:
    """Exponential backoff for a zero-based attempt: 1s, 2s, 4s ... capped at 10s."""
    return min(1000 * 2**attempt, MAX_BACKOFF_MS)


def is_retryable_error(exc: BaseException) -> bool:
    """
    Check if a network error is worth retrying.

    Timeouts (connect, read, pool) and connection resets are retried;
    anything else (DNS failure, refused connection, bad URL) is not.
    """
    if isinstance(exc, (httpx.TimeoutException, httpx.ReadError, httpx.RemoteProtocolError)):
        return True
    cause: BaseException | None = exc
    for _ in range(5):
        if cause is None:
            break
        if isinstance(cause, (ConnectionResetError, TimeoutError)):
            return True
        cause = cause.__cause__ or cause.__context__
    return False


class PoliteFetcher:
    """
    HTTP client wrapper used by all source adapters.

    Features:
    - Per-request timeout and bounded retries with exponential backoff
    - In-memory per-URL TTL cache for successful responses
    - Diagnostic recording hook and bot-block detection
    - Fixed descriptive User-Agent; no cookies kept between requests
    """

    def __init__(
        self,
        config: FetchConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or FetchConfig()
        self.transport = transport
        self._cache: TTLCache[str, str] = TTLCache(default_ttl_ms=self.config.cache_ttl_ms)

    @property
    def headers(self) -> dict[str, str]:
        """Headers sent with every request."""
        return {
            "User-Agent": self.config.user_agent,
            "Accept": ACCEPT_HEADER,
            "Accept-Language": self.config.accept_language,
        }

    async def delay(self, ms: float) -> None:
        """Sleep for ms milliseconds (rate limiting and backoff)."""
        if ms > 0:
            await asyncio.sleep(ms / 1000)

    async def fetch_with_retries(
        self,
        url: str,
        timeout_ms: int | None = None,
        max_retries: int | None = None,
    ) -> FetchResponse:
        """
        Fetch a URL, retrying transient failures.

        HTTP error statuses are not retried; they come back with ok=False.
        After max_retries retryable failures the last error is raised;
        non-retryable errors are raised immediately.

        Args:
            url: URL to GET
            timeout_ms: Per-attempt timeout
            max_retries: Retries after the first attempt

        Returns:
            FetchResponse with body text and final (post-redirect) URL
        """
        timeout_ms = self.config.timeout_ms if timeout_ms is None else timeout_ms
        max_retries = self.config.max_retries if max_retries is None else max_retries

        attempt = 0
        while True:
            try:
                async with httpx.AsyncClient(
                    timeout=timeout_ms / 1000,
                    transport=self.transport,
                    headers=self.headers,
                    follow_redirects=True,
                ) as client:
                    response = await client.get(url)
                break
            except httpx.HTTPError as e:
                if attempt < max_retries and is_retryable_error(e):
                    backoff_ms = compute_backoff_ms(attempt)
                    logger.warning(
                        f"Retryable error fetching {url}: {e!r} "
                        f"(attempt {attempt + 1}/{max_retries + 1}, retrying in {backoff_ms}ms)"
                    )
                    await self.delay(backoff_ms)
                    attempt += 1
                    continue
                raise

        text = response.text
        final_url = str(response.url)

        recorder = _diagnostic_recorder
        if recorder is not None:
            recorder(
                FetchRecord(
                    request_url=url,
                    status=response.status_code,
                    content_type=response.headers.get("content-type"),
                    final_url=final_url,
                    body_byte_length=len(response.content),
                    body_snippet=safe_snippet(text),
                    bot_block_detected=detect_bot_block(text),
                )
            )

        return FetchResponse(
            ok=response.is_success,
            status=response.status_code,
            text=text,
            url=final_url,
        )

    async def fetch_with_cache(
        self,
        url: str,
        timeout_ms: int | None = None,
        max_retries: int | None = None,
        cache_ttl_ms: int | None = None,
    ) -> FetchResponse:
        """
        Fetch a URL, serving repeated requests from the in-memory cache.

        Only successful, non-empty bodies are cached.
        """
        cached = self._cache.get(url)
        if cached is not None:
            logger.debug(f"Cache hit for {url}")
            return FetchResponse(ok=True, status=200, text=cached, url=url)

        result = await self.fetch_with_retries(url, timeout_ms=timeout_ms, max_retries=max_retries)
        if result.ok and result.text:
            self._cache.set(url, result.text, cache_ttl_ms)
        return result

    def clear_cache(self) -> None:
        """Drop all cached responses."""
        self._cache.clear()

    @property
    def cache_size(self) -> int:
        """Number of cached URLs (including not yet evicted expired ones)."""
        return len(self._cache)


# Global fetcher instance (initialized lazily)
_default_fetcher: PoliteFetcher | None = None


def get_default_fetcher() -> PoliteFetcher:
    """Get or create the process-wide fetcher."""
    global _default_fetcher
    if _default_fetcher is None:
        _default_fetcher = PoliteFetcher(get_default_config().fetch)
    return _default_fetcher


def reset_default_fetcher() -> None:
    """Reset the process-wide fetcher (useful for testing)."""
    global _default_fetcher
    _default_fetcher = None


async def fetch_with_retries(
    url: str,
    timeout_ms: int | None = None,
    max_retries: int | None = None,
) -> FetchResponse:
    """Fetch with the default fetcher. See PoliteFetcher.fetch_with_retries."""
    return await get_default_fetcher().fetch_with_retries(url, timeout_ms, max_retries)


async def fetch_with_cache(
    url: str,
    timeout_ms: int | None = None,
    max_retries: int | None = None,
    cache_ttl_ms: int | None = None,
) -> FetchResponse:
    """Fetch with the default fetcher's cache. See PoliteFetcher.fetch_with_cache."""
    return await get_default_fetcher().fetch_with_cache(url, timeout_ms, max_retries, cache_ttl_ms)


def clear_fetch_cache() -> None:
    """Clear the default fetcher's response cache."""
    get_default_fetcher().clear_cache()
