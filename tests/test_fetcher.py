"""Tests for the polite fetch client."""

import httpx
import pytest

from wine_offers.offers.fetcher import (
    MAX_BACKOFF_MS,
    PoliteFetcher,
    clear_fetch_cache,
    compute_backoff_ms,
    detect_bot_block,
    diagnostic_recording,
    fetch_with_cache,
    get_default_fetcher,
    get_diagnostic_recorder,
    is_retryable_error,
    reset_default_fetcher,
    safe_snippet,
    set_diagnostic_recorder,
)
from wine_offers.offers.settings import DEFAULT_USER_AGENT

URL = "https://vinbutiken.example/products/chablis"


class TestHelpers:
    """Tests for backoff, bot-block and snippet helpers."""

    def test_backoff_is_exponential_and_capped(self) -> None:
        """1s, 2s, 4s, 8s, then 10s."""
        assert [compute_backoff_ms(a) for a in range(6)] == [1000, 2000, 4000, 8000, 10_000, 10_000]
        assert compute_backoff_ms(20) == MAX_BACKOFF_MS

    @pytest.mark.parametrize(
        "body",
        [
            "<title>Just a moment...</title> Checking your browser before accessing",
            "<div class='cf-challenge'></div>",
            "Please enable JavaScript to continue",
            "<div class='g-recaptcha'></div>",
            "Access denied",
            "Are you a robot?",
        ],
    )
    def test_bot_block_markers(self, body: str) -> None:
        """Challenge, captcha and block pages are flagged."""
        assert detect_bot_block(body)

    def test_bot_block_ignores_normal_pages(self) -> None:
        """Ordinary wine pages, including the word "bottle", are not flagged."""
        assert not detect_bot_block("<h1>Chablis 2021</h1><p>A bottle of crisp white wine.</p>")
        assert not detect_bot_block("")

    def test_bot_block_scans_only_the_head(self) -> None:
        """Markers after the first 5000 characters are ignored."""
        assert not detect_bot_block("x" * 5000 + " captcha")
        assert detect_bot_block("x" * 4000 + " captcha")

    def test_safe_snippet(self) -> None:
        """Whitespace is collapsed and long bodies truncated."""
        assert safe_snippet("  a \n\n b  ") == "a b"
        snippet = safe_snippet("y" * 400)
        assert snippet == "y" * 300 + "..."
        assert safe_snippet("") == ""

    def test_retryable_errors(self) -> None:
        """Timeouts and resets are retryable, connection failures are not."""
        request = httpx.Request("GET", URL)
        assert is_retryable_error(httpx.ReadTimeout("timed out", request=request))
        assert is_retryable_error(httpx.ConnectTimeout("timed out", request=request))
        assert is_retryable_error(httpx.ReadError("reset", request=request))
        assert not is_retryable_error(httpx.ConnectError("refused", request=request))
        assert not is_retryable_error(ValueError("bad"))

    def test_reset_in_cause_chain_is_retryable(self) -> None:
        """A transport error caused by ConnectionResetError is retried."""
        error = httpx.ConnectError("connection lost")
        error.__cause__ = ConnectionResetError(104, "Connection reset by peer")
        assert is_retryable_error(error)


class TestFetchWithRetries:
    """Tests for PoliteFetcher.fetch_with_retries."""

    @pytest.mark.asyncio
    async def test_success(self, shop, fetcher: PoliteFetcher) -> None:
        """A 200 response comes back with body and final URL."""
        shop.add(URL, "<h1>Chablis</h1>")

        response = await fetcher.fetch_with_retries(URL)

        assert response.ok
        assert response.status == 200
        assert response.text == "<h1>Chablis</h1>"
        assert response.url == URL

    @pytest.mark.asyncio
    async def test_sends_polite_headers(self, shop, fetcher: PoliteFetcher) -> None:
        """User-Agent, Accept and Accept-Language are always sent."""
        shop.add(URL, "ok")

        await fetcher.fetch_with_retries(URL)

        headers = shop.requests[0].headers
        assert headers["user-agent"] == DEFAULT_USER_AGENT
        assert "text/html" in headers["accept"]
        assert headers["accept-language"].startswith("en")
        assert "cookie" not in headers

    @pytest.mark.asyncio
    async def test_http_error_status_not_retried(self, shop, fetcher: PoliteFetcher) -> None:
        """A 404 is a normal response with ok=False."""
        response = await fetcher.fetch_with_retries(URL, max_retries=3)

        assert not response.ok
        assert response.status == 404
        assert len(shop.requests) == 1
        assert fetcher.delays == []

    @pytest.mark.asyncio
    async def test_follows_redirects(self, shop, fetcher: PoliteFetcher) -> None:
        """The final URL after redirects is reported."""
        target = "https://vinbutiken.example/products/chablis-2021"
        shop.add(URL, status=301, headers={"location": target})
        shop.add(target, "moved here")

        response = await fetcher.fetch_with_retries(URL)

        assert response.ok
        assert response.url == target
        assert response.text == "moved here"

    @pytest.mark.asyncio
    async def test_retries_timeouts_with_backoff(self, shop, fetcher: PoliteFetcher) -> None:
        """Two timeouts then a success: three attempts, 1s and 2s backoff."""
        attempts = []

        def flaky(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) < 3:
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, text="finally")

        shop.add_handler(URL, flaky)

        response = await fetcher.fetch_with_retries(URL, max_retries=3)

        assert response.text == "finally"
        assert len(attempts) == 3
        assert fetcher.delays == [1000, 2000]

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise(self, shop, fetcher: PoliteFetcher) -> None:
        """After max_retries retryable failures the error propagates."""

        def always_timeout(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        shop.add_handler(URL, always_timeout)

        with pytest.raises(httpx.ConnectTimeout):
            await fetcher.fetch_with_retries(URL, max_retries=2)

        assert len(shop.requests) == 3
        assert fetcher.delays == [1000, 2000]

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_immediately(self, shop, fetcher: PoliteFetcher) -> None:
        """A refused connection is not retried."""

        def refused(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        shop.add_handler(URL, refused)

        with pytest.raises(httpx.ConnectError):
            await fetcher.fetch_with_retries(URL, max_retries=3)

        assert len(shop.requests) == 1
        assert fetcher.delays == []

    @pytest.mark.asyncio
    async def test_bot_block_does_not_fail_response(self, shop, fetcher: PoliteFetcher) -> None:
        """A 200 challenge page is still ok."""
        shop.add(URL, "Checking your browser before accessing vinbutiken.example")

        response = await fetcher.fetch_with_retries(URL)

        assert response.ok


class TestDiagnosticRecorder:
    """Tests for the process-wide diagnostic recorder."""

    @pytest.mark.asyncio
    async def test_records_every_exchange(self, shop, fetcher: PoliteFetcher) -> None:
        """Each completed request produces one FetchRecord."""
        shop.add(URL, "<p>Captcha required</p>")
        shop.add_json("https://vinbutiken.example/products/chablis.js", '{"title": "Chablis"}')

        with diagnostic_recording() as records:
            await fetcher.fetch_with_retries(URL)
            await fetcher.fetch_with_retries("https://vinbutiken.example/products/chablis.js")
            await fetcher.fetch_with_retries("https://vinbutiken.example/missing")

        assert [r.status for r in records] == [200, 200, 404]
        first = records[0]
        assert first.request_url == URL
        assert first.final_url == URL
        assert first.content_type.startswith("text/html")
        assert first.body_byte_length == len("<p>Captcha required</p>")
        assert first.body_snippet == "<p>Captcha required</p>"
        assert first.bot_block_detected
        assert records[1].content_type == "application/json"
        assert not records[1].bot_block_detected

    @pytest.mark.asyncio
    async def test_recorder_removed_after_block(self, shop, fetcher: PoliteFetcher) -> None:
        """Requests after the block are not captured."""
        shop.add(URL, "ok")

        with diagnostic_recording() as records:
            assert get_diagnostic_recorder() is not None
        await fetcher.fetch_with_retries(URL)

        assert get_diagnostic_recorder() is None
        assert records == []

    def test_recorder_removed_on_exception(self) -> None:
        """The recorder is uninstalled even when the block raises."""
        with pytest.raises(RuntimeError):
            with diagnostic_recording():
                raise RuntimeError("boom")

        assert get_diagnostic_recorder() is None

    @pytest.mark.asyncio
    async def test_failed_attempts_are_not_recorded(self, shop, fetcher: PoliteFetcher) -> None:
        """Only completed exchanges are recorded, not transport errors."""
        calls = []

        def flaky(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, text="ok")

        shop.add_handler(URL, flaky)

        with diagnostic_recording() as records:
            await fetcher.fetch_with_retries(URL, max_retries=1)

        assert len(records) == 1

    def test_set_and_clear(self) -> None:
        """The slot can be set and cleared explicitly."""
        captured = []
        set_diagnostic_recorder(captured.append)
        assert get_diagnostic_recorder() is not None
        set_diagnostic_recorder(None)
        assert get_diagnostic_recorder() is None


class TestFetchWithCache:
    """Tests for PoliteFetcher.fetch_with_cache."""

    @pytest.mark.asyncio
    async def test_second_fetch_served_from_cache(self, shop, fetcher: PoliteFetcher) -> None:
        """Repeated URLs hit the network once."""
        shop.add(URL, "<h1>Chablis</h1>")

        first = await fetcher.fetch_with_cache(URL)
        second = await fetcher.fetch_with_cache(URL)

        assert len(shop.requests) == 1
        assert second.ok and second.status == 200
        assert second.text == first.text
        assert fetcher.cache_size == 1

    @pytest.mark.asyncio
    async def test_failures_not_cached(self, shop, fetcher: PoliteFetcher) -> None:
        """Error statuses and empty bodies are fetched again."""
        empty = "https://vinbutiken.example/empty"
        shop.add(empty, "")

        await fetcher.fetch_with_cache(URL)
        await fetcher.fetch_with_cache(URL)
        await fetcher.fetch_with_cache(empty)
        await fetcher.fetch_with_cache(empty)

        assert len(shop.requests) == 4
        assert fetcher.cache_size == 0

    @pytest.mark.asyncio
    async def test_clear_cache(self, shop, fetcher: PoliteFetcher) -> None:
        """clear_cache forces a refetch."""
        shop.add(URL, "body")

        await fetcher.fetch_with_cache(URL)
        fetcher.clear_cache()
        await fetcher.fetch_with_cache(URL)

        assert len(shop.requests) == 2

    @pytest.mark.asyncio
    async def test_expired_entry_refetched(self, shop, fetcher: PoliteFetcher) -> None:
        """A zero TTL never serves from cache."""
        shop.add(URL, "body")

        await fetcher.fetch_with_cache(URL, cache_ttl_ms=0)
        await fetcher.fetch_with_cache(URL, cache_ttl_ms=0)

        assert len(shop.requests) == 2


class TestDefaultFetcher:
    """Tests for the module-level wrappers around the process-wide fetcher."""

    @pytest.mark.asyncio
    async def test_wrappers_share_one_cache(self, shop, fetcher: PoliteFetcher, monkeypatch) -> None:
        """fetch_with_cache reuses the default cache until clear_fetch_cache."""
        monkeypatch.setattr("wine_offers.offers.fetcher._default_fetcher", fetcher)
        shop.add(URL, "body")

        await fetch_with_cache(URL)
        await fetch_with_cache(URL)
        assert len(shop.requests) == 1

        clear_fetch_cache()
        assert fetcher.cache_size == 0

        await fetch_with_cache(URL)
        assert len(shop.requests) == 2

    def test_default_fetcher_is_reused(self) -> None:
        """get_default_fetcher returns the same client until reset."""
        first = get_default_fetcher()

        assert get_default_fetcher() is first
        reset_default_fetcher()
        assert get_default_fetcher() is not first
