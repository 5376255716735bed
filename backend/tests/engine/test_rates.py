"""Tests for the BTC/USD rate providers."""

import math

import httpx
import pytest

from navsim.engine.rates import (
    DEFAULT_BTC_PRICE,
    CoinGeckoRateProvider,
    StaticRateProvider,
)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class Counter:
    """Mock transport handler that counts calls and replays scripted responses."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


def _ok(rate: float) -> httpx.Response:
    return httpx.Response(200, json={"bitcoin": {"usd": rate}})


@pytest.mark.asyncio
class TestCoinGeckoRateProvider:
    """Tests for the HTTP-backed provider."""

    async def test_successful_fetch(self):
        """A good response becomes the current rate."""
        handler = Counter(_ok(65_432.1))
        provider = CoinGeckoRateProvider(client=_client(handler))
        assert await provider.refresh() == 65_432.1
        assert provider.current_rate() == 65_432.1
        assert provider.cache_age is not None

    async def test_cache_avoids_refetch(self):
        """Within the TTL the cached rate is reused without a request."""
        handler = Counter(_ok(70_000))
        provider = CoinGeckoRateProvider(client=_client(handler))
        await provider.refresh()
        await provider.refresh()
        assert handler.calls == 1

    async def test_retries_then_succeeds(self):
        """Transient failures are retried."""
        handler = Counter(httpx.Response(500), httpx.Response(503), _ok(61_000))
        provider = CoinGeckoRateProvider(client=_client(handler), backoff=0)
        assert await provider.refresh() == 61_000
        assert handler.calls == 3

    async def test_total_failure_uses_fallback(self):
        """With nothing cached, exhausted retries yield the fallback rate."""
        handler = Counter(httpx.Response(500))
        provider = CoinGeckoRateProvider(client=_client(handler), backoff=0)
        assert await provider.refresh() == DEFAULT_BTC_PRICE
        assert provider.current_rate() == DEFAULT_BTC_PRICE
        assert handler.calls == 3

    async def test_stale_cache_reused_on_failure(self):
        """A failed refresh falls back to the last good rate."""
        handler = Counter(_ok(58_000), httpx.Response(500))
        provider = CoinGeckoRateProvider(client=_client(handler), backoff=0, cache_ttl=0)
        await provider.refresh()
        assert await provider.refresh() == 58_000

    async def test_malformed_payload(self):
        """Bad JSON or implausible values count as failures."""
        handler = Counter(
            httpx.Response(200, content=b"not json"),
            httpx.Response(200, json={"ethereum": {"usd": 1}}),
            _ok(-5),
        )
        provider = CoinGeckoRateProvider(client=_client(handler), backoff=0)
        assert await provider.refresh() == DEFAULT_BTC_PRICE
        assert handler.calls == 3

    async def test_start_stop_keeps_injected_client(self):
        """stop() is idempotent and leaves a caller-owned client open."""
        client = _client(Counter(_ok(62_000)))
        provider = CoinGeckoRateProvider(client=client, refresh_interval=60)
        await provider.start()
        assert provider.current_rate() == 62_000
        await provider.stop()
        await provider.stop()
        assert not client.is_closed
        await client.aclose()


@pytest.mark.asyncio
class TestStaticRateProvider:
    """Tests for the fixed-rate provider."""

    async def test_fixed_rate(self):
        """The configured rate is always returned."""
        provider = StaticRateProvider(42_000)
        await provider.start()
        assert await provider.refresh() == 42_000
        assert provider.current_rate() == 42_000
        await provider.stop()

    @pytest.mark.parametrize("rate", [0, -1, math.nan, math.inf])
    async def test_invalid_rate_uses_default(self, rate):
        """Invalid rates are replaced by the default."""
        assert StaticRateProvider(rate).current_rate() == DEFAULT_BTC_PRICE
