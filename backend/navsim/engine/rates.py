"""BTC/USD exchange-rate providers used for display conversion."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from abc import ABC, abstractmethod

import httpx

logger = logging.getLogger(__name__)

DEFAULT_BTC_PRICE = 50_000.0  # Used wherever no fetched rate is available
COINGECKO_URL = "https://api.coingecko.com/api/v3/simple/price?ids=bitcoin&vs_currencies=usd"


class ExchangeRateProvider(ABC):
    """Contract for BTC/USD rate sources.

    The simulator never waits on a rate: ``current_rate()`` is synchronous
    and always returns something usable. ``refresh()`` does the I/O.

    Lifecycle:
        rates = create_rate_provider()
        await rates.start()       # first fetch + background refresh
        rate = rates.current_rate()
        await rates.stop()
    """

    @abstractmethod
    async def refresh(self) -> float:
        """Fetch (or reuse) a rate and return it. Must not raise."""

    @abstractmethod
    def current_rate(self) -> float:
        """Best rate known right now. Must not raise."""

    async def start(self) -> None:
        """Begin refreshing in the background. Default: one refresh."""
        await self.refresh()

    async def stop(self) -> None:
        """Stop background work. Safe to call multiple times."""


class StaticRateProvider(ExchangeRateProvider):
    """Fixed rate, for offline use and tests."""

    def __init__(self, rate: float = DEFAULT_BTC_PRICE) -> None:
        if not (math.isfinite(rate) and rate > 0):
            logger.warning("Invalid static rate %r, using %.0f", rate, DEFAULT_BTC_PRICE)
            rate = DEFAULT_BTC_PRICE
        self._rate = float(rate)

    async def refresh(self) -> float:
        return self._rate

    def current_rate(self) -> float:
        return self._rate


class CoinGeckoRateProvider(ExchangeRateProvider):
    """Rate provider backed by a CoinGecko-style simple price endpoint.

    Expects ``{"bitcoin": {"usd": <price>}}``. Fetches are bounded by
    ``timeout`` and retried up to ``max_retries`` times with exponential
    backoff. Results are cached for ``cache_ttl`` seconds. On failure the
    last good rate is reused, then ``fallback_rate``.
    """

    def __init__(
        self,
        url: str = COINGECKO_URL,
        timeout: float = 5.0,
        max_retries: int = 3,
        backoff: float = 0.5,
        cache_ttl: float = 3600.0,
        refresh_interval: float = 900.0,
        fallback_rate: float = DEFAULT_BTC_PRICE,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._backoff = backoff
        self._cache_ttl = cache_ttl
        self._interval = refresh_interval
        self._fallback = fallback_rate
        self._client = client
        self._owns_client = client is None
        self._cached_rate: float | None = None
        self._cached_at: float = 0.0
        self._task: asyncio.Task | None = None

    @property
    def cache_age(self) -> float | None:
        """Seconds since the last successful fetch, None if never."""
        if self._cached_rate is None:
            return None
        return time.time() - self._cached_at

    def current_rate(self) -> float:
        return self._cached_rate if self._cached_rate is not None else self._fallback

    async def refresh(self) -> float:
        age = self.cache_age
        if age is not None and age < self._cache_ttl:
            return self._cached_rate

        for attempt in range(self._max_retries):
            try:
                rate = await self._fetch()
                self._cached_rate = rate
                self._cached_at = time.time()
                logger.debug("BTC rate refreshed: %.2f", rate)
                return rate
            except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
                logger.warning("Rate fetch attempt %d/%d failed: %s", attempt + 1, self._max_retries, e)
                if attempt + 1 < self._max_retries:
                    await asyncio.sleep(self._backoff * 2**attempt)

        if self._cached_rate is not None:
            logger.warning("Using stale cached BTC rate %.2f", self._cached_rate)
            return self._cached_rate
        logger.error("No BTC rate available, falling back to %.0f", self._fallback)
        return self._fallback

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        await self.refresh()
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._refresh_loop(), name="rate-refresher")
        logger.info("Rate refresher started: %.0fs interval", self._interval)

    async def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info("Rate refresher stopped")

    # --- Internal ---

    async def _refresh_loop(self) -> None:
        """First refresh already happened in start()."""
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.refresh()
            except Exception:
                logger.exception("Rate refresh failed")

    async def _fetch(self) -> float:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        response = await self._client.get(self._url, timeout=self._timeout)
        response.raise_for_status()
        rate = float(response.json()["bitcoin"]["usd"])
        if not (math.isfinite(rate) and rate > 0):
            raise ValueError(f"Implausible BTC rate {rate!r}")
        return rate
