"""Factories that wire the simulator from environment variables."""

from __future__ import annotations

import logging
import os

from .bus import UpdateBus
from .nav import DEFAULT_TOTAL_SUPPLY
from .rates import DEFAULT_BTC_PRICE, ExchangeRateProvider
from .service import PortfolioSimulator
from .simulation import SimulationContext
from .state_store import StorageBackend, ValuationStateStore

logger = logging.getLogger(__name__)


def create_storage() -> StorageBackend:
    """Pick a storage backend from NAVSIM_STATE_PATH.

    - NAVSIM_STATE_PATH set and non-empty -> JsonFileStorage(path)
    - Otherwise -> InMemoryStorage (state lives for the process only)
    """
    path = os.environ.get("NAVSIM_STATE_PATH", "").strip()

    if path:
        from .state_store import JsonFileStorage

        logger.info("Valuation storage: JSON file at %s", path)
        return JsonFileStorage(path)
    else:
        from .state_store import InMemoryStorage

        logger.info("Valuation storage: in-memory")
        return InMemoryStorage()


def create_rate_provider() -> ExchangeRateProvider:
    """Pick a BTC/USD rate source from NAVSIM_RATE_URL.

    - NAVSIM_RATE_URL set and non-empty -> CoinGeckoRateProvider(url)
    - Otherwise -> StaticRateProvider at the default rate

    Returns an unstarted provider. Caller must await provider.start().
    """
    url = os.environ.get("NAVSIM_RATE_URL", "").strip()

    if url:
        from .rates import CoinGeckoRateProvider

        logger.info("Rate source: HTTP (%s)", url)
        return CoinGeckoRateProvider(url=url)
    else:
        from .rates import StaticRateProvider

        logger.info("Rate source: static %.0f USD/BTC", DEFAULT_BTC_PRICE)
        return StaticRateProvider(DEFAULT_BTC_PRICE)


def _env_int(name: str) -> int | None:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return None


def create_simulator(bus: UpdateBus | None = None) -> PortfolioSimulator:
    """Build an unstarted PortfolioSimulator from the environment.

    Also reads NAVSIM_SEED (reproducible randomness) and NAVSIM_TOTAL_SUPPLY.
    """
    seed = _env_int("NAVSIM_SEED")
    supply = _env_int("NAVSIM_TOTAL_SUPPLY")
    if supply is not None and supply <= 0:
        logger.warning("Ignoring non-positive NAVSIM_TOTAL_SUPPLY=%d", supply)
        supply = None

    return PortfolioSimulator(
        store=ValuationStateStore(create_storage()),
        bus=bus,
        rates=create_rate_provider(),
        context=SimulationContext.create(seed),
        total_supply=supply or DEFAULT_TOTAL_SUPPLY,
    )
