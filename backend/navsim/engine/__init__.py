"""Valuation engine for navsim.

Public API:
    Position / NAVResult     - Immutable portfolio and NAV snapshots
    simulate_tick            - One major or minor tick over a portfolio
    SimulationContext        - Injectable owner of random/sentiment state
    ValuationStateStore      - Persisted positions + global reference valuation
    calculate_nav/update_nav - NAV aggregation (and persist + publish)
    UpdateBus / Topic        - Debounced publish/subscribe
    PortfolioSimulator       - Timer-driven async runtime
    create_simulator         - Factory reading environment configuration
    create_stream_router     - FastAPI router factory for the SSE endpoint
"""

from .bus import Debouncer, Subscription, Topic, UpdateBus
from .factory import create_rate_provider, create_simulator, create_storage
from .models import Currency, MarketCapTier, NAVResult, Position, TickMode, TickResult
from .nav import calculate_nav, update_nav
from .rates import CoinGeckoRateProvider, ExchangeRateProvider, StaticRateProvider
from .service import PortfolioSimulator
from .simulation import SimulationContext, simulate_tick
from .state_store import InMemoryStorage, JsonFileStorage, NullStorage, StorageBackend, ValuationStateStore
from .stream import create_stream_router

__all__ = [
    "CoinGeckoRateProvider",
    "Currency",
    "Debouncer",
    "ExchangeRateProvider",
    "InMemoryStorage",
    "JsonFileStorage",
    "MarketCapTier",
    "NAVResult",
    "NullStorage",
    "PortfolioSimulator",
    "Position",
    "SimulationContext",
    "StaticRateProvider",
    "StorageBackend",
    "Subscription",
    "TickMode",
    "TickResult",
    "Topic",
    "UpdateBus",
    "ValuationStateStore",
    "calculate_nav",
    "create_rate_provider",
    "create_simulator",
    "create_storage",
    "create_stream_router",
    "simulate_tick",
    "update_nav",
]
