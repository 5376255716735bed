"""Data models for the valuation simulator."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field, replace
from enum import Enum

from .seed_portfolio import MICRO_CAP_CEILING, MID_CAP_CEILING, SMALL_CAP_CEILING


class MarketCapTier(str, Enum):
    """Size bucket of a position. Smaller tiers move more."""

    MICRO = "micro"
    SMALL = "small"
    MID = "mid"
    LARGE = "large"

    @classmethod
    def for_value(cls, value: float) -> MarketCapTier:
        if value < MICRO_CAP_CEILING:
            return cls.MICRO
        if value < SMALL_CAP_CEILING:
            return cls.SMALL
        if value < MID_CAP_CEILING:
            return cls.MID
        return cls.LARGE


class Currency(str, Enum):
    """Display currency. Simulation math is always done in sats."""

    BTC = "btc"
    USD = "usd"

    @classmethod
    def parse(cls, raw: object, default: Currency | None = None) -> Currency:
        """Lenient parse: unknown values map to ``default`` (USD)."""
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return default or cls.USD


class TickMode(str, Enum):
    MAJOR = "major"
    MINOR = "minor"


def _change_percent(current: float, initial: float) -> float:
    return (current - initial) / initial * 100


def _price_per_token(current: float, token_amount: float) -> float:
    return max(1.0, current / token_amount)


@dataclass(frozen=True, slots=True)
class Position:
    """Immutable snapshot of one simulated holding.

    ``initial_value`` is fixed at creation. Every tick produces a new
    Position via :meth:`with_current`, which keeps ``change_percent`` and
    ``price_per_token`` derived from ``current_value``.
    """

    name: str
    initial_value: float
    current_value: float
    token_amount: float
    change_percent: float = 0.0
    price_per_token: float = 0.0
    last_spike_day: int | None = None
    sector: str | None = None
    market_cap: float | None = None
    description: str | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Position name must be non-empty")
        if not (math.isfinite(self.token_amount) and self.token_amount > 0):
            raise ValueError(f"token_amount must be > 0 for {self.name!r}")
        if not (math.isfinite(self.initial_value) and self.initial_value > 0):
            raise ValueError(f"initial_value must be > 0 for {self.name!r}")
        if not math.isfinite(self.current_value):
            raise ValueError(f"current_value must be finite for {self.name!r}")

    @classmethod
    def create(
        cls,
        name: str,
        value: float,
        token_amount: float,
        *,
        sector: str | None = None,
        market_cap: float | None = None,
        description: str | None = None,
    ) -> Position:
        """Fresh position at entry: current == initial, change == 0."""
        value = float(value)
        return cls(
            name=name,
            initial_value=value,
            current_value=value,
            token_amount=float(token_amount),
            change_percent=0.0,
            price_per_token=_price_per_token(value, token_amount),
            sector=sector,
            market_cap=market_cap,
            description=description,
        )

    @property
    def market_cap_tier(self) -> MarketCapTier:
        basis = self.market_cap if self.market_cap is not None else self.current_value
        return MarketCapTier.for_value(basis)

    def with_current(self, current_value: float, last_spike_day: int | None = None) -> Position:
        """Return a copy at a new valuation with derived fields recomputed.

        The valuation is floored at 1 sat.
        """
        current = max(1.0, float(current_value))
        return replace(
            self,
            current_value=current,
            change_percent=_change_percent(current, self.initial_value),
            price_per_token=_price_per_token(current, self.token_amount),
            last_spike_day=self.last_spike_day if last_spike_day is None else last_spike_day,
        )

    def with_sector(self, sector: str) -> Position:
        return replace(self, sector=sector)

    def to_dict(self) -> dict:
        """Serialize using the persisted (camelCase) layout."""
        data = {
            "name": self.name,
            "value": self.initial_value,
            "current": self.current_value,
            "change": self.change_percent,
            "tokenAmount": self.token_amount,
            "pricePerToken": self.price_per_token,
            "lastSpikeDay": self.last_spike_day,
        }
        if self.sector is not None:
            data["sector"] = self.sector
        if self.market_cap is not None:
            data["marketCap"] = self.market_cap
        if self.description is not None:
            data["description"] = self.description
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Position:
        """Build from the persisted layout. Derived fields are recomputed.

        Raises KeyError/TypeError/ValueError on malformed input.
        """
        initial = float(data["value"])
        current = float(data.get("current", initial))
        position = cls(
            name=str(data["name"]),
            initial_value=initial,
            current_value=max(1.0, current),
            token_amount=float(data["tokenAmount"]),
            last_spike_day=_optional_int(data.get("lastSpikeDay")),
            sector=data.get("sector") or None,
            market_cap=_optional_float(data.get("marketCap")),
            description=data.get("description"),
        )
        return position.with_current(position.current_value)


def _optional_int(raw: object) -> int | None:
    if raw is None:
        return None
    return int(raw)


def _optional_float(raw: object) -> float | None:
    if raw is None:
        return None
    return float(raw)


@dataclass(frozen=True, slots=True)
class NAVResult:
    """Computed NAV snapshot. Never persisted, never the source of truth."""

    nav_sats: float
    nav_usd: float
    price_per_token: int
    price_per_token_usd: float
    total_token_supply: int
    change_percentage: float
    btc_price: float
    timestamp: float = field(default_factory=time.time)  # Unix seconds

    def to_dict(self) -> dict:
        """Serialize for JSON / SSE transmission."""
        return {
            "nav_sats": self.nav_sats,
            "nav_usd": round(self.nav_usd, 2),
            "price_per_token": self.price_per_token,
            "price_per_token_usd": round(self.price_per_token_usd, 4),
            "total_token_supply": self.total_token_supply,
            "change_percentage": round(self.change_percentage, 4),
            "btc_price": self.btc_price,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True, slots=True)
class TickResult:
    """Outcome of one simulation tick across the whole portfolio."""

    positions: tuple[Position, ...]
    mode: TickMode
    day: int
    aggregate_change: float = 0.0  # Fraction: sum(current) vs sum(initial)
    tick_delta: float = 0.0  # Fraction: sum(current) after vs before this tick
    spikes: tuple[str, ...] = ()
    spike_paths: dict[str, tuple[float, ...]] = field(default_factory=dict)

    @property
    def total_value(self) -> float:
        return sum(p.current_value for p in self.positions)
