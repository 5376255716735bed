"""Random movement generators: daily drift and rare spikes.

Every function takes an explicit ``numpy.random.Generator`` so a seeded
generator reproduces the same path. Changes are fractions (0.02 == +2%).
"""

from __future__ import annotations

import math
import time

import numpy as np

from .models import MarketCapTier
from .seed_portfolio import (
    DAILY_CHANGE_CEILING,
    DAILY_CHANGE_FLOOR,
    MARKET_CORRELATION_WEIGHT,
    POSITIVE_BIAS_OFFSET,
    POSITIVE_BIAS_PROBABILITY,
    SECTOR_CORRELATION_WEIGHT,
    SPIKE_BASE_PROBABILITY,
    SPIKE_COOLDOWN_DAYS,
    SPIKE_HIGH_VOLATILITY_PROBABILITY,
    SPIKE_MAX_PROBABILITY,
    SPIKE_POSITIVE_PROBABILITY,
    SPIKE_RAMP_PER_DAY,
    SPIKE_RAMP_START_DAYS,
    SPIKE_SENTIMENT_SKEW,
)

SECONDS_PER_DAY = 86_400

_DAILY_VOLATILITY: dict[MarketCapTier, float] = {
    MarketCapTier.MICRO: 0.04,
    MarketCapTier.SMALL: 0.03,
    MarketCapTier.MID: 0.02,
    MarketCapTier.LARGE: 0.02,
}

_SPIKE_RANGES: dict[MarketCapTier, tuple[float, float]] = {
    MarketCapTier.MICRO: (0.35, 0.60),
    MarketCapTier.SMALL: (0.30, 0.55),
    MarketCapTier.MID: (0.25, 0.50),
    MarketCapTier.LARGE: (0.25, 0.50),
}


def day_number(timestamp: float | None = None) -> int:
    """Whole days since the Unix epoch."""
    ts = time.time() if timestamp is None else timestamp
    return int(ts // SECONDS_PER_DAY)


def box_muller(rng: np.random.Generator) -> float:
    """One standard normal draw from two uniforms (Box-Muller)."""
    # 1 - U keeps u1 in (0, 1] so log() never sees zero
    u1 = 1.0 - rng.random()
    u2 = rng.random()
    return math.sqrt(-2.0 * math.log(u1)) * math.cos(2.0 * math.pi * u2)


def daily_volatility(tier: MarketCapTier) -> float:
    return _DAILY_VOLATILITY[tier]


def spike_range(tier: MarketCapTier) -> tuple[float, float]:
    return _SPIKE_RANGES[tier]


def generate_daily_change(
    rng: np.random.Generator,
    tier: MarketCapTier = MarketCapTier.MID,
    market_sentiment: float = 0.0,
    sector_sentiment: float = 0.0,
    positive_bias: bool = True,
) -> float:
    """Daily percentage change clamped to [-3%, +5%].

    A Gaussian draw scaled by tier volatility, plus market (60%) and
    sector (30%) sentiment effects. With ``positive_bias`` a +/-1% offset
    is added, upward 65% of the time.
    """
    volatility = daily_volatility(tier)
    change = box_muller(rng) * volatility
    change += market_sentiment * volatility * MARKET_CORRELATION_WEIGHT
    change += sector_sentiment * volatility * SECTOR_CORRELATION_WEIGHT

    if positive_bias:
        direction = 1 if rng.random() < POSITIVE_BIAS_PROBABILITY else -1
        change += POSITIVE_BIAS_OFFSET * direction

    return max(DAILY_CHANGE_FLOOR, min(DAILY_CHANGE_CEILING, change))


def spike_probability(
    current_day: int,
    last_spike_day: int | None = None,
    high_volatility: bool = False,
) -> float:
    """Probability of a spike today. Zero inside the cool-down window."""
    days_since = current_day - (last_spike_day or 0)
    if days_since < SPIKE_COOLDOWN_DAYS:
        return 0.0

    probability = SPIKE_HIGH_VOLATILITY_PROBABILITY if high_volatility else SPIKE_BASE_PROBABILITY
    if days_since > SPIKE_RAMP_START_DAYS:
        probability += (days_since - SPIKE_RAMP_START_DAYS) * SPIKE_RAMP_PER_DAY
    return min(SPIKE_MAX_PROBABILITY, probability)


def should_trigger_spike(
    rng: np.random.Generator,
    current_day: int,
    last_spike_day: int | None = None,
    high_volatility: bool = False,
) -> bool:
    """Decide whether a spike fires. Never fires within the cool-down."""
    probability = spike_probability(current_day, last_spike_day, high_volatility)
    if probability <= 0.0:
        return False
    return bool(rng.random() < probability)


def generate_spike(
    rng: np.random.Generator,
    tier: MarketCapTier = MarketCapTier.MID,
    market_sentiment: float = 0.0,
) -> float:
    """Signed spike magnitude drawn from the tier's range.

    Positive ~70% of the time, skewed +/-10% by market sentiment.
    """
    low, high = spike_range(tier)
    magnitude = low + rng.random() * (high - low)
    positive_chance = SPIKE_POSITIVE_PROBABILITY + market_sentiment * SPIKE_SENTIMENT_SKEW
    return magnitude if rng.random() < positive_chance else -magnitude


def projected_monthly_return(
    rng: np.random.Generator,
    positive_bias: bool = True,
    simulations: int = 100,
    trading_days: int = 22,
) -> float:
    """Monte-Carlo estimate of the average monthly return of the model.

    Useful for checking the parameters still produce the intended drift.
    """
    if simulations <= 0:
        return 0.0

    returns = np.empty(simulations)
    for sim in range(simulations):
        value = 100.0
        spike_count = int(rng.integers(1, 4))
        spike_days = set(rng.integers(0, trading_days, size=spike_count).tolist())
        for day in range(trading_days):
            if day in spike_days:
                value *= 1 + generate_spike(rng)
            else:
                value *= 1 + generate_daily_change(rng, positive_bias=positive_bias)
        returns[sim] = value / 100.0 - 1
    return float(returns.mean())
