"""Market and sector sentiment model for correlated position moves."""

from __future__ import annotations

import logging
from collections.abc import Iterable

import numpy as np

from .models import Position
from .seed_portfolio import (
    DEFAULT_SECTOR,
    KNOWN_SECTORS,
    MARKET_MOMENTUM,
    MARKET_NOISE,
    SECTOR_KEYWORDS,
    SECTOR_MARKET_INFLUENCE,
    SECTOR_MOMENTUM,
    SECTOR_NOISE,
    SENTIMENT_UPDATE_PROBABILITY,
)

logger = logging.getLogger(__name__)


def _clamp(value: float) -> float:
    return max(-1.0, min(1.0, value))


def assign_sector(position: Position | str, explicit: str | None = None) -> str:
    """Sector for a position: its explicit tag, else a name keyword match.

    Falls back to ``infrastructure`` when nothing matches.
    """
    if isinstance(position, Position):
        explicit = explicit or position.sector
        name = position.name
    else:
        name = position
    if explicit:
        return explicit

    lowered = name.lower()
    for sector, keywords in SECTOR_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return sector
    return DEFAULT_SECTOR


class CorrelationModel:
    """Process-local sentiment state that biases every random draw.

    Sentiment scalars live in [-1, 1] and evolve with momentum:

        market' = clamp(0.7 * market + U(-0.3, 0.3))
        sector' = clamp(0.4 * sector + U(-0.25, 0.25) + 0.6 * market')

    The decay on the previous value keeps any bias from running away.
    Nothing here is persisted; a fresh model starts neutral.
    """

    def __init__(self, rng: np.random.Generator, sectors: Iterable[str] = KNOWN_SECTORS) -> None:
        self._rng = rng
        self._market: float = 0.0
        self._sectors: dict[str, float] = {sector: 0.0 for sector in sectors}

    # --- Public API ---

    @property
    def market_sentiment(self) -> float:
        return self._market

    def sector_sentiment(self, sector: str) -> float:
        """Current sentiment for a sector, 0.0 if the sector is unknown."""
        return self._sectors.get(sector, 0.0)

    def sectors(self) -> list[str]:
        return list(self._sectors)

    def update(self) -> None:
        """Advance market and sector sentiment by one step."""
        noise = (self._rng.random() * 2 - 1) * MARKET_NOISE
        self._market = _clamp(self._market * MARKET_MOMENTUM + noise)

        market_influence = self._market * SECTOR_MARKET_INFLUENCE
        for sector, current in self._sectors.items():
            sector_noise = (self._rng.random() * 2 - 1) * SECTOR_NOISE
            self._sectors[sector] = _clamp(current * SECTOR_MOMENTUM + sector_noise + market_influence)

        logger.debug("Sentiment updated: market=%.3f", self._market)

    def maybe_update(self, probability: float = SENTIMENT_UPDATE_PROBABILITY) -> bool:
        """Update with the given probability. Returns True if it ran.

        Called once per position draw, so across a batch the state moves
        about once instead of once per position.
        """
        if self._rng.random() < probability:
            self.update()
            return True
        return False

    def reset(self) -> None:
        """Back to neutral sentiment."""
        self._market = 0.0
        for sector in self._sectors:
            self._sectors[sector] = 0.0

    def set_sentiment(self, market: float, sectors: dict[str, float] | None = None) -> None:
        """Force sentiment values (clamped). Mostly for tests and replays."""
        self._market = _clamp(market)
        for sector, value in (sectors or {}).items():
            self._sectors[sector] = _clamp(value)

    def snapshot(self) -> dict:
        return {"market": self._market, "sectors": dict(self._sectors)}
