"""NAV aggregation: one number every consumer agrees on."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

import numpy as np

from .bus import Topic, UpdateBus
from .models import NAVResult, Position
from .rates import DEFAULT_BTC_PRICE, ExchangeRateProvider
from .state_store import ValuationStateStore

logger = logging.getLogger(__name__)

SATS_PER_BTC = 100_000_000
DEFAULT_TOTAL_SUPPLY = 2_100_000
FALLBACK_NAV_SATS = 1_000_000_000.0  # 10 BTC
CHANGE_CLAMP = 50.0


def default_nav_result(total_supply: int = DEFAULT_TOTAL_SUPPLY, btc_price: float = DEFAULT_BTC_PRICE) -> NAVResult:
    """Safe result used when nothing better can be computed."""
    nav_usd = FALLBACK_NAV_SATS / SATS_PER_BTC * btc_price
    return NAVResult(
        nav_sats=FALLBACK_NAV_SATS,
        nav_usd=nav_usd,
        price_per_token=math.floor(FALLBACK_NAV_SATS / total_supply),
        price_per_token_usd=nav_usd / total_supply,
        total_token_supply=total_supply,
        change_percentage=0.0,
        btc_price=btc_price,
    )


def change_percentage(positions: Sequence[Position]) -> float:
    """Value-weighted average of each position's change, clamped to +/-50%."""
    if not positions:
        return 0.0

    current = np.array([p.current_value for p in positions], dtype=float)
    changes = np.array([p.change_percent for p in positions], dtype=float)
    usable = np.isfinite(current) & (current > 0) & np.isfinite(changes)
    total = current[usable].sum()
    if total <= 0:
        return 0.0

    result = float((current[usable] * changes[usable]).sum() / total)
    if not math.isfinite(result):
        return 0.0
    return max(-CHANGE_CLAMP, min(CHANGE_CLAMP, result))


def _effective_supply(total_supply: float) -> int:
    if not math.isfinite(total_supply) or total_supply <= 0:
        logger.warning("Invalid token supply %r, using %d", total_supply, DEFAULT_TOTAL_SUPPLY)
        return DEFAULT_TOTAL_SUPPLY
    return max(1, math.floor(total_supply))


def _effective_rate(btc_price: float | None) -> float:
    if btc_price is None:
        return DEFAULT_BTC_PRICE
    if not math.isfinite(btc_price) or btc_price <= 0:
        logger.warning("Invalid BTC rate %r, using %.0f", btc_price, DEFAULT_BTC_PRICE)
        return DEFAULT_BTC_PRICE
    return float(btc_price)


def _nav_sats(positions: Sequence[Position], reference: float | None) -> float:
    if positions:
        values = np.array([p.current_value for p in positions], dtype=float)
        total = float(values[np.isfinite(values)].sum())
        if math.isfinite(total) and total > 0:
            return total
        logger.warning("Portfolio sum %r unusable, falling back to reference", total)

    if reference is not None and math.isfinite(reference) and reference > 0:
        return float(reference)

    logger.warning("No usable NAV source, using %.0f sats", FALLBACK_NAV_SATS)
    return FALLBACK_NAV_SATS


def calculate_nav(
    positions: Sequence[Position],
    total_supply: float = DEFAULT_TOTAL_SUPPLY,
    btc_price: float | None = None,
    reference: float | None = None,
) -> NAVResult:
    """Aggregate positions into a NAV snapshot. Never raises.

    NAV is the sum of current valuations; an empty or broken portfolio falls
    back to ``reference`` (the global reference valuation), then to 10 BTC.
    """
    try:
        supply = _effective_supply(total_supply)
        rate = _effective_rate(btc_price)
        nav_sats = _nav_sats(positions, reference)

        nav_usd = nav_sats / SATS_PER_BTC * rate
        price_per_token = math.floor(nav_sats / supply)
        price_per_token_usd = nav_usd / supply
        change = change_percentage(positions)

        if not all(math.isfinite(v) for v in (nav_usd, price_per_token_usd, change)):
            logger.warning("Non-finite NAV output, using defaults")
            return default_nav_result(supply, rate)

        return NAVResult(
            nav_sats=nav_sats,
            nav_usd=nav_usd,
            price_per_token=price_per_token,
            price_per_token_usd=price_per_token_usd,
            total_token_supply=supply,
            change_percentage=change,
            btc_price=rate,
        )
    except Exception:
        logger.exception("NAV calculation failed")
        return default_nav_result()


def update_nav(
    store: ValuationStateStore,
    bus: UpdateBus | None = None,
    rates: ExchangeRateProvider | None = None,
    total_supply: float = DEFAULT_TOTAL_SUPPLY,
) -> NAVResult:
    """Calculate NAV from the store, persist the token price, and publish.

    Publishes NAV_UPDATED with the result and TOKEN_PRICE_UPDATED with
    ``{"price": sats, "price_usd": usd}``. Never raises.
    """
    try:
        btc_price = rates.current_rate() if rates is not None else None
        result = calculate_nav(
            store.get_portfolio(),
            total_supply=total_supply,
            btc_price=btc_price,
            reference=store.get_global_reference_valuation(),
        )
    except Exception:
        logger.exception("NAV update failed")
        result = default_nav_result()

    if result.price_per_token > 0:
        store.set_token_price(result.price_per_token)

    if bus is not None:
        bus.publish(Topic.NAV_UPDATED, result)
        bus.publish(
            Topic.TOKEN_PRICE_UPDATED,
            {"price": result.price_per_token, "price_usd": result.price_per_token_usd},
        )

    logger.debug("NAV %.0f sats, token price %d sats", result.nav_sats, result.price_per_token)
    return result
