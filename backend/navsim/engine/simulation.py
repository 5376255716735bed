"""One synchronized simulation tick across the whole portfolio."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

import numpy as np

from .correlation import CorrelationModel, assign_sector
from .evolution import evolve
from .models import Position, TickMode, TickResult
from .movement import day_number, generate_daily_change, generate_spike, should_trigger_spike
from .seed_portfolio import (
    HIGH_VOLATILITY_REGIME_PROBABILITY,
    MINOR_MOMENTUM_BLEND,
    MINOR_TICK_LIMIT,
    MINOR_TICK_SCALE,
    SPIKE_STEPS,
)

logger = logging.getLogger(__name__)


@dataclass
class SimulationContext:
    """Owner of all mutable simulation state.

    One context per simulation keeps independent simulations (and tests)
    from sharing sentiment or momentum.
    """

    rng: np.random.Generator
    correlation: CorrelationModel
    momentum: dict[str, float] = field(default_factory=dict)
    clock: Callable[[], int] = day_number
    high_volatility_probability: float = HIGH_VOLATILITY_REGIME_PROBABILITY
    positive_bias: bool = True
    spike_steps: int = SPIKE_STEPS

    @classmethod
    def create(cls, seed: int | None = None, **kwargs) -> SimulationContext:
        rng = np.random.default_rng(seed)
        return cls(rng=rng, correlation=CorrelationModel(rng), **kwargs)


def aggregate_change(positions: Sequence[Position]) -> float:
    """Portfolio change as a fraction: sum(current) vs sum(initial)."""
    initial = sum(p.initial_value for p in positions)
    if initial <= 0:
        return 0.0
    return sum(p.current_value for p in positions) / initial - 1


def aggregate_delta(before: Sequence[Position], after: Sequence[Position]) -> float:
    """Fractional change of total valuation between two portfolio states."""
    previous = sum(p.current_value for p in before)
    if previous <= 0:
        return 0.0
    return sum(p.current_value for p in after) / previous - 1


def simulate_tick(
    positions: Sequence[Position],
    mode: TickMode | str = TickMode.MAJOR,
    context: SimulationContext | None = None,
) -> TickResult:
    """Advance every position by one tick. The input is never mutated.

    MAJOR ticks may spike and feed the global reference; MINOR ticks only
    nudge valuations by at most +/-0.2% for a live-ticking effect.
    """
    mode = TickMode(mode)
    context = context or SimulationContext.create()
    day = context.clock()

    if not positions:
        return TickResult(positions=(), mode=mode, day=day)

    if mode is TickMode.MAJOR:
        moved, spikes, paths = _major(positions, context, day)
    else:
        moved, spikes, paths = _minor(positions, context), (), {}

    return TickResult(
        positions=tuple(moved),
        mode=mode,
        day=day,
        aggregate_change=aggregate_change(moved),
        tick_delta=aggregate_delta(positions, moved),
        spikes=tuple(spikes),
        spike_paths=paths,
    )


# --- Internals ---


def _draw_daily(position: Position, context: SimulationContext) -> float:
    correlation = context.correlation
    correlation.maybe_update()
    sector = assign_sector(position)
    return generate_daily_change(
        context.rng,
        tier=position.market_cap_tier,
        market_sentiment=correlation.market_sentiment,
        sector_sentiment=correlation.sector_sentiment(sector),
        positive_bias=context.positive_bias,
    )


def _major(
    positions: Sequence[Position],
    context: SimulationContext,
    day: int,
) -> tuple[list[Position], list[str], dict[str, tuple[float, ...]]]:
    # One regime draw per tick so all positions share it
    high_volatility = bool(context.rng.random() < context.high_volatility_probability)

    moved: list[Position] = []
    spikes: list[str] = []
    paths: dict[str, tuple[float, ...]] = {}
    for position in positions:
        if should_trigger_spike(context.rng, day, position.last_spike_day, high_volatility):
            change = generate_spike(
                context.rng,
                tier=position.market_cap_tier,
                market_sentiment=context.correlation.market_sentiment,
            )
            evolution = evolve(position, change, is_spike=True, current_day=day, steps=context.spike_steps)
            spikes.append(position.name)
            paths[position.name] = evolution.path
            logger.debug("Spike on %s: %+.1f%%", position.name, change * 100)
        else:
            change = _draw_daily(position, context)
            evolution = evolve(position, change, current_day=day)
        moved.append(evolution.position)

    if spikes:
        logger.info("Major tick day %d: %d spike(s) %s", day, len(spikes), ", ".join(spikes))
    return moved, spikes, paths


def _minor(positions: Sequence[Position], context: SimulationContext) -> list[Position]:
    moved: list[Position] = []
    for position in positions:
        draw = _draw_daily(position, context) * MINOR_TICK_SCALE
        momentum = context.momentum.get(position.name, 0.0)
        nudge = MINOR_MOMENTUM_BLEND * draw + (1 - MINOR_MOMENTUM_BLEND) * momentum
        nudge = max(-MINOR_TICK_LIMIT, min(MINOR_TICK_LIMIT, nudge))
        context.momentum[position.name] = MINOR_MOMENTUM_BLEND * nudge + (1 - MINOR_MOMENTUM_BLEND) * momentum
        moved.append(evolve(position, nudge).position)

    # Drop momentum for positions no longer in the portfolio
    names = {p.name for p in positions}
    for stale in [name for name in context.momentum if name not in names]:
        del context.momentum[stale]
    return moved
