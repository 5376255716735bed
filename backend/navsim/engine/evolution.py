"""Apply a percentage change to one position."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from .models import Position
from .seed_portfolio import SPIKE_STEPS

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Evolution:
    """A moved position plus the valuation frames leading to it.

    For a spike the path holds one value per easing sub-step; otherwise it
    holds just the final value. The last frame always equals
    ``position.current_value``.
    """

    position: Position
    path: tuple[float, ...]


def ease_in_out_cubic(t: float) -> float:
    """Cubic ease-in/ease-out on [0, 1]."""
    t = max(0.0, min(1.0, t))
    if t < 0.5:
        return 4 * t * t * t
    return 1 - (-2 * t + 2) ** 3 / 2


def spike_path(start: float, change: float, steps: int = SPIKE_STEPS) -> tuple[float, ...]:
    """Valuations after each eased sub-step of a spike.

    Each frame is measured from ``start`` so the last one lands exactly on
    ``start * (1 + change)``. Frames are floored at 1 like any valuation.
    """
    steps = max(1, steps)
    return tuple(max(1.0, start * (1 + change * ease_in_out_cubic(k / steps))) for k in range(1, steps + 1))


def apply_price_movement(
    position: Position,
    change: float,
    is_spike: bool = False,
    current_day: int | None = None,
) -> Position:
    """Return ``position`` moved by ``change`` (a fraction).

    The valuation is floored at 1. ``change_percent`` is always relative to
    ``initial_value``. A spike stamps ``last_spike_day``.
    """
    if not math.isfinite(change):
        logger.warning("Non-finite change %r for %s, treating as 0", change, position.name)
        change = 0.0
        is_spike = False

    new_value = position.current_value * (1 + change)
    if not math.isfinite(new_value):
        logger.warning("Non-finite valuation for %s, keeping %.2f", position.name, position.current_value)
        new_value = position.current_value

    spike_day = current_day if is_spike and current_day is not None else None
    return position.with_current(new_value, last_spike_day=spike_day)


def evolve(
    position: Position,
    change: float,
    is_spike: bool = False,
    current_day: int | None = None,
    steps: int = SPIKE_STEPS,
) -> Evolution:
    """Apply a change and produce the cosmetic frames for display."""
    moved = apply_price_movement(position, change, is_spike, current_day)
    if is_spike and math.isfinite(change):
        path = spike_path(position.current_value, change, steps)
        # Rounding noise must not leave the last frame off the committed value
        path = path[:-1] + (moved.current_value,)
    else:
        path = (moved.current_value,)
    return Evolution(position=moved, path=path)
