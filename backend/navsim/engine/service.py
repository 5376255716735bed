"""Timer-driven runtime that keeps the portfolio ticking."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Iterable

from .bus import Topic, UpdateBus
from .models import Currency, NAVResult, Position, TickMode, TickResult
from .nav import DEFAULT_TOTAL_SUPPLY, update_nav
from .rates import ExchangeRateProvider, StaticRateProvider
from .simulation import SimulationContext, simulate_tick
from .state_store import ValuationStateStore

logger = logging.getLogger(__name__)


class PortfolioSimulator:
    """Runs major and minor ticks against a ValuationStateStore.

    Two background asyncio tasks drive the simulation:
      - major loop: spike-eligible tick every U(30, 75) seconds, pushes the
        aggregate change (sum current vs sum initial) into the global reference
      - minor loop: small live-ticking nudge every 3 seconds

    Every tick is read snapshot -> simulate -> store.commit -> publish. The
    store is the only writer, so readers never see a half-applied tick.
    The rate provider keeps refreshing while ticks are paused.
    """

    def __init__(
        self,
        store: ValuationStateStore,
        bus: UpdateBus | None = None,
        rates: ExchangeRateProvider | None = None,
        context: SimulationContext | None = None,
        major_interval: tuple[float, float] = (30.0, 75.0),
        minor_interval: float = 3.0,
        total_supply: float = DEFAULT_TOTAL_SUPPLY,
    ) -> None:
        self._store = store
        self._bus = bus if bus is not None else UpdateBus()
        self._rates = rates if rates is not None else StaticRateProvider()
        self._context = context if context is not None else SimulationContext.create()
        self._major_interval = major_interval
        self._minor_interval = minor_interval
        self._total_supply = total_supply
        self._major_task: asyncio.Task | None = None
        self._minor_task: asyncio.Task | None = None
        self._running = False
        self._last_nav: NAVResult | None = None

    # --- Lifecycle ---

    async def start(self) -> None:
        if self._running:
            return
        self._store.load()
        await self._rates.start()
        self._refresh_nav()
        self._running = True
        self._start_loops()
        logger.info("Portfolio simulator started with %d positions", len(self._store.get_portfolio()))

    async def stop(self) -> None:
        self._running = False
        await self._stop_loops()
        await self._rates.stop()
        self._bus.flush()
        logger.info("Portfolio simulator stopped")

    async def pause(self) -> None:
        """Stop ticking (e.g. consumer hidden). Rate refresh keeps going."""
        await self._stop_loops()
        logger.info("Portfolio simulator paused")

    async def resume(self) -> None:
        """Catch-up tick right away, then restart the loops."""
        if not self._running:
            return
        self.run_major_tick()
        self._start_loops()
        logger.info("Portfolio simulator resumed")

    @property
    def running(self) -> bool:
        return self._running

    @property
    def paused(self) -> bool:
        return self._running and self._major_task is None

    @property
    def bus(self) -> UpdateBus:
        return self._bus

    @property
    def store(self) -> ValuationStateStore:
        return self._store

    @property
    def context(self) -> SimulationContext:
        return self._context

    @property
    def last_nav(self) -> NAVResult | None:
        return self._last_nav

    # --- Ticks ---

    def run_major_tick(self) -> TickResult | None:
        return self._run_tick(TickMode.MAJOR)

    def run_minor_tick(self) -> TickResult | None:
        return self._run_tick(TickMode.MINOR)

    # --- Store accessors ---

    def get_portfolio(self) -> tuple[Position, ...]:
        return self._store.get_portfolio()

    def set_portfolio(self, positions: Iterable[Position]) -> tuple[Position, ...]:
        snapshot = self._store.set_portfolio(positions)
        self._bus.publish(Topic.PORTFOLIO_UPDATED, {"positions": [p.to_dict() for p in snapshot], "spike_paths": {}})
        self._refresh_nav()
        return snapshot

    def get_currency(self) -> Currency:
        return self._store.get_currency()

    def set_currency(self, currency: Currency | str) -> Currency:
        """Persist the display currency and tell consumers to re-render."""
        parsed = self._store.set_currency(currency)
        self._bus.publish(Topic.CURRENCY_CHANGED, {"currency": parsed.value})
        return parsed

    # --- Internals ---

    def _run_tick(self, mode: TickMode) -> TickResult | None:
        try:
            before = self._store.get_portfolio()
            result = simulate_tick(before, mode, self._context)
            delta = result.aggregate_change if mode is TickMode.MAJOR else None
            committed = self._store.commit(result.positions, reference_delta=delta)
        except Exception:
            logger.exception("%s tick failed", mode.value.capitalize())
            return None

        self._bus.publish(
            Topic.PORTFOLIO_UPDATED,
            {
                "positions": [p.to_dict() for p in committed],
                "spike_paths": {name: list(path) for name, path in result.spike_paths.items()},
            },
        )
        self._refresh_nav()
        return result

    def _refresh_nav(self) -> NAVResult:
        self._last_nav = update_nav(self._store, self._bus, self._rates, self._total_supply)
        return self._last_nav

    def _start_loops(self) -> None:
        if self._major_task is None or self._major_task.done():
            self._major_task = asyncio.create_task(self._major_loop(), name="major-tick-loop")
        if self._minor_task is None or self._minor_task.done():
            self._minor_task = asyncio.create_task(self._minor_loop(), name="minor-tick-loop")

    async def _stop_loops(self) -> None:
        for task in (self._major_task, self._minor_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._major_task = None
        self._minor_task = None

    def _next_major_delay(self) -> float:
        low, high = self._major_interval
        return random.uniform(low, high)

    async def _major_loop(self) -> None:
        # Randomized per cycle so many clients never tick in lockstep
        while True:
            await asyncio.sleep(self._next_major_delay())
            try:
                self.run_major_tick()
            except Exception:
                logger.exception("Major tick loop step failed")

    async def _minor_loop(self) -> None:
        while True:
            await asyncio.sleep(self._minor_interval)
            try:
                self.run_minor_tick()
            except Exception:
                logger.exception("Minor tick loop step failed")
