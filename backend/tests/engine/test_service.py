"""Integration tests for PortfolioSimulator."""

import asyncio

import pytest

from navsim.engine.bus import Topic, UpdateBus
from navsim.engine.models import Currency, Position
from navsim.engine.rates import StaticRateProvider
from navsim.engine.service import PortfolioSimulator


def _simulator(store, context, **kwargs) -> PortfolioSimulator:
    kwargs.setdefault("major_interval", (60.0, 60.0))
    kwargs.setdefault("minor_interval", 60.0)
    return PortfolioSimulator(
        store=store,
        bus=UpdateBus(window=0.01),
        rates=StaticRateProvider(50_000),
        context=context,
        **kwargs,
    )


@pytest.mark.asyncio
class TestPortfolioSimulator:
    """Lifecycle and tick tests for the simulator runtime."""

    async def test_start_publishes_nav(self, store, context):
        """start() loads state and publishes an initial NAV."""
        simulator = _simulator(store, context)
        await simulator.start()

        assert simulator.running
        assert simulator.last_nav is not None
        assert simulator.last_nav.nav_sats == 534_480_000
        assert simulator.bus.latest(Topic.NAV_UPDATED) is simulator.last_nav

        await simulator.stop()

    async def test_stop_is_clean(self, store, context):
        """stop() is idempotent."""
        simulator = _simulator(store, context)
        await simulator.start()
        await simulator.stop()
        await simulator.stop()
        assert not simulator.running

    async def test_major_tick_moves_reference(self, store, context):
        """A major tick moves the reference by the aggregate change (sum current vs sum initial)."""
        simulator = _simulator(store, context)
        reference = store.get_global_reference_valuation()

        result = simulator.run_major_tick()

        assert result is not None
        assert store.get_global_reference_valuation() == pytest.approx(reference * (1 + result.aggregate_change))
        assert store.get_portfolio() == result.positions

    async def test_reference_follows_aggregate_not_tick_delta(self, store, context):
        """Successive major ticks each push the cumulative aggregate change."""
        simulator = _simulator(store, context)
        reference = store.get_global_reference_valuation()

        first = simulator.run_major_tick()
        second = simulator.run_major_tick()

        expected = reference * (1 + first.aggregate_change) * (1 + second.aggregate_change)
        assert store.get_global_reference_valuation() == pytest.approx(expected)
        assert second.aggregate_change != pytest.approx(second.tick_delta)

    async def test_minor_tick_leaves_reference(self, store, context):
        """Minor ticks move positions but not the reference."""
        simulator = _simulator(store, context)
        reference = store.get_global_reference_valuation()
        version = store.version

        assert simulator.run_minor_tick() is not None
        assert store.get_global_reference_valuation() == reference
        assert store.version > version

    async def test_tick_publishes_portfolio(self, store, context):
        """Each tick publishes the committed positions and spike paths."""
        simulator = _simulator(store, context)
        received = []
        simulator.bus.subscribe(Topic.PORTFOLIO_UPDATED, received.append)

        simulator.run_major_tick()
        simulator.bus.flush()

        assert len(received) == 1
        payload = received[0]
        assert [p["name"] for p in payload["positions"]] == [p.name for p in store.get_portfolio()]
        assert isinstance(payload["spike_paths"], dict)

    async def test_loops_tick_over_time(self, store, context):
        """With short intervals the background loops commit new versions."""
        simulator = _simulator(store, context, major_interval=(0.02, 0.05), minor_interval=0.02)
        await simulator.start()
        version = store.version

        await asyncio.sleep(0.3)

        assert store.version > version
        await simulator.stop()

    async def test_pause_and_resume(self, store, context):
        """pause() stops ticking; resume() runs a catch-up tick first."""
        simulator = _simulator(store, context, major_interval=(0.02, 0.02), minor_interval=0.02)
        await simulator.start()

        await simulator.pause()
        assert simulator.paused
        version = store.version
        await asyncio.sleep(0.1)
        assert store.version == version

        await simulator.resume()
        assert store.version > version
        assert not simulator.paused

        await simulator.stop()

    async def test_resume_when_stopped_is_noop(self, store, context):
        """resume() does nothing unless the simulator is running."""
        simulator = _simulator(store, context)
        await simulator.resume()
        assert store.version == 0
        assert not simulator.paused

    async def test_set_currency_publishes(self, store, context):
        """Currency changes persist and notify consumers."""
        simulator = _simulator(store, context)
        received = []
        simulator.bus.subscribe("currency-changed", received.append)

        assert simulator.set_currency("btc") is Currency.BTC
        simulator.bus.flush()

        assert simulator.get_currency() is Currency.BTC
        assert received == [{"currency": "btc"}]

    async def test_set_portfolio_publishes_and_recalculates(self, store, context):
        """Replacing the portfolio publishes it and refreshes NAV."""
        simulator = _simulator(store, context)
        received = []
        simulator.bus.subscribe(Topic.PORTFOLIO_UPDATED, received.append)

        simulator.set_portfolio([Position.create("Solo", 1_000_000, 100)])
        simulator.bus.flush()

        assert received[0]["positions"][0]["name"] == "Solo"
        assert simulator.last_nav.nav_sats == 1_000_000
        assert simulator.get_portfolio()[0].name == "Solo"

    async def test_failed_tick_returns_none(self, store, context, monkeypatch):
        """A failing simulation step is logged and the store is untouched."""

        def explode(*args, **kwargs):
            raise RuntimeError("simulation bug")

        monkeypatch.setattr("navsim.engine.service.simulate_tick", explode)
        simulator = _simulator(store, context)
        before = store.get_portfolio()

        assert simulator.run_major_tick() is None
        assert store.get_portfolio() == before
