"""Tests for the environment-driven factories."""

import os
from unittest.mock import patch

from navsim.engine.factory import create_rate_provider, create_simulator, create_storage
from navsim.engine.nav import DEFAULT_TOTAL_SUPPLY
from navsim.engine.rates import CoinGeckoRateProvider, StaticRateProvider
from navsim.engine.service import PortfolioSimulator
from navsim.engine.state_store import InMemoryStorage, JsonFileStorage


class TestStorageFactory:
    """Tests for create_storage."""

    def test_in_memory_when_no_path(self):
        """In-memory storage is used when NAVSIM_STATE_PATH is not set."""
        with patch.dict(os.environ, {}, clear=True):
            assert isinstance(create_storage(), InMemoryStorage)

    def test_in_memory_when_path_whitespace(self):
        """A whitespace-only path counts as unset."""
        with patch.dict(os.environ, {"NAVSIM_STATE_PATH": "   "}, clear=True):
            assert isinstance(create_storage(), InMemoryStorage)

    def test_json_file_when_path_set(self, tmp_path):
        """JSON file storage receives the configured path."""
        path = tmp_path / "state.json"
        with patch.dict(os.environ, {"NAVSIM_STATE_PATH": str(path)}, clear=True):
            storage = create_storage()

        assert isinstance(storage, JsonFileStorage)
        assert storage.path == path


class TestRateProviderFactory:
    """Tests for create_rate_provider."""

    def test_static_when_no_url(self):
        """The static provider is used when NAVSIM_RATE_URL is not set."""
        with patch.dict(os.environ, {}, clear=True):
            assert isinstance(create_rate_provider(), StaticRateProvider)

    def test_static_when_url_empty(self):
        """An empty URL counts as unset."""
        with patch.dict(os.environ, {"NAVSIM_RATE_URL": ""}, clear=True):
            assert isinstance(create_rate_provider(), StaticRateProvider)

    def test_http_when_url_set(self):
        """The HTTP provider receives the configured URL."""
        with patch.dict(os.environ, {"NAVSIM_RATE_URL": "http://rates.test/btc"}, clear=True):
            provider = create_rate_provider()

        assert isinstance(provider, CoinGeckoRateProvider)
        assert provider._url == "http://rates.test/btc"


class TestSimulatorFactory:
    """Tests for create_simulator."""

    def test_defaults(self):
        """With no environment the simulator runs in memory at the default supply."""
        with patch.dict(os.environ, {}, clear=True):
            simulator = create_simulator()

        assert isinstance(simulator, PortfolioSimulator)
        assert simulator._total_supply == DEFAULT_TOTAL_SUPPLY

    def test_seed_is_reproducible(self):
        """NAVSIM_SEED makes two simulators draw the same numbers."""
        with patch.dict(os.environ, {"NAVSIM_SEED": "99"}, clear=True):
            a = create_simulator()
            b = create_simulator()

        assert a.context.rng.random() == b.context.rng.random()

    def test_total_supply(self):
        """NAVSIM_TOTAL_SUPPLY is honoured when positive."""
        with patch.dict(os.environ, {"NAVSIM_TOTAL_SUPPLY": "1000000"}, clear=True):
            assert create_simulator()._total_supply == 1_000_000

    def test_bad_values_ignored(self):
        """Non-integer or non-positive settings fall back to defaults."""
        with patch.dict(os.environ, {"NAVSIM_TOTAL_SUPPLY": "-3", "NAVSIM_SEED": "abc"}, clear=True):
            simulator = create_simulator()

        assert simulator._total_supply == DEFAULT_TOTAL_SUPPLY

    def test_receives_bus(self):
        """A caller-supplied bus is wired through."""
        from navsim.engine.bus import UpdateBus

        bus = UpdateBus()
        with patch.dict(os.environ, {}, clear=True):
            assert create_simulator(bus).bus is bus
