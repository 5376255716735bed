"""Fixtures for valuation engine tests."""

import numpy as np
import pytest

from navsim.engine.models import Position
from navsim.engine.simulation import SimulationContext
from navsim.engine.state_store import InMemoryStorage, ValuationStateStore


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def context():
    """Seeded simulation context pinned to day 1000."""
    return SimulationContext.create(seed=42, clock=lambda: 1000)


@pytest.fixture
def positions():
    return [
        Position.create("MIXDTape", 100_000_000, 500_000),
        Position.create("VoltFi", 87_500_000, 350_000),
        Position.create("Aave Lending", 5_000_000, 10_000, sector="defi"),
    ]


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def store(storage):
    return ValuationStateStore(storage)
