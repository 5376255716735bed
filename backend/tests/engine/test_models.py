"""Tests for the engine data models."""

import math

import pytest

from navsim.engine.models import Currency, MarketCapTier, NAVResult, Position


class TestPosition:
    """Unit tests for the Position dataclass."""

    def test_create_sets_derived_fields(self):
        """A fresh position starts at its initial value with zero change."""
        position = Position.create("MIXDTape", 100_000_000, 500_000)
        assert position.current_value == 100_000_000
        assert position.change_percent == 0.0
        assert position.price_per_token == 200
        assert position.last_spike_day is None

    def test_token_amount_must_be_positive(self):
        """Zero or negative token amounts are rejected."""
        with pytest.raises(ValueError):
            Position.create("Broken", 100, 0)
        with pytest.raises(ValueError):
            Position.create("Broken", 100, -5)

    def test_initial_value_must_be_positive(self):
        """A zero entry value would make change_percent undefined."""
        with pytest.raises(ValueError):
            Position.create("Broken", 0, 10)

    def test_with_current_recomputes_from_initial(self):
        """change_percent is measured from the initial value, not the last tick."""
        position = Position.create("MIXDTape", 100_000_000, 500_000)
        moved = position.with_current(110_000_000).with_current(121_000_000)
        assert moved.initial_value == 100_000_000
        assert moved.change_percent == pytest.approx(21.0)
        assert moved.price_per_token == pytest.approx(242.0)

    def test_with_current_floors_at_one(self):
        """Valuations never drop below 1."""
        position = Position.create("MIXDTape", 100, 10)
        assert position.with_current(-500).current_value == 1.0
        assert position.with_current(0).current_value == 1.0

    def test_price_per_token_floored_at_one(self):
        """Price per token never drops below 1."""
        position = Position.create("Tiny", 100, 1_000)
        assert position.price_per_token == 1.0

    def test_with_current_keeps_spike_day_unless_given(self):
        """Ordinary moves keep the recorded spike day."""
        position = Position.create("MIXDTape", 100, 10).with_current(150, last_spike_day=7)
        assert position.with_current(140).last_spike_day == 7
        assert position.with_current(140, last_spike_day=12).last_spike_day == 12

    def test_immutability(self):
        """Positions are frozen."""
        position = Position.create("MIXDTape", 100, 10)
        with pytest.raises(AttributeError):
            position.current_value = 5  # Should raise error

    def test_to_dict_uses_persisted_layout(self):
        """Serialization uses the camelCase persisted keys."""
        position = Position.create("MIXDTape", 100, 10, sector="gaming", description="Music")
        data = position.to_dict()
        assert data["value"] == 100
        assert data["current"] == 100
        assert data["tokenAmount"] == 10
        assert data["sector"] == "gaming"
        assert data["description"] == "Music"
        assert "marketCap" not in data

    def test_from_dict_recomputes_stale_derived_fields(self):
        """Stored change/price values are ignored in favour of recomputation."""
        data = {"name": "X", "value": 100, "current": 150, "tokenAmount": 10, "change": 999, "pricePerToken": 1}
        position = Position.from_dict(data)
        assert position.change_percent == pytest.approx(50.0)
        assert position.price_per_token == pytest.approx(15.0)

    def test_from_dict_missing_field_raises(self):
        """Malformed input surfaces as an exception for the store to handle."""
        with pytest.raises(KeyError):
            Position.from_dict({"name": "X", "value": 100})

    def test_market_cap_tier_from_value(self):
        """Without an explicit market cap the valuation decides the tier."""
        assert Position.create("a", 5_000_000, 1).market_cap_tier is MarketCapTier.MICRO
        assert Position.create("b", 50_000_000, 1).market_cap_tier is MarketCapTier.SMALL
        assert Position.create("c", 500_000_000, 1).market_cap_tier is MarketCapTier.MID
        assert Position.create("d", 5_000_000_000, 1).market_cap_tier is MarketCapTier.LARGE

    def test_market_cap_overrides_value(self):
        """An explicit market cap takes precedence."""
        position = Position.create("a", 5_000_000_000, 1, market_cap=1_000_000)
        assert position.market_cap_tier is MarketCapTier.MICRO


class TestCurrency:
    """Tests for Currency parsing."""

    def test_parse_known(self):
        """Known values parse case-insensitively."""
        assert Currency.parse("BTC") is Currency.BTC
        assert Currency.parse(" usd ") is Currency.USD

    def test_parse_unknown_defaults_to_usd(self):
        """Unknown or missing values fall back to USD."""
        assert Currency.parse("eur") is Currency.USD
        assert Currency.parse(None) is Currency.USD


class TestNAVResult:
    """Tests for the NAVResult snapshot."""

    def test_to_dict(self):
        """Serialization rounds display fields."""
        result = NAVResult(
            nav_sats=534_480_000,
            nav_usd=267_240.0049,
            price_per_token=254,
            price_per_token_usd=0.127257,
            total_token_supply=2_100_000,
            change_percentage=1.23456,
            btc_price=50_000,
            timestamp=1234567890.0,
        )
        data = result.to_dict()
        assert data["nav_usd"] == 267_240.0
        assert data["price_per_token"] == 254
        assert data["change_percentage"] == 1.2346
        assert data["timestamp"] == 1234567890.0

    def test_immutability(self):
        """NAV results are frozen."""
        result = NAVResult(1.0, 1.0, 1, 1.0, 1, 0.0, 50_000)
        with pytest.raises(AttributeError):
            result.nav_sats = math.inf
