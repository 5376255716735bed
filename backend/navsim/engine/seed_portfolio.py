"""Starter portfolio and tunable parameters for the valuation simulator."""

# Default portfolio (values in sats). Used on first run and whenever the
# persisted state is missing, corrupt, or due for a periodic reset.
DEFAULT_PORTFOLIO: list[dict] = [
    {
        "name": "Polymorphic Labs",
        "value": 180_000_000,
        "tokenAmount": 600_000,
        "description": "Encryption Layer",
    },
    {
        "name": "VoltFi",
        "value": 87_500_000,
        "tokenAmount": 350_000,
        "description": "Bitcoin Volatility Index on Bitcoin",
    },
    {
        "name": "MIXDTape",
        "value": 100_000_000,
        "tokenAmount": 500_000,
        "description": "Phygital Music for superfans - disrupting Streaming",
    },
    {
        "name": "OrdinalHive",
        "value": 166_980_000,
        "tokenAmount": 690_000,
        "description": "Ordinal and Bitcoin asset aggregator for the Hive",
    },
]

# Used when the default portfolio sums to nothing usable
DEFAULT_GLOBAL_REFERENCE = 10_000.0

# Sector keyword table, checked in order against the lowercased position name
SECTOR_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("defi", ("defi", "finance", "lending")),
    ("privacy", ("privacy", "encrypt", "secure")),
    ("scaling", ("scale", "layer", "tps")),
    ("infrastructure", ("infra", "protocol", "base")),
    ("gaming", ("game", "play", "meta")),
    ("dao", ("dao", "governance")),
    ("exchange", ("exchange", "dex", "trade")),
    ("derivative", ("derivat", "options", "future")),
]
KNOWN_SECTORS: tuple[str, ...] = tuple(sector for sector, _ in SECTOR_KEYWORDS)
DEFAULT_SECTOR = "infrastructure"

# Market-cap tier boundaries (sats)
MICRO_CAP_CEILING = 10_000_000
SMALL_CAP_CEILING = 100_000_000
MID_CAP_CEILING = 1_000_000_000

# Daily move parameters
DAILY_CHANGE_FLOOR = -0.03
DAILY_CHANGE_CEILING = 0.05
POSITIVE_BIAS_PROBABILITY = 0.65
POSITIVE_BIAS_OFFSET = 0.01
MARKET_CORRELATION_WEIGHT = 0.6  # Share of the move explained by the market
SECTOR_CORRELATION_WEIGHT = 0.3  # Share of the move explained by the sector

# Spike parameters
SPIKE_COOLDOWN_DAYS = 5
SPIKE_BASE_PROBABILITY = 1 / 9.5  # Average of the 5-14 day target window
SPIKE_HIGH_VOLATILITY_PROBABILITY = 1 / 7
SPIKE_RAMP_START_DAYS = 10
SPIKE_RAMP_PER_DAY = 0.005
SPIKE_MAX_PROBABILITY = 0.25
SPIKE_POSITIVE_PROBABILITY = 0.7
SPIKE_SENTIMENT_SKEW = 0.1
SPIKE_STEPS = 3
HIGH_VOLATILITY_REGIME_PROBABILITY = 0.2

# Correlation model dynamics
MARKET_MOMENTUM = 0.7
MARKET_NOISE = 0.3
SECTOR_MOMENTUM = 0.4
SECTOR_NOISE = 0.25
SECTOR_MARKET_INFLUENCE = 0.6
SENTIMENT_UPDATE_PROBABILITY = 0.1

# Minor ("live ticking") updates
MINOR_TICK_SCALE = 0.1
MINOR_TICK_LIMIT = 0.002
MINOR_MOMENTUM_BLEND = 0.5
