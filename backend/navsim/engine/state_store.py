"""Durable valuation state: positions, global reference, token price."""

from __future__ import annotations

import json
import logging
import math
import os
import tempfile
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from pathlib import Path
from threading import Lock

from .models import Currency, Position
from .seed_portfolio import DEFAULT_GLOBAL_REFERENCE, DEFAULT_PORTFOLIO

logger = logging.getLogger(__name__)

PORTFOLIO_KEY = "navsim-portfolio"
REFERENCE_KEY = "navsim-global-reference"
REFERENCE_UPDATED_KEY = "navsim-global-reference-updated"
TOKEN_PRICE_KEY = "navsim-token-price"
CURRENCY_KEY = "navsim-currency-preference"

SCHEMA_VERSION = 2
DEFAULT_MAX_LOADS_BEFORE_RESET = 10
DEFAULT_VALUE_CEILING = 1e15  # Anything above this is treated as corruption


# --- Storage backends ---


class StorageBackend(ABC):
    """Minimal string key-value store.

    Implementations may raise on I/O problems; the store catches and logs.
    """

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored string, or None if absent."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete ``key``. No-op if absent."""


class InMemoryStorage(StorageBackend):
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class NullStorage(StorageBackend):
    """For contexts with no durable storage: reads miss, writes vanish."""

    def get(self, key: str) -> str | None:
        return None

    def set(self, key: str, value: str) -> None:
        pass

    def remove(self, key: str) -> None:
        pass


class JsonFileStorage(StorageBackend):
    """All keys in one JSON object file, rewritten atomically on each set."""

    def __init__(self, path: str | os.PathLike) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str) -> str | None:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read_for_write()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read_for_write()
        if data.pop(key, None) is not None:
            self._write(data)

    def _read_for_write(self) -> dict[str, str]:
        # A corrupt file is replaced on the next write instead of blocking it forever
        try:
            return self._read()
        except ValueError as e:
            logger.warning("Overwriting unreadable state file %s: %s", self._path, e)
            return {}

    def _read(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        raw = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise ValueError(f"{self._path} does not hold a JSON object")
        return raw

    def _write(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=self._path.name, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle)
            os.replace(tmp, self._path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise


# --- Schema ---


def migrate_record(raw: object) -> dict | None:
    """Bring a persisted portfolio record up to SCHEMA_VERSION.

    Version 1 was a bare list of positions. Returns None for anything
    unrecognized, including records written by a newer schema.
    """
    if isinstance(raw, list):
        return {"schemaVersion": SCHEMA_VERSION, "positions": raw, "loadsSinceReset": 0}
    if not isinstance(raw, dict):
        return None

    version = raw.get("schemaVersion")
    if version == SCHEMA_VERSION:
        return raw if isinstance(raw.get("positions"), list) else None
    if version == 1 and isinstance(raw.get("positions"), list):
        return {"schemaVersion": SCHEMA_VERSION, "positions": raw["positions"], "loadsSinceReset": 0}
    return None


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def validate_positions(entries: object, ceiling: float = DEFAULT_VALUE_CEILING) -> list[Position] | None:
    """Parse persisted entries, or None if anything looks wrong."""
    if not isinstance(entries, list) or not entries:
        return None

    positions: list[Position] = []
    for entry in entries:
        if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
            return None
        for key in ("value", "current", "tokenAmount"):
            if not _is_number(entry.get(key)):
                return None
        if entry.get("lastSpikeDay") is not None and not _is_number(entry["lastSpikeDay"]):
            return None
        if entry["value"] > ceiling or entry["current"] > ceiling:
            return None
        try:
            positions.append(Position.from_dict(entry))
        except (KeyError, TypeError, ValueError, OverflowError):
            return None

    if len({p.name for p in positions}) != len(positions):
        return None
    return positions


def _load_count(raw: object) -> int:
    if not _is_number(raw) or raw < 0:
        return 0
    return int(raw)


def default_positions(definition: Iterable[dict] = DEFAULT_PORTFOLIO) -> list[Position]:
    return [
        Position.create(
            item["name"],
            item["value"],
            item["tokenAmount"],
            sector=item.get("sector"),
            market_cap=item.get("marketCap"),
            description=item.get("description"),
        )
        for item in definition
    ]


# --- Store ---


class ValuationStateStore:
    """Single writer for the portfolio and the global reference valuation.

    Readers get immutable tuples; every mutation swaps the whole tuple under
    one lock, so nobody ever sees a half-updated portfolio. Persistence is
    fire-and-forget: storage errors are logged, never raised.
    """

    def __init__(
        self,
        storage: StorageBackend | None = None,
        default_portfolio: Sequence[dict] | None = None,
        max_loads_before_reset: int = DEFAULT_MAX_LOADS_BEFORE_RESET,
        value_ceiling: float = DEFAULT_VALUE_CEILING,
    ) -> None:
        self._storage = storage if storage is not None else InMemoryStorage()
        self._defaults = list(default_portfolio if default_portfolio is not None else DEFAULT_PORTFOLIO)
        self._max_loads = max_loads_before_reset
        self._ceiling = value_ceiling
        self._lock = Lock()
        self._positions: tuple[Position, ...] | None = None
        self._loads_since_reset = 0
        self._version: int = 0  # Bumped on every portfolio change

    # --- Portfolio ---

    def load(self) -> tuple[Position, ...]:
        """Load persisted positions, falling back to defaults. Never raises."""
        with self._lock:
            try:
                record = self._read_record()
                positions = validate_positions(record["positions"], self._ceiling) if record else None
            except Exception:
                logger.exception("Unexpected error reading persisted portfolio, resetting to defaults")
                self._reset_locked()
                return self._positions

            if positions is None:
                if record is not None:
                    logger.warning("Persisted portfolio failed validation, resetting to defaults")
                else:
                    logger.info("No usable persisted portfolio, using defaults")
                self._reset_locked()
            else:
                loads = _load_count(record.get("loadsSinceReset")) + 1
                if loads >= self._max_loads:
                    logger.info("Periodic reset after %d loads", loads)
                    self._reset_locked()
                else:
                    self._positions = tuple(positions)
                    self._loads_since_reset = loads
                    self._version += 1
                    self._persist_locked()
            return self._positions

    def get_portfolio(self) -> tuple[Position, ...]:
        """Current positions. Loads lazily on first access."""
        positions = self._positions
        if positions is None:
            return self.load()
        return positions

    def set_portfolio(self, positions: Iterable[Position]) -> tuple[Position, ...]:
        """Replace the whole portfolio and persist it."""
        return self.commit(positions)

    def commit(self, positions: Iterable[Position], reference_delta: float | None = None) -> tuple[Position, ...]:
        """Atomically replace the portfolio, optionally moving the reference.

        This is the single mutation point used by simulation ticks.
        """
        snapshot = tuple(positions)
        with self._lock:
            if any(p.current_value > self._ceiling for p in snapshot):
                logger.warning("Valuation above ceiling %.0e, resetting to defaults", self._ceiling)
                self._reset_locked()
                return self._positions
            self._positions = snapshot
            self._version += 1
            if reference_delta is not None:
                self._adjust_reference_locked(reference_delta)
            self._persist_locked()
        return snapshot

    def save(self, positions: Iterable[Position] | None = None) -> None:
        """Persist ``positions`` (or the current state). Never raises."""
        with self._lock:
            if positions is not None:
                self._positions = tuple(positions)
                self._version += 1
            self._persist_locked()

    def reset(self) -> tuple[Position, ...]:
        """Administrative reset: default portfolio and default reference."""
        with self._lock:
            self._reset_locked()
            self._write_reference_locked(self._default_reference())
            logger.info("Valuation state reset to defaults")
            return self._positions

    @property
    def version(self) -> int:
        """Current version counter. Useful for change detection."""
        return self._version

    @property
    def loads_since_reset(self) -> int:
        return self._loads_since_reset

    # --- Global reference valuation ---

    def get_global_reference_valuation(self) -> float:
        """Fund-wide reference NAV in sats, created lazily from defaults."""
        with self._lock:
            return self._read_reference_locked()

    def adjust_global_reference_valuation(self, percent_delta: float) -> float:
        """Move the reference by a fraction (0.02 == +2%). Returns the new value."""
        with self._lock:
            return self._adjust_reference_locked(percent_delta)

    @property
    def last_reference_update(self) -> float:
        """Unix seconds of the last reference write, 0.0 if never."""
        raw = self._safe_get(REFERENCE_UPDATED_KEY)
        try:
            return float(raw) if raw is not None else 0.0
        except ValueError:
            return 0.0

    # --- Token price and currency preference ---

    def get_token_price(self) -> float | None:
        raw = self._safe_get(TOKEN_PRICE_KEY)
        try:
            price = float(raw) if raw is not None else None
        except ValueError:
            return None
        if price is None or not math.isfinite(price) or price <= 0:
            return None
        return price

    def set_token_price(self, price: float) -> None:
        if math.isfinite(price) and price > 0:
            self._safe_set(TOKEN_PRICE_KEY, repr(float(price)))

    def get_currency(self) -> Currency:
        return Currency.parse(self._safe_get(CURRENCY_KEY))

    def set_currency(self, currency: Currency | str) -> Currency:
        parsed = Currency.parse(currency)
        self._safe_set(CURRENCY_KEY, parsed.value)
        return parsed

    # --- Internals (callers hold the lock) ---

    def _read_record(self) -> dict | None:
        raw = self._safe_get(PORTFOLIO_KEY)
        if raw is None:
            return None
        try:
            return migrate_record(json.loads(raw))
        except ValueError as e:
            logger.warning("Corrupt portfolio record: %s", e)
            return None

    def _reset_locked(self) -> None:
        self._positions = tuple(default_positions(self._defaults))
        self._loads_since_reset = 0
        self._version += 1
        self._persist_locked()

    def _persist_locked(self) -> None:
        record = {
            "schemaVersion": SCHEMA_VERSION,
            "positions": [p.to_dict() for p in self._positions or ()],
            "loadsSinceReset": self._loads_since_reset,
        }
        self._safe_set(PORTFOLIO_KEY, json.dumps(record))

    def _default_reference(self) -> float:
        total = sum(float(item["value"]) for item in self._defaults)
        return total if total > 0 else DEFAULT_GLOBAL_REFERENCE

    def _read_reference_locked(self) -> float:
        raw = self._safe_get(REFERENCE_KEY)
        if raw is not None:
            try:
                value = float(raw)
            except ValueError:
                value = math.nan
            if math.isfinite(value) and 0 < value <= self._ceiling:
                return value
            logger.warning("Discarding invalid global reference %r", raw)

        value = self._default_reference()
        self._write_reference_locked(value)
        return value

    def _adjust_reference_locked(self, percent_delta: float) -> float:
        current = self._read_reference_locked()
        if not math.isfinite(percent_delta):
            logger.warning("Ignoring non-finite reference delta %r", percent_delta)
            return current
        updated = max(1.0, current * (1 + percent_delta))
        if updated > self._ceiling:
            logger.warning("Global reference %.0f exceeds ceiling, resetting", updated)
            updated = self._default_reference()
        self._write_reference_locked(updated)
        return updated

    def _write_reference_locked(self, value: float) -> None:
        self._safe_set(REFERENCE_KEY, repr(float(value)))
        self._safe_set(REFERENCE_UPDATED_KEY, repr(time.time()))

    def _safe_get(self, key: str) -> str | None:
        try:
            return self._storage.get(key)
        except Exception as e:
            logger.warning("Storage read failed for %s: %s", key, e)
            return None

    def _safe_set(self, key: str, value: str) -> None:
        try:
            self._storage.set(key, value)
        except Exception as e:
            logger.error("Storage write failed for %s: %s", key, e)
