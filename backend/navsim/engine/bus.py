"""Debounced publish/subscribe bus for NAV and portfolio updates."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import Enum
from threading import Lock
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_WINDOW = 0.3  # Seconds

Listener = Callable[[Any], None]


class Topic(str, Enum):
    NAV_UPDATED = "nav_updated"
    PORTFOLIO_UPDATED = "portfolio_updated"
    TOKEN_PRICE_UPDATED = "token_price_updated"
    CURRENCY_CHANGED = "currency_changed"


# Older event names still used by some consumers
LEGACY_ALIASES: dict[str, Topic] = {
    "nav-update": Topic.NAV_UPDATED,
    "ovt-price-update": Topic.TOKEN_PRICE_UPDATED,
    "portfolio-updated": Topic.PORTFOLIO_UPDATED,
    "currency-change": Topic.CURRENCY_CHANGED,
    "currency-changed": Topic.CURRENCY_CHANGED,
}


def resolve_topic(name: Topic | str) -> Topic | None:
    """Map a topic, its value, or a legacy alias to a Topic. None if unknown."""
    if isinstance(name, Topic):
        return name
    if not isinstance(name, str):
        return None
    if name in LEGACY_ALIASES:
        return LEGACY_ALIASES[name]
    try:
        return Topic(name)
    except ValueError:
        return None


class Debouncer:
    """Collapse bursts of calls into one trailing call with the latest args.

    Each ``call`` re-arms a timer on the running event loop; the callback
    fires once ``window`` seconds after the last call.

    Coalescing needs a running loop. Called from synchronous code with no
    loop there is no timer to arm, so every call is delivered at once and
    N calls produce N deliveries. Publish from inside a running loop to get
    one delivery per burst.
    """

    def __init__(self, callback: Callable[..., None], window: float = DEFAULT_DEBOUNCE_WINDOW) -> None:
        self._callback = callback
        self._window = window
        self._handle: asyncio.TimerHandle | None = None
        self._args: tuple = ()
        self._pending = False

    @property
    def pending(self) -> bool:
        return self._pending

    @property
    def window(self) -> float:
        return self._window

    def call(self, *args: Any) -> None:
        self._args = args
        self._pending = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.flush()
            return

        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_later(self._window, self._fire)

    def flush(self) -> None:
        """Deliver a pending call now."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._pending:
            self._fire()

    def cancel(self) -> None:
        """Drop a pending call without delivering it."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._pending = False
        self._args = ()

    def _fire(self) -> None:
        self._handle = None
        if not self._pending:
            return
        args, self._args, self._pending = self._args, (), False
        self._callback(*args)


class Subscription:
    """Handle returned by :meth:`UpdateBus.subscribe`.

    ``unsubscribe()`` is idempotent; the handle also works as a context
    manager so a consumer's lifetime bounds its listener.
    """

    def __init__(self, bus: UpdateBus | None, topic: Topic | None, callback: Listener) -> None:
        self._bus = bus
        self.topic = topic
        self.callback = callback

    @property
    def active(self) -> bool:
        return self._bus is not None

    def unsubscribe(self) -> None:
        if self._bus is not None and self.topic is not None:
            self._bus.unsubscribe(self.topic, self.callback)
        self._bus = None

    close = unsubscribe

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unsubscribe()


class UpdateBus:
    """Topic-keyed pub/sub with per-topic debouncing.

    Several publishes to one topic within ``window`` seconds reach each
    subscriber once, carrying only the last payload. Dispatch works on a
    snapshot of the listener list, so listeners may unsubscribe (or others
    may subscribe) mid-dispatch without affecting the current delivery.
    """

    def __init__(self, window: float = DEFAULT_DEBOUNCE_WINDOW) -> None:
        self._window = window
        self._lock = Lock()
        self._listeners: dict[Topic, list[Listener]] = {topic: [] for topic in Topic}
        self._latest: dict[Topic, Any] = {}
        self._debouncers: dict[Topic, Debouncer] = {
            topic: Debouncer(lambda payload, t=topic: self._dispatch(t, payload), window) for topic in Topic
        }

    # --- Public API ---

    def subscribe(self, topic: Topic | str, callback: Listener) -> Subscription:
        """Register ``callback`` for ``topic``. Returns an unsubscribe handle."""
        resolved = resolve_topic(topic)
        if resolved is None:
            logger.warning("Subscribe to unknown topic %r ignored", topic)
            return Subscription(None, None, callback)

        with self._lock:
            listeners = self._listeners[resolved]
            if callback not in listeners:
                listeners.append(callback)
        return Subscription(self, resolved, callback)

    def unsubscribe(self, topic: Topic | str, callback: Listener) -> bool:
        """Remove ``callback`` by reference. Returns False if it wasn't registered."""
        resolved = resolve_topic(topic)
        if resolved is None:
            return False
        with self._lock:
            try:
                self._listeners[resolved].remove(callback)
            except ValueError:
                return False
        return True

    def publish(self, topic: Topic | str, payload: Any = None) -> None:
        """Debounced publish: only the last payload in a burst is delivered."""
        resolved = resolve_topic(topic)
        if resolved is None:
            logger.debug("Publish to unknown topic %r ignored", topic)
            return
        self._latest[resolved] = payload
        self._debouncers[resolved].call(payload)

    def publish_now(self, topic: Topic | str, payload: Any = None) -> None:
        """Deliver immediately, superseding any pending debounced payload."""
        resolved = resolve_topic(topic)
        if resolved is None:
            logger.debug("Publish to unknown topic %r ignored", topic)
            return
        self._debouncers[resolved].cancel()
        self._latest[resolved] = payload
        self._dispatch(resolved, payload)

    def flush(self) -> None:
        """Deliver every pending debounced payload now."""
        for debouncer in self._debouncers.values():
            debouncer.flush()

    def latest(self, topic: Topic | str) -> Any:
        """Most recently published payload for a topic, or None."""
        resolved = resolve_topic(topic)
        return self._latest.get(resolved) if resolved is not None else None

    def pending(self, topic: Topic | str) -> bool:
        resolved = resolve_topic(topic)
        return resolved is not None and self._debouncers[resolved].pending

    def listener_count(self, topic: Topic | str | None = None) -> int:
        with self._lock:
            if topic is None:
                return sum(len(listeners) for listeners in self._listeners.values())
            resolved = resolve_topic(topic)
            return len(self._listeners[resolved]) if resolved is not None else 0

    def close(self) -> None:
        """Cancel pending deliveries and drop every listener."""
        for debouncer in self._debouncers.values():
            debouncer.cancel()
        with self._lock:
            for listeners in self._listeners.values():
                listeners.clear()
        self._latest.clear()

    # --- Internals ---

    def _dispatch(self, topic: Topic, payload: Any) -> None:
        with self._lock:
            listeners = list(self._listeners[topic])
        for listener in listeners:
            try:
                listener(payload)
            except Exception:
                logger.exception("Listener %r failed on %s", listener, topic.value)
