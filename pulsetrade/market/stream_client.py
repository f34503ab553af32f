"""Binance futures ticker stream client.

Owns one persistent websocket to the market-data feed, normalizes every
message into a ``Tick`` and fans it out to subscribers.  The connection
lifecycle is an explicit state machine with a single pending reconnect
timer, so ``stop()`` cancels everything in one pass.
"""

import asyncio
import enum
import json
import logging
from typing import Any, Callable, Optional

import websockets

from pulsetrade.market.models import Tick
from pulsetrade.observers import ObserverRegistry, Subscription

logger = logging.getLogger("pulsetrade.stream")

# Reconnect settings
_BASE_DELAY = 5.0  # seconds; multiplied by 1.5 each attempt
_BACKOFF_FACTOR = 1.5
_MAX_ATTEMPTS = 10
_COOLDOWN = 60.0  # seconds to wait once _MAX_ATTEMPTS is exhausted
_PING_INTERVAL = 30.0


class ConnectionState(str, enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    FAULTED = "faulted"


def reconnect_delay(attempt: int, base_delay: float = _BASE_DELAY,
                    factor: float = _BACKOFF_FACTOR) -> float:
    """Backoff delay before reconnect number ``attempt + 1``."""
    return base_delay * factor ** attempt


class StreamClient:
    """Resilient websocket ticker client.

    Args:
        url: Full stream URL, e.g.
            ``wss://fstream.binance.com/ws/btcusdt@ticker``.
        symbol: Symbol stamped on ticks whose payload omits ``s``.
        connector: Callable returning an async context manager that yields a
            websocket.  Defaults to ``websockets.connect``.
    """

    def __init__(
        self,
        url: str,
        symbol: str = "BTCUSDT",
        *,
        base_delay: float = _BASE_DELAY,
        backoff_factor: float = _BACKOFF_FACTOR,
        max_attempts: int = _MAX_ATTEMPTS,
        cooldown: float = _COOLDOWN,
        ping_interval: float = _PING_INTERVAL,
        connector: Optional[Callable[..., Any]] = None,
    ) -> None:
        self._url = url
        self._symbol = symbol
        self._base_delay = base_delay
        self._backoff_factor = backoff_factor
        self._max_attempts = max_attempts
        self._cooldown = cooldown
        self._ping_interval = ping_interval
        self._connector = connector or websockets.connect

        self._state = ConnectionState.IDLE
        self._should_run = False
        self._generation = 0
        self._attempts = 0
        self._conn_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._timer_delay: Optional[float] = None
        self._last_tick: Optional[Tick] = None
        self._subscribers: ObserverRegistry[Tick] = ObserverRegistry("tick")

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    @property
    def pending_reconnect_delay(self) -> Optional[float]:
        """Delay of the armed reconnect timer, or ``None`` when idle."""
        return self._timer_delay if self._timer is not None else None

    def is_connected(self) -> bool:
        return self._state is ConnectionState.OPEN

    def last_tick(self) -> Optional[Tick]:
        return self._last_tick

    def subscribe(self, handler: Callable[[Tick], Any]) -> Subscription:
        """Register a tick handler; dispose the returned token to remove it."""
        return self._subscribers.subscribe(handler)

    # ── Lifecycle ────────────────────────────────────────────────────────

    def start(self) -> None:
        """Open the feed.  Must be called from inside a running event loop."""
        if self._should_run:
            logger.info("Stream client already running.")
            return
        logger.info("Starting market-data stream %s", self._url)
        self._should_run = True
        self._attempts = 0
        self._open()

    def stop(self) -> None:
        """Close the feed and cancel every pending timer and task."""
        if not self._should_run and self._conn_task is None:
            return
        logger.info("Stopping market-data stream.")
        self._should_run = False
        self._generation += 1
        self._cancel_timer()
        self._cancel_heartbeat()
        if self._conn_task is not None and not self._conn_task.done():
            self._state = ConnectionState.CLOSING
            self._conn_task.cancel()
        else:
            self._state = ConnectionState.IDLE
        self._conn_task = None
        self._attempts = 0

    # ── Connection ───────────────────────────────────────────────────────

    def _open(self) -> None:
        self._timer = None
        self._timer_delay = None
        if not self._should_run:
            return
        self._state = ConnectionState.CONNECTING
        loop = asyncio.get_running_loop()
        self._conn_task = loop.create_task(self._run_connection(self._generation))

    async def _run_connection(self, generation: int) -> None:
        try:
            async with self._connector(self._url, ping_interval=None) as ws:
                self._state = ConnectionState.OPEN
                self._attempts = 0
                logger.info("Connected to market-data feed.")
                self._heartbeat_task = asyncio.create_task(self._heartbeat(ws))
                async for message in ws:
                    self._handle_message(message)
            logger.warning("Market-data feed closed by remote.")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Market-data feed error: %s", exc)
        finally:
            if generation == self._generation:
                self._cancel_heartbeat()
                if self._should_run:
                    self._state = ConnectionState.FAULTED
                    self._schedule_reconnect()
                else:
                    self._state = ConnectionState.IDLE
            elif self._state is ConnectionState.CLOSING:
                self._state = ConnectionState.IDLE

    def _schedule_reconnect(self) -> None:
        loop = asyncio.get_running_loop()
        if self._attempts >= self._max_attempts:
            delay = self._cooldown
            logger.error(
                "Reconnect limit (%d) reached — retrying in %.0fs",
                self._max_attempts, delay,
            )
            self._timer = loop.call_later(delay, self._on_cooldown_elapsed)
        else:
            delay = reconnect_delay(
                self._attempts, self._base_delay, self._backoff_factor,
            )
            self._attempts += 1
            logger.info(
                "Reconnecting in %.2fs (attempt %d/%d)",
                delay, self._attempts, self._max_attempts,
            )
            self._timer = loop.call_later(delay, self._open)
        self._timer_delay = delay

    def _on_cooldown_elapsed(self) -> None:
        self._attempts = 0
        self._open()

    async def _heartbeat(self, ws) -> None:
        while True:
            await asyncio.sleep(self._ping_interval)
            try:
                # Sends the ping only; a missing pong is not treated as a fault.
                await ws.ping()
            except Exception as exc:
                logger.debug("Heartbeat ping failed: %s", exc)

    def _handle_message(self, message) -> None:
        try:
            tick = Tick.from_ticker(json.loads(message), default_symbol=self._symbol)
        except (ValueError, KeyError, TypeError, OverflowError) as exc:
            logger.warning("Dropping malformed feed message: %s", exc)
            return
        self._last_tick = tick
        self._subscribers.publish(tick)

    # ── Cancellation ─────────────────────────────────────────────────────

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = None
        self._timer_delay = None

    def _cancel_heartbeat(self) -> None:
        if self._heartbeat_task is not None and not self._heartbeat_task.done():
            self._heartbeat_task.cancel()
        self._heartbeat_task = None
