"""Signal engine — turns the tick stream into scored trade signals.

Subscribes to the stream client, aggregates ticks into 5-minute bars and
runs an analysis pass every minute (plus once shortly after start).  A
signal is published only when enough bars exist, the engine's own cooldown
has elapsed, and the scorer clears the threshold.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from pulsetrade.market.models import Tick, now_ms
from pulsetrade.observers import ObserverRegistry, Subscription
from pulsetrade.strategy.aggregator import BAR_INTERVAL_MS, MAX_BARS, BarAggregator
from pulsetrade.strategy.models import Bar, Signal
from pulsetrade.strategy.scoring import MIN_SCORE, build_snapshot, score_signal

logger = logging.getLogger("pulsetrade.signals")

MIN_BARS = 50
SEED_BARS = 100
ANALYSIS_PERIOD = 60.0  # seconds
FIRST_ANALYSIS_DELAY = 5.0  # seconds
MIN_SIGNAL_INTERVAL_MS = 5 * 60 * 1000

BarSource = Callable[[int], Awaitable[list[Bar]]]


@dataclass(frozen=True)
class EngineStatus:
    running: bool
    bar_count: int
    last_signal_at_ms: Optional[int]


class SignalEngine:
    """Bar aggregator plus periodic indicator scoring.

    Args:
        stream: Tick source exposing ``subscribe(handler)`` (a ``StreamClient``).
        bar_source: Optional coroutine function ``(limit) -> list[Bar]`` used
            once to seed history before live ticks arrive.
        clock: Returns the current time in epoch milliseconds.
    """

    def __init__(
        self,
        stream,
        bar_source: Optional[BarSource] = None,
        *,
        interval_ms: int = BAR_INTERVAL_MS,
        max_bars: int = MAX_BARS,
        seed_bars: int = SEED_BARS,
        min_bars: int = MIN_BARS,
        min_score: int = MIN_SCORE,
        min_signal_interval_ms: int = MIN_SIGNAL_INTERVAL_MS,
        analysis_period: float = ANALYSIS_PERIOD,
        first_analysis_delay: float = FIRST_ANALYSIS_DELAY,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._stream = stream
        self._bar_source = bar_source
        self._aggregator = BarAggregator(interval_ms=interval_ms, max_bars=max_bars)
        self._seed_bars = seed_bars
        self._min_bars = min_bars
        self._min_score = min_score
        self._min_signal_interval_ms = min_signal_interval_ms
        self._analysis_period = analysis_period
        self._first_analysis_delay = first_analysis_delay
        self._clock = clock

        self._running = False
        self._generation = 0
        self._seeded = False
        self._last_signal_at_ms: Optional[int] = None
        self._tick_subscription: Optional[Subscription] = None
        self._first_timer: Optional[asyncio.TimerHandle] = None
        self._periodic_timer: Optional[asyncio.TimerHandle] = None
        self._signals: ObserverRegistry[Signal] = ObserverRegistry("signal")

    @property
    def aggregator(self) -> BarAggregator:
        return self._aggregator

    @property
    def running(self) -> bool:
        return self._running

    def status(self) -> EngineStatus:
        return EngineStatus(
            running=self._running,
            bar_count=self._aggregator.bar_count,
            last_signal_at_ms=self._last_signal_at_ms,
        )

    def subscribe_signals(self, handler: Callable[[Signal], Any]) -> Subscription:
        return self._signals.subscribe(handler)

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Seed history (once), subscribe to ticks and arm the analysis timers."""
        if self._running:
            logger.info("Signal engine already running.")
            return
        logger.info("Starting signal engine.")
        self._running = True
        generation = self._generation

        if not self._seeded and self._bar_source is not None:
            await self._seed()
            if generation != self._generation:
                # stop() was called while the seed request was in flight
                return

        self._tick_subscription = self._stream.subscribe(self.on_tick)
        loop = asyncio.get_running_loop()
        self._first_timer = loop.call_later(self._first_analysis_delay, self._on_first_timer)
        self._periodic_timer = loop.call_later(self._analysis_period, self._on_periodic_timer)
        logger.info("Signal engine started with %d bars.", self._aggregator.bar_count)

    def stop(self) -> None:
        """Cancel both analysis timers and detach from the tick stream."""
        if not self._running:
            return
        logger.info("Stopping signal engine.")
        self._running = False
        self._generation += 1
        for timer in (self._first_timer, self._periodic_timer):
            if timer is not None:
                timer.cancel()
        self._first_timer = None
        self._periodic_timer = None
        if self._tick_subscription is not None:
            self._tick_subscription.unsubscribe()
            self._tick_subscription = None

    async def _seed(self) -> None:
        try:
            bars = await self._bar_source(self._seed_bars)
            kept = self._aggregator.seed(bars)
            self._seeded = True
            logger.info("Seeded %d historical bars — ready to analyse.", kept)
        except Exception as exc:
            logger.warning(
                "Historical seed failed (%s) — building history from the live stream.",
                exc,
            )

    # ── Tick handling ────────────────────────────────────────────────────

    def on_tick(self, tick: Tick) -> None:
        closed = self._aggregator.add_tick(tick.price, tick.event_time_ms)
        if closed is not None:
            logger.debug(
                "Closed bar %d O=%.2f H=%.2f L=%.2f C=%.2f (%d bars)",
                closed.bucket_start_ms, closed.open, closed.high,
                closed.low, closed.close, self._aggregator.bar_count,
            )

    # ── Analysis ─────────────────────────────────────────────────────────

    def analyze(self, now: Optional[int] = None) -> Optional[Signal]:
        """Run one analysis pass and publish the signal, if any."""
        now = self._clock() if now is None else now

        count = self._aggregator.bar_count
        if count < self._min_bars:
            logger.info("Waiting for more bars (%d/%d)", count, self._min_bars)
            return None

        if (
            self._last_signal_at_ms is not None
            and now - self._last_signal_at_ms < self._min_signal_interval_ms
        ):
            return None

        history = self._aggregator.history
        current = self._aggregator.current
        price = current.close if current is not None else history[-1].close
        snapshot = build_snapshot(history, self._aggregator.closes(), price)

        signal = score_signal(snapshot, emitted_at_ms=now, min_score=self._min_score)
        if signal is None:
            return None

        self._last_signal_at_ms = now
        logger.info(
            "Signal detected: %s score=%d entry=%.2f SL=%.2f TP1=%.2f (%s)",
            signal.direction.value, signal.score, signal.entry_price,
            signal.stop_loss, signal.take_profit_1, signal.reason,
        )
        self._signals.publish(signal)
        return signal

    def _on_first_timer(self) -> None:
        self._first_timer = None
        self._safe_analyze()

    def _on_periodic_timer(self) -> None:
        if not self._running:
            return
        loop = asyncio.get_running_loop()
        self._periodic_timer = loop.call_later(self._analysis_period, self._on_periodic_timer)
        self._safe_analyze()

    def _safe_analyze(self) -> None:
        try:
            self.analyze()
        except Exception:
            logger.exception("Analysis pass failed")
