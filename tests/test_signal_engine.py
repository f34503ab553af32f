"""Tests for pulsetrade.strategy.signal_engine — analysis gating and lifecycle."""

import asyncio

import pytest

from pulsetrade.market.models import Tick
from pulsetrade.observers import ObserverRegistry
from pulsetrade.strategy.aggregator import BAR_INTERVAL_MS
from pulsetrade.strategy.models import Bar, Direction
from pulsetrade.strategy.signal_engine import SignalEngine

BASE_MS = 5_000 * BAR_INTERVAL_MS

FLAT = [50_000.0] * 61
# 50 flat bars, a 10-bar rally, then one tick that closes the last rally bar
RALLY = [50_000.0] * 50 + [50_150.0 + 150.0 * i for i in range(10)] + [51_500.0]


class FakeStream:
    """Minimal tick source with the ``StreamClient.subscribe`` contract."""

    def __init__(self):
        self.registry = ObserverRegistry("tick")

    def subscribe(self, handler):
        return self.registry.subscribe(handler)

    def push(self, price: float, event_time_ms: int):
        self.registry.publish(Tick("BTCUSDT", price, event_time_ms))


def _feed(engine: SignalEngine, closes, start_index: int = 0):
    for i, price in enumerate(closes, start=start_index):
        engine.on_tick(Tick("BTCUSDT", price, BASE_MS + i * BAR_INTERVAL_MS))


def _bars(closes):
    return [
        Bar(open=c, high=c, low=c, close=c, volume=0.0,
            bucket_start_ms=BASE_MS + i * BAR_INTERVAL_MS)
        for i, c in enumerate(closes)
    ]


# ── Analysis ─────────────────────────────────────────────────────────────


class TestAnalyze:
    def test_requires_minimum_bars(self):
        engine = SignalEngine(FakeStream())
        _feed(engine, RALLY[-40:])
        assert engine.aggregator.bar_count < 50
        assert engine.analyze(now=0) is None

    def test_flat_market_emits_nothing(self):
        engine = SignalEngine(FakeStream())
        _feed(engine, FLAT)
        assert engine.aggregator.bar_count == 60
        assert engine.analyze(now=0) is None

    def test_rally_emits_long(self):
        engine = SignalEngine(FakeStream())
        received = []
        engine.subscribe_signals(received.append)
        _feed(engine, RALLY)

        signal = engine.analyze(now=1_000)

        assert signal is not None
        assert signal.direction is Direction.LONG
        # Trend, MACD, momentum and strength; RSI is pinned at 100
        assert signal.score == 80
        assert signal.entry_price == 51_500.0
        assert signal.stop_loss < signal.entry_price < signal.take_profit_1
        assert signal.take_profit_1 < signal.take_profit_2 < signal.take_profit_3
        assert received == [signal]
        assert engine.status().last_signal_at_ms == 1_000

    def test_signal_cooldown(self):
        engine = SignalEngine(FakeStream())
        _feed(engine, RALLY)

        assert engine.analyze(now=1_000) is not None
        assert engine.analyze(now=1_000 + 299_999) is None
        assert engine.analyze(now=1_000 + 300_000) is not None

    def test_custom_min_score_suppresses(self):
        engine = SignalEngine(FakeStream(), min_score=90)
        _feed(engine, RALLY)
        assert engine.analyze(now=0) is None
        assert engine.status().last_signal_at_ms is None


# ── Lifecycle ────────────────────────────────────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_seeds_and_subscribes(self):
        stream = FakeStream()
        requested = []

        async def _source(limit):
            requested.append(limit)
            return _bars(RALLY[:-1])

        engine = SignalEngine(stream, bar_source=_source)
        await engine.start()

        assert requested == [100]
        assert engine.aggregator.bar_count == 60
        assert len(stream.registry) == 1

        stream.push(51_500.0, BASE_MS + 60 * BAR_INTERVAL_MS)
        assert engine.aggregator.current.close == 51_500.0
        engine.stop()

    @pytest.mark.asyncio
    async def test_seed_failure_is_not_fatal(self):
        async def _source(limit):
            raise OSError("network down")

        engine = SignalEngine(FakeStream(), bar_source=_source)
        await engine.start()

        assert engine.running
        assert engine.aggregator.bar_count == 0
        engine.stop()

    @pytest.mark.asyncio
    async def test_first_analysis_runs_after_delay(self):
        engine = SignalEngine(
            FakeStream(), first_analysis_delay=0.01, analysis_period=10.0,
        )
        _feed(engine, RALLY)
        received = []
        engine.subscribe_signals(received.append)

        await engine.start()
        await asyncio.sleep(0.05)

        assert len(received) == 1
        engine.stop()

    @pytest.mark.asyncio
    async def test_periodic_analysis_repeats(self):
        engine = SignalEngine(
            FakeStream(),
            first_analysis_delay=10.0,
            analysis_period=0.01,
            min_signal_interval_ms=0,
        )
        _feed(engine, RALLY)
        received = []
        engine.subscribe_signals(received.append)

        await engine.start()
        await asyncio.sleep(0.1)

        assert len(received) >= 2
        engine.stop()

    @pytest.mark.asyncio
    async def test_stop_cancels_timers_and_detaches(self):
        stream = FakeStream()
        engine = SignalEngine(stream, first_analysis_delay=0.01, analysis_period=0.01)
        _feed(engine, RALLY)
        received = []
        engine.subscribe_signals(received.append)

        await engine.start()
        engine.stop()
        engine.stop()
        await asyncio.sleep(0.05)

        assert received == []
        assert not engine.running
        assert len(stream.registry) == 0

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        stream = FakeStream()
        engine = SignalEngine(stream)

        await engine.start()
        await engine.start()

        assert len(stream.registry) == 1
        engine.stop()

    @pytest.mark.asyncio
    async def test_stop_during_seed_leaves_engine_detached(self):
        stream = FakeStream()
        release = asyncio.Event()

        async def _source(limit):
            await release.wait()
            return _bars(FLAT)

        engine = SignalEngine(stream, bar_source=_source)
        start_task = asyncio.create_task(engine.start())
        await asyncio.sleep(0)

        engine.stop()
        release.set()
        await start_task

        assert len(stream.registry) == 0
        assert not engine.running
