"""PulseTrade — trading bot orchestrator.

Wires stream client → signal engine → execution gateway, applies the
trading policy to every signal, and reports outcomes to the notifier and
an in-memory operational log.

State machine: ``Stopped ⇄ Running``.
"""

import logging
from collections import deque
from dataclasses import asdict, dataclass
from typing import Callable, Literal, Optional

from pulsetrade.broker.binance_client import BinanceFuturesClient
from pulsetrade.broker.models import ExecutionConfig
from pulsetrade.market.models import Tick, now_ms
from pulsetrade.market.stream_client import StreamClient
from pulsetrade.models.bot_policy import BotPolicy
from pulsetrade.notifications import LogNotifier, Notifier
from pulsetrade.observers import Subscription
from pulsetrade.strategy.models import Signal
from pulsetrade.strategy.signal_engine import SignalEngine

logger = logging.getLogger("pulsetrade.bot")

MAX_LOGS = 100

LogType = Literal["info", "signal", "order", "error"]


@dataclass(frozen=True)
class BotLog:
    timestamp_ms: int
    type: LogType
    message: str


@dataclass(frozen=True)
class BotStatus:
    running: bool
    configured: bool
    last_signal_at_ms: Optional[int]
    last_order_at_ms: Optional[int]
    total_orders: int
    stream_connected: bool
    bar_count: int
    current_price: Optional[float]

    def to_dict(self) -> dict:
        return asdict(self)


class TradingBot:
    """Orchestrates one stream, one signal engine and one execution gateway.

    Args:
        stream: The market-data ``StreamClient``.
        engine: The ``SignalEngine`` subscribed to *stream*.
        gateway: The ``BinanceFuturesClient`` used for execution.
        notifier: Notification backend (defaults to ``LogNotifier``).
        policy: Initial policy; the bot stays stopped until configured.
        clock: Returns the current time in epoch milliseconds.
    """

    def __init__(
        self,
        stream: StreamClient,
        engine: SignalEngine,
        gateway: BinanceFuturesClient,
        notifier: Optional[Notifier] = None,
        policy: Optional[BotPolicy] = None,
        clock: Callable[[], int] = now_ms,
        max_logs: int = MAX_LOGS,
    ) -> None:
        self._stream = stream
        self._engine = engine
        self._gateway = gateway
        self._notifier = notifier or LogNotifier()
        self._policy = policy or BotPolicy()
        self._clock = clock

        self._running = False
        self._generation = 0
        self._last_order_at_ms: Optional[int] = None
        self._total_orders = 0
        self._current_price: Optional[float] = None
        self._logs: deque[BotLog] = deque(maxlen=max_logs)
        self._tick_subscription: Optional[Subscription] = None
        self._signal_subscription: Optional[Subscription] = None

    @property
    def policy(self) -> BotPolicy:
        return self._policy

    @property
    def running(self) -> bool:
        return self._running

    # ── Configuration ────────────────────────────────────────────────────

    async def configure(
        self,
        policy: BotPolicy,
        credentials: Optional[ExecutionConfig] = None,
    ) -> None:
        """Replace the policy (and credentials), then start or stop to match."""
        self._policy = policy
        if credentials is not None and credentials.api_key and credentials.api_secret:
            self._gateway.configure(credentials)

        logger.info(
            "Policy updated: enabled=%s min_score=%d leverage=%dx account=%.1f%% margin=%s",
            policy.enabled, policy.min_score, policy.leverage,
            policy.account_percentage, policy.margin_type,
        )

        if policy.enabled:
            await self.start()
        else:
            await self.stop()

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            logger.info("Bot already running.")
            return
        logger.info("Starting trading bot.")
        self._running = True
        self._generation += 1
        generation = self._generation

        self._stream.start()
        self._tick_subscription = self._stream.subscribe(self._on_tick)
        # Subscribed before the seed await so stop() can always dispose it
        self._signal_subscription = self._engine.subscribe_signals(self.handle_signal)
        await self._engine.start()
        if generation != self._generation:
            logger.info("Bot stopped while starting — start abandoned.")
            return

        self._add_log("info", "Trading bot started")
        await self._notify(
            "Bot started",
            f"Monitoring {self._gateway.symbol} around the clock",
            {"event": "started"},
        )

    async def stop(self) -> None:
        if not self._running:
            return
        logger.info("Stopping trading bot.")
        self._running = False
        self._generation += 1

        for sub in (self._signal_subscription, self._tick_subscription):
            if sub is not None:
                sub.unsubscribe()
        self._signal_subscription = None
        self._tick_subscription = None
        self._engine.stop()
        self._stream.stop()

        self._add_log("info", "Trading bot stopped")
        await self._notify("Bot stopped", "The trading bot has been disabled", {"event": "stopped"})

    def _on_tick(self, tick: Tick) -> None:
        self._current_price = tick.price

    # ── Signal handling ──────────────────────────────────────────────────

    async def handle_signal(self, signal: Signal) -> None:
        """Apply the policy gate to *signal* and execute it when allowed."""
        policy = self._policy
        self._add_log(
            "signal",
            f"{signal.direction.value} signal — score {signal.score} @ {signal.entry_price:.2f}",
        )

        if not policy.enabled:
            self._add_log("info", "Bot disabled, signal ignored")
            return

        if signal.score < policy.min_score:
            self._add_log(
                "info", f"Score {signal.score} below minimum {policy.min_score}",
            )
            return

        now = self._clock()
        if (
            self._last_order_at_ms is not None
            and now - self._last_order_at_ms < policy.min_order_interval_ms
        ):
            self._add_log("info", "Waiting for minimum interval between orders")
            return

        if not self._gateway.is_configured():
            self._add_log("info", "Execution not configured — notification only")
            await self._notify(
                f"{signal.direction.value} signal detected",
                (
                    f"Score: {signal.score} | Entry: {signal.entry_price:.2f}\n"
                    f"SL: {signal.stop_loss:.2f} | TP: {signal.take_profit_1:.2f}\n"
                    "Configure API credentials to enable execution"
                ),
                {"event": "signal", **signal.to_dict()},
            )
            return

        self._add_log(
            "order", f"Executing {signal.direction.value} @ {signal.entry_price:.2f}",
        )
        result = await self._gateway.execute_signal(
            signal,
            account_percentage=policy.account_percentage,
            leverage=policy.leverage,
            margin_type=policy.margin_type,
        )

        if result.success:
            self._last_order_at_ms = now
            self._total_orders += 1
            price = result.avg_price or signal.entry_price
            qty = f"{result.executed_qty:.4f}" if result.executed_qty is not None else "N/A"
            self._add_log(
                "order",
                f"{signal.direction.value} executed — order #{result.order_id} {qty} @ {price:.2f}",
            )
            await self._notify(
                f"{signal.direction.value} executed",
                (
                    f"Order #{result.order_id}\nPrice: {price:.2f}\nQuantity: {qty}\n"
                    f"SL: {signal.stop_loss:.2f}\nTP: {signal.take_profit_1:.2f}"
                ),
                {
                    "event": "order_filled",
                    "order_id": result.order_id,
                    "executed_qty": result.executed_qty,
                    "avg_price": result.avg_price,
                    **signal.to_dict(),
                },
            )
        else:
            self._add_log(
                "error", f"Failed to execute {signal.direction.value}: {result.error}",
            )
            await self._notify(
                f"Failed to execute {signal.direction.value}",
                f"Reason: {result.error}\nSignal: score {signal.score} @ {signal.entry_price:.2f}",
                {"event": "order_failed", "error": result.error, **signal.to_dict()},
            )

    # ── Reporting ────────────────────────────────────────────────────────

    def get_logs(self) -> list[BotLog]:
        """Operational log, newest first."""
        return list(self._logs)

    def get_status(self) -> BotStatus:
        engine_status = self._engine.status()
        return BotStatus(
            running=self._running,
            configured=self._gateway.is_configured(),
            last_signal_at_ms=engine_status.last_signal_at_ms,
            last_order_at_ms=self._last_order_at_ms,
            total_orders=self._total_orders,
            stream_connected=self._stream.is_connected(),
            bar_count=engine_status.bar_count,
            current_price=self._current_price,
        )

    def _add_log(self, log_type: LogType, message: str) -> None:
        self._logs.appendleft(BotLog(timestamp_ms=self._clock(), type=log_type, message=message))
        if log_type == "error":
            logger.error(message)
        else:
            logger.info("[%s] %s", log_type, message)

    async def _notify(self, title: str, body: str, data: Optional[dict] = None) -> None:
        try:
            await self._notifier.notify(title, body, data)
        except Exception as exc:
            logger.error("Notification '%s' failed: %s", title, exc)
