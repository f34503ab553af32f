"""Bar aggregation — buckets ticks into fixed-interval OHLCV bars.

Closed bars live in a bounded deque (oldest evicted first).  The open bar
is replaced on every tick, so every ``Bar`` handed out is immutable.
"""

import dataclasses
import logging
from collections import deque
from collections.abc import Iterable
from typing import Optional

from pulsetrade.strategy.models import Bar

logger = logging.getLogger("pulsetrade.aggregator")

BAR_INTERVAL_MS = 5 * 60 * 1000
MAX_BARS = 200


class BarAggregator:
    """Builds bars from ticks and keeps a bounded closed-bar history.

    Args:
        interval_ms: Bar duration in milliseconds (default 5 minutes).
        max_bars: History bound; the oldest bar is dropped beyond it.
    """

    def __init__(
        self,
        interval_ms: int = BAR_INTERVAL_MS,
        max_bars: int = MAX_BARS,
    ) -> None:
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")
        if max_bars <= 0:
            raise ValueError(f"max_bars must be positive, got {max_bars}")
        self._interval_ms = interval_ms
        self._history: deque[Bar] = deque(maxlen=max_bars)
        self._current: Optional[Bar] = None
        self._last_bucket_ms: Optional[int] = None

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def history(self) -> list[Bar]:
        """Closed bars, oldest first."""
        return list(self._history)

    @property
    def current(self) -> Optional[Bar]:
        """The open bar, if a tick has arrived since the last close."""
        return self._current

    @property
    def bar_count(self) -> int:
        return len(self._history)

    def closes(self) -> list[float]:
        """Closing prices of the history with the open bar's close appended."""
        closes = [b.close for b in self._history]
        if self._current is not None:
            closes.append(self._current.close)
        return closes

    def bucket_for(self, event_time_ms: int) -> int:
        return (event_time_ms // self._interval_ms) * self._interval_ms

    # ── Mutation ─────────────────────────────────────────────────────────

    def add_tick(self, price: float, event_time_ms: int) -> Optional[Bar]:
        """Apply one tick.  Returns the bar that was closed by it, if any."""
        bucket = self.bucket_for(event_time_ms)

        if self._last_bucket_ms is None or bucket > self._last_bucket_ms:
            closed = self._current
            if closed is not None:
                self._history.append(closed)
            self._current = Bar(
                open=price, high=price, low=price, close=price,
                volume=0.0, bucket_start_ms=bucket,
            )
            self._last_bucket_ms = bucket
            return closed

        if self._current is not None and bucket == self._current.bucket_start_ms:
            self._current = dataclasses.replace(
                self._current,
                high=max(self._current.high, price),
                low=min(self._current.low, price),
                close=price,
            )
        else:
            logger.debug("Ignoring late tick for bucket %d", bucket)
        return None

    def seed(self, bars: Iterable[Bar]) -> int:
        """Replace the history with *bars*, sorted and de-duplicated.

        Bars at or after the open bar's bucket are discarded so the open bar
        stays the newest.  Returns the number of bars kept.
        """
        by_bucket: dict[int, Bar] = {}
        for bar in bars:
            if self._current is not None and bar.bucket_start_ms >= self._current.bucket_start_ms:
                continue
            by_bucket[bar.bucket_start_ms] = bar

        self._history.clear()
        self._history.extend(by_bucket[k] for k in sorted(by_bucket))

        if self._current is None and self._history:
            self._last_bucket_ms = self._history[-1].bucket_start_ms
        return len(self._history)
