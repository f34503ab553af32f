"""Strategy data models — bars, indicator snapshots, and emitted signals."""

import enum
from dataclasses import dataclass, field
from typing import Optional


class Direction(str, enum.Enum):
    LONG = "LONG"
    SHORT = "SHORT"


@dataclass(frozen=True)
class Bar:
    """A fixed-interval OHLCV bar keyed by its bucket start (epoch ms)."""

    open: float
    high: float
    low: float
    close: float
    volume: float
    bucket_start_ms: int


@dataclass(frozen=True)
class MACD:
    macd: float
    signal: float
    histogram: float


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Indicator values the scoring function reads for one analysis pass."""

    price: float
    ema20: float
    ema50: float
    rsi: float
    macd: MACD
    atr: float


@dataclass(frozen=True)
class ScoreCard:
    """Outcome of scoring before the emission threshold is applied."""

    direction: Optional[Direction]
    score: int
    reasons: tuple[str, ...] = ()


@dataclass(frozen=True)
class Signal:
    """A scored directional trade recommendation with exit levels."""

    direction: Direction
    entry_price: float
    stop_loss: float
    take_profit_1: float
    take_profit_2: float
    take_profit_3: float
    score: int
    emitted_at_ms: int
    reasons: tuple[str, ...] = field(default_factory=tuple)

    @property
    def reason(self) -> str:
        """Contributing factor descriptions, in evaluation order."""
        return ", ".join(self.reasons)

    def to_dict(self) -> dict:
        return {
            "direction": self.direction.value,
            "entry_price": self.entry_price,
            "stop_loss": self.stop_loss,
            "take_profit_1": self.take_profit_1,
            "take_profit_2": self.take_profit_2,
            "take_profit_3": self.take_profit_3,
            "score": self.score,
            "reason": self.reason,
            "emitted_at_ms": self.emitted_at_ms,
        }
