"""Technical indicators — EMA, RSI, MACD, ATR. Pure functions, no I/O.

Each function returns the latest value only; the signal engine re-runs
them over the whole bounded history on every analysis pass.
"""

from collections.abc import Sequence

from pulsetrade.strategy.models import MACD, Bar


def calculate_ema(values: Sequence[float], period: int) -> float:
    """Calculate the latest Exponential Moving Average value.

    Seeded with the SMA of the first *period* values, then:
        ``EMA = value × k + EMA_prev × (1 - k)``, ``k = 2 / (period + 1)``

    With fewer than *period* values the latest value is returned.

    Raises ``ValueError`` if *values* is empty.
    """
    if not values:
        raise ValueError("Need at least one value for EMA")
    if len(values) < period:
        return values[-1]

    k = 2.0 / (period + 1)
    ema = sum(values[:period]) / period
    for value in values[period:]:
        ema = value * k + ema * (1 - k)
    return ema


# ── RSI ──────────────────────────────────────────────────────────────────


def calculate_rsi(values: Sequence[float], period: int = 14) -> float:
    """Calculate the Relative Strength Index over the last *period* deltas.

    Algorithm (simple averages, no Wilder smoothing):
        1. Sum positive deltas as gains, negated negative deltas as losses.
        2. avg = sum / period
        3. RS = avg_gain / avg_loss
        4. RSI = 100 - 100 / (1 + RS)

    Returns 100 when there are no losses and a neutral 50 when fewer than
    ``period + 1`` values exist.
    """
    if len(values) < period + 1:
        return 50.0

    gains = 0.0
    losses = 0.0
    for i in range(len(values) - period, len(values)):
        change = values[i] - values[i - 1]
        if change > 0:
            gains += change
        else:
            losses -= change

    avg_gain = gains / period
    avg_loss = losses / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


# ── MACD ─────────────────────────────────────────────────────────────────


def calculate_macd(values: Sequence[float]) -> MACD:
    """Calculate MACD(12, 26) with a damped signal line.

    The signal line is ``macd × 0.9`` rather than an EMA of the MACD series.
    """
    macd = calculate_ema(values, 12) - calculate_ema(values, 26)
    signal = macd * 0.9
    return MACD(macd=macd, signal=signal, histogram=macd - signal)


# ── ATR ──────────────────────────────────────────────────────────────────


def calculate_atr(
    bars: Sequence[Bar],
    period: int = 14,
    fallback_price: float = 0.0,
) -> float:
    """Calculate the Average True Range over the last *period* bars.

    True range per bar:
        ``TR = max(high - low, |high - prev_close|, |low - prev_close|)``

    Requires ``period + 1`` bars (need a previous close).  With fewer bars
    returns 1 % of *fallback_price*.
    """
    if len(bars) < period + 1:
        return fallback_price * 0.01

    recent = bars[-period - 1:]
    total = 0.0
    for prev, cur in zip(recent, recent[1:]):
        total += max(
            cur.high - cur.low,
            abs(cur.high - prev.close),
            abs(cur.low - prev.close),
        )
    return total / period
