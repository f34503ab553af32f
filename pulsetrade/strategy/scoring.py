"""Signal scoring — additive 0–100 score and ATR-based exit levels.

Factors, evaluated in order for the direction set by EMA ordering:

==========================  ======
Trend (price/EMA20/EMA50)     25
RSI in favourable band        20
MACD aligned                  25
Momentum vs EMA20             15
Trend strength (> 0.5 %)      15
==========================  ======
"""

from collections.abc import Sequence
from typing import Optional

from pulsetrade.strategy.indicators import (
    calculate_atr,
    calculate_ema,
    calculate_macd,
    calculate_rsi,
)
from pulsetrade.strategy.models import (
    Bar,
    Direction,
    IndicatorSnapshot,
    ScoreCard,
    Signal,
)

MIN_SCORE = 60

_TREND_POINTS = 25
_RSI_POINTS = 20
_MACD_POINTS = 25
_MOMENTUM_POINTS = 15
_STRENGTH_POINTS = 15

_STOP_ATR_MULTIPLIER = 1.5
_TP_MULTIPLIERS = (1.5, 2.5, 4.0)


def build_snapshot(
    history: Sequence[Bar],
    closes: Sequence[float],
    price: float,
) -> IndicatorSnapshot:
    """Compute every indicator the scorer needs.

    Args:
        history: Closed bars, oldest first (used for ATR).
        closes: Close series including the open bar's close.
        price: Current price (the open bar's close when there is one).
    """
    return IndicatorSnapshot(
        price=price,
        ema20=calculate_ema(closes, 20),
        ema50=calculate_ema(closes, 50),
        rsi=calculate_rsi(closes, 14),
        macd=calculate_macd(closes),
        atr=calculate_atr(history, 14, fallback_price=price),
    )


def evaluate(snap: IndicatorSnapshot) -> ScoreCard:
    """Score *snap*.  No EMA ordering means no direction and a zero score."""
    price, ema20, ema50 = snap.price, snap.ema20, snap.ema50

    if price > ema20 > ema50:
        direction = Direction.LONG
        reasons = ["Uptrend (price > EMA20 > EMA50)"]
    elif price < ema20 < ema50:
        direction = Direction.SHORT
        reasons = ["Downtrend (price < EMA20 < EMA50)"]
    else:
        return ScoreCard(direction=None, score=0)

    score = _TREND_POINTS
    is_long = direction is Direction.LONG

    if (is_long and 40 < snap.rsi < 70) or (not is_long and 30 < snap.rsi < 60):
        score += _RSI_POINTS
        reasons.append(f"RSI favourable ({snap.rsi:.1f})")

    macd = snap.macd
    if is_long and macd.histogram > 0 and macd.macd > macd.signal:
        score += _MACD_POINTS
        reasons.append("MACD bullish")
    elif not is_long and macd.histogram < 0 and macd.macd < macd.signal:
        score += _MACD_POINTS
        reasons.append("MACD bearish")

    distance_pct = (price - ema20) / ema20 * 100
    if is_long and 0.1 < distance_pct < 2:
        score += _MOMENTUM_POINTS
        reasons.append("Positive momentum")
    elif not is_long and -2 < distance_pct < -0.1:
        score += _MOMENTUM_POINTS
        reasons.append("Negative momentum")

    if abs(ema20 - ema50) / ema50 * 100 > 0.5:
        score += _STRENGTH_POINTS
        reasons.append("Strong trend")

    return ScoreCard(direction=direction, score=score, reasons=tuple(reasons))


def score_signal(
    snap: IndicatorSnapshot,
    emitted_at_ms: int,
    min_score: int = MIN_SCORE,
) -> Optional[Signal]:
    """Return a ``Signal`` when a direction exists and the score clears *min_score*."""
    card = evaluate(snap)
    if card.direction is None or card.score < min_score:
        return None

    sign = 1 if card.direction is Direction.LONG else -1
    entry = snap.price
    stop_distance = snap.atr * _STOP_ATR_MULTIPLIER
    tp1, tp2, tp3 = (entry + sign * stop_distance * m for m in _TP_MULTIPLIERS)

    return Signal(
        direction=card.direction,
        entry_price=entry,
        stop_loss=entry - sign * stop_distance,
        take_profit_1=tp1,
        take_profit_2=tp2,
        take_profit_3=tp3,
        score=card.score,
        emitted_at_ms=emitted_at_ms,
        reasons=card.reasons,
    )
