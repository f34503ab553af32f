"""Market-data models — typed representations of Binance feed payloads."""

import math
import time
from dataclasses import dataclass
from typing import Optional


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Tick:
    """One normalized ticker update for the traded instrument."""

    symbol: str
    price: float
    event_time_ms: int
    volume_24h: float = 0.0
    price_change_24h: float = 0.0
    price_change_percent_24h: float = 0.0

    @classmethod
    def from_ticker(cls, data: dict, default_symbol: str = "BTCUSDT",
                    received_at_ms: Optional[int] = None) -> "Tick":
        """Build a ``Tick`` from a ``<symbol>@ticker`` stream payload.

        Field map: ``s`` symbol, ``c`` last price, ``E`` event time,
        ``v`` 24h volume, ``p`` 24h change, ``P`` 24h change percent.

        Raises ``ValueError`` (or ``KeyError``/``TypeError``/``OverflowError``)
        when the payload is not an object, carries no usable last price, or
        has an out-of-range event time.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Ticker payload must be an object, got {type(data).__name__}")

        price = float(data["c"])
        if not math.isfinite(price) or price <= 0:
            raise ValueError(f"Ticker price must be positive and finite, got {price}")

        event_time = data.get("E")
        if event_time is None:
            event_time = received_at_ms if received_at_ms is not None else now_ms()

        return cls(
            symbol=str(data.get("s") or default_symbol),
            price=price,
            event_time_ms=int(event_time),
            volume_24h=float(data.get("v") or 0),
            price_change_24h=float(data.get("p") or 0),
            price_change_percent_24h=float(data.get("P") or 0),
        )
