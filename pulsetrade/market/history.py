"""Historical bars — one-shot kline fetch used to seed the signal engine."""

import logging

import httpx

from pulsetrade.strategy.models import Bar

logger = logging.getLogger("pulsetrade.history")

MARKET_DATA_URL = "https://fapi.binance.com"


async def fetch_recent_bars(
    symbol: str = "BTCUSDT",
    interval: str = "5m",
    limit: int = 100,
    base_url: str = MARKET_DATA_URL,
) -> list[Bar]:
    """Fetch the last *limit* klines for *symbol*, oldest first.

    Kline rows are ``[open_time, open, high, low, close, volume, ...]``.
    Raises ``httpx.HTTPError`` on transport failures or non-2xx responses.
    """
    url = f"{base_url}/fapi/v1/klines"
    params = {"symbol": symbol, "interval": interval, "limit": limit}

    async with httpx.AsyncClient() as client:
        resp = await client.get(url, params=params, timeout=10.0)
    resp.raise_for_status()

    bars = [
        Bar(
            open=float(k[1]),
            high=float(k[2]),
            low=float(k[3]),
            close=float(k[4]),
            volume=float(k[5]),
            bucket_start_ms=int(k[0]),
        )
        for k in resp.json()
    ]
    logger.info("Fetched %d historical %s bars for %s", len(bars), interval, symbol)
    return bars
