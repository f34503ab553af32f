"""PulseTrade — application entry point.

Boots the FastAPI internal server and wires the trading bot:
stream client → signal engine → execution gateway.
"""

import logging

from fastapi import FastAPI

from pulsetrade.api.routers import router

app = FastAPI(title="PulseTrade Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("pulsetrade")


@app.get("/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}


def warn_if_production(use_testnet: bool) -> bool:
    """Log a prominent warning when orders go to the production venue.

    Returns ``True`` if execution targets production.
    """
    if not use_testnet:
        logger.warning("PRODUCTION ENDPOINT — Real money at risk!")
        return True
    return False


# ── CLI ──────────────────────────────────────────────────────────────────


def build_bot(config):
    """Construct the stream, engine, gateway and bot for *config*."""
    from functools import partial

    from pulsetrade.bot import TradingBot
    from pulsetrade.broker.binance_client import BinanceFuturesClient
    from pulsetrade.market.history import fetch_recent_bars
    from pulsetrade.market.stream_client import StreamClient
    from pulsetrade.notifications import build_notifier
    from pulsetrade.strategy.signal_engine import SignalEngine

    stream = StreamClient(config.stream_url, symbol=config.trade_symbol)
    # Engine keeps its fixed emission threshold; MIN_SCORE only gates execution
    engine = SignalEngine(
        stream,
        bar_source=partial(fetch_recent_bars, config.trade_symbol, "5m"),
    )
    gateway = BinanceFuturesClient(symbol=config.trade_symbol)
    return TradingBot(
        stream,
        engine,
        gateway,
        notifier=build_notifier(config.notify_webhook_url),
        policy=config.bot_policy(),
    )


def _run_cli() -> None:
    """Parse CLI arguments, load config and run the server with the bot."""
    import argparse
    import asyncio

    from pulsetrade.config import load_config

    parser = argparse.ArgumentParser(description="PulseTrade futures signal bot")
    parser.add_argument("--port", type=int, help="API port (default: API_PORT)")
    parser.add_argument("--env-file", help="Path to a .env file")
    args = parser.parse_args()

    config = load_config(args.env_file)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    credentials = config.execution_config()
    if credentials is None:
        logger.info("No venue credentials configured — signals will be notified only.")
    else:
        warn_if_production(credentials.use_testnet)

    bot = build_bot(config)

    from pulsetrade.api.routers import configure_routers

    configure_routers(bot)

    asyncio.run(_serve(bot, config, credentials, args.port or config.api_port))


async def _serve(bot, config, credentials, port: int) -> None:
    """Apply the configured policy, then serve the API until shutdown."""
    import uvicorn

    await bot.configure(config.bot_policy(), credentials)

    uvi_config = uvicorn.Config(
        app,
        host="0.0.0.0",
        port=port,
        log_level="info",
    )
    server = uvicorn.Server(uvi_config)

    logger.info("API available at http://localhost:%d", port)
    try:
        await server.serve()
    finally:
        await bot.stop()
        logger.info("PulseTrade stopped.")


if __name__ == "__main__":
    _run_cli()
