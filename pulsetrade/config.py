"""PulseTrade — application configuration.

Loads .env variables into a typed config object.
Validates values on startup.  Venue credentials are optional: without
them the bot runs in detection-only mode.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from pulsetrade.broker.models import ExecutionConfig
from pulsetrade.models.bot_policy import MARGIN_TYPES, BotPolicy

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    binance_api_key: str
    binance_api_secret: str
    binance_testnet: bool
    trade_symbol: str
    bot_enabled: bool
    min_score: int
    leverage: int
    account_percentage: float
    margin_type: str  # "ISOLATED" or "CROSSED"
    min_order_interval_seconds: int
    notify_webhook_url: str
    log_level: str
    api_port: int

    @property
    def stream_url(self) -> str:
        """Return the futures ticker websocket URL for the traded symbol."""
        return f"wss://fstream.binance.com/ws/{self.trade_symbol.lower()}@ticker"

    def execution_config(self) -> Optional[ExecutionConfig]:
        """Venue credentials, or ``None`` when either key is missing."""
        if not (self.binance_api_key and self.binance_api_secret):
            return None
        return ExecutionConfig(
            api_key=self.binance_api_key,
            api_secret=self.binance_api_secret,
            use_testnet=self.binance_testnet,
        )

    def bot_policy(self) -> BotPolicy:
        return BotPolicy(
            enabled=self.bot_enabled,
            min_score=self.min_score,
            min_order_interval_ms=self.min_order_interval_seconds * 1000,
            account_percentage=self.account_percentage,
            leverage=self.leverage,
            margin_type=self.margin_type,
        )


def _parse_bool(name: str, default: str) -> bool:
    raw = os.environ.get(name, default).strip().lower()
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean for {name}: {raw!r}")


def _parse_number(name: str, default: str, cast):
    raw = os.environ.get(name, default)
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"Invalid value for {name}: {raw!r}") from None


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the variable when a value
    cannot be parsed or is out of range.
    """
    load_dotenv(dotenv_path=env_path)

    margin_type = os.environ.get("MARGIN_TYPE", "ISOLATED").strip().upper()
    if margin_type not in MARGIN_TYPES:
        raise ValueError(
            f"Invalid value for MARGIN_TYPE: {margin_type!r} "
            f"(expected {' or '.join(MARGIN_TYPES)})"
        )

    min_score = _parse_number("MIN_SCORE", "60", int)
    if not 0 <= min_score <= 100:
        raise ValueError(f"MIN_SCORE must be 0–100, got {min_score}")

    leverage = _parse_number("LEVERAGE", "15", int)
    if not 1 <= leverage <= 125:
        raise ValueError(f"LEVERAGE must be 1–125, got {leverage}")

    account_percentage = _parse_number("ACCOUNT_PERCENTAGE", "10", float)
    if not 0 < account_percentage <= 100:
        raise ValueError(
            f"ACCOUNT_PERCENTAGE must be in (0, 100], got {account_percentage}"
        )

    return Config(
        binance_api_key=os.environ.get("BINANCE_API_KEY", ""),
        binance_api_secret=os.environ.get("BINANCE_API_SECRET", ""),
        binance_testnet=_parse_bool("BINANCE_TESTNET", "true"),
        trade_symbol=os.environ.get("TRADE_SYMBOL", "BTCUSDT").upper(),
        bot_enabled=_parse_bool("BOT_ENABLED", "false"),
        min_score=min_score,
        leverage=leverage,
        account_percentage=account_percentage,
        margin_type=margin_type,
        min_order_interval_seconds=_parse_number("MIN_ORDER_INTERVAL_SECONDS", "300", int),
        notify_webhook_url=os.environ.get("NOTIFY_WEBHOOK_URL", ""),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=_parse_number("API_PORT", "8080", int),
    )
