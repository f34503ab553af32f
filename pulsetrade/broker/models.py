"""Broker data models — typed representations of Binance futures API objects."""

from dataclasses import dataclass
from typing import Optional

PRODUCTION_URL = "https://fapi.binance.com"
TESTNET_URL = "https://testnet.binancefuture.com"


@dataclass(frozen=True)
class ExecutionConfig:
    """Venue credentials and endpoint selection."""

    api_key: str
    api_secret: str
    use_testnet: bool = True

    @property
    def base_url(self) -> str:
        """Return the futures REST base URL for the selected environment."""
        return TESTNET_URL if self.use_testnet else PRODUCTION_URL

    def __repr__(self) -> str:
        return f"ExecutionConfig(api_key='***', api_secret='***', use_testnet={self.use_testnet})"


@dataclass(frozen=True)
class Position:
    """An open futures position (``/fapi/v2/positionRisk`` record)."""

    symbol: str
    position_amt: float  # positive=long, negative=short
    entry_price: float
    unrealized_pnl: float
    leverage: int
    margin_type: str


@dataclass(frozen=True)
class OrderResult:
    """Outcome of one execution attempt."""

    success: bool
    order_id: Optional[str] = None
    executed_qty: Optional[float] = None
    avg_price: Optional[float] = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> "OrderResult":
        return cls(success=False, error=error)


class BinanceAPIError(Exception):
    """Non-2xx venue response carrying the Binance error code and message."""

    def __init__(self, status_code: int, code: Optional[int], message: str) -> None:
        self.status_code = status_code
        self.code = code
        self.message = message
        super().__init__(f"Binance error {code} (HTTP {status_code}): {message}")
