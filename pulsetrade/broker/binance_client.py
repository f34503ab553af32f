"""Binance USDⓈ-M Futures REST async client.

Handles every authenticated call the bot makes: balance, positions,
leverage and margin-mode configuration, and market-order placement.
Requests are signed with HMAC-SHA256 over the exact query string sent.
"""

import hashlib
import hmac
import logging
from typing import Optional
from urllib.parse import urlencode

import httpx

from pulsetrade.broker.models import (
    BinanceAPIError,
    ExecutionConfig,
    OrderResult,
    Position,
)
from pulsetrade.market.models import now_ms
from pulsetrade.risk.position_sizer import QUANTITY_DECIMALS, calculate_quantity
from pulsetrade.strategy.models import Direction, Signal

logger = logging.getLogger("pulsetrade.broker")

_TIMEOUT = 10.0
_QUOTE_ASSET = "USDT"

# Venue codes meaning "already at the requested value"
LEVERAGE_UNCHANGED_CODE = -4028
MARGIN_TYPE_UNCHANGED_CODE = -4046


class BinanceFuturesClient:
    """Execution gateway for one futures symbol.

    Stateless apart from the active ``ExecutionConfig``; ``configure`` swaps
    credentials and endpoint in a single assignment.

    Args:
        symbol: The instrument every order targets, e.g. ``"BTCUSDT"``.
        config: Optional initial credentials.
        clock: Returns the request timestamp in epoch milliseconds.
    """

    def __init__(
        self,
        symbol: str = "BTCUSDT",
        config: Optional[ExecutionConfig] = None,
        clock=now_ms,
    ) -> None:
        self._symbol = symbol
        self._config: Optional[ExecutionConfig] = None
        self._clock = clock
        if config is not None:
            self.configure(config)

    @property
    def symbol(self) -> str:
        return self._symbol

    # ── Configuration ────────────────────────────────────────────────────

    def configure(self, config: ExecutionConfig) -> None:
        """Replace the active credentials and target endpoint."""
        self._config = config
        logger.info(
            "Execution gateway configured for %s",
            "TESTNET" if config.use_testnet else "PRODUCTION",
        )

    def is_configured(self) -> bool:
        config = self._config
        return config is not None and bool(config.api_key) and bool(config.api_secret)

    @property
    def base_url(self) -> Optional[str]:
        return self._config.base_url if self._config else None

    # ── Signing ──────────────────────────────────────────────────────────

    @staticmethod
    def sign(query_string: str, secret: str) -> str:
        """HMAC-SHA256 hex digest of *query_string* keyed by *secret*."""
        return hmac.new(
            secret.encode(), query_string.encode(), hashlib.sha256,
        ).hexdigest()

    async def _signed_request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
    ):
        """Send a signed request and return the decoded JSON body.

        Raises ``BinanceAPIError`` on a non-2xx response and
        ``httpx.HTTPError`` on transport failures.
        """
        config = self._config
        if config is None or not self.is_configured():
            raise RuntimeError("Execution gateway is not configured")

        query = urlencode({**(params or {}), "timestamp": self._clock()})
        signature = self.sign(query, config.api_secret)
        url = f"{config.base_url}{path}?{query}&signature={signature}"
        headers = {
            "X-MBX-APIKEY": config.api_key,
            "Content-Type": "application/json",
        }

        async with httpx.AsyncClient() as client:
            resp = await getattr(client, method)(url, headers=headers, timeout=_TIMEOUT)

        if resp.is_success:
            return resp.json()

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        raise BinanceAPIError(
            status_code=resp.status_code,
            code=body.get("code"),
            message=body.get("msg") or f"HTTP {resp.status_code}",
        )

    # ── Account configuration ────────────────────────────────────────────

    async def set_leverage(self, leverage: int) -> bool:
        """Set leverage for the symbol.  Never raises."""
        try:
            await self._signed_request(
                "post", "/fapi/v1/leverage",
                {"symbol": self._symbol, "leverage": leverage},
            )
            logger.info("Leverage set to %dx", leverage)
            return True
        except BinanceAPIError as exc:
            if exc.code == LEVERAGE_UNCHANGED_CODE:
                return True
            logger.error("Failed to set leverage: %s", exc)
            return False
        except Exception as exc:
            logger.error("Failed to set leverage: %s", exc)
            return False

    async def set_margin_type(self, margin_type: str) -> bool:
        """Set ISOLATED or CROSSED margin for the symbol.  Never raises."""
        try:
            await self._signed_request(
                "post", "/fapi/v1/marginType",
                {"symbol": self._symbol, "marginType": margin_type},
            )
            logger.info("Margin type set to %s", margin_type)
            return True
        except BinanceAPIError as exc:
            if exc.code == MARGIN_TYPE_UNCHANGED_CODE:
                return True
            logger.error("Failed to set margin type: %s", exc)
            return False
        except Exception as exc:
            logger.error("Failed to set margin type: %s", exc)
            return False

    # ── Account ──────────────────────────────────────────────────────────

    async def get_balance(self) -> float:
        """Return the available USDT balance, or ``0.0`` on any failure."""
        try:
            balances = await self._signed_request("get", "/fapi/v2/balance")
            for entry in balances:
                if entry.get("asset") == _QUOTE_ASSET:
                    return float(entry.get("availableBalance") or 0)
            return 0.0
        except Exception as exc:
            logger.error("Failed to fetch balance: %s", exc)
            return 0.0

    async def get_open_positions(self) -> list[Position]:
        """Return all positions with a non-zero amount.

        Errors propagate: the duplicate-position guard must not mistake a
        failed lookup for a flat account.
        """
        records = await self._signed_request("get", "/fapi/v2/positionRisk")
        positions: list[Position] = []
        for p in records:
            amount = float(p.get("positionAmt", "0"))
            if amount == 0:
                continue
            positions.append(
                Position(
                    symbol=p["symbol"],
                    position_amt=amount,
                    entry_price=float(p.get("entryPrice", "0")),
                    unrealized_pnl=float(p.get("unRealizedProfit", "0")),
                    leverage=int(float(p.get("leverage", "0"))),
                    margin_type=str(p.get("marginType", "")).upper(),
                )
            )
        return positions

    async def calculate_position_size(
        self,
        account_percentage: float,
        entry_price: float,
        leverage: int,
    ) -> float:
        """Size an order from the live balance (3-decimal truncation)."""
        balance = await self.get_balance()
        return calculate_quantity(balance, account_percentage, entry_price, leverage)

    # ── Orders ───────────────────────────────────────────────────────────

    async def place_market_order(
        self, side: str, quantity: float, symbol: Optional[str] = None,
    ) -> OrderResult:
        """Place a MARKET order.  Failures are returned, not raised."""
        symbol = symbol or self._symbol
        logger.info("Placing market order: %s %s %s", side, quantity, symbol)
        try:
            data = await self._signed_request(
                "post", "/fapi/v1/order",
                {
                    "symbol": symbol,
                    "side": side,
                    "type": "MARKET",
                    "quantity": f"{quantity:.{QUANTITY_DECIMALS}f}",
                },
            )
        except Exception as exc:
            logger.error("Market order failed: %s", exc)
            return OrderResult.failure(str(exc))

        try:
            result = OrderResult(
                success=True,
                order_id=str(data["orderId"]),
                executed_qty=float(data.get("executedQty") or 0),
                avg_price=float(data.get("avgPrice") or 0),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            # The venue accepted the request; the fill must be checked by hand
            logger.error("Unreadable order response %r: %s", data, exc)
            return OrderResult.failure(f"unreadable order response: {exc!r}")
        logger.info("Order %s filled: %s @ %s", result.order_id, result.executed_qty, result.avg_price)
        return result

    async def close_position(self, symbol: Optional[str] = None) -> OrderResult:
        """Flatten the open position on *symbol* (default: the client's symbol)."""
        symbol = symbol or self._symbol
        try:
            positions = await self.get_open_positions()
        except Exception as exc:
            logger.error("Failed to look up position to close: %s", exc)
            return OrderResult.failure(str(exc))

        position = next((p for p in positions if p.symbol == symbol), None)
        if position is None:
            return OrderResult.failure("no open position")

        side = "SELL" if position.position_amt > 0 else "BUY"
        return await self.place_market_order(side, abs(position.position_amt), symbol)

    async def execute_signal(
        self,
        signal: Signal,
        account_percentage: float = 10.0,
        leverage: int = 15,
        margin_type: str = "ISOLATED",
    ) -> OrderResult:
        """Open a position for *signal* unless one is already open.

        Steps run sequentially: duplicate guard → leverage → margin mode →
        sizing → market order.
        """
        if not self.is_configured():
            return OrderResult.failure("execution gateway not configured")

        try:
            positions = await self.get_open_positions()
        except Exception as exc:
            logger.error("Position check failed, not placing order: %s", exc)
            return OrderResult.failure(f"position check failed: {exc}")

        if any(p.symbol == self._symbol for p in positions):
            logger.warning("Position already open on %s — ignoring signal.", self._symbol)
            return OrderResult.failure("position already open")

        await self.set_leverage(leverage)
        await self.set_margin_type(margin_type)

        quantity = await self.calculate_position_size(
            account_percentage, signal.entry_price, leverage,
        )
        if quantity <= 0:
            return OrderResult.failure("invalid quantity")

        side = "BUY" if signal.direction is Direction.LONG else "SELL"
        return await self.place_market_order(side, quantity)
