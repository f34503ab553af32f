"""Tests for pulsetrade.broker — Binance futures client with mocked HTTP responses."""

from urllib.parse import parse_qs

import httpx
import pytest

from pulsetrade.broker.binance_client import BinanceFuturesClient
from pulsetrade.broker.models import (
    PRODUCTION_URL,
    TESTNET_URL,
    BinanceAPIError,
    ExecutionConfig,
    Position,
)
from pulsetrade.strategy.models import Direction, Signal

FIXED_TS = 1_700_000_000_000


def _make_client(use_testnet: bool = True, configured: bool = True) -> BinanceFuturesClient:
    config = ExecutionConfig("test-key", "test-secret", use_testnet) if configured else None
    return BinanceFuturesClient("BTCUSDT", config=config, clock=lambda: FIXED_TS)


def _make_signal(direction: Direction = Direction.LONG, entry: float = 50_000.0) -> Signal:
    sign = 1 if direction is Direction.LONG else -1
    return Signal(
        direction=direction,
        entry_price=entry,
        stop_loss=entry - sign * 300,
        take_profit_1=entry + sign * 300,
        take_profit_2=entry + sign * 500,
        take_profit_3=entry + sign * 800,
        score=80,
        emitted_at_ms=FIXED_TS,
        reasons=("Uptrend (price > EMA20 > EMA50)",),
    )


def _mock_venue(monkeypatch, routes: dict) -> list:
    """Patch httpx so each (method, path) returns a canned (status, body).

    Returns the list of captured ``(method, path, query, headers)`` calls.
    """
    calls = []

    def _make(method):
        async def _request(self, url, *, headers=None, timeout=None, **kwargs):
            parsed = httpx.URL(url)
            query = parse_qs(parsed.query.decode())
            calls.append((method, parsed.path, query, headers))
            status, body = routes.get(
                (method, parsed.path), (404, {"code": -1, "msg": "no route"}),
            )
            return httpx.Response(status, json=body, request=httpx.Request(method.upper(), url))
        return _request

    monkeypatch.setattr(httpx.AsyncClient, "get", _make("get"))
    monkeypatch.setattr(httpx.AsyncClient, "post", _make("post"))
    return calls


# ── Mock Binance responses ───────────────────────────────────────────────

FLAT_POSITIONS = (200, [
    {"symbol": "BTCUSDT", "positionAmt": "0.000", "entryPrice": "0.0",
     "unRealizedProfit": "0.0", "leverage": "15", "marginType": "isolated"},
])

LONG_POSITION = (200, [
    {"symbol": "BTCUSDT", "positionAmt": "0.050", "entryPrice": "49800.0",
     "unRealizedProfit": "12.5", "leverage": "15", "marginType": "isolated"},
])

BALANCE = (200, [
    {"asset": "BNB", "availableBalance": "3.2"},
    {"asset": "USDT", "availableBalance": "1000.00"},
])

ORDER_FILLED = (200, {
    "orderId": 283194212,
    "symbol": "BTCUSDT",
    "status": "FILLED",
    "executedQty": "0.030",
    "avgPrice": "50010.50",
})

OK = (200, {"code": 200, "msg": "success"})

HAPPY_ROUTES = {
    ("get", "/fapi/v2/positionRisk"): FLAT_POSITIONS,
    ("post", "/fapi/v1/leverage"): (200, {"leverage": 15, "symbol": "BTCUSDT"}),
    ("post", "/fapi/v1/marginType"): OK,
    ("get", "/fapi/v2/balance"): BALANCE,
    ("post", "/fapi/v1/order"): ORDER_FILLED,
}


# ── Signing ──────────────────────────────────────────────────────────────


class TestSigning:
    def test_signature_matches_reference_vector(self):
        secret = "NhqPtmdSJYdKjVHjA7PZj4Mge3R5YNiP1e3UZjInClVN65XAbvqqM6A7H5fATj0j"
        query = (
            "symbol=LTCBTC&side=BUY&type=LIMIT&timeInForce=GTC&quantity=1"
            "&price=0.1&recvWindow=5000&timestamp=1499827319559"
        )
        assert BinanceFuturesClient.sign(query, secret) == (
            "c8db56825ae71d6d79447849e617115f4a920fa2acdcab2b053c4b2838bd6b71"
        )

    @pytest.mark.asyncio
    async def test_request_carries_timestamp_signature_and_key(self, monkeypatch):
        calls = _mock_venue(monkeypatch, {("get", "/fapi/v2/balance"): BALANCE})
        client = _make_client()

        await client.get_balance()

        _, path, query, headers = calls[0]
        assert path == "/fapi/v2/balance"
        assert query["timestamp"] == [str(FIXED_TS)]
        expected = BinanceFuturesClient.sign(f"timestamp={FIXED_TS}", "test-secret")
        assert query["signature"] == [expected]
        assert headers["X-MBX-APIKEY"] == "test-key"

    @pytest.mark.asyncio
    async def test_unconfigured_request_raises(self):
        client = _make_client(configured=False)
        with pytest.raises(RuntimeError, match="not configured"):
            await client.get_open_positions()


# ── Configuration ────────────────────────────────────────────────────────


class TestConfiguration:
    def test_environment_switching(self):
        assert _make_client(use_testnet=True).base_url == TESTNET_URL
        assert _make_client(use_testnet=False).base_url == PRODUCTION_URL

    def test_configure_replaces_credentials(self):
        client = _make_client(configured=False)
        assert not client.is_configured()
        assert client.base_url is None

        client.configure(ExecutionConfig("k", "s", use_testnet=False))
        assert client.is_configured()
        assert client.base_url == PRODUCTION_URL

    def test_empty_secret_is_not_configured(self):
        client = BinanceFuturesClient("BTCUSDT", config=ExecutionConfig("k", ""))
        assert not client.is_configured()


# ── Account ──────────────────────────────────────────────────────────────


class TestAccount:
    @pytest.mark.asyncio
    async def test_balance_reads_usdt(self, monkeypatch):
        _mock_venue(monkeypatch, {("get", "/fapi/v2/balance"): BALANCE})
        assert await _make_client().get_balance() == pytest.approx(1000.0)

    @pytest.mark.asyncio
    async def test_balance_zero_on_failure(self, monkeypatch):
        _mock_venue(monkeypatch, {
            ("get", "/fapi/v2/balance"): (500, {"code": -1000, "msg": "Internal error"}),
        })
        assert await _make_client().get_balance() == 0.0

    @pytest.mark.asyncio
    async def test_open_positions_filters_flat(self, monkeypatch):
        _mock_venue(monkeypatch, {("get", "/fapi/v2/positionRisk"): LONG_POSITION})
        positions = await _make_client().get_open_positions()
        assert positions == [
            Position(
                symbol="BTCUSDT",
                position_amt=0.05,
                entry_price=49800.0,
                unrealized_pnl=12.5,
                leverage=15,
                margin_type="ISOLATED",
            )
        ]

    @pytest.mark.asyncio
    async def test_open_positions_error_propagates(self, monkeypatch):
        _mock_venue(monkeypatch, {
            ("get", "/fapi/v2/positionRisk"): (401, {"code": -2015, "msg": "Invalid API-key"}),
        })
        with pytest.raises(BinanceAPIError) as exc_info:
            await _make_client().get_open_positions()
        assert exc_info.value.code == -2015
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_leverage_already_set_is_success(self, monkeypatch):
        _mock_venue(monkeypatch, {
            ("post", "/fapi/v1/leverage"): (400, {"code": -4028, "msg": "Leverage not changed"}),
        })
        assert await _make_client().set_leverage(15) is True

    @pytest.mark.asyncio
    async def test_leverage_other_error_is_failure(self, monkeypatch):
        _mock_venue(monkeypatch, {
            ("post", "/fapi/v1/leverage"): (400, {"code": -1102, "msg": "Bad leverage"}),
        })
        assert await _make_client().set_leverage(500) is False

    @pytest.mark.asyncio
    async def test_margin_type_already_set_is_success(self, monkeypatch):
        calls = _mock_venue(monkeypatch, {
            ("post", "/fapi/v1/marginType"): (
                400, {"code": -4046, "msg": "No need to change margin type."},
            ),
        })
        assert await _make_client().set_margin_type("CROSSED") is True
        assert calls[0][2]["marginType"] == ["CROSSED"]


# ── Execution ────────────────────────────────────────────────────────────


class TestExecuteSignal:
    @pytest.mark.asyncio
    async def test_long_signal_places_buy(self, monkeypatch):
        calls = _mock_venue(monkeypatch, HAPPY_ROUTES)

        result = await _make_client().execute_signal(
            _make_signal(), account_percentage=10.0, leverage=15,
        )

        assert result.success
        assert result.order_id == "283194212"
        assert result.executed_qty == pytest.approx(0.03)
        assert result.avg_price == pytest.approx(50010.5)

        assert [c[1] for c in calls] == [
            "/fapi/v2/positionRisk",
            "/fapi/v1/leverage",
            "/fapi/v1/marginType",
            "/fapi/v2/balance",
            "/fapi/v1/order",
        ]
        order_query = calls[-1][2]
        assert order_query["side"] == ["BUY"]
        assert order_query["type"] == ["MARKET"]
        assert order_query["quantity"] == ["0.030"]
        assert order_query["symbol"] == ["BTCUSDT"]

    @pytest.mark.asyncio
    async def test_short_signal_places_sell(self, monkeypatch):
        calls = _mock_venue(monkeypatch, HAPPY_ROUTES)
        result = await _make_client().execute_signal(_make_signal(Direction.SHORT))
        assert result.success
        assert calls[-1][2]["side"] == ["SELL"]

    @pytest.mark.asyncio
    async def test_existing_position_blocks_order(self, monkeypatch):
        routes = {**HAPPY_ROUTES, ("get", "/fapi/v2/positionRisk"): LONG_POSITION}
        calls = _mock_venue(monkeypatch, routes)

        result = await _make_client().execute_signal(_make_signal())

        assert not result.success
        assert result.error == "position already open"
        assert all(path != "/fapi/v1/order" for _, path, _, _ in calls)

    @pytest.mark.asyncio
    async def test_position_check_failure_blocks_order(self, monkeypatch):
        routes = {
            **HAPPY_ROUTES,
            ("get", "/fapi/v2/positionRisk"): (503, {"code": -1001, "msg": "Disconnected"}),
        }
        calls = _mock_venue(monkeypatch, routes)

        result = await _make_client().execute_signal(_make_signal())

        assert not result.success
        assert result.error.startswith("position check failed")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_zero_balance_is_invalid_quantity(self, monkeypatch):
        routes = {
            **HAPPY_ROUTES,
            ("get", "/fapi/v2/balance"): (200, [{"asset": "USDT", "availableBalance": "0"}]),
        }
        calls = _mock_venue(monkeypatch, routes)

        result = await _make_client().execute_signal(_make_signal())

        assert result.error == "invalid quantity"
        assert all(path != "/fapi/v1/order" for _, path, _, _ in calls)

    @pytest.mark.asyncio
    async def test_order_rejection_is_reported(self, monkeypatch):
        routes = {
            **HAPPY_ROUTES,
            ("post", "/fapi/v1/order"): (400, {"code": -2019, "msg": "Margin is insufficient."}),
        }
        _mock_venue(monkeypatch, routes)

        result = await _make_client().execute_signal(_make_signal())

        assert not result.success
        assert "Margin is insufficient." in result.error

    @pytest.mark.asyncio
    async def test_unconfigured_gateway_makes_no_calls(self, monkeypatch):
        calls = _mock_venue(monkeypatch, HAPPY_ROUTES)

        result = await _make_client(configured=False).execute_signal(_make_signal())

        assert result.error == "execution gateway not configured"
        assert calls == []


class TestClosePosition:
    @pytest.mark.asyncio
    async def test_close_long_sells_full_size(self, monkeypatch):
        routes = {**HAPPY_ROUTES, ("get", "/fapi/v2/positionRisk"): LONG_POSITION}
        calls = _mock_venue(monkeypatch, routes)

        result = await _make_client().close_position()

        assert result.success
        order_query = calls[-1][2]
        assert order_query["side"] == ["SELL"]
        assert order_query["quantity"] == ["0.050"]

    @pytest.mark.asyncio
    async def test_close_when_flat(self, monkeypatch):
        calls = _mock_venue(monkeypatch, HAPPY_ROUTES)

        result = await _make_client().close_position()

        assert result.error == "no open position"
        assert len(calls) == 1


class TestOrderResponses:
    @pytest.mark.asyncio
    async def test_fill_without_order_id_is_a_failure(self, monkeypatch):
        routes = {
            **HAPPY_ROUTES,
            ("post", "/fapi/v1/order"): (200, {"code": 0, "msg": "accepted"}),
        }
        _mock_venue(monkeypatch, routes)

        result = await _make_client().execute_signal(_make_signal())

        assert not result.success
        assert result.error.startswith("unreadable order response")

    @pytest.mark.asyncio
    async def test_non_numeric_avg_price_is_a_failure(self, monkeypatch):
        routes = {
            **HAPPY_ROUTES,
            ("post", "/fapi/v1/order"): (200, {"orderId": 1, "avgPrice": "n/a"}),
        }
        _mock_venue(monkeypatch, routes)

        result = await _make_client().place_market_order("BUY", 0.01)

        assert not result.success
        assert "unreadable order response" in result.error

    @pytest.mark.asyncio
    async def test_close_position_for_explicit_symbol(self, monkeypatch):
        eth_short = (200, [
            {"symbol": "ETHUSDT", "positionAmt": "-1.250", "entryPrice": "2300.0",
             "unRealizedProfit": "-4.0", "leverage": "10", "marginType": "cross"},
        ])
        routes = {**HAPPY_ROUTES, ("get", "/fapi/v2/positionRisk"): eth_short}
        calls = _mock_venue(monkeypatch, routes)

        result = await _make_client().close_position("ETHUSDT")

        assert result.success
        order_query = calls[-1][2]
        assert order_query["symbol"] == ["ETHUSDT"]
        assert order_query["side"] == ["BUY"]
        assert order_query["quantity"] == ["1.250"]
