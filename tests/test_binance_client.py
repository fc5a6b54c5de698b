"""Tests for the Binance REST client against a mocked transport."""

import asyncio
import hashlib
import hmac
from decimal import Decimal
from urllib.parse import parse_qsl

import httpx
import pytest

from dualinvest.errors import MissingCredentialsError
from dualinvest.schemas.market import OptionType
from dualinvest.schemas.strategy import CoinPair, StrategyConfig, SupportedAsset
from dualinvest.services.binance_client import BinanceClient
from dualinvest.services.precision import adjust_quantity_to_lot_size, count_decimals
from tests.factories import make_product

SECRET = "test-secret"

LOT_INFO = {
    "symbols": [
        {
            "symbol": "BTCUSDT",
            "filters": [
                {"filterType": "PRICE_FILTER", "tickSize": "0.01000000"},
                {"filterType": "LOT_SIZE", "stepSize": "0.00100000", "minQty": "0.00100000"},
            ],
        }
    ]
}


def _client(handler, api_key="key", api_secret=SECRET) -> BinanceClient:
    return BinanceClient(api_key, api_secret, base_url="https://api.test", transport=httpx.MockTransport(handler))


def _params(request: httpx.Request) -> dict:
    return dict(parse_qsl(request.url.query.decode()))


def _position_row(i: int) -> dict:
    return {
        "id": i,
        "optionType": "PUT",
        "exercisedCoin": "BTC",
        "investCoin": "USDT",
        "subscriptionAmount": "500",
        "strikePrice": "60000",
        "apr": "0.2",
        "duration": 3,
        "settleDate": 1_800_000_000_000,
        "purchaseStatus": "PURCHASE_SUCCESS",
    }


# ---------------------------------------------------------------------------
# 1. Precision helpers
# ---------------------------------------------------------------------------

def test_count_decimals():
    assert count_decimals("0.00100000") == 3
    assert count_decimals("1.00000000") == 0
    assert count_decimals(0.01) == 2


@pytest.mark.parametrize(
    "quantity,step,expected",
    [
        (0.0567, "0.001", "0.056"),
        (0.0569999, "0.001", "0.056"),
        (1.0, "0.001", "1.000"),
        (12.7, "1", "12"),
        (0.00099, "0.001", "0.000"),
    ],
)
def test_lot_size_floors_never_rounds_up(quantity, step, expected):
    adjusted = adjust_quantity_to_lot_size(quantity, step)
    assert adjusted == Decimal(expected)
    assert adjusted <= Decimal(str(quantity))


# ---------------------------------------------------------------------------
# 2. Signing
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_signed_request_carries_valid_signature():
    seen = []

    def handler(request: httpx.Request):
        seen.append(request)
        return httpx.Response(200, json={"balances": [{"asset": "USDT", "free": "12.5"}, {"asset": "BTC", "free": "0"}]})

    client = _client(handler)
    balances = await client.fetch_spot_balances()
    await client.close()

    assert balances == {"USDT": 12.5}
    request = seen[0]
    assert request.headers["X-MBX-APIKEY"] == "key"
    query = request.url.query.decode()
    payload, signature = query.rsplit("&signature=", 1)
    assert "timestamp=" in payload
    assert signature == hmac.new(SECRET.encode(), payload.encode(), hashlib.sha256).hexdigest()


@pytest.mark.asyncio
async def test_missing_credentials_raise_before_request():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    client = _client(handler, api_key="", api_secret="")
    with pytest.raises(MissingCredentialsError):
        await client.fetch_positions()
    await client.close()
    assert calls == []


# ---------------------------------------------------------------------------
# 3. Reads
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_fetch_positions_follows_pagination():
    def handler(request):
        page = int(_params(request)["pageIndex"])
        rows = [_position_row(i) for i in range(100)] if page == 1 else [_position_row(100 + i) for i in range(50)]
        return httpx.Response(200, json={"total": 150, "list": rows})

    client = _client(handler)
    positions = await client.fetch_positions()
    await client.close()

    assert len(positions) == 150
    assert positions[0].id == "0"
    assert positions[0].subscription_amount == 500


@pytest.mark.asyncio
async def test_fetch_positions_returns_none_on_error():
    client = _client(lambda request: httpx.Response(500, json={"code": -1000, "msg": "boom"}))
    assert await client.fetch_positions() is None
    await client.close()


@pytest.mark.asyncio
async def test_fetch_products_tolerates_partial_failure():
    def handler(request):
        params = _params(request)
        if params["optionType"] == "CALL":
            return httpx.Response(500, json={"code": -1000, "msg": "down"})
        row = {
            "id": 1,
            "orderId": 11,
            "optionType": "PUT",
            "exercisedCoin": "BTC",
            "investCoin": "USDT",
            "strikePrice": "60000",
            "apr": "0.5",
            "duration": 3,
            "settleDate": 1_800_000_000_000,
            "canPurchase": True,
        }
        return httpx.Response(200, json={"total": 1, "list": [row, {"id": 2, "optionType": "PUT"}]})

    strategy = StrategyConfig(supported_assets={
        "BTCUSDT": SupportedAsset(
            put=CoinPair(exercised_coin="BTC", invest_coin="USDT"),
            call=CoinPair(exercised_coin="USDT", invest_coin="BTC"),
        )
    })
    client = _client(handler)
    products = await client.fetch_dual_investment_products(strategy)
    await client.close()

    assert [p.id for p in products] == ["1"]
    assert products[0].option_type is OptionType.PUT


@pytest.mark.asyncio
async def test_fetch_spot_prices_omits_failures():
    def handler(request):
        symbol = _params(request)["symbol"]
        if symbol == "BTCUSDT":
            return httpx.Response(200, json={"symbol": symbol, "price": "60500.10"})
        return httpx.Response(400, json={"code": -1121, "msg": "Invalid symbol."})

    client = _client(handler)
    prices = await client.fetch_spot_prices(["BTCUSDT", "XXXUSDT", "BTCUSDT"])
    await client.close()
    assert prices == {"BTCUSDT": 60500.10}


@pytest.mark.asyncio
async def test_fetch_spot_prices_bounded_batches():
    in_flight = 0
    peak = 0

    async def handler(request):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return httpx.Response(200, json={"symbol": _params(request)["symbol"], "price": "1.5"})

    pairs = [f"C{i}USDT" for i in range(7)]
    client = _client(handler)
    prices = await client.fetch_spot_prices(pairs, batch_size=3)
    await client.close()

    assert len(prices) == 7
    assert peak <= 3


# ---------------------------------------------------------------------------
# 4. Orders
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_margin_order_quantity_floored_to_lot_size():
    orders = []

    def handler(request):
        if request.url.path == "/api/v3/exchangeInfo":
            return httpx.Response(200, json=LOT_INFO)
        orders.append(_params(request))
        return httpx.Response(200, json={"orderId": 77, "executedQty": "0.05600000", "status": "FILLED"})

    client = _client(handler)
    result = await client.open_margin_position("BTCUSDT", "SELL", 0.0567)
    await client.close()

    assert result.success
    assert result.order_id == "77"
    assert orders[0]["quantity"] == "0.056"
    assert orders[0]["type"] == "MARKET"
    assert orders[0]["isIsolated"] == "FALSE"
    assert orders[0]["sideEffectType"] == "AUTO_BORROW_REPAY"


@pytest.mark.asyncio
async def test_margin_order_below_minimum_not_sent():
    orders = []

    def handler(request):
        if request.url.path == "/api/v3/exchangeInfo":
            return httpx.Response(200, json=LOT_INFO)
        orders.append(request)
        return httpx.Response(200, json={})

    client = _client(handler)
    result = await client.open_margin_position("BTCUSDT", "BUY", 0.0004)
    await client.close()

    assert not result.success
    assert orders == []


@pytest.mark.asyncio
async def test_subscribe_rate_change_flagged():
    client = _client(lambda request: httpx.Response(400, json={"code": -9000, "msg": "APY has changed"}))
    result = await client.subscribe(make_product(), 500)
    await client.close()

    assert not result.success
    assert result.code == -9000
    assert result.apr_changed


@pytest.mark.asyncio
async def test_borrow_formats_amounts():
    seen = []

    def handler(request):
        seen.append(_params(request))
        return httpx.Response(200, json={"loanCoin": "USDT", "loanAmount": "500"})

    client = _client(handler)
    response = await client.borrow("USDT", 500, "BTC", 0.0133333333)
    await client.close()

    assert response["loanCoin"] == "USDT"
    assert seen[0]["collateralAmount"] == "0.01333333"
    assert seen[0]["collateralCoin"] == "BTC"
