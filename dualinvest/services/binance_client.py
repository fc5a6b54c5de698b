"""Binance REST client for dual investment, spot, margin and flexible loans.

Thin async wrapper over httpx. Read paths return None on transient failure so
the cycle can degrade; order paths wrap failures into result objects.
"""

import asyncio
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from dualinvest.config import Settings
from dualinvest.errors import ExchangeError, MissingCredentialsError
from dualinvest.schemas.market import OptionType, Position, Product
from dualinvest.schemas.strategy import StrategyConfig
from dualinvest.services.precision import adjust_quantity_to_lot_size

logger = logging.getLogger(__name__)

POSITIONS_PAGE_SIZE = 100
APR_CHANGED_CODE = -9000


@dataclass
class OrderResult:
    success: bool
    order_id: str | None = None
    error: str | None = None
    filled_quantity: float | None = None
    order_status: str | None = None
    raw_response: str | None = None


@dataclass
class SubscribeResult:
    success: bool
    position_id: str | None = None
    error: str | None = None
    code: int | None = None
    raw_response: str | None = None

    @property
    def apr_changed(self) -> bool:
        """The product's rate moved between listing and subscription."""
        return self.code == APR_CHANGED_CODE and "APY" in (self.error or "")


class BinanceClient:
    """Async wrapper around the Binance REST endpoints the engine needs."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        base_url: str = "https://api.binance.com",
        timeout: float = 10.0,
        mock_orders: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.api_secret = api_secret
        self._mock_mode = mock_orders
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)
        self._symbol_info: dict[str, dict] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "BinanceClient":
        return cls(
            api_key=settings.api_key,
            api_secret=settings.api_secret,
            base_url=settings.base_url,
            timeout=settings.http_timeout_seconds,
            mock_orders=settings.dry_run,
        )

    async def close(self):
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _require_credentials(self):
        if not self.api_key or not self.api_secret:
            raise MissingCredentialsError("Binance API key and secret are required for signed requests")

    def _sign(self, params: dict) -> str:
        """Return the signed query string for `params`."""
        payload = {k: v for k, v in params.items() if v is not None}
        payload["timestamp"] = int(time.time() * 1000)
        query = urlencode(payload)
        signature = hmac.new(self.api_secret.encode(), query.encode(), hashlib.sha256).hexdigest()
        return f"{query}&signature={signature}"

    @staticmethod
    def _raise_for_response(resp: httpx.Response, path: str):
        if resp.is_success:
            return
        code, msg = None, resp.text
        try:
            body = resp.json()
            code, msg = body.get("code"), body.get("msg", msg)
        except ValueError:
            pass
        raise ExchangeError(f"{path}: {msg}", code=code, status=resp.status_code)

    async def _public_get(self, path: str, params: dict | None = None):
        resp = await self._http.get(path, params=params)
        self._raise_for_response(resp, path)
        return resp.json()

    async def _signed_request(self, method: str, path: str, params: dict | None = None):
        self._require_credentials()
        query = self._sign(params or {})
        resp = await self._http.request(method, f"{path}?{query}", headers={"X-MBX-APIKEY": self.api_key})
        self._raise_for_response(resp, path)
        return resp.json()

    # ------------------------------------------------------------------
    # Market data
    # ------------------------------------------------------------------

    async def fetch_current_price(self, symbol: str) -> float | None:
        try:
            data = await self._public_get("/api/v3/ticker/price", {"symbol": symbol})
            price = float(data["price"])
        except (httpx.HTTPError, ExchangeError, KeyError, ValueError) as e:
            logger.warning(f"Price fetch failed for {symbol}: {e}")
            return None
        return price if price > 0 else None

    async def fetch_spot_prices(self, pairs: list[str], batch_size: int = 10) -> dict[str, float]:
        """Per-pair price lookup in concurrent batches; pairs without a price are omitted."""
        unique = sorted(set(pairs))
        batch_size = max(batch_size, 1)
        prices: dict[str, float] = {}
        for start in range(0, len(unique), batch_size):
            batch = unique[start:start + batch_size]
            results = await asyncio.gather(*(self.fetch_current_price(pair) for pair in batch))
            prices.update({pair: price for pair, price in zip(batch, results) if price is not None})
        return prices

    async def get_symbol_info(self, symbol: str) -> dict | None:
        """Exchange filters for `symbol`, cached for the life of the client."""
        if symbol in self._symbol_info:
            return self._symbol_info[symbol]
        try:
            data = await self._public_get("/api/v3/exchangeInfo", {"symbol": symbol})
            info = data["symbols"][0]
        except (httpx.HTTPError, ExchangeError, KeyError, IndexError) as e:
            logger.error(f"exchangeInfo failed for {symbol}: {e}")
            return None
        self._symbol_info[symbol] = info
        return info

    @staticmethod
    def lot_size(info: dict) -> tuple[str, float]:
        """(stepSize, minQty) from the LOT_SIZE filter."""
        for f in info.get("filters", []):
            if f.get("filterType") == "LOT_SIZE":
                return f["stepSize"], float(f.get("minQty", 0))
        return "0", 0.0

    # ------------------------------------------------------------------
    # Dual investment products
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_products(rows: list[dict]) -> list[Product]:
        products = []
        for row in rows:
            try:
                products.append(Product.model_validate(row))
            except ValidationError as e:
                logger.warning(f"Skipping malformed product {row.get('id')}: {e.error_count()} errors")
        return products

    async def fetch_product_page(
        self,
        option_type: OptionType,
        exercised_coin: str,
        invest_coin: str,
        page_size: int = 20,
        page_index: int = 1,
    ) -> list[Product]:
        data = await self._signed_request(
            "GET",
            "/sapi/v1/dci/product/list",
            {
                "optionType": option_type.value,
                "exercisedCoin": exercised_coin,
                "investCoin": invest_coin,
                "pageSize": page_size,
                "pageIndex": page_index,
            },
        )
        return self._parse_products(data.get("list", []))

    async def fetch_dual_investment_products(self, strategy: StrategyConfig) -> list[Product] | None:
        """Fetch PUT and CALL listings for every active asset, in concurrent batches.

        A failed request drops only its own listing. Returns None when every
        request failed.
        """
        requests = []
        for pair, asset in strategy.active_assets().items():
            requests.append((pair, OptionType.PUT, asset.put.exercised_coin, asset.put.invest_coin))
            requests.append((pair, OptionType.CALL, asset.call.exercised_coin, asset.call.invest_coin))

        products: list[Product] = []
        failures = 0
        for start in range(0, len(requests), strategy.fetch_batch_size):
            batch = requests[start:start + strategy.fetch_batch_size]
            results = await asyncio.gather(
                *(
                    self.fetch_product_page(opt, exercised, invest, strategy.fetch_page_size)
                    for _, opt, exercised, invest in batch
                ),
                return_exceptions=True,
            )
            for (pair, opt, _, _), result in zip(batch, results):
                if isinstance(result, MissingCredentialsError):
                    raise result
                if isinstance(result, Exception):
                    failures += 1
                    logger.warning(f"Product fetch failed for {pair} {opt.value}: {result}")
                    continue
                products.extend(result)

        if requests and failures == len(requests):
            logger.error("Product fetch failed for every asset")
            return None
        logger.info(f"Fetched {len(products)} products ({failures}/{len(requests)} requests failed)")
        return products

    async def fetch_products_by_meta(
        self,
        option_type: OptionType,
        exercised_coin: str,
        invest_coin: str,
    ) -> list[Product]:
        """Re-list products of one kind, used to find a replacement after a rate change."""
        try:
            return await self.fetch_product_page(
                option_type, exercised_coin, invest_coin, page_size=POSITIONS_PAGE_SIZE
            )
        except (httpx.HTTPError, ExchangeError) as e:
            logger.warning(f"Product re-fetch failed for {exercised_coin}/{invest_coin} {option_type.value}: {e}")
            return []

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    async def fetch_positions(self) -> list[Position] | None:
        """All confirmed dual investment positions, following pagination."""
        positions: list[Position] = []
        page = 1
        try:
            while True:
                data = await self._signed_request(
                    "GET",
                    "/sapi/v1/dci/product/positions",
                    {"status": "PURCHASE_SUCCESS", "pageSize": POSITIONS_PAGE_SIZE, "pageIndex": page},
                )
                rows = data.get("list", [])
                for row in rows:
                    try:
                        positions.append(Position.model_validate(row))
                    except ValidationError as e:
                        logger.warning(f"Skipping malformed position {row.get('id')}: {e.error_count()} errors")
                total = int(data.get("total", 0))
                if len(rows) < POSITIONS_PAGE_SIZE or page * POSITIONS_PAGE_SIZE >= total:
                    break
                page += 1
        except (httpx.HTTPError, ExchangeError) as e:
            logger.error(f"Position fetch failed: {e}")
            return None
        return positions

    async def fetch_spot_balances(self) -> dict[str, float]:
        """Free spot balances keyed by asset, positive only."""
        try:
            data = await self._signed_request("GET", "/api/v3/account")
        except (httpx.HTTPError, ExchangeError) as e:
            logger.error(f"Balance fetch failed: {e}")
            return {}
        balances = {}
        for row in data.get("balances", []):
            free = float(row.get("free", 0))
            if free > 0:
                balances[row["asset"]] = free
        return balances

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def subscribe(self, product: Product, deposit_amount: float) -> SubscribeResult:
        """Subscribe to a dual investment product."""
        try:
            data = await self._signed_request(
                "POST",
                "/sapi/v1/dci/product/subscribe",
                {
                    "id": product.id,
                    "orderId": product.order_id,
                    "depositAmount": deposit_amount,
                    "autoCompoundPlan": "NONE",
                },
            )
        except ExchangeError as e:
            logger.error(f"Subscribe rejected for {product.id}: {e}")
            return SubscribeResult(success=False, error=e.message, code=e.code)
        except httpx.HTTPError as e:
            logger.error(f"Subscribe failed for {product.id}: {e}")
            return SubscribeResult(success=False, error=str(e))
        logger.info(f"Subscribed {product.id}: position {data.get('positionId')}")
        return SubscribeResult(success=True, position_id=str(data.get("positionId")), raw_response=str(data))

    async def open_margin_position(self, symbol: str, side: str, quantity: float) -> OrderResult:
        """Cross-margin market order, borrowing as needed. Quantity is floored to the lot size."""
        info = await self.get_symbol_info(symbol)
        if info is None:
            return OrderResult(success=False, error=f"no symbol info for {symbol}")
        step_size, min_qty = self.lot_size(info)
        adjusted = adjust_quantity_to_lot_size(quantity, step_size)
        if adjusted <= 0 or float(adjusted) < min_qty:
            logger.warning(f"Margin order {symbol} {side}: quantity {quantity} below minimum {min_qty}")
            return OrderResult(success=False, error=f"quantity {adjusted} below minimum {min_qty}")

        if self._mock_mode:
            logger.info(f"MOCK margin order: {symbol} {side} qty={adjusted}")
            return OrderResult(success=True, order_id=f"mock-{int(time.time() * 1000)}", filled_quantity=float(adjusted))

        try:
            data = await self._signed_request(
                "POST",
                "/sapi/v1/margin/order",
                {
                    "symbol": symbol,
                    "side": side,
                    "type": "MARKET",
                    "quantity": str(adjusted),
                    "isIsolated": "FALSE",
                    "sideEffectType": "AUTO_BORROW_REPAY",
                },
            )
        except (httpx.HTTPError, ExchangeError) as e:
            logger.error(f"Margin order failed {symbol} {side} {adjusted}: {e}")
            return OrderResult(success=False, error=str(e))

        logger.info(f"Margin order placed: {symbol} {side} {adjusted} -> {data.get('orderId')}")
        return OrderResult(
            success=True,
            order_id=str(data.get("orderId")),
            filled_quantity=float(data.get("executedQty", adjusted)),
            order_status=data.get("status"),
            raw_response=str(data),
        )

    async def borrow(
        self,
        loan_coin: str,
        loan_amount: float,
        collateral_coin: str,
        collateral_amount: float,
    ) -> dict | None:
        """Flexible-rate loan. Returns the exchange response or None on failure."""
        if self._mock_mode:
            logger.info(f"MOCK borrow: {loan_amount} {loan_coin} against {collateral_amount:.8f} {collateral_coin}")
            return {"loanCoin": loan_coin, "loanAmount": loan_amount, "mock": True}
        try:
            return await self._signed_request(
                "POST",
                "/sapi/v2/loan/flexible/borrow",
                {
                    "loanCoin": loan_coin,
                    "loanAmount": f"{loan_amount:.8f}",
                    "collateralCoin": collateral_coin,
                    "collateralAmount": f"{collateral_amount:.8f}",
                },
            )
        except (httpx.HTTPError, ExchangeError) as e:
            logger.error(f"Borrow of {loan_amount} {loan_coin} against {collateral_coin} failed: {e}")
            return None
