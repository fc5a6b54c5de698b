"""Subscription dispatcher: turns the ranked execution list into subscriptions.

Sizing follows the PUT/CALL allocation of the configured investment slice.
Insufficient wallet balance is covered by a collateralized loan; a rate change
between listing and subscription gets one retry against a refreshed product.
"""

import logging
from dataclasses import dataclass

from dualinvest.schemas.market import OptionType, Product
from dualinvest.schemas.strategy import StrategyConfig
from dualinvest.services.binance_client import SubscribeResult
from dualinvest.services.collateral import CollateralResolver
from dualinvest.services.journal import Journal
from dualinvest.services.precision import round_to_precision
from dualinvest.services.product_filter import ScoredProduct
from dualinvest.services.telegram_bot import TelegramNotifier, notify

logger = logging.getLogger(__name__)

MIN_ALLOCATION = 1.0


@dataclass(frozen=True)
class Allocation:
    put: float
    call: float


def calculate_allocation(put_call_balance: float, amount: float) -> Allocation:
    """Split `amount` between PUT and CALL.

    Negative balance trims CALL, positive balance trims PUT; zero is an even
    full allocation to both.
    """
    put = amount if put_call_balance >= 0 else amount * (1 + put_call_balance)
    call = amount * (1 if put_call_balance < 0 else 1 - put_call_balance)
    return Allocation(put=put, call=call)


def is_replacement(candidate: Product, original: Product) -> bool:
    """Same contract as `original` at an equal or better rate."""
    return (
        candidate.underlying == original.underlying
        and candidate.option_type == original.option_type
        and candidate.settle_coin == original.settle_coin
        and candidate.settle_date == original.settle_date
        and candidate.apr >= original.apr
    )


@dataclass
class DispatchResult:
    balances: dict[str, float]
    subscribed: int = 0
    failed: int = 0
    skipped: int = 0


class ExecutionDispatcher:
    def __init__(
        self,
        client,
        resolver: CollateralResolver,
        journal: Journal,
        strategy: StrategyConfig,
        notifier: TelegramNotifier | None = None,
    ):
        self.client = client
        self.resolver = resolver
        self.journal = journal
        self.strategy = strategy
        self.notifier = notifier

    async def execute(
        self,
        ranked: list[ScoredProduct],
        mock: bool = False,
        balances: dict[str, float] | None = None,
    ) -> DispatchResult:
        """Subscribe to each ranked product in order. Returns remaining balances."""
        result = DispatchResult(balances=dict(balances or {}))
        if not ranked:
            logger.info("[execute] No products to execute")
            return result

        amount = self.strategy.investment_amount * self.strategy.allocation_fraction
        allocation = calculate_allocation(self.strategy.put_call_balance, amount)

        for scored in ranked:
            try:
                outcome = await self._execute_one(scored, allocation, mock, result.balances)
            except (ValueError, ArithmeticError) as e:
                logger.error(f"[execute] Product {scored.product.id} ({scored.pair}) failed: {e}")
                outcome = "failed"
            if outcome == "subscribed":
                result.subscribed += 1
            elif outcome == "failed":
                result.failed += 1
            else:
                result.skipped += 1

        logger.info(
            f"[execute] {result.subscribed} subscribed, {result.failed} failed, {result.skipped} skipped"
        )
        return result

    async def _execute_one(
        self,
        scored: ScoredProduct,
        allocation: Allocation,
        mock: bool,
        balances: dict[str, float],
    ) -> str:
        product = scored.product
        asset = self.strategy.supported_assets.get(product.pair)
        if asset is None or not asset.active:
            logger.info(f"[execute] Skipping {product.pair}: no active asset config")
            return "skipped"

        if product.option_type == OptionType.PUT:
            if allocation.put < MIN_ALLOCATION:
                return "skipped"
            deposit = allocation.put
            deposit_value = deposit
        else:
            if allocation.call < MIN_ALLOCATION:
                return "skipped"
            price = await self.client.fetch_current_price(product.pair)
            if not price:
                logger.warning(f"[execute] Skipping {product.pair} CALL {product.id}: price fetch failed")
                return "skipped"
            deposit = round_to_precision(allocation.call / price, asset.decimal_precision)
            deposit_value = deposit * price
            if deposit <= 0:
                logger.warning(f"[execute] Skipping {product.pair} CALL {product.id}: amount rounds to zero")
                return "skipped"

        if deposit_value < asset.min_investment:
            logger.info(
                f"[execute] Skipping {product.id}: {deposit_value:.2f} below minimum investment {asset.min_investment}"
            )
            return "skipped"

        coin = product.invest_coin
        borrowed = None
        available = balances.get(coin, 0.0)
        if available < deposit:
            logger.info(f"[execute] Insufficient {coin}: have {available}, need {deposit}; borrowing")
            borrowed = await self.resolver.borrow(coin, deposit)
            if borrowed is None:
                self._journal(scored, deposit, "skipped", message=f"borrow of {deposit} {coin} failed")
                return "skipped"
            balances[coin] = available + borrowed.loan_amount

        if mock:
            logger.info(
                f"[execute] MOCK subscribe {deposit} {coin} to {product.pair} {product.option_type.value} "
                f"{product.id} | strike {product.strike_price} | ROI {scored.actual_roi:.2f}% > {scored.target_roi:.2f}%"
            )
            self._journal(scored, deposit, "mock", borrowed=borrowed)
            balances[coin] = max(balances.get(coin, 0.0) - deposit, 0.0)
            return "subscribed"

        sub = await self._subscribe_with_retry(scored, deposit, borrowed)
        if not sub.success:
            return "failed"

        balances[coin] = max(balances.get(coin, 0.0) - deposit, 0.0)
        await notify(
            self.notifier,
            f"Subscribed {product.pair} {product.option_type.value} {deposit} {coin} | "
            f"strike {product.strike_price} | APR {product.apr * 100:.2f}% | ROI {scored.actual_roi:.2f}%",
        )
        return "subscribed"

    async def _subscribe_with_retry(self, scored: ScoredProduct, deposit: float, borrowed) -> SubscribeResult:
        product = scored.product
        sub = await self.client.subscribe(product, deposit)
        self._journal(scored, deposit, "success" if sub.success else "failed", borrowed=borrowed, sub=sub)
        if sub.success or not sub.apr_changed:
            return sub

        # One retry against a refreshed listing of the same contract
        logger.info(f"[execute] APY changed for {product.id}, looking for a replacement")
        refreshed = await self.client.fetch_products_by_meta(
            product.option_type, product.exercised_coin, product.invest_coin
        )
        matches = [p for p in refreshed if is_replacement(p, product)]
        if not matches:
            logger.warning(f"[execute] Retry skipped: no product matched with APR >= {product.apr * 100:.2f}%")
            return sub

        replacement = max(matches, key=lambda p: p.apr)
        retry = await self.client.subscribe(replacement, deposit)
        self._journal(
            scored,
            deposit,
            "success" if retry.success else "failed",
            borrowed=borrowed,
            sub=retry,
            product=replacement,
            is_retry=True,
        )
        return retry

    def _journal(
        self,
        scored: ScoredProduct,
        deposit: float,
        status: str,
        borrowed=None,
        sub: SubscribeResult | None = None,
        product: Product | None = None,
        is_retry: bool = False,
        message: str | None = None,
    ):
        product = product or scored.product
        self.journal.record_subscription(
            product_id=product.id,
            pair=product.pair,
            option_type=product.option_type.value,
            strike_price=product.strike_price,
            apr=product.apr,
            settle_date=product.settle_date,
            deposit_coin=product.invest_coin,
            deposit_amount=deposit,
            actual_roi=scored.actual_roi,
            target_roi=scored.target_roi,
            borrowed_amount=borrowed.loan_amount if borrowed else None,
            collateral_coin=borrowed.collateral_coin if borrowed else None,
            status=status,
            is_retry=is_retry,
            position_id=sub.position_id if sub else None,
            error_code=sub.code if sub else None,
            message=message or (sub.error if sub else None),
        )
