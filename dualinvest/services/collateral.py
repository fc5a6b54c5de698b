"""Collateral selection for flexible-rate loans.

When a subscription needs more of a coin than the spot wallet holds, the
shortfall is borrowed against the first collateral asset that can be priced
and whose required amount fits its configured bounds.
"""

import logging
from dataclasses import dataclass

from dualinvest.schemas.strategy import CollateralAsset, StrategyConfig

logger = logging.getLogger(__name__)

QUOTE_COIN = "USDT"


@dataclass(frozen=True)
class BorrowResult:
    loan_coin: str
    loan_amount: float
    collateral_coin: str
    collateral_amount: float
    response: dict


def collateral_candidates(assets: tuple[CollateralAsset, ...], coin: str) -> list[CollateralAsset]:
    """Enabled collateral by priority, with the borrowed coin itself moved last."""
    enabled = [a for a in assets if a.enabled]
    return sorted(enabled, key=lambda a: (a.coin == coin, a.priority))


def required_collateral(
    amount: float,
    borrowed_price: float,
    collateral_price: float,
    asset: CollateralAsset,
) -> float:
    """Collateral needed at the asset's LTV, raised to its minimum amount."""
    needed = amount * borrowed_price / asset.ltv / collateral_price
    return max(needed, asset.min_amount)


class CollateralResolver:
    def __init__(self, client, strategy: StrategyConfig):
        self.client = client
        self.strategy = strategy

    async def _prices(self, coin: str, collateral: str) -> tuple[float | None, float | None]:
        """(borrowed price, collateral price) in a common quote."""
        stable = self.strategy.stablecoins
        if coin in stable and collateral in stable:
            return 1.0, 1.0
        if collateral in stable:
            return await self.client.fetch_current_price(f"{coin}{collateral}"), 1.0
        if coin in stable:
            return 1.0, await self.client.fetch_current_price(f"{collateral}{coin}")
        return (
            await self.client.fetch_current_price(f"{coin}{QUOTE_COIN}"),
            await self.client.fetch_current_price(f"{collateral}{QUOTE_COIN}"),
        )

    async def borrow(self, coin: str, amount: float) -> BorrowResult | None:
        """Borrow `amount` of `coin`, trying collateral assets in order."""
        for asset in collateral_candidates(self.strategy.collateral_assets, coin):
            if asset.coin == coin:
                logger.debug(f"[collateral] {coin} cannot collateralize itself, skipping")
                continue

            borrowed_price, collateral_price = await self._prices(coin, asset.coin)
            if not borrowed_price or not collateral_price:
                logger.debug(f"[collateral] No price for {coin}/{asset.coin}, trying next")
                continue

            collateral_amount = required_collateral(amount, borrowed_price, collateral_price, asset)
            if collateral_amount > asset.max_amount:
                logger.debug(
                    f"[collateral] {asset.coin} needs {collateral_amount:.8f} > max {asset.max_amount}, trying next"
                )
                continue

            response = await self.client.borrow(coin, amount, asset.coin, collateral_amount)
            if response is None:
                continue

            logger.info(f"[collateral] Borrowed {amount} {coin} using {collateral_amount:.8f} {asset.coin}")
            return BorrowResult(
                loan_coin=coin,
                loan_amount=amount,
                collateral_coin=asset.coin,
                collateral_amount=collateral_amount,
                response=response,
            )

        logger.warning(f"[collateral] Failed to borrow {amount} {coin} with any collateral")
        return None
