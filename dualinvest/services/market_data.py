"""Market snapshot assembly.

Joins spot prices into the product listing. Products whose pair has no
price are dropped here so nothing downstream sees a product without spot.
"""

import logging

from dualinvest.schemas.market import Product

logger = logging.getLogger(__name__)


def assemble_snapshot(products: list[Product], spot_prices: dict[str, float]) -> list[Product]:
    """Return copies of `products` carrying their pair's spot price."""
    snapshot: list[Product] = []
    missing: set[str] = set()
    for product in products:
        price = spot_prices.get(product.pair)
        if not price or price <= 0:
            missing.add(product.pair)
            continue
        snapshot.append(product.model_copy(update={"spot_price": float(price)}))

    if missing:
        logger.warning(f"Snapshot: dropped products for pairs without spot price: {sorted(missing)}")
    logger.info(f"Snapshot: {len(snapshot)}/{len(products)} products with valid spot prices")
    return snapshot

