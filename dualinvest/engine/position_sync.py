"""Position sync: reconcile the ledger with exchange-reported positions.

Every cycle starts here. The exchange is the source of truth for which
positions exist; the ledger is the source of truth for their hedge state.

Scenarios handled:
1. Exchange and ledger both know the position → terms refreshed, hedge state kept
2. Exchange reports an unknown id → new entry at NONE
3. Ledger has an open entry the exchange no longer reports → marked closed
"""

import logging
from datetime import datetime, timezone

from dualinvest.engine.context import CycleContext
from dualinvest.services.ledger import ActivePosition

logger = logging.getLogger(__name__)


async def sync_positions(ctx: CycleContext) -> list[ActivePosition] | None:
    """Fetch positions and reconcile. Returns None if the exchange could not be read."""
    positions = await ctx.client.fetch_positions()
    if positions is None:
        logger.error("Position sync: failed to fetch exchange positions")
        return None

    now = datetime.now(timezone.utc)
    previous = {pid for pid, entry in ctx.ledger.entries().items() if not entry.is_closed}
    active = ctx.ledger.reconcile(positions, now)
    current = {p.id for p in active}

    opened = current - previous
    closed = previous - current
    if opened:
        logger.info(f"Position sync: {len(opened)} new position(s): {sorted(opened)}")
    if closed:
        logger.info(f"Position sync: {len(closed)} position(s) settled or closed: {sorted(closed)}")

    ctx.positions = active
    ctx.positions_updated_at = now
    hedged = sum(1 for p in active if p.hedge_status.is_hedged)
    logger.info(f"Position sync: {len(active)} active, {hedged} hedged")
    return active
