"""Process-level stop conditions checked once per cycle."""

import logging

from dualinvest.schemas.strategy import StrategyConfig
from dualinvest.services.ledger import ActivePosition

logger = logging.getLogger(__name__)


def count_hedged(positions: list[ActivePosition]) -> int:
    return sum(1 for p in positions if p.hedge_status.is_hedged)


def check_stop_conditions(positions: list[ActivePosition], strategy: StrategyConfig) -> str | None:
    """Reason to stop taking new positions and shut down, or None."""
    if len(positions) >= strategy.max_total_positions:
        return f"max total positions reached ({len(positions)}/{strategy.max_total_positions})"
    hedged = count_hedged(positions)
    if hedged >= strategy.max_hedged_positions:
        return f"max hedged positions reached ({hedged}/{strategy.max_hedged_positions})"
    return None
