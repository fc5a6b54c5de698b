"""Hedge monitoring: evaluate every active position and place hedge orders.

The decision logic lives in `services.hedge_engine`; this module does the
I/O around it. A status change is written to the ledger only after the
exchange confirms the order.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from dualinvest.engine.context import CycleContext
from dualinvest.schemas.hedge import HedgeStatus
from dualinvest.services.hedge_engine import HedgeDecision, evaluate_hedge
from dualinvest.services.ledger import ActivePosition
from dualinvest.services.telegram_bot import notify

logger = logging.getLogger(__name__)


@dataclass
class HedgeOutcome:
    position_id: str
    decision: HedgeDecision
    status: HedgeStatus
    order_placed: bool = False
    order_success: bool = False


def is_stale(updated_at: datetime | None, now: datetime, stale_after_minutes: float) -> bool:
    return updated_at is None or now - updated_at > timedelta(minutes=stale_after_minutes)


async def monitor_and_hedge(ctx: CycleContext, now: datetime | None = None) -> list[HedgeOutcome]:
    """Run one hedge pass over `ctx.positions`."""
    cfg = ctx.strategy.hedge
    if not cfg.enabled:
        return []

    now = now or datetime.now(timezone.utc)
    if is_stale(ctx.positions_updated_at, now, cfg.stale_after_minutes):
        logger.warning(
            f"[hedge] Position snapshot from {ctx.positions_updated_at} is stale, skipping hedge evaluation"
        )
        return []

    outcomes = []
    for active in ctx.positions:
        if active.hedge_status is HedgeStatus.FULL:
            continue
        outcome = await _hedge_position(ctx, active, now)
        if outcome is not None:
            outcomes.append(outcome)

    placed = sum(1 for o in outcomes if o.order_placed)
    if placed:
        logger.info(f"[hedge] {placed} hedge order(s) attempted, {sum(o.order_success for o in outcomes)} succeeded")
    return outcomes


async def _hedge_position(ctx: CycleContext, active: ActivePosition, now: datetime) -> HedgeOutcome | None:
    position = active.position
    tag = f"[hedge:{position.id}]"

    price = await ctx.client.fetch_current_price(position.pair)
    if price is None:
        logger.warning(f"{tag} No price for {position.pair}, skipping")
        return None

    # Read the record from the ledger so timers survive restarts and retries
    record = ctx.ledger.get_record(position.id)
    decision = evaluate_hedge(position, record, price, now, ctx.strategy.hedge)
    logger.debug(
        f"{tag} {position.pair} {position.option_type.value} spot={price} be={decision.break_even:.4f} "
        f"status={record.hedge_status.value} -> {decision.reason}"
    )

    if decision.order is None:
        if decision.record != record:
            ctx.ledger.persist(position, decision.record, now)
            if decision.reason == "breach_started":
                logger.info(f"{tag} Break-even {decision.break_even:.4f} breached at {price}, confirmation started")
            else:
                logger.info(f"{tag} Price back inside break-even, breach timer cleared")
        return HedgeOutcome(position.id, decision, decision.record.hedge_status)

    order = decision.order
    logger.info(
        f"{tag} Hedging {order.target.value}: {order.side} {order.quantity:.8f} {position.pair} "
        f"({order.fraction:.0%} of notional) at spot {price}"
    )
    result = await ctx.client.open_margin_position(position.pair, order.side, order.quantity)

    ctx.journal.record_hedge(
        position_id=position.id,
        symbol=position.pair,
        option_type=position.option_type.value,
        from_status=record.hedge_status.value,
        target_status=order.target.value,
        side=order.side,
        fraction=order.fraction,
        quantity=order.quantity,
        spot_price=price,
        break_even=decision.break_even,
        success=result.success,
        order_id=result.order_id,
        filled_quantity=result.filled_quantity,
        error=result.error,
    )

    if not result.success:
        # Status unchanged, breach timer kept for the next attempt
        logger.error(f"{tag} Hedge order failed, status stays {record.hedge_status.value}: {result.error}")
        if decision.record != record:
            ctx.ledger.persist(position, decision.record, now)
        await notify(ctx.notifier, f"Hedge FAILED {position.pair} {position.id} -> {order.target.value}: {result.error}")
        return HedgeOutcome(position.id, decision, record.hedge_status, order_placed=True)

    updated = decision.record.advance(order.target, now)
    try:
        ctx.ledger.persist(position, updated, now)
    except OSError as e:
        logger.error(
            f"{tag} Hedge order {result.order_id} FILLED but ledger write failed, "
            f"status on disk stays {record.hedge_status.value}; reconcile manually: {e}"
        )
        await notify(
            ctx.notifier,
            f"Ledger write failed after hedge order {result.order_id} on {position.pair} {position.id}, reconcile manually",
        )
        raise
    logger.info(f"{tag} Hedge status {record.hedge_status.value} -> {updated.hedge_status.value} (order {result.order_id})")
    await notify(
        ctx.notifier,
        f"Hedged {position.pair} {position.option_type.value} {position.id}: {order.side} "
        f"{result.filled_quantity or order.quantity} -> {updated.hedge_status.value} | spot {price} | BE {decision.break_even:.4f}",
    )
    return HedgeOutcome(position.id, decision, updated.hedge_status, order_placed=True, order_success=True)
