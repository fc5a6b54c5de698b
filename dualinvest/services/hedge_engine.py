"""Stateless hedge decision logic.

Given a position, its stored hedge record and the live spot price, decide
whether to start or clear the breach timer, hedge, or escalate. No I/O: the
caller places the order and persists the resulting record.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from dualinvest.schemas.hedge import HedgeRecord, HedgeStatus
from dualinvest.schemas.market import OptionType, Position
from dualinvest.schemas.strategy import HedgeConfig
from dualinvest.services.product_filter import compute_break_even


def is_breached(price: float, break_even: float, option_type: OptionType) -> bool:
    """CALL loses above break-even, PUT below."""
    if option_type == OptionType.CALL:
        return price > break_even
    return price < break_even


def escalation_price(break_even: float, threshold: float, option_type: OptionType) -> float:
    if option_type == OptionType.CALL:
        return break_even * (1 + threshold)
    return break_even * (1 - threshold)


def is_beyond_escalation(price: float, break_even: float, threshold: float, option_type: OptionType) -> bool:
    level = escalation_price(break_even, threshold, option_type)
    if option_type == OptionType.CALL:
        return price >= level
    return price <= level


def hedge_side(option_type: OptionType) -> str:
    """A PUT leaves us long the base coin on the way down, a CALL short on the way up."""
    return "SELL" if option_type == OptionType.PUT else "BUY"


@dataclass(frozen=True)
class HedgeOrder:
    """A hedge to place; the record may only advance if it succeeds."""
    target: HedgeStatus
    side: str
    fraction: float
    quantity: float


@dataclass(frozen=True)
class HedgeDecision:
    record: HedgeRecord  # Timer-updated record to persist if no order, or if the order fails
    order: HedgeOrder | None
    breached: bool
    break_even: float
    reason: str  # "no_breach", "breach_started", "confirming", "step1", "awaiting_escalation", "cooldown", "full", "terminal"


def evaluate_hedge(
    position: Position,
    record: HedgeRecord,
    spot_price: float,
    now: datetime,
    cfg: HedgeConfig,
) -> HedgeDecision:
    """Advance the per-position hedge state machine by one observation."""
    break_even = compute_break_even(position.strike_price, position.roi, position.option_type)
    breached = is_breached(spot_price, break_even, position.option_type)

    def decide(rec: HedgeRecord, reason: str, order: HedgeOrder | None = None) -> HedgeDecision:
        return HedgeDecision(record=rec, order=order, breached=breached, break_even=break_even, reason=reason)

    if record.hedge_status is HedgeStatus.FULL:
        return decide(record, "terminal")

    if not breached:
        # Recovery resets the confirmation window but never unwinds a hedge
        return decide(record.clear_breach() if record.first_breach_at else record, "no_breach")

    if record.first_breach_at is None:
        return decide(record.start_breach(now), "breach_started")

    side = hedge_side(position.option_type)
    notional = position.base_notional()

    if record.hedge_status is HedgeStatus.NONE:
        if now - record.first_breach_at < timedelta(minutes=cfg.breach_confirmation_minutes):
            return decide(record, "confirming")
        order = HedgeOrder(
            target=HedgeStatus.STEP1,
            side=side,
            fraction=cfg.step1_fraction,
            quantity=notional * cfg.step1_fraction,
        )
        return decide(record, "step1", order)

    # STEP1: escalate on a further adverse move, outside the cooldown
    if not is_beyond_escalation(spot_price, break_even, cfg.escalation_threshold, position.option_type):
        return decide(record, "awaiting_escalation")
    if record.last_hedge_at is not None and now - record.last_hedge_at < timedelta(minutes=cfg.cooldown_minutes):
        return decide(record, "cooldown")

    fraction = cfg.full_fraction - cfg.step1_fraction
    order = HedgeOrder(
        target=HedgeStatus.FULL,
        side=side,
        fraction=fraction,
        quantity=notional * fraction,
    )
    return decide(record, "full", order)
