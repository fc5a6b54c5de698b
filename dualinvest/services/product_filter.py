"""Stateless product filtering and scoring.

Turns a market snapshot into a ranked, cap-bounded execution list.
All functions are pure computation: no I/O, no exchange access.
ROI values are percentages throughout (0.5 means 0.5%).
"""

import logging
import math
from dataclasses import dataclass, replace
from datetime import date, datetime

import pandas as pd

from dualinvest.schemas.market import OptionType, Product
from dualinvest.schemas.strategy import StrategyConfig
from dualinvest.services.ledger import ActivePosition
from dualinvest.services.roi_curves import RoiPolicy

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Core computation helpers
# ---------------------------------------------------------------------------

def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_actual_roi(apr: float, rounded_days: int) -> float:
    """Simple daily-APR scaling over the term, in percent. Not compounded."""
    return apr * 100 / 365 * rounded_days


def compute_break_even(strike: float, roi_pct: float, option_type: OptionType) -> float:
    """Spot price at which the earned yield offsets the adverse move."""
    r = roi_pct / 100
    if option_type == OptionType.CALL:
        return strike * (1 + r)
    return strike * (1 - r)


def compute_buffer_pct(break_even: float, spot: float) -> float:
    return (break_even - spot) / spot * 100


def compute_abs_ratio(buffer_pct: float, roi_pct: float) -> float:
    """Buffer magnitude per unit of ROI. Infinite when ROI is zero."""
    if roi_pct == 0:
        return float("inf")
    return abs(buffer_pct) / roi_pct


def pressure_multiplier(step: float, count: int) -> float:
    return 1 + step * count


def is_volatile_date(settle: datetime, calendar: tuple[date, ...]) -> bool:
    return settle.date() in calendar


def in_term_window(hours: float, strategy: StrategyConfig, is_short_term: bool) -> bool:
    short_low, short_high = strategy.short_term_expiry_hours
    if is_short_term:
        return short_low <= hours <= short_high
    low, high = strategy.expiry_hours
    return short_high < hours and low <= hours <= high


def is_short_term_position(position: ActivePosition, strategy: StrategyConfig, now: datetime) -> bool:
    return position.position.hours_to_expiry(now) <= strategy.short_term_expiry_hours[1]


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ScoredProduct:
    """A product annotated with the metrics that admitted it."""
    product: Product
    is_short_term: bool
    hours_to_expiry: int
    rounded_days: int
    actual_roi: float
    target_roi: float
    min_roi: float
    break_even: float
    buffer_percent: float
    abs_ratio: float

    @property
    def margin(self) -> float:
        return self.actual_roi - self.target_roi

    @property
    def pair(self) -> str:
        return self.product.pair

    @property
    def spot_price(self) -> float:
        return self.product.spot_price


@dataclass
class ProductScore:
    """Scoring decision for one product."""
    accepted: bool
    scored: ScoredProduct | None = None
    skip_reason: str | None = None  # "no_spot", "expiry_window", "target_roi", "min_roi", "abs_ratio", ...


# ---------------------------------------------------------------------------
# Per-product scoring
# ---------------------------------------------------------------------------

def score_product(
    product: Product,
    strategy: StrategyConfig,
    policy: RoiPolicy,
    is_short_term: bool,
    now: datetime,
) -> ProductScore:
    """Apply the ROI, safety and calendar filters to a single product.

    Pressure and caps depend on the rest of the batch and are applied by
    `filter_and_process_products`.
    """
    if not product.spot_price:
        return ProductScore(accepted=False, skip_reason="no_spot")
    if not product.can_purchase:
        return ProductScore(accepted=False, skip_reason="not_purchasable")

    hours = product.hours_to_expiry(now)
    if not in_term_window(hours, strategy, is_short_term):
        return ProductScore(accepted=False, skip_reason="expiry_window")

    rounded_days = round_half_up(hours / 24)
    actual_roi = compute_actual_roi(product.apr, rounded_days)

    target_roi = policy.target_for(is_short_term)(rounded_days)
    if actual_roi < target_roi:
        return ProductScore(accepted=False, skip_reason="target_roi")

    break_even = compute_break_even(product.strike_price, actual_roi, product.option_type)
    buffer_pct = compute_buffer_pct(break_even, product.spot_price)

    min_roi = policy.minimum_roi(rounded_days)
    if actual_roi < min_roi:
        return ProductScore(accepted=False, skip_reason="min_roi")

    abs_ratio = compute_abs_ratio(buffer_pct, actual_roi)
    if math.isinf(abs_ratio):
        return ProductScore(accepted=False, skip_reason="zero_roi")
    if abs_ratio > strategy.abs_ratio_threshold:
        return ProductScore(accepted=False, skip_reason="abs_ratio")

    if strategy.enforce_risk_buffer:
        # PUT break-even must sit below spot, CALL above, by at least the buffer
        adverse_side = buffer_pct > 0 if product.option_type == OptionType.PUT else buffer_pct < 0
        if adverse_side or abs(buffer_pct) < policy.risk_buffer(rounded_days):
            return ProductScore(accepted=False, skip_reason="risk_buffer")

    if is_volatile_date(product.settle_datetime, strategy.volatility_calendar):
        return ProductScore(accepted=False, skip_reason="volatile_date")

    return ProductScore(
        accepted=True,
        scored=ScoredProduct(
            product=product,
            is_short_term=is_short_term,
            hours_to_expiry=hours,
            rounded_days=rounded_days,
            actual_roi=actual_roi,
            target_roi=target_roi,
            min_roi=min_roi,
            break_even=break_even,
            buffer_percent=buffer_pct,
            abs_ratio=abs_ratio,
        ),
    )


# ---------------------------------------------------------------------------
# Ranking helpers
# ---------------------------------------------------------------------------

def _frame(candidates: list[ScoredProduct]) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "idx": range(len(candidates)),
            "pair": [c.pair for c in candidates],
            "margin": [c.margin for c in candidates],
        }
    )


def _cap_per_pair(
    candidates: list[ScoredProduct],
    room_by_pair: dict[str, int],
    by_margin: bool = True,
) -> list[ScoredProduct]:
    """Keep up to each pair's room, best margin first or in input order."""
    if not candidates:
        return []
    df = _frame(candidates)
    if by_margin:
        df = df.sort_values("margin", ascending=False, kind="stable")
    df["rank"] = df.groupby("pair").cumcount()
    df["room"] = df["pair"].map(room_by_pair).fillna(0)
    kept = df[df["rank"] < df["room"]]
    return [candidates[i] for i in kept["idx"]]


def _room_by_pair(
    candidates: list[ScoredProduct],
    active_positions: list[ActivePosition],
    strategy: StrategyConfig,
) -> dict[str, int]:
    open_by_pair: dict[str, int] = {}
    for active in active_positions:
        open_by_pair[active.position.pair] = open_by_pair.get(active.position.pair, 0) + 1
    return {
        c.pair: max(0, strategy.max_positions_per_pair - open_by_pair.get(c.pair, 0))
        for c in candidates
    }


def _keep_best(candidates: list[ScoredProduct], room: int) -> list[ScoredProduct]:
    """Drop lowest-margin candidates beyond `room`, preserving input order."""
    room = max(room, 0)
    if len(candidates) <= room:
        return list(candidates)
    kept = set(_frame(candidates).nlargest(room, "margin", keep="first")["idx"])
    return [c for i, c in enumerate(candidates) if i in kept]


# ---------------------------------------------------------------------------
# Main pipeline
# ---------------------------------------------------------------------------

def filter_and_process_products(
    products: list[Product],
    strategy: StrategyConfig,
    active_positions: list[ActivePosition],
    is_short_term: bool,
    now: datetime,
    policy: RoiPolicy | None = None,
) -> list[ScoredProduct]:
    """Score one term bucket and return survivors ordered by margin."""
    policy = policy or RoiPolicy.from_strategy(strategy)
    term = "short" if is_short_term else "long"

    scored: list[ScoredProduct] = []
    skipped: dict[str, int] = {}
    for product in products:
        try:
            result = score_product(product, strategy, policy, is_short_term, now)
        except (TypeError, ValueError, KeyError, ArithmeticError) as e:
            logger.warning(f"[filter:{term}] Skipping product {product.id} ({product.pair}): {e}")
            skipped["error"] = skipped.get("error", 0) + 1
            continue
        if result.accepted:
            scored.append(result.scored)
        else:
            skipped[result.skip_reason] = skipped.get(result.skip_reason, 0) + 1
            logger.debug(f"[filter:{term}] Rejected {product.id} ({product.pair}): {result.skip_reason}")

    # Pressure: best offers first so they are charged the least
    scored.sort(key=lambda c: c.margin, reverse=True)
    pressured: list[ScoredProduct] = []
    queued: dict[tuple[str, int], int] = {}
    for candidate in scored:
        if is_short_term:
            bucket = (candidate.pair, candidate.rounded_days)
            multiplier = pressure_multiplier(strategy.pressure.short_term_step, queued.get(bucket, 0))
        else:
            multiplier = pressure_multiplier(strategy.pressure.long_term_step, len(active_positions))

        required = candidate.target_roi * multiplier
        if candidate.actual_roi < required:
            skipped["pressure"] = skipped.get("pressure", 0) + 1
            continue
        if is_short_term:
            queued[bucket] = queued.get(bucket, 0) + 1
        pressured.append(replace(candidate, target_roi=required))

    # Per-pair and short-term caps, counting what is already open
    open_short_term = sum(1 for a in active_positions if is_short_term_position(a, strategy, now))
    survivors = _cap_per_pair(pressured, _room_by_pair(pressured, active_positions, strategy))
    if is_short_term:
        survivors = _keep_best(survivors, strategy.max_short_term_positions - open_short_term)
    survivors.sort(key=lambda c: c.margin, reverse=True)

    if skipped:
        logger.info(f"[filter:{term}] {len(survivors)} accepted, rejected: {skipped}")
    return survivors


def build_execution_list(
    products: list[Product],
    strategy: StrategyConfig,
    active_positions: list[ActivePosition],
    now: datetime,
    policy: RoiPolicy | None = None,
) -> list[ScoredProduct]:
    """Short-term then long-term survivors, bounded by the global position cap."""
    policy = policy or RoiPolicy.from_strategy(strategy)
    short_term = filter_and_process_products(products, strategy, active_positions, True, now, policy)
    long_term = filter_and_process_products(products, strategy, active_positions, False, now, policy)
    # Both buckets share one per-pair room; short-term candidates claim it first
    combined = short_term + long_term
    combined = _cap_per_pair(combined, _room_by_pair(combined, active_positions, strategy), by_margin=False)
    room = strategy.max_total_positions - len(active_positions)
    return _keep_best(combined, room)
