"""ROI curves used by the product filter.

All curves are pure callables of the rounded day count and return a percent
value clamped to the configured cap. `RoiPolicy` bundles them so the filter
can be driven by any set of curves (tests inject flat ones).
"""

from dataclasses import dataclass
from typing import Callable

import numpy as np

from dualinvest.schemas.strategy import (
    DayScaledFloorConfig,
    LongTermCurveConfig,
    ShortTermCurveConfig,
    StrategyConfig,
)

Curve = Callable[[int], float]


@dataclass(frozen=True)
class ShortTermRoiCurve:
    """Bounded-below, slowly exponential target: base + growth * (e^(rate*d) - 1)."""
    base_roi: float
    growth_factor: float
    exponential_rate: float
    cap: float

    @classmethod
    def from_config(cls, cfg: ShortTermCurveConfig) -> "ShortTermRoiCurve":
        return cls(cfg.base_roi, cfg.growth_factor, cfg.exponential_rate, cfg.cap)

    def __call__(self, days: int) -> float:
        days = max(days, 0)
        value = self.base_roi + self.growth_factor * float(np.expm1(self.exponential_rate * days))
        return min(value, self.cap)


@dataclass(frozen=True)
class LongTermRoiCurve:
    """Concave target that saturates: base + a*(sqrt(d) - 1) + b*ln(d)."""
    single_day_roi: float
    base_roi: float
    sqrt_growth_rate: float
    log_sustain_factor: float
    cap: float

    @classmethod
    def from_config(cls, cfg: LongTermCurveConfig) -> "LongTermRoiCurve":
        return cls(cfg.single_day_roi, cfg.base_roi, cfg.sqrt_growth_rate, cfg.log_sustain_factor, cfg.cap)

    def __call__(self, days: int) -> float:
        if days <= 1:
            return min(self.single_day_roi, self.cap)
        sqrt_component = self.sqrt_growth_rate * (float(np.sqrt(days)) - 1)
        log_component = self.log_sustain_factor * float(np.log(days))
        # Never dip below the single-day value for short multi-day expiries
        value = max(self.base_roi + sqrt_component + log_component, self.single_day_roi)
        return min(value, self.cap)


@dataclass(frozen=True)
class DayScaledFloor:
    """`min(base + max(0, d - grace) * per_day, cap) * scale`."""
    base: float
    per_day: float
    cap: float
    grace_days: int = 2
    scale: float = 1.0

    @classmethod
    def from_config(cls, cfg: DayScaledFloorConfig, scale: float = 1.0) -> "DayScaledFloor":
        return cls(cfg.base, cfg.per_day, cfg.cap, cfg.grace_days, scale)

    def __call__(self, days: int) -> float:
        value = self.base + max(0, days - self.grace_days) * self.per_day
        return min(value, self.cap) * self.scale


@dataclass(frozen=True)
class RoiPolicy:
    short_term_target: Curve
    long_term_target: Curve
    minimum_roi: Curve
    risk_buffer: Curve

    @classmethod
    def from_strategy(cls, strategy: StrategyConfig) -> "RoiPolicy":
        return cls(
            short_term_target=ShortTermRoiCurve.from_config(strategy.short_term_roi),
            long_term_target=LongTermRoiCurve.from_config(strategy.long_term_roi),
            # Configured as a decimal fraction; the filter works in percent
            minimum_roi=DayScaledFloor.from_config(strategy.min_roi, scale=100.0),
            risk_buffer=DayScaledFloor.from_config(strategy.risk_buffer),
        )

    def target_for(self, is_short_term: bool) -> Curve:
        return self.short_term_target if is_short_term else self.long_term_target
