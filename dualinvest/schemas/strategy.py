"""Pydantic schemas for the trading strategy configuration.

Every model is frozen: the strategy is loaded once at startup and never
mutated by a cycle.
"""

from datetime import date

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

FROZEN = ConfigDict(frozen=True)


class ShortTermCurveConfig(BaseModel):
    model_config = FROZEN

    base_roi: float = Field(default=0.7, ge=0)
    growth_factor: float = Field(default=0.01, ge=0)
    exponential_rate: float = Field(default=0.101, ge=0)
    cap: float = Field(default=3.0, gt=0)


class LongTermCurveConfig(BaseModel):
    model_config = FROZEN

    single_day_roi: float = Field(default=1.0, ge=0)  # Used for expiries of 1 day or less
    base_roi: float = Field(default=0.7, ge=0)
    sqrt_growth_rate: float = Field(default=0.02, ge=0)
    log_sustain_factor: float = Field(default=1.5, ge=0)
    cap: float = Field(default=8.0, gt=0)


class DayScaledFloorConfig(BaseModel):
    """`min(base + max(0, days - grace_days) * per_day, cap)`."""

    model_config = FROZEN

    base: float = Field(ge=0)
    per_day: float = Field(ge=0)
    cap: float = Field(gt=0)
    grace_days: int = Field(default=2, ge=0)


class PressureConfig(BaseModel):
    model_config = FROZEN

    long_term_step: float = Field(default=0.017, ge=0)  # Per active position
    short_term_step: float = Field(default=0.12, ge=0)  # Per duplicate queued candidate


class HedgeConfig(BaseModel):
    model_config = FROZEN

    enabled: bool = True
    breach_confirmation_minutes: float = Field(default=5.0, ge=0)
    step1_fraction: float = Field(default=0.5, gt=0, le=1)
    full_fraction: float = Field(default=1.0, gt=0, le=1)
    escalation_threshold: float = Field(default=0.05, ge=0)
    cooldown_minutes: float = Field(default=0.0, ge=0)
    stale_after_minutes: float = Field(default=5.0, gt=0)

    @model_validator(mode="after")
    def _validate_fractions(self):
        if self.full_fraction < self.step1_fraction:
            raise ValueError("full_fraction must be >= step1_fraction")
        return self


class CoinPair(BaseModel):
    model_config = FROZEN

    exercised_coin: str
    invest_coin: str


class SupportedAsset(BaseModel):
    model_config = FROZEN

    active: bool = True
    tier: int = 1
    put: CoinPair
    call: CoinPair
    decimal_precision: int = Field(default=4, ge=0)
    min_investment: float = Field(default=0.0, ge=0)


class CollateralAsset(BaseModel):
    model_config = FROZEN

    coin: str = Field(min_length=1)
    enabled: bool = True
    min_amount: float = Field(default=0.0, ge=0)
    max_amount: float = Field(default=float("inf"), gt=0)
    ltv: float = Field(default=0.75, gt=0, le=1)
    priority: int = 1

    @model_validator(mode="after")
    def _validate_bounds(self):
        if self.min_amount > self.max_amount:
            raise ValueError("min_amount must be <= max_amount")
        return self


def _asset(base: str, quote: str, precision: int, min_investment: float, tier: int) -> SupportedAsset:
    return SupportedAsset(
        tier=tier,
        put=CoinPair(exercised_coin=base, invest_coin=quote),
        call=CoinPair(exercised_coin=quote, invest_coin=base),
        decimal_precision=precision,
        min_investment=min_investment,
    )


DEFAULT_SUPPORTED_ASSETS: dict[str, SupportedAsset] = {
    "BTCUSDT": _asset("BTC", "USDT", 5, 100, 1),
    "BTCFDUSD": _asset("BTC", "FDUSD", 5, 100, 1),
    "ETHUSDT": _asset("ETH", "USDT", 4, 50, 1),
    "ETHFDUSD": _asset("ETH", "FDUSD", 4, 50, 1),
    "SOLUSDT": _asset("SOL", "USDT", 3, 25, 2),
    "ADAUSDT": _asset("ADA", "USDT", 0, 10, 2),
    "AVAXUSDT": _asset("AVAX", "USDT", 2, 20, 2),
}

DEFAULT_COLLATERAL: tuple[CollateralAsset, ...] = (
    CollateralAsset(coin="BTC", min_amount=0.001, max_amount=10, priority=1),
    CollateralAsset(coin="FDUSD", min_amount=100, max_amount=100000, priority=2),
    CollateralAsset(coin="USDT", min_amount=100, max_amount=100000, priority=3),
)

# CPI releases and FOMC decisions
DEFAULT_VOLATILITY_CALENDAR: tuple[date, ...] = tuple(
    date.fromisoformat(d)
    for d in (
        "2025-06-11",
        "2025-06-18",
        "2025-07-15",
        "2025-07-30",
        "2025-08-12",
        "2025-09-17",
        "2025-10-29",
        "2025-12-10",
    )
)


class StrategyConfig(BaseModel):
    model_config = FROZEN

    # Sizing
    investment_amount: float = Field(default=10000.0, gt=0)
    allocation_fraction: float = Field(default=0.1, gt=0, le=1)
    put_call_balance: float = Field(default=-0.5, ge=-1, le=1)

    # Caps
    max_positions_per_pair: int = Field(default=10, ge=0)
    max_short_term_positions: int = Field(default=10, ge=0)
    max_total_positions: int = Field(default=30, ge=0)
    max_hedged_positions: int = Field(default=30, ge=0)

    # Expiry windows in hours (inclusive)
    expiry_hours: tuple[float, float] = (36, 350)
    short_term_expiry_hours: tuple[float, float] = (22, 37)

    # Safety filters
    abs_ratio_threshold: float = Field(default=3.0, gt=0)
    enforce_risk_buffer: bool = False

    short_term_roi: ShortTermCurveConfig = ShortTermCurveConfig()
    long_term_roi: LongTermCurveConfig = LongTermCurveConfig()
    min_roi: DayScaledFloorConfig = DayScaledFloorConfig(base=0.0075, per_day=0.001, cap=0.07)
    risk_buffer: DayScaledFloorConfig = DayScaledFloorConfig(base=3.0, per_day=0.25, cap=8.0)
    pressure: PressureConfig = PressureConfig()
    hedge: HedgeConfig = HedgeConfig()

    supported_assets: dict[str, SupportedAsset] = DEFAULT_SUPPORTED_ASSETS
    collateral_assets: tuple[CollateralAsset, ...] = DEFAULT_COLLATERAL
    stablecoins: frozenset[str] = frozenset({"USDT", "FDUSD"})
    volatility_calendar: tuple[date, ...] = DEFAULT_VOLATILITY_CALENDAR

    # Product fetching
    fetch_page_size: int = Field(default=20, ge=1, le=100)
    fetch_batch_size: int = Field(default=10, ge=1)

    @field_validator("expiry_hours", "short_term_expiry_hours")
    @classmethod
    def _validate_window(cls, value: tuple[float, float]) -> tuple[float, float]:
        low, high = value
        if low < 0 or low > high:
            raise ValueError("expiry window must be (low, high) with 0 <= low <= high")
        return value

    @field_validator("collateral_assets")
    @classmethod
    def _validate_unique_collateral(cls, value: tuple[CollateralAsset, ...]) -> tuple[CollateralAsset, ...]:
        coins = [asset.coin for asset in value]
        if len(coins) != len(set(coins)):
            raise ValueError("collateral coins must be unique")
        return value

    @model_validator(mode="after")
    def _validate_relationships(self):
        if self.short_term_expiry_hours[1] > self.expiry_hours[1]:
            raise ValueError("short-term window must end before the long-term window")
        return self

    def active_assets(self) -> dict[str, SupportedAsset]:
        return {pair: asset for pair, asset in self.supported_assets.items() if asset.active}
