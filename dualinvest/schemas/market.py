"""Pydantic schemas for exchange-provided dual investment products and positions."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

API_MODEL = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True, extra="ignore")


class OptionType(str, Enum):
    PUT = "PUT"
    CALL = "CALL"


def pair_symbol(option_type: OptionType, exercised_coin: str, invest_coin: str) -> str:
    """Spot symbol of the underlying, always base/quote (e.g. BTCUSDT)."""
    if option_type == OptionType.PUT:
        return f"{exercised_coin}{invest_coin}"
    return f"{invest_coin}{exercised_coin}"


def ms_to_datetime(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def rounded_hours_until(settle_date: int, now: datetime) -> int:
    """Whole hours to settlement, rounded half-up."""
    hours = (settle_date - now.timestamp() * 1000) / 3_600_000
    return int(hours + 0.5) if hours >= 0 else -int(-hours + 0.5)


class Product(BaseModel):
    """One dual investment offer from the product list endpoint."""

    model_config = API_MODEL

    id: str
    order_id: str | None = None
    option_type: OptionType
    exercised_coin: str
    invest_coin: str
    strike_price: float = Field(gt=0)
    apr: float = Field(ge=0)  # Annualized, decimal (0.2 = 20%)
    duration: int | None = None
    settle_date: int  # Epoch milliseconds
    underlying: str | None = None
    settle_coin: str | None = None
    can_purchase: bool = True
    spot_price: float | None = None

    @field_validator("id", "order_id", mode="before")
    @classmethod
    def _coerce_id(cls, value):
        return None if value is None else str(value)

    @property
    def pair(self) -> str:
        return pair_symbol(self.option_type, self.exercised_coin, self.invest_coin)

    @property
    def settle_datetime(self) -> datetime:
        return ms_to_datetime(self.settle_date)

    def hours_to_expiry(self, now: datetime) -> int:
        return rounded_hours_until(self.settle_date, now)


class Position(BaseModel):
    """An open, exchange-confirmed dual investment position."""

    model_config = API_MODEL

    id: str
    order_id: str | None = None
    option_type: OptionType
    exercised_coin: str
    invest_coin: str
    subscription_amount: float = Field(gt=0)
    strike_price: float = Field(gt=0)
    apr: float = Field(ge=0)
    duration: int = Field(default=0, ge=0)  # Days
    settle_date: int
    purchase_status: str = "PURCHASE_SUCCESS"

    @field_validator("id", "order_id", mode="before")
    @classmethod
    def _coerce_id(cls, value):
        return None if value is None else str(value)

    @property
    def pair(self) -> str:
        return pair_symbol(self.option_type, self.exercised_coin, self.invest_coin)

    @property
    def roi(self) -> float:
        """Total yield over the term, in percent."""
        return self.apr * 100 * self.duration / 365

    def hours_to_expiry(self, now: datetime) -> int:
        return rounded_hours_until(self.settle_date, now)

    def base_notional(self) -> float:
        """Position size in units of the underlying's base coin."""
        if self.option_type == OptionType.PUT:
            return self.subscription_amount / self.strike_price
        return self.subscription_amount
