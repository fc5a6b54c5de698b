"""HedgeAction model: every hedge order attempted for a position."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class HedgeAction(SQLModel, table=True):
    __tablename__ = "hedge_action"

    id: int | None = Field(default=None, primary_key=True)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    position_id: str = Field(index=True)
    symbol: str
    option_type: str
    from_status: str
    target_status: str  # "STEP1" or "FULL"
    side: str  # "BUY" or "SELL"
    fraction: float
    quantity: float
    spot_price: float
    break_even: float
    success: bool
    order_id: str | None = None
    filled_quantity: float | None = None
    error: str | None = None
