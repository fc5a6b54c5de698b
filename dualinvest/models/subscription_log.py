"""SubscriptionLog model: every dual investment subscription attempt."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class SubscriptionLog(SQLModel, table=True):
    __tablename__ = "subscription_log"

    id: int | None = Field(default=None, primary_key=True)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    product_id: str = Field(index=True)
    pair: str
    option_type: str  # "PUT" or "CALL"
    strike_price: float
    apr: float
    settle_date: int  # Epoch milliseconds
    deposit_coin: str
    deposit_amount: float
    actual_roi: float | None = None
    target_roi: float | None = None
    borrowed_amount: float | None = None
    collateral_coin: str | None = None
    status: str  # "success", "failed", "mock", "skipped"
    is_retry: bool = False
    position_id: str | None = None
    error_code: int | None = None
    message: str | None = None
