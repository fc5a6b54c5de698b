"""Pydantic schema for one entry of the position ledger file."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from dualinvest.schemas.hedge import HedgeRecord, HedgeStatus
from dualinvest.schemas.market import OptionType, Position


class LedgerEntry(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    symbol: str
    option_type: OptionType
    strike_price: float
    amount: float
    roi: float
    time_to_settle: int  # Hours, as of last_updated
    hedge_status: HedgeStatus = HedgeStatus.NONE
    created_at: datetime
    last_updated: datetime
    first_breach_at: datetime | None = None
    last_hedge_at: datetime | None = None
    closed_at: datetime | None = None

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None

    def record(self) -> HedgeRecord:
        return HedgeRecord(
            hedge_status=self.hedge_status,
            first_breach_at=self.first_breach_at,
            last_hedge_at=self.last_hedge_at,
        )

    @classmethod
    def from_position(
        cls,
        position: Position,
        record: HedgeRecord,
        created_at: datetime,
        now: datetime,
    ) -> "LedgerEntry":
        return cls(
            id=position.id,
            symbol=position.pair,
            option_type=position.option_type,
            strike_price=position.strike_price,
            amount=position.subscription_amount,
            roi=position.roi,
            time_to_settle=position.hours_to_expiry(now),
            hedge_status=record.hedge_status,
            created_at=created_at,
            last_updated=now,
            first_breach_at=record.first_breach_at,
            last_hedge_at=record.last_hedge_at,
        )
