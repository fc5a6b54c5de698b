"""Hedge status and per-position hedge record."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from dualinvest.errors import InvalidHedgeTransition


class HedgeStatus(str, Enum):
    NONE = "NONE"
    STEP1 = "STEP1"  # Partially hedged
    FULL = "FULL"  # Fully hedged, terminal

    @property
    def rank(self) -> int:
        return _RANK[self]

    @property
    def is_hedged(self) -> bool:
        return self is not HedgeStatus.NONE


_RANK = {HedgeStatus.NONE: 0, HedgeStatus.STEP1: 1, HedgeStatus.FULL: 2}
_NEXT = {HedgeStatus.NONE: HedgeStatus.STEP1, HedgeStatus.STEP1: HedgeStatus.FULL}


def next_status(current: HedgeStatus) -> HedgeStatus | None:
    """The only status a position may move to from `current`, or None if terminal."""
    return _NEXT.get(current)


class HedgeRecord(BaseModel):
    """Mutable-by-replacement hedge state for one position."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    hedge_status: HedgeStatus = HedgeStatus.NONE
    first_breach_at: datetime | None = None
    last_hedge_at: datetime | None = None

    def start_breach(self, now: datetime) -> "HedgeRecord":
        return self.model_copy(update={"first_breach_at": now})

    def clear_breach(self) -> "HedgeRecord":
        return self.model_copy(update={"first_breach_at": None})

    def advance(self, target: HedgeStatus, now: datetime) -> "HedgeRecord":
        """Move to `target`; the single writer of `hedge_status`.

        Only one forward step is allowed. The breach timer is kept so a
        further escalation can still reference the original breach.
        """
        if next_status(self.hedge_status) is not target:
            raise InvalidHedgeTransition(
                f"cannot move hedge status {self.hedge_status.value} -> {target.value}"
            )
        return self.model_copy(update={"hedge_status": target, "last_hedge_at": now})
