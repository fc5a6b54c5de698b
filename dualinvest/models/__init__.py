"""Journal models."""

from dualinvest.models.cycle_log import CycleLog
from dualinvest.models.subscription_log import SubscriptionLog
from dualinvest.models.hedge_action import HedgeAction

__all__ = [
    "CycleLog",
    "SubscriptionLog",
    "HedgeAction",
]
