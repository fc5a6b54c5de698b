"""Per-cycle state threaded through each stage of a cycle."""

from dataclasses import dataclass, field
from datetime import datetime

from dualinvest.config import Settings
from dualinvest.schemas.strategy import StrategyConfig
from dualinvest.services.journal import Journal
from dualinvest.services.ledger import ActivePosition, PositionLedger
from dualinvest.services.roi_curves import RoiPolicy
from dualinvest.services.telegram_bot import TelegramNotifier


@dataclass
class CycleContext:
    settings: Settings
    strategy: StrategyConfig
    policy: RoiPolicy
    client: object  # BinanceClient or a test double
    ledger: PositionLedger
    journal: Journal
    notifier: TelegramNotifier | None
    started_at: datetime
    positions: list[ActivePosition] = field(default_factory=list)
    positions_updated_at: datetime | None = None
    balances: dict[str, float] = field(default_factory=dict)
