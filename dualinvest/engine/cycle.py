"""Core trading cycle.

This is the coroutine the scheduler calls on each interval. It orchestrates:
position sync → stop-condition check → product fetch → filter/rank →
subscription → hedge evaluation → journal.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from dualinvest.config import Settings
from dualinvest.engine.context import CycleContext
from dualinvest.engine.hedge_monitor import monitor_and_hedge
from dualinvest.engine.position_sync import sync_positions
from dualinvest.errors import MissingCredentialsError
from dualinvest.schemas.strategy import StrategyConfig
from dualinvest.services.binance_client import BinanceClient
from dualinvest.services.collateral import CollateralResolver
from dualinvest.services.execution import ExecutionDispatcher
from dualinvest.services.journal import Journal
from dualinvest.services.ledger import PositionLedger
from dualinvest.services.market_data import assemble_snapshot
from dualinvest.services.product_filter import build_execution_list
from dualinvest.services.roi_curves import RoiPolicy
from dualinvest.services.stop_conditions import check_stop_conditions, count_hedged
from dualinvest.services.telegram_bot import TelegramNotifier, notify

logger = logging.getLogger(__name__)


@dataclass
class CycleResult:
    status: str  # "success", "error", "skipped", "timeout", "stopped"
    action: str | None = None
    message: str | None = None
    stop_reason: str | None = None
    candidates: int = 0
    subscriptions: int = 0
    hedges: int = 0


class CycleRunner:
    """Runs cycles one at a time; overlapping triggers are dropped."""

    def __init__(
        self,
        settings: Settings,
        strategy: StrategyConfig,
        ledger: PositionLedger,
        journal: Journal,
        notifier: TelegramNotifier | None = None,
        client_factory: Callable[[], object] | None = None,
        policy: RoiPolicy | None = None,
        on_stop: Callable[[str], None] | None = None,
    ):
        self.settings = settings
        self.strategy = strategy
        self.ledger = ledger
        self.journal = journal
        self.notifier = notifier
        self.policy = policy or RoiPolicy.from_strategy(strategy)
        self.on_stop = on_stop
        self._client_factory = client_factory or (lambda: BinanceClient.from_settings(settings))
        self._lock = asyncio.Lock()
        self._last_positions: list = []

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run_cycle(self) -> CycleResult:
        """Run one cycle, skipping if a prior cycle is still in flight."""
        if self._lock.locked():
            logger.warning("[cycle] Skipping overlapping cycle")
            self.journal.log_cycle(
                "skipped",
                action="cycle_skipped_overlap",
                message="Skipped cycle because previous run is still in progress",
            )
            return CycleResult(status="skipped", action="cycle_skipped_overlap")

        async with self._lock:
            started = time.monotonic()
            try:
                result = await asyncio.wait_for(
                    self._run_cycle_once(), timeout=self.settings.cycle_timeout_seconds
                )
            except asyncio.TimeoutError:
                message = f"Cycle exceeded {self.settings.cycle_timeout_seconds}s and was cancelled"
                logger.error(f"[cycle] {message}")
                result = CycleResult(status="timeout", message=message)
            except MissingCredentialsError as e:
                logger.error(f"[cycle] {e}")
                result = CycleResult(status="error", action="missing_credentials", message=str(e))
            except Exception as e:
                logger.error(f"[cycle] Cycle error: {e}", exc_info=True)
                result = CycleResult(status="error", message=str(e))
                await notify(self.notifier, f"Cycle ERROR: {e}")

            self.journal.log_cycle(
                result.status,
                action=result.action,
                active_positions=len(self._last_positions),
                hedged_positions=count_hedged(self._last_positions),
                candidates=result.candidates,
                subscriptions=result.subscriptions,
                hedges=result.hedges,
                duration_seconds=round(time.monotonic() - started, 3),
                message=result.stop_reason or result.message,
            )

        if result.stop_reason and self.on_stop is not None:
            self.on_stop(result.stop_reason)
        return result

    async def _run_cycle_once(self) -> CycleResult:
        if not self.settings.has_credentials:
            raise MissingCredentialsError("DI_API_KEY and DI_API_SECRET must be set")

        client = self._client_factory()
        ctx = CycleContext(
            settings=self.settings,
            strategy=self.strategy,
            policy=self.policy,
            client=client,
            ledger=self.ledger,
            journal=self.journal,
            notifier=self.notifier,
            started_at=datetime.now(timezone.utc),
        )
        try:
            return await self._run_stages(ctx)
        finally:
            self._last_positions = ctx.positions
            await client.close()

    async def _run_stages(self, ctx: CycleContext) -> CycleResult:
        logger.info("[cycle] Starting cycle")

        # Step 1: Reconcile positions; nothing else is safe without them
        if await sync_positions(ctx) is None:
            return CycleResult(status="error", action="position_sync_failed", message="Position fetch failed")

        # Step 2: Stop conditions gate new subscriptions only
        stop_reason = check_stop_conditions(ctx.positions, ctx.strategy)
        result = CycleResult(status="success", action="executed")
        if stop_reason is None:
            await self._run_execution(ctx, result)
        else:
            logger.warning(f"[cycle] Stop condition: {stop_reason}; skipping execution")
            result.status = "stopped"
            result.action = "stop_condition"
            result.stop_reason = stop_reason

        # Step 3: Hedge evaluation always runs
        outcomes = await monitor_and_hedge(ctx)
        result.hedges = sum(1 for o in outcomes if o.order_success)

        if stop_reason is not None:
            await notify(ctx.notifier, f"Stopping: {stop_reason}")
        logger.info(
            f"[cycle] Done: {len(ctx.positions)} active, {result.candidates} candidates, "
            f"{result.subscriptions} subscribed, {result.hedges} hedged"
        )
        return result

    async def _run_execution(self, ctx: CycleContext, result: CycleResult):
        products = await ctx.client.fetch_dual_investment_products(ctx.strategy)
        if not products:
            logger.info("[cycle] No products available")
            result.action = "no_products"
            return

        spot_prices = await ctx.client.fetch_spot_prices([p.pair for p in products], ctx.strategy.fetch_batch_size)
        snapshot = assemble_snapshot(products, spot_prices)
        if not snapshot:
            logger.error("[cycle] No products with valid spot prices")
            result.action = "no_spot_prices"
            return

        ranked = build_execution_list(snapshot, ctx.strategy, ctx.positions, datetime.now(timezone.utc), ctx.policy)
        result.candidates = len(ranked)
        if not ranked:
            logger.info("[cycle] No eligible products found")
            result.action = "no_candidates"
            return

        ctx.balances = await ctx.client.fetch_spot_balances()
        dispatcher = ExecutionDispatcher(
            client=ctx.client,
            resolver=CollateralResolver(ctx.client, ctx.strategy),
            journal=ctx.journal,
            strategy=ctx.strategy,
            notifier=ctx.notifier,
        )
        dispatch = await dispatcher.execute(ranked, mock=ctx.settings.dry_run, balances=ctx.balances)
        ctx.balances = dispatch.balances
        result.subscriptions = dispatch.subscribed
