"""Service entry point: one cycle at startup, then one every interval until stopped."""

import asyncio
import logging
import signal

from dualinvest.config import Settings, get_strategy, settings
from dualinvest.database import create_db_and_tables, create_db_engine
from dualinvest.engine.cycle import CycleResult, CycleRunner
from dualinvest.engine.scheduler import CycleScheduler
from dualinvest.services.journal import Journal
from dualinvest.services.ledger import PositionLedger
from dualinvest.services.telegram_bot import init_notifier
from dualinvest.utils.logging import setup_logging

logger = logging.getLogger(__name__)


def build_runner(app_settings: Settings, on_stop=None) -> CycleRunner:
    db_engine = create_db_engine(app_settings.database_url)
    create_db_and_tables(db_engine)
    return CycleRunner(
        settings=app_settings,
        strategy=get_strategy(),
        ledger=PositionLedger(app_settings.ledger_path),
        journal=Journal(db_engine),
        notifier=init_notifier(app_settings),
        on_stop=on_stop,
    )


async def run_once(app_settings: Settings = settings) -> CycleResult:
    runner = build_runner(app_settings)
    try:
        return await runner.run_cycle()
    finally:
        if runner.notifier is not None:
            await runner.notifier.close()


async def run_service(app_settings: Settings = settings) -> int:
    """Run until a signal or a stop condition. Returns the process exit code."""
    stop_event = asyncio.Event()
    stop_reasons: list[str] = []

    def request_stop(reason: str):
        stop_reasons.append(reason)
        stop_event.set()

    runner = build_runner(app_settings, on_stop=request_stop)
    scheduler = CycleScheduler(runner, app_settings.cycle_interval_minutes)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, request_stop, f"received {sig.name}")

    logger.info(f"Starting dual investment engine (dry_run={app_settings.dry_run})")
    await runner.run_cycle()
    if not stop_event.is_set():
        scheduler.start()

    await stop_event.wait()
    logger.info(f"Shutting down: {stop_reasons[0]}")
    scheduler.stop()
    # Let an in-flight cycle finish its writes
    while runner.running:
        await asyncio.sleep(0.5)
    if runner.notifier is not None:
        await runner.notifier.close()
    return 0


def main() -> int:
    setup_logging(settings.log_level, settings.log_file)
    return asyncio.run(run_service())


if __name__ == "__main__":
    raise SystemExit(main())
