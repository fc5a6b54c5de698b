"""CLI tool for running and maintaining the engine.

Usage:
    python -m dualinvest.cli run
    python -m dualinvest.cli run-once
    python -m dualinvest.cli prune-ledger <days>
"""

import asyncio
import sys
from datetime import datetime, timedelta, timezone

from dualinvest.config import settings
from dualinvest.main import run_once, run_service
from dualinvest.services.ledger import PositionLedger
from dualinvest.utils.logging import setup_logging

COMMANDS = "run, run-once, prune-ledger <days>"


def prune_ledger(days: int) -> int:
    """Drop closed ledger entries older than `days`."""
    ledger = PositionLedger(settings.ledger_path)
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    removed = ledger.prune(cutoff)
    print(f"Pruned {removed} closed entries older than {days} days from {settings.ledger_path}")
    return removed


def main():
    if len(sys.argv) < 2:
        print("Usage: python -m dualinvest.cli <command>")
        print(f"Commands: {COMMANDS}")
        sys.exit(1)

    setup_logging(settings.log_level, settings.log_file)
    command = sys.argv[1]
    if command == "run":
        sys.exit(asyncio.run(run_service()))
    elif command == "run-once":
        result = asyncio.run(run_once())
        print(f"Cycle finished: {result.status}" + (f" ({result.message})" if result.message else ""))
        sys.exit(0 if result.status in ("success", "stopped") else 1)
    elif command == "prune-ledger":
        if len(sys.argv) < 3 or not sys.argv[2].isdigit():
            print("Usage: python -m dualinvest.cli prune-ledger <days>")
            sys.exit(1)
        prune_ledger(int(sys.argv[2]))
    else:
        print(f"Unknown command: {command}")
        sys.exit(1)


if __name__ == "__main__":
    main()
