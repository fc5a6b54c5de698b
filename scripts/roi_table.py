#!/usr/bin/env python3
"""Print the configured ROI thresholds per day, for tuning the strategy.

Usage:
    python scripts/roi_table.py [active_positions] [duplicates]

Columns are percentages. `long_adj` and `short_adj` include position pressure
for the given counts.
"""

import sys

import pandas as pd

from dualinvest.config import get_strategy
from dualinvest.services.product_filter import pressure_multiplier
from dualinvest.services.roi_curves import RoiPolicy


def build_table(active_positions: int = 0, duplicates: int = 0, max_days: int = 21) -> pd.DataFrame:
    strategy = get_strategy()
    policy = RoiPolicy.from_strategy(strategy)
    long_mult = pressure_multiplier(strategy.pressure.long_term_step, active_positions)
    short_mult = pressure_multiplier(strategy.pressure.short_term_step, duplicates)

    rows = []
    for day in range(1, max_days + 1):
        long_target = policy.long_term_target(day)
        rows.append({
            "day": day,
            "hours": day * 24,
            "short": policy.short_term_target(day),
            "short_adj": policy.short_term_target(day) * short_mult,
            "long": long_target,
            "long_adj": long_target * long_mult,
            "min_roi": policy.minimum_roi(day),
            "long_minus_min": long_target - policy.minimum_roi(day),
            "risk_buffer": policy.risk_buffer(day),
        })
    return pd.DataFrame(rows).set_index("day")


def main():
    active = int(sys.argv[1]) if len(sys.argv) > 1 else 0
    duplicates = int(sys.argv[2]) if len(sys.argv) > 2 else 0
    table = build_table(active, duplicates)
    print(f"ROI thresholds (%) with {active} active positions, {duplicates} duplicates")
    print(table.round(4).to_string())


if __name__ == "__main__":
    main()
