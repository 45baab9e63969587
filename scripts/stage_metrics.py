#!/usr/bin/env python3
"""
Report production stage durations.

Shows average time jobs have spent in their current stage, average
fulfillment time (first stage entry to delivery) for jobs delivered in
the lookback window, the configured sub-phases, and per-stage averages
of completed intervals.

Usage:
    python3 scripts/stage_metrics.py
    python3 scripts/stage_metrics.py --days 90
"""

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

W = 72


def main() -> int:
    parser = argparse.ArgumentParser(description="Production stage duration report")
    parser.add_argument("--database-url", help="Overrides the configured database URL")
    parser.add_argument("--config", help="Path to a ledger config YAML file")
    parser.add_argument("--days", type=int, help="Lookback window in days (default from config)")
    args = parser.parse_args()

    logging.disable(logging.CRITICAL)

    from dataclasses import replace
    from datetime import UTC, datetime

    from stock_config import get_active_config
    from stock_engines.durations import MetricsWindow, format_duration
    from stock_kernel.domain.stages import stage_label
    from stock_services import ProductionLedgerService

    config = get_active_config(args.config)
    if args.database_url:
        config = replace(config, database_url=args.database_url)
    days = args.days or config.metrics_lookback_days

    try:
        ledger = ProductionLedgerService(config=config)
        metrics = ledger.get_duration_metrics(MetricsWindow.trailing(datetime.now(UTC), days))
    except Exception as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    print()
    print("=" * W)
    print(f"PRODUCTION TIMING (last {days} days)".center(W))
    print("=" * W)
    current = metrics.current_stage
    print(f"  Fulfillment (order -> delivered): {format_duration(metrics.fulfillment.average_seconds):>10}"
          f"   ({metrics.fulfillment.sample_count} jobs)")
    for phase in metrics.sub_phases:
        print(f"  {phase.stage:<33} {format_duration(phase.average_seconds):>10}"
              f"   ({phase.sample_count} jobs)")
    print(f"  {'Avg in current stage':<33} {format_duration(current.average_seconds):>10}"
          f"   ({current.open_total} open)")

    print()
    print(f"  {'Stage':<36} {'Open':>5} {'In stage':>10} {'Completed avg':>14}")
    print(f"  {'-'*36} {'-'*5} {'-'*10} {'-'*14}")
    in_stage = {s.stage: s for s in current.by_stage}
    completed = {s.stage: s for s in metrics.completed_stages}
    stages = list(dict.fromkeys([*current.open_counts, *completed]))
    for stage in stages:
        open_avg = in_stage.get(stage)
        done_avg = completed.get(stage)
        print(
            f"  {stage_label(stage):<36} {current.open_counts.get(stage, 0):>5}"
            f" {format_duration(open_avg.average_seconds if open_avg else None):>10}"
            f" {format_duration(done_avg.average_seconds if done_avg else None):>14}"
        )
    print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
