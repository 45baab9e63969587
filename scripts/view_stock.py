#!/usr/bin/env python3
"""
View material balances with their alert status, and recent movements.

Usage:
    python3 scripts/view_stock.py
    python3 scripts/view_stock.py --alerts-only
    python3 scripts/view_stock.py --movements 50 --reference <job id>
"""

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

W = 96


def _qty(value) -> str:
    return f"{value.normalize():,f}"


def main() -> int:
    parser = argparse.ArgumentParser(description="View stock balances and movements")
    parser.add_argument("--database-url", help="Overrides the configured database URL")
    parser.add_argument("--config", help="Path to a ledger config YAML file")
    parser.add_argument("--alerts-only", action="store_true", help="Only critical and low materials")
    parser.add_argument("--movements", type=int, default=20, help="Recent movements to show (0 = none)")
    parser.add_argument("--reference", help="Only movements for this reference")
    args = parser.parse_args()

    logging.disable(logging.CRITICAL)

    from dataclasses import replace

    from stock_config import get_active_config
    from stock_services import ProductionLedgerService

    config = get_active_config(args.config)
    if args.database_url:
        config = replace(config, database_url=args.database_url)

    try:
        ledger = ProductionLedgerService(config=config)
        materials = ledger.get_alerts() if args.alerts_only else ledger.list_materials()
    except Exception as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    print()
    print("=" * W)
    print("STOCK BALANCES".center(W))
    print("=" * W)
    if not materials:
        print("  No materials found. Run seed_stock_data.py first.")
    else:
        print(f"  {'Material':<34} {'On hand':>12} {'Unit':<8} {'Min':>8} {'Restock':>8}  Status")
        print(f"  {'-'*34} {'-'*12} {'-'*8} {'-'*8} {'-'*8}  {'-'*8}")
        for m in materials:
            print(
                f"  {m.name:<34} {_qty(m.qty_on_hand):>12} {m.unit:<8}"
                f" {_qty(m.minimum_level):>8} {_qty(m.restock_threshold):>8}  {m.status.value.upper()}"
            )

    if args.movements > 0:
        movements = ledger.list_movements(reference=args.reference, limit=args.movements)
        print()
        print("-" * W)
        print("RECENT MOVEMENTS".center(W))
        print("-" * W)
        if not movements:
            print("  No movements recorded.")
        for mv in movements:
            print(
                f"  {mv.created_at:%Y-%m-%d %H:%M}  {mv.movement_type:<10}"
                f" {_qty(mv.delta_qty):>12}  {mv.material_name:<30} {mv.reference}"
            )
    print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
