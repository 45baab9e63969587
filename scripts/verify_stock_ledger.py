#!/usr/bin/env python3
"""
Check that every material's balance equals the sum of its movements.

Exit code 0 when the ledger is consistent, 1 when any material disagrees
with its movement log (or the database cannot be reached).

Usage:
    python3 scripts/verify_stock_ledger.py
    python3 scripts/verify_stock_ledger.py --database-url postgresql://...
"""

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def main() -> int:
    parser = argparse.ArgumentParser(description="Verify stock balances against the movement log")
    parser.add_argument("--database-url", help="Overrides the configured database URL")
    parser.add_argument("--config", help="Path to a ledger config YAML file")
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
        discrepancies = ledger.verify_balances()
        material_count = len(ledger.list_materials())
    except Exception as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    print()
    if not discrepancies:
        print(f"  OK: {material_count} materials match their movement log.")
        return 0

    print(f"  FAIL: {len(discrepancies)} of {material_count} materials disagree with their movements.")
    print(f"  {'Material':<34} {'On hand':>14} {'Movements':>14} {'Difference':>14}")
    for d in discrepancies:
        print(
            f"  {d.material_name:<34} {d.qty_on_hand:>14} {d.movement_total:>14} {d.difference:>14}"
        )
    return 1


if __name__ == "__main__":
    sys.exit(main())
