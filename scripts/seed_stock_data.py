#!/usr/bin/env python3
"""
Seed the database with demo materials, recipes and jobs.

Drops and recreates the ledger tables, books opening balances through
initial_balance transactions, loads the sportswear BOM, creates three
jobs and walks them through the production stages.  Moving a job into
printing deducts its materials.

Usage:
    python3 scripts/seed_stock_data.py
    python3 scripts/seed_stock_data.py --database-url sqlite:///demo.db
"""

import argparse
import logging
import sys
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

# ---------------------------------------------------------------------------
# Demo data
# ---------------------------------------------------------------------------
# name, unit, opening qty, minimum level, restock threshold, supplier
MATERIALS = [
    ("Polyester Fabric (Navy)", "meters", 1000, 60, 90, "Cape Textile Supply"),
    ("Polyester Fabric (White)", "meters", 1000, 50, 80, "Cape Textile Supply"),
    ("Spandex Blend (Black)", "meters", 1000, 40, 65, "Jozi Sports Fabrics"),
    ("Rib Collar Material", "meters", 1000, 20, 30, "TrimCo SA"),
    ("Thread (Poly Core)", "units", 1000, 30, 45, "SewPro Distributors"),
    ("Elastic Waistband", "meters", 1000, 20, 30, "TrimCo SA"),
    ("Packaging Bags (Large)", "units", 1000, 80, 120, "PackRight"),
]

# product type -> size -> [(material name, qty per unit)]
BOM = {
    "Rugby Jersey": {
        "S": [("Polyester Fabric (Navy)", "1.2"), ("Rib Collar Material", "0.15"), ("Thread (Poly Core)", "0.05")],
        "M": [("Polyester Fabric (Navy)", "1.35"), ("Rib Collar Material", "0.15"), ("Thread (Poly Core)", "0.06")],
        "L": [("Polyester Fabric (Navy)", "1.5"), ("Rib Collar Material", "0.18"), ("Thread (Poly Core)", "0.07")],
    },
    "Netball Dress": {
        "S": [("Polyester Fabric (White)", "1.1"), ("Spandex Blend (Black)", "0.25"), ("Thread (Poly Core)", "0.05")],
        "M": [("Polyester Fabric (White)", "1.25"), ("Spandex Blend (Black)", "0.28"), ("Thread (Poly Core)", "0.06")],
        "L": [("Polyester Fabric (White)", "1.4"), ("Spandex Blend (Black)", "0.32"), ("Thread (Poly Core)", "0.07")],
    },
    "Shorts": {
        "S": [("Spandex Blend (Black)", "0.75"), ("Elastic Waistband", "0.35"), ("Thread (Poly Core)", "0.03")],
        "M": [("Spandex Blend (Black)", "0.85"), ("Elastic Waistband", "0.38"), ("Thread (Poly Core)", "0.04")],
        "L": [("Spandex Blend (Black)", "0.95"), ("Elastic Waistband", "0.42"), ("Thread (Poly Core)", "0.05")],
    },
    "Packaging": {
        None: [("Packaging Bags (Large)", "1")],
    },
}

# name, product list, stages visited (hours after the first entry)
JOBS = [
    (
        "Harlequins U16 Kit",
        [
            {"product_type": "Rugby Jersey", "size": "M", "quantity": 20},
            {"product_type": "Shorts", "size": "M", "quantity": 20},
            {"product_type": "Packaging", "size": None, "quantity": 20},
        ],
        [("orders", 0), ("layouts_busy", 6), ("printing", 30), ("pressing", 40),
         ("cleaning & packing", 52), ("completed", 70)],
    ),
    (
        "Pinelands Netball Club",
        [
            {"product_type": "Netball Dress", "size": "S", "quantity": 8},
            {"product_type": "Netball Dress", "size": "L", "quantity": 4},
            {"product_type": "Packaging", "size": None, "quantity": 12},
        ],
        [("orders", 0), ("awaiting color match", 10), ("printing", 26)],
    ),
    (
        "Old Boys Touring Side",
        [
            {"product_type": "Rugby Jersey", "size": "XL", "quantity": 15},
        ],
        [("orders", 0)],
    ),
]


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--database-url", help="Overrides the configured database URL")
    parser.add_argument("--config", help="Path to a ledger config YAML file")
    args = parser.parse_args()

    logging.disable(logging.CRITICAL)

    from dataclasses import replace

    from stock_config import get_active_config
    from stock_kernel.db.engine import (
        create_tables,
        drop_tables,
        get_session_factory,
        init_engine_from_url,
    )
    from stock_kernel.domain.clock import DeterministicClock
    from stock_services import ProductionLedgerService

    config = get_active_config(args.config)
    if args.database_url:
        config = replace(config, database_url=args.database_url)

    print()
    print(f"  [1/4] Connecting to {config.database_url} ...")
    try:
        init_engine_from_url(config.database_url, echo=False)
    except Exception as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    print("  [2/4] Dropping old tables and recreating schema...")
    drop_tables()
    create_tables()

    start = datetime.now(UTC).replace(microsecond=0) - timedelta(days=5)
    clock = DeterministicClock(start)
    ledger = ProductionLedgerService(get_session_factory(), config=config, clock=clock)

    print("  [3/4] Creating materials and recipes...")
    material_ids = {}
    for name, unit, opening, minimum, restock, supplier in MATERIALS:
        snapshot = ledger.create_material(
            name,
            unit,
            opening_qty=opening,
            minimum_level=minimum,
            restock_threshold=restock,
            supplier=supplier,
        )
        material_ids[name] = snapshot.id

    bom_rows = 0
    for product_type, sizes in BOM.items():
        for size, components in sizes.items():
            for material_name, qty in components:
                ledger.set_bom_entry(product_type, size, material_ids[material_name], Decimal(qty))
                bom_rows += 1
    print(f"        {len(material_ids)} materials, {bom_rows} BOM rows")

    print("  [4/4] Creating jobs and moving them through production...")
    for name, products, stages in JOBS:
        job_id = ledger.create_job(name, products)
        first = clock.now()
        for stage, hours in stages:
            outcome = ledger.transition_stage(job_id, stage, at=first + timedelta(hours=hours))
            if outcome.deduction is not None:
                missing = ", ".join(str(m) for m in outcome.deduction.missing_bom)
                print(
                    f"        {name}: {outcome.deduction.status.value}"
                    f" ({len(outcome.deduction.line_items)} lines)"
                    + (f"; missing BOM: {missing}" if missing else "")
                )
            if outcome.deduction_error is not None:
                print(f"        {name}: deduction failed: {outcome.deduction_error}")
        clock.advance_hours(12)

    discrepancies = ledger.verify_balances()
    print()
    print(f"  Done. Balance check: {'OK' if not discrepancies else f'{len(discrepancies)} discrepancies'}")
    return 0 if not discrepancies else 1


if __name__ == "__main__":
    sys.exit(main())
