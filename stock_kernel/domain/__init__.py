"""Pure domain layer for the stock kernel (no I/O)."""

from stock_kernel.domain.bom import (
    BomLine,
    BomResolution,
    Component,
    DeductionPlan,
    MissingBom,
    Resolved,
    coalesce_deltas,
    plan_deduction,
    resolve_bom,
)
from stock_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from stock_kernel.domain.dtos import (
    BalanceDiscrepancy,
    LineItemSpec,
    MaterialSnapshot,
    MovementRecord,
    ProductLine,
    StageInterval,
    TransactionRecord,
    parse_product_list,
)
from stock_kernel.domain.stages import CANONICAL_STAGES, normalize_stage
from stock_kernel.domain.stock_status import StockStatus, classify, classify_levels

__all__ = [
    "BalanceDiscrepancy",
    "BomLine",
    "BomResolution",
    "CANONICAL_STAGES",
    "Clock",
    "Component",
    "DeductionPlan",
    "DeterministicClock",
    "LineItemSpec",
    "MaterialSnapshot",
    "MissingBom",
    "MovementRecord",
    "ProductLine",
    "Resolved",
    "StageInterval",
    "StockStatus",
    "SystemClock",
    "TransactionRecord",
    "classify",
    "classify_levels",
    "coalesce_deltas",
    "normalize_stage",
    "parse_product_list",
    "plan_deduction",
    "resolve_bom",
]
