"""Services for the stock kernel (write side)."""

from stock_kernel.services.catalog_service import MaterialCatalogService
from stock_kernel.services.deduction_service import (
    DeductionResult,
    DeductionService,
    DeductionStatus,
)
from stock_kernel.services.ledger_service import ApplyStatus, LedgerResult, StockLedgerService
from stock_kernel.services.stage_tracker import (
    StageHistoryTracker,
    StageTransitionResult,
    TransitionStatus,
)

__all__ = [
    "ApplyStatus",
    "DeductionResult",
    "DeductionService",
    "DeductionStatus",
    "LedgerResult",
    "MaterialCatalogService",
    "StageHistoryTracker",
    "StageTransitionResult",
    "StockLedgerService",
    "TransitionStatus",
]
