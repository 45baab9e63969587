"""ORM models for the stock kernel."""

from stock_kernel.models.bom import BomEntry
from stock_kernel.models.job import Job, StageHistoryEntry
from stock_kernel.models.material import Material
from stock_kernel.models.movement import MovementType, StockMovement
from stock_kernel.models.transaction import (
    IDEMPOTENT_KINDS,
    StockTransaction,
    StockTransactionLine,
    TransactionKind,
    TransactionStatus,
    make_idempotency_key,
)

__all__ = [
    "BomEntry",
    "IDEMPOTENT_KINDS",
    "Job",
    "Material",
    "MovementType",
    "StageHistoryEntry",
    "StockMovement",
    "StockTransaction",
    "StockTransactionLine",
    "TransactionKind",
    "TransactionStatus",
    "make_idempotency_key",
]
