"""
Stock alert classification.

Pure functions mapping a balance and its two thresholds onto an alert
status.  Status is always derived on read and never stored, so it can
never disagree with the authoritative balance.
"""

from decimal import Decimal
from enum import Enum
from typing import Protocol


class StockStatus(str, Enum):
    """Alert level of a material balance."""

    CRITICAL = "critical"
    LOW = "low"
    OK = "ok"

    @property
    def severity(self) -> int:
        """0 is most severe; used to sort alert lists."""
        return _SEVERITY[self]

    @property
    def is_alert(self) -> bool:
        return self is not StockStatus.OK


_SEVERITY = {
    StockStatus.CRITICAL: 0,
    StockStatus.LOW: 1,
    StockStatus.OK: 2,
}


class HasStockLevels(Protocol):
    qty_on_hand: Decimal
    minimum_level: Decimal
    restock_threshold: Decimal


def classify_levels(
    qty_on_hand: Decimal,
    minimum_level: Decimal,
    restock_threshold: Decimal,
) -> StockStatus:
    """
    Classify a balance against its thresholds.

    qty_on_hand <= minimum_level is CRITICAL; otherwise
    qty_on_hand <= restock_threshold is LOW; otherwise OK.
    """
    if qty_on_hand <= minimum_level:
        return StockStatus.CRITICAL
    if qty_on_hand <= restock_threshold:
        return StockStatus.LOW
    return StockStatus.OK


def classify(material: HasStockLevels) -> StockStatus:
    """Classify a material (ORM row or snapshot DTO)."""
    return classify_levels(
        material.qty_on_hand,
        material.minimum_level,
        material.restock_threshold,
    )
