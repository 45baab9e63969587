"""Selectors for the stock kernel (read side)."""

from stock_kernel.selectors.bom_selector import BomSelector
from stock_kernel.selectors.inventory_selector import InventorySelector
from stock_kernel.selectors.stage_selector import StageSelector

__all__ = [
    "BomSelector",
    "InventorySelector",
    "StageSelector",
]
