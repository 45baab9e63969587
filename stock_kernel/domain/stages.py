"""
Production stage vocabulary and label normalization.

Responsibility:
    Canonical stage keys, display labels, and the normalization applied to
    stage labels arriving from the job board before they reach the tracker.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Normalization:
    "Cleaning & Packing " -> "cleaning_and_packing" (key form), then the
    alias table maps legacy keys such as "completed" onto canonical ones.
    Keys that are neither canonical nor aliased are returned as-is in key
    form; the tracker records whatever label it is given.
"""

import re
from collections.abc import Mapping

from stock_kernel.exceptions import InvalidStageError

CANONICAL_STAGES: tuple[str, ...] = (
    "orders_awaiting_confirmation",
    "layouts_busy_colline",
    "layouts_busy_elzana",
    "awaiting_color_match",
    "layouts_done_awaiting_approval",
    "printing",
    "pressing",
    "cmt",
    "cleaning_packing",
    "ready_for_delivery_collection",
    "delivered_collected",
)

STAGE_LABELS: dict[str, str] = {
    "orders_awaiting_confirmation": "Orders Awaiting Confirmation",
    "layouts_busy_colline": "Layouts Busy (Colliné)",
    "layouts_busy_elzana": "Layouts Busy (Elzana)",
    "awaiting_color_match": "Awaiting Color Match",
    "layouts_done_awaiting_approval": "Layouts Done (Awaiting Approval)",
    "printing": "Printing",
    "pressing": "Pressing",
    "cmt": "CMT",
    "cleaning_packing": "Cleaning & Packing",
    "ready_for_delivery_collection": "Ready for Delivery/Collection",
    "delivered_collected": "Delivered/Collected",
}

DEFAULT_STAGE_ALIASES: dict[str, str] = {
    "layouts_busy": "layouts_busy_colline",
    "layouts_received": "layouts_done_awaiting_approval",
    "orders": "orders_awaiting_confirmation",
    "supplier_orders": "orders_awaiting_confirmation",
    "no_invoice_number": "orders_awaiting_confirmation",
    "out_for_delivery": "ready_for_delivery_collection",
    "completed": "delivered_collected",
    "full_payment_before_collection": "ready_for_delivery_collection",
    "full_payment_before_delivery": "ready_for_delivery_collection",
    "cleaning_and_packing": "cleaning_packing",
}

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def stage_key(label: str) -> str:
    """Reduce a free-form label to snake_case key form."""
    key = label.strip().lower().replace("&", "and")
    return _NON_ALNUM.sub("_", key).strip("_")


def normalize_stage(
    label: object,
    aliases: Mapping[str, str] | None = None,
) -> str:
    """
    Normalize a stage label to its canonical key.

    Raises:
        InvalidStageError: if the label is None, not a string, or reduces
            to an empty key.
    """
    if not isinstance(label, str):
        raise InvalidStageError(label)
    key = stage_key(label)
    if not key:
        raise InvalidStageError(label)
    table = DEFAULT_STAGE_ALIASES if aliases is None else aliases
    return table.get(key, key)


def stage_label(key: str) -> str:
    """Human-readable label, falling back to the key itself."""
    return STAGE_LABELS.get(key, key)
