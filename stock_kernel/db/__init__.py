"""Database layer - engine, base classes, types, and immutability."""

from stock_kernel.db.base import (
    SYSTEM_ACTOR_ID,
    UUID,
    Base,
    QuantityType,
    TrackedBase,
    UTCDateTime,
    UUIDString,
)
from stock_kernel.db.engine import create_tables, get_engine, get_session, session_scope
from stock_kernel.db.types import Quantity, quantity_from_value, round_quantity

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UTCDateTime",
    "QuantityType",
    "UUID",
    "SYSTEM_ACTOR_ID",
    "Quantity",
    "quantity_from_value",
    "round_quantity",
]
