"""
Module: stock_kernel.models.movement
Responsibility: ORM persistence for the append-only stock movement log.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One movement per transaction line, never updated or deleted
      (ORM listeners in db/immutability.py).
    - For every material, the sum of movement deltas equals qty_on_hand.
      The movement log is the source of truth; the balance is a cache.

Audit relevance:
    Movements carry the actor, reference and notes that explain each change
    and are what the balance verification selector replays.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import SYSTEM_ACTOR_ID, Base, QuantityType, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from stock_kernel.models.material import Material
    from stock_kernel.models.transaction import StockTransaction


class MovementType(str, Enum):
    """Audit classification of a movement."""

    CONSUMED = "consumed"
    RESTOCKED = "restocked"
    AUDIT = "audit"


class StockMovement(Base):
    """A single signed balance change for one material."""

    __tablename__ = "stock_movements"

    __table_args__ = (
        Index("idx_stock_movement_material_created", "material_id", "created_at"),
        Index("idx_stock_movement_transaction", "transaction_id"),
    )

    material_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("materials.id"), nullable=False
    )
    transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("stock_transactions.id"), nullable=False
    )
    delta_qty: Mapped[Decimal] = mapped_column(QuantityType(), nullable=False)
    movement_type: Mapped[str] = mapped_column(String(20), nullable=False)
    reference: Mapped[str] = mapped_column(String(255), nullable=False)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, default=lambda: SYSTEM_ACTOR_ID
    )

    transaction: Mapped["StockTransaction"] = relationship(back_populates="movements")
    material: Mapped["Material"] = relationship(lazy="joined")

    def __repr__(self) -> str:
        return f"<StockMovement {self.movement_type} {self.material_id}: {self.delta_qty}>"
