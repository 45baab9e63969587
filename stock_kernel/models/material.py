"""
Module: stock_kernel.models.material
Responsibility: ORM persistence for stock materials and their cached
    on-hand balance.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - qty_on_hand equals the sum of the material's StockMovement deltas.
      It is a materialized cache owned by the ledger: db/immutability.py
      rejects any flush that changes it outside a ledger write scope.
    - restock_threshold >= minimum_level (CHECK constraint on PostgreSQL,
      validated by the catalog service everywhere).
    - name is unique.

Failure modes:
    - BalanceOwnershipError if qty_on_hand is changed outside the ledger.
    - IntegrityError on duplicate name.
"""

from decimal import Decimal

from sqlalchemy import CheckConstraint, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import QuantityType, TrackedBase


class Material(TrackedBase):
    """
    A stocked raw material (fabric, thread, packaging...).

    The two thresholds drive alert classification: at or below
    minimum_level is critical, at or below restock_threshold is low.
    """

    __tablename__ = "materials"

    # SQLite stores quantities as text, so numeric CHECKs are PostgreSQL-only.
    __table_args__ = (
        CheckConstraint(
            "qty_on_hand >= 0", name="ck_material_qty_non_negative"
        ).ddl_if(dialect="postgresql"),
        CheckConstraint(
            "restock_threshold >= minimum_level", name="ck_material_threshold_order"
        ).ddl_if(dialect="postgresql"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    unit: Mapped[str] = mapped_column(String(50), nullable=False)
    qty_on_hand: Mapped[Decimal] = mapped_column(
        QuantityType(), nullable=False, default=Decimal("0")
    )
    minimum_level: Mapped[Decimal] = mapped_column(
        QuantityType(), nullable=False, default=Decimal("0")
    )
    restock_threshold: Mapped[Decimal] = mapped_column(
        QuantityType(), nullable=False, default=Decimal("0")
    )
    supplier: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    def __repr__(self) -> str:
        return f"<Material {self.name}: {self.qty_on_hand} {self.unit}>"
