"""
Module: stock_kernel.models.bom
Responsibility: ORM persistence for bill-of-materials rows.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per (product_type, size, material).  Two indexes cover this
      because SQL UNIQUE treats NULL sizes as distinct: a plain unique
      constraint for sized rows and a partial unique index for the generic
      (size IS NULL) recipe.
    - qty_per_unit is stored exactly; history never depends on it because
      transaction lines and movements store their own deltas.
"""

from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import QuantityType, TrackedBase, UUIDString

if TYPE_CHECKING:
    from stock_kernel.models.material import Material


class BomEntry(TrackedBase):
    """
    One material requirement of a product recipe.

    size = None is the generic recipe for the product type, used whenever
    no row exists for the ordered size.
    """

    __tablename__ = "bom_entries"

    __table_args__ = (
        UniqueConstraint(
            "product_type", "size", "material_id", name="uq_bom_product_size_material"
        ),
        Index(
            "uq_bom_generic_material",
            "product_type",
            "material_id",
            unique=True,
            sqlite_where=text("size IS NULL"),
            postgresql_where=text("size IS NULL"),
        ),
        Index("idx_bom_product_size", "product_type", "size"),
    )

    product_type: Mapped[str] = mapped_column(String(255), nullable=False)
    size: Mapped[str | None] = mapped_column(String(50), nullable=True)
    material_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("materials.id"), nullable=False
    )
    qty_per_unit: Mapped[Decimal] = mapped_column(QuantityType(), nullable=False)

    material: Mapped["Material"] = relationship(lazy="joined")

    @property
    def is_generic(self) -> bool:
        return self.size is None

    def __repr__(self) -> str:
        size = self.size or "generic"
        return f"<BomEntry {self.product_type}/{size}: {self.qty_per_unit} x {self.material_id}>"
