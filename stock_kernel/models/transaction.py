"""
Module: stock_kernel.models.transaction
Responsibility: ORM persistence for stock transactions and their line items.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - Idempotency key uniqueness: production deductions carry
      idempotency_key = "production_deduction:<reference>" under a UNIQUE
      constraint, so a job can be deducted at most once even when two
      callers race past the application-level lookup.
    - One line per material per transaction (UNIQUE on transaction/material).
    - Immutability: transactions and lines are append-only (ORM listeners
      in db/immutability.py).
    - Only completed transactions are ever persisted; a failed apply leaves
      no row behind.

Failure modes:
    - IntegrityError on duplicate idempotency_key (resolved by the ledger
      service to the winning transaction).
    - ImmutabilityViolationError on UPDATE/DELETE.

Audit relevance:
    A transaction plus its lines is the authoritative record of why a
    balance changed.  Lines store their own signed delta so later BOM edits
    never rewrite history.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import BigInteger, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import SYSTEM_ACTOR_ID, Base, QuantityType, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from stock_kernel.models.material import Material
    from stock_kernel.models.movement import StockMovement


class TransactionKind(str, Enum):
    """Why stock moved."""

    PURCHASE_ORDER = "purchase_order"
    PRODUCTION_DEDUCTION = "production_deduction"
    ADJUSTMENT = "adjustment"
    RETURN = "return"
    INITIAL_BALANCE = "initial_balance"


class TransactionStatus(str, Enum):
    """
    Outcome of an apply.

    FAILED exists for API completeness; a failed apply rolls back and
    nothing is persisted.
    """

    COMPLETED = "completed"
    FAILED = "failed"


# Kinds whose (kind, reference) pair is an idempotency key.
IDEMPOTENT_KINDS = frozenset({TransactionKind.PRODUCTION_DEDUCTION})


def make_idempotency_key(kind: str, reference: str) -> str:
    """Build the unique key stored for idempotent kinds."""
    return f"{TransactionKind(kind).value}:{reference}"


class StockTransaction(Base):
    """A completed, immutable batch of material balance changes."""

    __tablename__ = "stock_transactions"

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_stock_txn_idempotency"),
        Index("idx_stock_txn_kind_reference", "kind", "reference"),
        Index("idx_stock_txn_created_at", "created_at"),
    )

    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    reference: Mapped[str] = mapped_column(String(255), nullable=False)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransactionStatus.COMPLETED.value
    )
    idempotency_key: Mapped[str | None] = mapped_column(String(300), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    created_by_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, default=lambda: SYSTEM_ACTOR_ID
    )

    lines: Mapped[list["StockTransactionLine"]] = relationship(
        back_populates="transaction",
        lazy="selectin",
        order_by="StockTransactionLine.line_seq",
    )
    movements: Mapped[list["StockMovement"]] = relationship(
        back_populates="transaction",
        lazy="selectin",
    )

    @property
    def is_completed(self) -> bool:
        return self.status == TransactionStatus.COMPLETED.value

    @property
    def net_delta(self) -> Decimal:
        return sum((line.delta_qty for line in self.lines), Decimal("0"))

    def __repr__(self) -> str:
        return f"<StockTransaction {self.kind}:{self.reference} [{self.status}]>"


class StockTransactionLine(Base):
    """One material's signed delta within a transaction."""

    __tablename__ = "stock_transaction_lines"

    __table_args__ = (
        UniqueConstraint("transaction_id", "material_id", name="uq_stock_line_material"),
        UniqueConstraint("transaction_id", "line_seq", name="uq_stock_line_seq"),
        Index("idx_stock_line_material", "material_id"),
    )

    transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("stock_transactions.id"), nullable=False
    )
    material_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("materials.id"), nullable=False
    )
    delta_qty: Mapped[Decimal] = mapped_column(QuantityType(), nullable=False)
    line_seq: Mapped[int] = mapped_column(BigInteger, nullable=False)
    memo: Mapped[str | None] = mapped_column(String(500), nullable=True)

    transaction: Mapped[StockTransaction] = relationship(back_populates="lines")
    material: Mapped["Material"] = relationship(lazy="joined")

    def __repr__(self) -> str:
        return f"<StockTransactionLine #{self.line_seq} {self.material_id}: {self.delta_qty}>"
