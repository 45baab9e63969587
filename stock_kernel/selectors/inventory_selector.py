"""
Module: stock_kernel.selectors.inventory_selector
Responsibility: Read-only queries over materials, transactions and the
    movement log: balances, alerts, history, and balance verification.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Alert status is derived on read via classify(); never stored.
    - Quantity aggregation happens in Python on Decimal values; SQLite
      stores quantities as text and would coerce a SQL SUM to float.

Audit relevance:
    verify_balances() replays the movement log and reports every material
    whose cached qty_on_hand disagrees with it.  A clean ledger returns an
    empty list.
"""

from collections import defaultdict
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from stock_kernel.domain.dtos import (
    BalanceDiscrepancy,
    MaterialSnapshot,
    MovementRecord,
    TransactionRecord,
    sum_deltas,
)
from stock_kernel.exceptions import MaterialNotFoundError, TransactionNotFoundError
from stock_kernel.models.material import Material
from stock_kernel.models.movement import StockMovement
from stock_kernel.models.transaction import StockTransaction, make_idempotency_key
from stock_kernel.selectors.base import BaseSelector


class InventorySelector(BaseSelector[Material]):
    """Balances, alerts and history for display and verification."""

    # Materials ---------------------------------------------------------

    def get_material(self, material_id: UUID) -> MaterialSnapshot:
        material = self.session.get(Material, material_id)
        if material is None:
            raise MaterialNotFoundError(str(material_id))
        return MaterialSnapshot.from_model(material)

    def get_balance(self, material_id: UUID) -> Decimal:
        """Current qty_on_hand of one material."""
        return self.get_material(material_id).qty_on_hand

    def find_material_by_name(self, name: str) -> MaterialSnapshot | None:
        material = self.session.execute(
            select(Material).where(Material.name == name)
        ).scalar_one_or_none()
        return MaterialSnapshot.from_model(material) if material else None

    def list_materials(self) -> list[MaterialSnapshot]:
        rows = self.session.execute(select(Material).order_by(Material.name)).scalars()
        return [MaterialSnapshot.from_model(m) for m in rows]

    def get_alerts(self) -> list[MaterialSnapshot]:
        """Critical and low materials, most severe first, then by name."""
        alerts = [m for m in self.list_materials() if m.status.is_alert]
        return sorted(alerts, key=lambda m: (m.status.severity, m.name))

    # Transactions ------------------------------------------------------

    def get_transaction(self, transaction_id: UUID) -> TransactionRecord:
        txn = self.session.get(StockTransaction, transaction_id)
        if txn is None:
            raise TransactionNotFoundError(str(transaction_id))
        return TransactionRecord.from_model(txn)

    def find_deduction(self, job_reference: str) -> TransactionRecord | None:
        """The production deduction recorded for a job reference, if any."""
        txn = self.session.execute(
            select(StockTransaction).where(
                StockTransaction.idempotency_key
                == make_idempotency_key("production_deduction", job_reference)
            )
        ).scalar_one_or_none()
        return TransactionRecord.from_model(txn) if txn else None

    def list_transactions(
        self,
        kind: str | None = None,
        reference: str | None = None,
        limit: int = 100,
    ) -> list[TransactionRecord]:
        """Most recent first."""
        stmt = select(StockTransaction)
        if kind is not None:
            stmt = stmt.where(StockTransaction.kind == kind)
        if reference is not None:
            stmt = stmt.where(StockTransaction.reference == reference)
        stmt = stmt.order_by(StockTransaction.created_at.desc()).limit(limit)
        return [TransactionRecord.from_model(t) for t in self.session.execute(stmt).scalars()]

    # Movements ---------------------------------------------------------

    def list_movements(
        self,
        material_id: UUID | None = None,
        reference: str | None = None,
        limit: int = 100,
    ) -> list[MovementRecord]:
        """Movement log, most recent first."""
        stmt = select(StockMovement)
        if material_id is not None:
            stmt = stmt.where(StockMovement.material_id == material_id)
        if reference is not None:
            stmt = stmt.where(StockMovement.reference == reference)
        stmt = stmt.order_by(StockMovement.created_at.desc()).limit(limit)
        return [MovementRecord.from_model(m) for m in self.session.execute(stmt).scalars()]

    def movement_total(self, material_id: UUID) -> Decimal:
        deltas = self.session.execute(
            select(StockMovement.delta_qty).where(StockMovement.material_id == material_id)
        ).scalars()
        return sum_deltas(deltas)

    def verify_balances(self) -> list[BalanceDiscrepancy]:
        """Materials whose qty_on_hand differs from the sum of their movements."""
        totals: dict[UUID, Decimal] = defaultdict(lambda: Decimal("0"))
        for material_id, delta in self.session.execute(
            select(StockMovement.material_id, StockMovement.delta_qty)
        ):
            totals[material_id] += delta

        discrepancies = []
        for material in self.session.execute(select(Material).order_by(Material.name)).scalars():
            total = totals.get(material.id, Decimal("0"))
            if material.qty_on_hand != total:
                discrepancies.append(
                    BalanceDiscrepancy(
                        material_id=material.id,
                        material_name=material.name,
                        qty_on_hand=material.qty_on_hand,
                        movement_total=total,
                    )
                )
        return discrepancies
