"""
Stock ledger service - the only writer of material balances.

The ledger is responsible for:
- Validating a batch of signed material deltas before touching the store
- Enforcing idempotency for production deductions
- Locking touched material rows in a deterministic order
- Rejecting the whole batch if any balance would go negative
- Writing the transaction, its lines, one movement per line, and the new
  balances as a single unit

The ledger does NOT:
- Resolve BOMs (that's the deduction service)
- Commit (the caller owns the transaction boundary)

Idempotency:
    For production_deduction, (kind, reference) identifies the operation.
    A completed transaction with the same key short-circuits the apply and
    its id is returned.  The lookup runs once before locking and again
    after the material locks are held; a race that slips past both is
    caught by the UNIQUE idempotency_key constraint inside a savepoint and
    resolved to the winner's id.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal, localcontext
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.db.base import QUANTITY_PRECISION, SYSTEM_ACTOR_ID
from stock_kernel.db.immutability import ledger_write_scope
from stock_kernel.db.types import quantity_from_value, round_quantity
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import LineItemSpec, TransactionRecord
from stock_kernel.exceptions import (
    DuplicateLineItemError,
    EmptyLineItemsError,
    InsufficientStockError,
    InvalidMovementTypeError,
    InvalidTransactionKindError,
    MaterialNotFoundError,
    ValidationError,
)
from stock_kernel.logging_config import LogContext, get_logger
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
from stock_kernel.services.base import BaseService

logger = get_logger("services.ledger")


class ApplyStatus(str, Enum):
    """Result status of an apply."""

    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"


@dataclass(frozen=True)
class LedgerResult:
    """
    Result of StockLedgerService.apply().

    Both statuses are successes; failures raise typed exceptions.
    """

    status: ApplyStatus
    transaction_id: UUID
    record: TransactionRecord

    @classmethod
    def applied(cls, record: TransactionRecord) -> "LedgerResult":
        return cls(status=ApplyStatus.APPLIED, transaction_id=record.id, record=record)

    @classmethod
    def already_applied(cls, record: TransactionRecord) -> "LedgerResult":
        return cls(
            status=ApplyStatus.ALREADY_APPLIED,
            transaction_id=record.id,
            record=record,
        )

    @property
    def is_new(self) -> bool:
        return self.status is ApplyStatus.APPLIED


def default_movement_type(kind: TransactionKind, delta: Decimal) -> MovementType:
    """Audit classification used when a line does not override it."""
    if kind is TransactionKind.ADJUSTMENT:
        return MovementType.AUDIT
    return MovementType.RESTOCKED if delta > 0 else MovementType.CONSUMED


class StockLedgerService(BaseService[StockTransaction]):
    """
    Applies batches of signed material deltas atomically.

    All writes happen in the caller's transaction.  On any exception
    nothing written by this call remains pending in the session.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def apply(
        self,
        kind: str | TransactionKind,
        reference: str,
        notes: str | None,
        line_items: Sequence[LineItemSpec | tuple[UUID, Decimal]],
        actor_id: UUID | None = None,
    ) -> LedgerResult:
        """
        Apply a batch of deltas as one completed transaction.

        Raises:
            ValidationError: malformed kind, reference or line items
                (raised before any database read).
            MaterialNotFoundError: a line names an unknown material.
            InsufficientStockError: a line would drive a balance below zero.
        """
        txn_kind = self._validate_kind(kind)
        reference = self._validate_reference(reference)
        items = self._validate_line_items(txn_kind, reference, line_items)
        actor = actor_id or SYSTEM_ACTOR_ID

        idempotency_key = (
            make_idempotency_key(txn_kind, reference)
            if txn_kind in IDEMPOTENT_KINDS
            else None
        )

        with LogContext.bind(reference=reference, actor_id=str(actor)):
            if idempotency_key is not None:
                existing = self.find_by_idempotency_key(idempotency_key)
                if existing is not None:
                    return self._already_applied(existing)

            materials = self._lock_materials(item.material_id for item in items)

            if idempotency_key is not None:
                existing = self.find_by_idempotency_key(idempotency_key)
                if existing is not None:
                    return self._already_applied(existing)

            next_balances = self._compute_balances(materials, items)

            try:
                with ledger_write_scope(self.session), self.session.begin_nested():
                    txn = self._write(
                        txn_kind, reference, notes, items, materials,
                        next_balances, idempotency_key, actor,
                    )
            except IntegrityError:
                if idempotency_key is None:
                    raise
                existing = self.find_by_idempotency_key(idempotency_key)
                if existing is None:
                    raise
                logger.warning(
                    "ledger_idempotency_race_resolved",
                    extra={"idempotency_key": idempotency_key},
                )
                return self._already_applied(existing)

            record = TransactionRecord.from_model(txn)
            logger.info(
                "ledger_apply_completed",
                extra={
                    "transaction_id": str(txn.id),
                    "kind": txn_kind.value,
                    "line_count": len(items),
                    "net_delta": str(record.net_delta),
                },
            )
            return LedgerResult.applied(record)

    def find_by_idempotency_key(self, idempotency_key: str) -> StockTransaction | None:
        """Completed transaction holding the key, if any."""
        return self.session.execute(
            select(StockTransaction)
            .where(StockTransaction.idempotency_key == idempotency_key)
            .where(StockTransaction.status == TransactionStatus.COMPLETED.value)
        ).scalar_one_or_none()

    def find_existing(self, kind: str | TransactionKind, reference: str) -> StockTransaction | None:
        """Idempotent-kind lookup by (kind, reference)."""
        return self.find_by_idempotency_key(make_idempotency_key(kind, reference))

    # ------------------------------------------------------------------
    # Validation (no I/O)
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_kind(kind: str | TransactionKind) -> TransactionKind:
        try:
            return TransactionKind(kind)
        except ValueError:
            raise InvalidTransactionKindError(str(kind)) from None

    @staticmethod
    def _validate_reference(reference: str) -> str:
        if not isinstance(reference, str) or not reference.strip():
            raise ValidationError("Transaction reference is required")
        return reference.strip()

    @staticmethod
    def _validate_line_items(
        kind: TransactionKind,
        reference: str,
        line_items: Iterable[LineItemSpec | tuple[UUID, Decimal]],
    ) -> tuple[LineItemSpec, ...]:
        items: list[LineItemSpec] = []
        seen: set[UUID] = set()
        for raw in line_items or ():
            item = raw if isinstance(raw, LineItemSpec) else LineItemSpec(*raw)
            if item.material_id in seen:
                raise DuplicateLineItemError(str(item.material_id))
            seen.add(item.material_id)
            if item.movement_type is not None:
                try:
                    MovementType(item.movement_type)
                except ValueError:
                    raise InvalidMovementTypeError(item.movement_type) from None
            items.append(item)
        if not items:
            raise EmptyLineItemsError(kind.value, reference)
        return tuple(items)

    # ------------------------------------------------------------------
    # Locking and balance computation
    # ------------------------------------------------------------------

    def _lock_materials(self, material_ids: Iterable[UUID]) -> dict[UUID, Material]:
        """
        SELECT ... FOR UPDATE the touched materials, ordered by id.

        populate_existing refreshes any instance already in the identity
        map so balances read here are the locked, current values.
        """
        ids = sorted(set(material_ids), key=str)
        rows = self.session.execute(
            select(Material)
            .where(Material.id.in_(ids))
            .order_by(Material.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        materials = {m.id: m for m in rows}
        for material_id in ids:
            if material_id not in materials:
                raise MaterialNotFoundError(str(material_id))
        return materials

    @staticmethod
    def _compute_balances(
        materials: dict[UUID, Material],
        items: Sequence[LineItemSpec],
    ) -> dict[UUID, Decimal]:
        next_balances: dict[UUID, Decimal] = {}
        for item in items:
            material = materials[item.material_id]
            with localcontext() as ctx:
                ctx.prec = QUANTITY_PRECISION
                total = material.qty_on_hand + item.delta_qty
            next_qty = round_quantity(quantity_from_value(total, "qty_on_hand"))
            if next_qty < 0:
                logger.warning(
                    "insufficient_stock_rejected",
                    extra={
                        "material_id": str(material.id),
                        "material_name": material.name,
                        "on_hand": material.qty_on_hand,
                        "delta": item.delta_qty,
                    },
                )
                raise InsufficientStockError(
                    material_id=str(material.id),
                    material_name=material.name,
                    on_hand=material.qty_on_hand,
                    delta=item.delta_qty,
                )
            next_balances[item.material_id] = next_qty
        return next_balances

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _write(
        self,
        kind: TransactionKind,
        reference: str,
        notes: str | None,
        items: Sequence[LineItemSpec],
        materials: dict[UUID, Material],
        next_balances: dict[UUID, Decimal],
        idempotency_key: str | None,
        actor: UUID,
    ) -> StockTransaction:
        now = self._clock.now()
        txn = StockTransaction(
            id=uuid4(),
            kind=kind.value,
            reference=reference,
            notes=notes,
            status=TransactionStatus.COMPLETED.value,
            idempotency_key=idempotency_key,
            created_at=now,
            created_by_id=actor,
        )
        self.session.add(txn)

        for seq, item in enumerate(items):
            material = materials[item.material_id]
            delta = round_quantity(item.delta_qty)
            movement_type = (
                MovementType(item.movement_type)
                if item.movement_type is not None
                else default_movement_type(kind, delta)
            )
            line = StockTransactionLine(
                transaction=txn,
                material=material,
                delta_qty=delta,
                line_seq=seq,
                memo=item.memo,
            )
            movement = StockMovement(
                transaction=txn,
                material=material,
                delta_qty=delta,
                movement_type=movement_type.value,
                reference=reference,
                notes=notes,
                created_at=now,
                actor_id=actor,
            )
            self.session.add_all([line, movement])
            material.qty_on_hand = next_balances[item.material_id]
            material.updated_by_id = actor

        self.session.flush()
        return txn

    def _already_applied(self, existing: StockTransaction) -> LedgerResult:
        logger.info(
            "ledger_apply_idempotent_hit",
            extra={
                "transaction_id": str(existing.id),
                "idempotency_key": existing.idempotency_key,
            },
        )
        return LedgerResult.already_applied(TransactionRecord.from_model(existing))
