"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable structures that cross the service boundary: validated job
    product lines, ledger line-item specs, and read-side snapshots of
    materials, transactions and movements.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods are boundary converters invoked only from
    the service and selector layers.

Invariants enforced:
    - ProductLine: non-empty product type, finite non-negative quantity,
      blank size normalized to None.
    - LineItemSpec: finite, non-zero delta.

Failure modes:
    - InvalidProductLineError on malformed product list entries.
    - InvalidQuantityError on unusable line-item deltas.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from stock_kernel.db.types import quantity_from_value, round_quantity
from stock_kernel.domain.stock_status import StockStatus, classify_levels
from stock_kernel.exceptions import (
    InvalidProductLineError,
    InvalidQuantityError,
)

if TYPE_CHECKING:
    from stock_kernel.models.material import Material as MaterialModel
    from stock_kernel.models.movement import StockMovement as StockMovementModel
    from stock_kernel.models.transaction import (
        StockTransaction as StockTransactionModel,
    )


def _clean_label(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class ProductLine:
    """One entry of a job's ordered product list."""

    product_type: str
    size: str | None
    quantity: Decimal

    @classmethod
    def from_mapping(cls, index: int, raw: Any) -> ProductLine:
        """
        Validate one raw product-list record.

        Accepts ``product_type`` or the legacy ``product_name`` key.

        Raises:
            InvalidProductLineError: naming the offending index.
        """
        if not isinstance(raw, Mapping):
            raise InvalidProductLineError(index, "entry is not an object")
        product_type = _clean_label(raw.get("product_type")) or _clean_label(
            raw.get("product_name")
        )
        if product_type is None:
            raise InvalidProductLineError(index, "product_type is required")
        try:
            quantity = quantity_from_value(raw.get("quantity"), "quantity")
        except InvalidQuantityError as exc:
            raise InvalidProductLineError(index, exc.reason) from exc
        if quantity < 0:
            raise InvalidProductLineError(index, "quantity must be non-negative")
        return cls(
            product_type=product_type,
            size=_clean_label(raw.get("size")),
            quantity=quantity,
        )


def parse_product_list(raw: Any) -> tuple[ProductLine, ...]:
    """Validate a whole product list; None is treated as empty."""
    if raw is None:
        return ()
    if not isinstance(raw, (list, tuple)):
        raise InvalidProductLineError(-1, "product list must be an array")
    return tuple(ProductLine.from_mapping(i, item) for i, item in enumerate(raw))


@dataclass(frozen=True)
class LineItemSpec:
    """
    One signed material delta submitted to the ledger.

    movement_type overrides the default audit classification
    (restocked for positive, consumed for negative).
    """

    material_id: UUID
    delta_qty: Decimal
    movement_type: str | None = None
    memo: str | None = None

    def __post_init__(self) -> None:
        delta = round_quantity(quantity_from_value(self.delta_qty, "delta_qty"))
        if delta == 0:
            raise InvalidQuantityError("delta_qty", self.delta_qty, "must be non-zero")
        object.__setattr__(self, "delta_qty", delta)


@dataclass(frozen=True)
class MaterialSnapshot:
    """Read-side view of a material with its derived alert status."""

    id: UUID
    name: str
    unit: str
    qty_on_hand: Decimal
    minimum_level: Decimal
    restock_threshold: Decimal
    supplier: str | None

    @property
    def status(self) -> StockStatus:
        return classify_levels(
            self.qty_on_hand, self.minimum_level, self.restock_threshold
        )

    @classmethod
    def from_model(cls, model: MaterialModel) -> MaterialSnapshot:
        return cls(
            id=model.id,
            name=model.name,
            unit=model.unit,
            qty_on_hand=model.qty_on_hand,
            minimum_level=model.minimum_level,
            restock_threshold=model.restock_threshold,
            supplier=model.supplier,
        )


@dataclass(frozen=True)
class TransactionLineRecord:
    material_id: UUID
    material_name: str
    delta_qty: Decimal
    line_seq: int


@dataclass(frozen=True)
class TransactionRecord:
    """Immutable view of a persisted stock transaction."""

    id: UUID
    kind: str
    reference: str
    notes: str | None
    status: str
    created_at: datetime
    created_by_id: UUID
    lines: tuple[TransactionLineRecord, ...]

    @property
    def net_delta(self) -> Decimal:
        return sum((line.delta_qty for line in self.lines), Decimal("0"))

    @classmethod
    def from_model(cls, model: StockTransactionModel) -> TransactionRecord:
        return cls(
            id=model.id,
            kind=model.kind,
            reference=model.reference,
            notes=model.notes,
            status=model.status,
            created_at=model.created_at,
            created_by_id=model.created_by_id,
            lines=tuple(
                TransactionLineRecord(
                    material_id=line.material_id,
                    material_name=line.material.name,
                    delta_qty=line.delta_qty,
                    line_seq=line.line_seq,
                )
                for line in model.lines
            ),
        )


@dataclass(frozen=True)
class MovementRecord:
    """Immutable view of one audit movement."""

    id: UUID
    material_id: UUID
    material_name: str
    transaction_id: UUID
    delta_qty: Decimal
    movement_type: str
    reference: str
    notes: str | None
    created_at: datetime
    actor_id: UUID

    @classmethod
    def from_model(cls, model: StockMovementModel) -> MovementRecord:
        return cls(
            id=model.id,
            material_id=model.material_id,
            material_name=model.material.name,
            transaction_id=model.transaction_id,
            delta_qty=model.delta_qty,
            movement_type=model.movement_type,
            reference=model.reference,
            notes=model.notes,
            created_at=model.created_at,
            actor_id=model.actor_id,
        )


@dataclass(frozen=True)
class BalanceDiscrepancy:
    """A material whose cached balance disagrees with its movement log."""

    material_id: UUID
    material_name: str
    qty_on_hand: Decimal
    movement_total: Decimal

    @property
    def difference(self) -> Decimal:
        return self.qty_on_hand - self.movement_total


@dataclass(frozen=True)
class StageInterval:
    """
    One stage-history interval, as consumed by the duration analytics.

    entered_at may be None for legacy rows with unparseable timestamps;
    analytics exclude such rows rather than treating them as zero.
    """

    job_id: UUID
    stage: str
    entered_at: datetime | None
    exited_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.exited_at is None

    @classmethod
    def from_model(cls, model) -> StageInterval:
        return cls(
            job_id=model.job_id,
            stage=model.stage,
            entered_at=model.entered_at,
            exited_at=model.exited_at,
        )


def sum_deltas(deltas: Iterable[Decimal]) -> Decimal:
    return sum(deltas, Decimal("0"))
