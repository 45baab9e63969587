"""
Material catalog service -- master data for materials, BOM rows and jobs.

Responsibility:
    Creates and edits the records the ledger and the resolver read.
    Balances are never written here: an opening quantity is booked as an
    initial_balance transaction through StockLedgerService so the movement
    log stays the source of truth.

Invariants enforced:
    - restock_threshold >= minimum_level >= 0 (InvalidThresholdError).
    - qty_per_unit > 0 on BOM rows.
    - A job's product list is validated and stored in canonical form.
"""

from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.db.base import SYSTEM_ACTOR_ID
from stock_kernel.db.types import ZERO, quantity_from_value
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import LineItemSpec, MaterialSnapshot, parse_product_list
from stock_kernel.exceptions import (
    InvalidQuantityError,
    InvalidThresholdError,
    MaterialNotFoundError,
    ValidationError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.bom import BomEntry
from stock_kernel.models.job import Job
from stock_kernel.models.material import Material
from stock_kernel.models.transaction import TransactionKind
from stock_kernel.services.base import BaseService
from stock_kernel.services.ledger_service import StockLedgerService

logger = get_logger("services.catalog")

INITIAL_BALANCE_PREFIX = "initial_balance:"

_UNSET: Any = object()


def _required_text(field: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    return value.strip()


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _non_negative(field: str, value: Any) -> Decimal:
    qty = quantity_from_value(value, field)
    if qty < 0:
        raise InvalidQuantityError(field, value, "must be non-negative")
    return qty


def _check_thresholds(minimum_level: Decimal, restock_threshold: Decimal) -> None:
    if restock_threshold < minimum_level:
        raise InvalidThresholdError(minimum_level, restock_threshold)


class MaterialCatalogService(BaseService[Material]):
    """Creates and edits materials, recipes and jobs."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        ledger: StockLedgerService | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._ledger = ledger or StockLedgerService(session, self._clock)

    # ------------------------------------------------------------------
    # Materials
    # ------------------------------------------------------------------

    def create_material(
        self,
        name: str,
        unit: str,
        minimum_level: Decimal | int | str = ZERO,
        restock_threshold: Decimal | int | str = ZERO,
        opening_qty: Decimal | int | str = ZERO,
        supplier: str | None = None,
        notes: str | None = None,
        actor_id: UUID | None = None,
    ) -> MaterialSnapshot:
        """
        Insert a material at zero and book any opening quantity.

        The opening quantity lands as an initial_balance transaction with
        reference ``initial_balance:<material id>``.
        """
        name = _required_text("name", name)
        unit = _required_text("unit", unit)
        minimum = _non_negative("minimum_level", minimum_level)
        restock = _non_negative("restock_threshold", restock_threshold)
        _check_thresholds(minimum, restock)
        opening = _non_negative("opening_qty", opening_qty)
        actor = actor_id or SYSTEM_ACTOR_ID

        material = Material(
            id=uuid4(),
            name=name,
            unit=unit,
            qty_on_hand=ZERO,
            minimum_level=minimum,
            restock_threshold=restock,
            supplier=_optional_text(supplier),
            notes=_optional_text(notes),
            created_by_id=actor,
        )
        self.session.add(material)
        self.session.flush()
        logger.info(
            "material_created",
            extra={"material_id": str(material.id), "material_name": name},
        )

        if opening > 0:
            self._ledger.apply(
                TransactionKind.INITIAL_BALANCE,
                f"{INITIAL_BALANCE_PREFIX}{material.id}",
                f"Opening balance for {name}",
                [LineItemSpec(material_id=material.id, delta_qty=opening)],
                actor_id=actor,
            )

        return MaterialSnapshot.from_model(material)

    def update_material(
        self,
        material_id: UUID,
        name: str | None = None,
        unit: str | None = None,
        minimum_level: Decimal | int | str | None = None,
        restock_threshold: Decimal | int | str | None = None,
        supplier: Any = _UNSET,
        notes: Any = _UNSET,
        actor_id: UUID | None = None,
    ) -> MaterialSnapshot:
        """Edit descriptive fields and thresholds; qty_on_hand is not editable."""
        material = self._get_material(material_id)

        minimum = (
            _non_negative("minimum_level", minimum_level)
            if minimum_level is not None
            else material.minimum_level
        )
        restock = (
            _non_negative("restock_threshold", restock_threshold)
            if restock_threshold is not None
            else material.restock_threshold
        )
        _check_thresholds(minimum, restock)

        if name is not None:
            material.name = _required_text("name", name)
        if unit is not None:
            material.unit = _required_text("unit", unit)
        material.minimum_level = minimum
        material.restock_threshold = restock
        if supplier is not _UNSET:
            material.supplier = _optional_text(supplier)
        if notes is not _UNSET:
            material.notes = _optional_text(notes)
        material.updated_by_id = actor_id or SYSTEM_ACTOR_ID

        self.session.flush()
        logger.info("material_updated", extra={"material_id": str(material.id)})
        return MaterialSnapshot.from_model(material)

    # ------------------------------------------------------------------
    # BOM
    # ------------------------------------------------------------------

    def set_bom_entry(
        self,
        product_type: str,
        size: str | None,
        material_id: UUID,
        qty_per_unit: Decimal | int | str,
        actor_id: UUID | None = None,
    ) -> BomEntry:
        """Insert or replace the quantity for (product_type, size, material)."""
        product_type = _required_text("product_type", product_type)
        size = _optional_text(size)
        qty = quantity_from_value(qty_per_unit, "qty_per_unit")
        if qty <= 0:
            raise InvalidQuantityError("qty_per_unit", qty_per_unit, "must be positive")
        self._get_material(material_id)
        actor = actor_id or SYSTEM_ACTOR_ID

        entry = self._find_bom_entry(product_type, size, material_id)
        if entry is None:
            entry = BomEntry(
                id=uuid4(),
                product_type=product_type,
                size=size,
                material_id=material_id,
                qty_per_unit=qty,
                created_by_id=actor,
            )
            self.session.add(entry)
        else:
            entry.qty_per_unit = qty
            entry.updated_by_id = actor
        self.session.flush()
        logger.info(
            "bom_entry_set",
            extra={
                "product_type": product_type,
                "size": size,
                "material_id": str(material_id),
                "qty_per_unit": qty,
            },
        )
        return entry

    def remove_bom_entry(
        self,
        product_type: str,
        size: str | None,
        material_id: UUID,
    ) -> bool:
        """Delete one recipe row.  Returns False when no such row exists."""
        entry = self._find_bom_entry(
            _required_text("product_type", product_type), _optional_text(size), material_id
        )
        if entry is None:
            return False
        self.session.delete(entry)
        self.session.flush()
        logger.info(
            "bom_entry_removed",
            extra={"product_type": entry.product_type, "size": entry.size},
        )
        return True

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def create_job(
        self,
        name: str,
        product_list: Iterable[Mapping[str, Any]] | None = None,
        actor_id: UUID | None = None,
    ) -> Job:
        """
        Create a job with a validated product list.

        The job starts with no stage; its first transition opens the
        first stage interval.
        """
        name = _required_text("name", name)
        raw = list(product_list) if product_list is not None else []
        lines = parse_product_list(raw)
        job = Job(
            id=uuid4(),
            name=name,
            product_list=[
                {
                    "product_type": line.product_type,
                    "size": line.size,
                    "quantity": str(line.quantity),
                }
                for line in lines
            ],
            production_stage=None,
            created_by_id=actor_id or SYSTEM_ACTOR_ID,
        )
        self.session.add(job)
        self.session.flush()
        logger.info("job_created", extra={"job_id": str(job.id), "line_count": len(lines)})
        return job

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_material(self, material_id: UUID) -> Material:
        material = self.session.get(Material, material_id)
        if material is None:
            raise MaterialNotFoundError(str(material_id))
        return material

    def _find_bom_entry(
        self, product_type: str, size: str | None, material_id: UUID
    ) -> BomEntry | None:
        stmt = select(BomEntry).where(
            BomEntry.product_type == product_type,
            BomEntry.material_id == material_id,
        )
        if size is None:
            stmt = stmt.where(BomEntry.size.is_(None))
        else:
            stmt = stmt.where(BomEntry.size == size)
        return self.session.execute(stmt).scalar_one_or_none()
