"""
BOM resolution -- pure recipe selection and delta computation.

Responsibility:
    Turns (product_type, size, quantity) plus the product's recipe rows
    into signed material deltas, and a whole product list into one
    coalesced deduction plan.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  BomSelector
    fetches recipe rows and hands them in as ``BomLine`` snapshots.

Precedence:
    1. size is None            -> generic rows (size is None)
    2. size-specific rows exist -> those rows only
    3. otherwise               -> generic rows (fallback)
    4. nothing matched         -> MissingBom (non-fatal)

Each matched row yields delta = -(qty_per_unit * quantity).  Zero deltas
are dropped.  Deltas for the same material across product lines are
summed into a single line item.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from stock_kernel.db.types import round_quantity
from stock_kernel.domain.dtos import LineItemSpec, ProductLine


@dataclass(frozen=True)
class BomLine:
    """Snapshot of one recipe row."""

    product_type: str
    size: str | None
    material_id: UUID
    qty_per_unit: Decimal

    @classmethod
    def from_model(cls, model) -> BomLine:
        return cls(
            product_type=model.product_type,
            size=model.size,
            material_id=model.material_id,
            qty_per_unit=model.qty_per_unit,
        )


@dataclass(frozen=True)
class Component:
    material_id: UUID
    delta_qty: Decimal


@dataclass(frozen=True)
class Resolved:
    """A product line that matched a recipe."""

    product_type: str
    size: str | None
    quantity: Decimal
    components: tuple[Component, ...]
    used_fallback: bool


@dataclass(frozen=True)
class MissingBom:
    """A product line with no recipe at all."""

    product_type: str
    size: str | None

    def __str__(self) -> str:
        return f"{self.product_type} ({self.size or 'generic'})"


BomResolution = Resolved | MissingBom


def select_recipe(
    product_type: str,
    size: str | None,
    entries: Iterable[BomLine],
) -> tuple[tuple[BomLine, ...], bool]:
    """
    Pick the recipe rows for a product and size.

    Returns the rows and whether the generic fallback was used for a
    sized request.
    """
    rows = [e for e in entries if e.product_type == product_type]
    generic = tuple(e for e in rows if e.size is None)
    if size is None:
        return generic, False
    specific = tuple(e for e in rows if e.size == size)
    if specific:
        return specific, False
    return generic, bool(generic)


def resolve_bom(
    product_type: str,
    size: str | None,
    quantity: Decimal,
    entries: Iterable[BomLine],
) -> BomResolution:
    """Resolve one product line into signed material deltas."""
    recipe, used_fallback = select_recipe(product_type, size, entries)
    if not recipe:
        return MissingBom(product_type=product_type, size=size)
    components = tuple(
        Component(material_id=row.material_id, delta_qty=-(row.qty_per_unit * quantity))
        for row in recipe
        if row.qty_per_unit * quantity != 0
    )
    return Resolved(
        product_type=product_type,
        size=size,
        quantity=quantity,
        components=components,
        used_fallback=used_fallback,
    )


def coalesce_deltas(components: Iterable[Component]) -> tuple[LineItemSpec, ...]:
    """
    Sum deltas per material into ledger line items.

    Output is ordered by material id so the ledger locks rows in a
    stable order.  Totals that round to zero are dropped.
    """
    totals: dict[UUID, Decimal] = defaultdict(lambda: Decimal("0"))
    for component in components:
        totals[component.material_id] += component.delta_qty
    items = []
    for material_id in sorted(totals, key=str):
        total = round_quantity(totals[material_id])
        if total != 0:
            items.append(LineItemSpec(material_id=material_id, delta_qty=total))
    return tuple(items)


@dataclass(frozen=True)
class DeductionPlan:
    """
    What a deduction for a product list would consume.

    Built by plan_deduction(); the same plan backs both the dry-run preview
    and the real ledger apply.
    """

    product_lines: tuple[ProductLine, ...]
    resolutions: tuple[BomResolution, ...]
    line_items: tuple[LineItemSpec, ...]
    missing: tuple[MissingBom, ...]

    @property
    def is_empty(self) -> bool:
        return not self.line_items

    @property
    def has_missing(self) -> bool:
        return bool(self.missing)


def plan_deduction(
    product_lines: Sequence[ProductLine],
    recipes: Mapping[str, Sequence[BomLine]],
) -> DeductionPlan:
    """
    Resolve every product line and coalesce the result.

    ``recipes`` maps product type to all of its BOM rows (any size).
    Missing recipes are collected, never raised; duplicates of the same
    (product_type, size) are reported once.
    """
    resolutions: list[BomResolution] = []
    components: list[Component] = []
    missing: list[MissingBom] = []
    for line in product_lines:
        resolution = resolve_bom(
            line.product_type,
            line.size,
            line.quantity,
            recipes.get(line.product_type, ()),
        )
        resolutions.append(resolution)
        if isinstance(resolution, MissingBom):
            if resolution not in missing:
                missing.append(resolution)
        else:
            components.extend(resolution.components)
    return DeductionPlan(
        product_lines=tuple(product_lines),
        resolutions=tuple(resolutions),
        line_items=coalesce_deltas(components),
        missing=tuple(missing),
    )
