"""BOM selector -- read-only access to recipe rows as BomLine snapshots."""

from collections import defaultdict
from collections.abc import Iterable

from sqlalchemy import select

from stock_kernel.domain.bom import BomLine
from stock_kernel.models.bom import BomEntry
from stock_kernel.selectors.base import BaseSelector


class BomSelector(BaseSelector[BomEntry]):
    """Fetches the recipe rows the pure resolver consumes."""

    def recipes_for(self, product_types: Iterable[str]) -> dict[str, tuple[BomLine, ...]]:
        """All rows (every size) for each requested product type."""
        wanted = sorted(set(product_types))
        if not wanted:
            return {}
        rows = self.session.execute(
            select(BomEntry)
            .where(BomEntry.product_type.in_(wanted))
            .order_by(BomEntry.product_type, BomEntry.size, BomEntry.material_id)
        ).scalars().all()
        grouped: dict[str, list[BomLine]] = defaultdict(list)
        for row in rows:
            grouped[row.product_type].append(BomLine.from_model(row))
        return {product_type: tuple(lines) for product_type, lines in grouped.items()}

    def entries_for(self, product_type: str) -> tuple[BomLine, ...]:
        return self.recipes_for([product_type]).get(product_type, ())

    def product_types(self) -> list[str]:
        """Distinct product types that have at least one recipe row."""
        return list(
            self.session.execute(
                select(BomEntry.product_type).distinct().order_by(BomEntry.product_type)
            ).scalars()
        )
