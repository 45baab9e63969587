"""
Tests for MaterialCatalogService.

Covers:
- Opening balances booked as initial_balance transactions
- Threshold validation and updates that never touch qty_on_hand
- BOM row upsert and removal
- Job creation with a canonical product list
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from stock_kernel.exceptions import (
    InvalidProductLineError,
    InvalidQuantityError,
    InvalidThresholdError,
    MaterialNotFoundError,
    ValidationError,
)
from stock_kernel.services.catalog_service import INITIAL_BALANCE_PREFIX


class TestCreateMaterial:
    def test_opening_balance_goes_through_ledger(self, catalog, inventory):
        snapshot = catalog.create_material(
            "Navy Fabric", "meters", minimum_level=10, restock_threshold=20,
            opening_qty="150.5", supplier=" Cape Textile ",
        )

        assert snapshot.qty_on_hand == Decimal("150.5")
        assert snapshot.supplier == "Cape Textile"
        (txn,) = inventory.list_transactions(kind="initial_balance")
        assert txn.reference == f"{INITIAL_BALANCE_PREFIX}{snapshot.id}"
        assert txn.lines[0].delta_qty == Decimal("150.5")
        assert inventory.movement_total(snapshot.id) == Decimal("150.5")
        assert inventory.verify_balances() == []

    def test_zero_opening_writes_no_transaction(self, catalog, inventory):
        snapshot = catalog.create_material("Thread", "units")
        assert snapshot.qty_on_hand == Decimal("0")
        assert inventory.list_transactions() == []

    def test_thresholds_must_be_ordered(self, catalog):
        with pytest.raises(InvalidThresholdError):
            catalog.create_material("Elastic", "meters", minimum_level=30, restock_threshold=20)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"name": "", "unit": "meters"},
            {"name": "Elastic", "unit": "  "},
        ],
    )
    def test_required_text(self, catalog, kwargs):
        with pytest.raises(ValidationError):
            catalog.create_material(**kwargs)

    def test_negative_opening_rejected(self, catalog):
        with pytest.raises(InvalidQuantityError):
            catalog.create_material("Elastic", "meters", opening_qty=-1)


class TestUpdateMaterial:
    def test_updates_fields_not_balance(self, catalog, create_material):
        material = create_material("Rib Collar", qty=40, minimum_level=5, restock_threshold=10)

        updated = catalog.update_material(
            material.id, minimum_level=20, restock_threshold=45, supplier=None
        )

        assert updated.qty_on_hand == Decimal("40")
        assert updated.minimum_level == Decimal("20")
        assert updated.restock_threshold == Decimal("45")
        assert updated.supplier is None
        assert updated.status.value == "low"

    def test_partial_threshold_update_is_validated(self, catalog, create_material):
        material = create_material(minimum_level=5, restock_threshold=10)
        with pytest.raises(InvalidThresholdError):
            catalog.update_material(material.id, minimum_level=11)

    def test_unknown_material(self, catalog):
        with pytest.raises(MaterialNotFoundError):
            catalog.update_material(uuid4(), name="Ghost")


class TestBomEntries:
    def test_upsert_replaces_quantity(self, catalog, bom_selector, create_material):
        fabric = create_material()
        catalog.set_bom_entry("Jersey", "M", fabric.id, "1.2")
        catalog.set_bom_entry("Jersey", "M", fabric.id, "1.35")

        (row,) = bom_selector.entries_for("Jersey")
        assert row.qty_per_unit == Decimal("1.35")

    def test_generic_and_sized_rows_coexist(self, catalog, bom_selector, create_material):
        fabric = create_material()
        catalog.set_bom_entry("Jersey", None, fabric.id, "1.5")
        catalog.set_bom_entry("Jersey", "  ", fabric.id, "1.6")  # blank size is generic
        catalog.set_bom_entry("Jersey", "S", fabric.id, "1.2")

        rows = bom_selector.entries_for("Jersey")
        assert {(r.size, r.qty_per_unit) for r in rows} == {
            (None, Decimal("1.6")),
            ("S", Decimal("1.2")),
        }
        assert bom_selector.product_types() == ["Jersey"]

    @pytest.mark.parametrize("qty", [0, "-1"])
    def test_quantity_must_be_positive(self, catalog, create_material, qty):
        fabric = create_material()
        with pytest.raises(InvalidQuantityError):
            catalog.set_bom_entry("Jersey", "M", fabric.id, qty)

    def test_unknown_material(self, catalog):
        with pytest.raises(MaterialNotFoundError):
            catalog.set_bom_entry("Jersey", "M", uuid4(), 1)

    def test_remove(self, catalog, bom_selector, create_material):
        fabric = create_material()
        catalog.set_bom_entry("Jersey", "M", fabric.id, 1)

        assert catalog.remove_bom_entry("Jersey", "M", fabric.id) is True
        assert catalog.remove_bom_entry("Jersey", "M", fabric.id) is False
        assert bom_selector.entries_for("Jersey") == ()


class TestCreateJob:
    def test_product_list_stored_canonically(self, catalog):
        job = catalog.create_job(
            "Harlequins U16",
            [
                {"product_name": "Jersey", "size": "M", "quantity": 20},
                {"product_type": "Shorts", "size": "", "quantity": "2.5"},
            ],
        )
        assert job.production_stage is None
        assert job.product_list == [
            {"product_type": "Jersey", "size": "M", "quantity": "20"},
            {"product_type": "Shorts", "size": None, "quantity": "2.5"},
        ]

    def test_malformed_product_list_rejected(self, catalog):
        with pytest.raises(InvalidProductLineError) as exc_info:
            catalog.create_job("Bad", [{"product_type": "Jersey", "quantity": -1}])
        assert exc_info.value.index == 0
