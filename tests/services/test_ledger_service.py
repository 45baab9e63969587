"""
Tests for StockLedgerService.apply().

Covers:
- Balances, transaction lines and movements written together
- Idempotency of production deductions by (kind, reference), including
  a concurrent insert of the same key
- All-or-nothing rejection on insufficient stock
- Validation before any database read, and storage limits on quantities
- Movement type classification and overrides
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from stock_kernel.domain.dtos import LineItemSpec
from stock_kernel.exceptions import (
    DuplicateLineItemError,
    EmptyLineItemsError,
    InsufficientStockError,
    InvalidMovementTypeError,
    InvalidQuantityError,
    InvalidTransactionKindError,
    MaterialNotFoundError,
    ValidationError,
)
from stock_kernel.models.transaction import TransactionKind
from stock_kernel.services.ledger_service import ApplyStatus


# ---------------------------------------------------------------------------
# Apply
# ---------------------------------------------------------------------------


class TestApply:
    """Happy-path writes."""

    def test_purchase_order_restocks(self, ledger, inventory, create_material, test_actor_id):
        fabric = create_material("Navy Fabric", qty=10)

        result = ledger.apply(
            TransactionKind.PURCHASE_ORDER,
            "PO-1001",
            "Supplier delivery",
            [LineItemSpec(fabric.id, Decimal("25.5"))],
            actor_id=test_actor_id,
        )

        assert result.status is ApplyStatus.APPLIED
        assert result.is_new
        assert inventory.get_balance(fabric.id) == Decimal("35.5")
        assert result.record.kind == "purchase_order"
        assert result.record.created_by_id == test_actor_id
        assert [line.delta_qty for line in result.record.lines] == [Decimal("25.5")]

        movements = inventory.list_movements(reference="PO-1001")
        assert len(movements) == 1
        assert movements[0].movement_type == "restocked"
        assert movements[0].transaction_id == result.transaction_id
        assert movements[0].actor_id == test_actor_id

    def test_multi_line_batch(self, ledger, inventory, create_material):
        navy = create_material(qty=100)
        thread = create_material(qty=10, unit="units")

        result = ledger.apply(
            "production_deduction",
            "job-42",
            None,
            [(navy.id, Decimal("-13.5")), (thread.id, Decimal("-0.6"))],
        )

        assert inventory.get_balance(navy.id) == Decimal("86.5")
        assert inventory.get_balance(thread.id) == Decimal("9.4")
        assert result.record.net_delta == Decimal("-14.1")
        assert [line.line_seq for line in result.record.lines] == [0, 1]
        assert {m.movement_type for m in inventory.list_movements(reference="job-42")} == {"consumed"}

    def test_reference_is_stripped(self, ledger, create_material):
        fabric = create_material(qty=1)
        result = ledger.apply("purchase_order", "  PO-7 ", None, [(fabric.id, 1)])
        assert result.record.reference == "PO-7"

    def test_logs_completion(self, ledger, create_material, captured_logs):
        fabric = create_material(qty=1)
        ledger.apply("purchase_order", "PO-9", None, [(fabric.id, 2)])
        records = [r for r in captured_logs() if r["message"] == "ledger_apply_completed"]
        assert records[-1]["kind"] == "purchase_order"
        assert records[-1]["reference"] == "PO-9"


class TestIdempotency:
    def test_second_deduction_returns_original(self, ledger, inventory, create_material):
        fabric = create_material(qty=50)
        first = ledger.apply("production_deduction", "job-1", None, [(fabric.id, -20)])
        second = ledger.apply("production_deduction", "job-1", None, [(fabric.id, -20)])

        assert second.status is ApplyStatus.ALREADY_APPLIED
        assert second.transaction_id == first.transaction_id
        assert inventory.get_balance(fabric.id) == Decimal("30")
        assert len(inventory.list_movements(reference="job-1")) == 1

    def test_replay_ignores_new_line_items(self, ledger, inventory, create_material):
        fabric = create_material(qty=50)
        first = ledger.apply("production_deduction", "job-2", None, [(fabric.id, -5)])
        replay = ledger.apply("production_deduction", "job-2", None, [(fabric.id, -40)])

        assert replay.transaction_id == first.transaction_id
        assert replay.record.lines[0].delta_qty == Decimal("-5")
        assert inventory.get_balance(fabric.id) == Decimal("45")

    def test_non_deduction_kinds_are_not_deduplicated(self, ledger, inventory, create_material):
        fabric = create_material(qty=0)
        first = ledger.apply("purchase_order", "PO-1", None, [(fabric.id, 5)])
        second = ledger.apply("purchase_order", "PO-1", None, [(fabric.id, 5)])

        assert second.is_new
        assert second.transaction_id != first.transaction_id
        assert inventory.get_balance(fabric.id) == Decimal("10")

    def test_concurrent_winner_is_returned(self, ledger, inventory, create_material, monkeypatch, captured_logs):
        """A deduction that commits between our lookups and our insert wins."""
        fabric = create_material(qty=50)
        winner = ledger.apply("production_deduction", "job-race", None, [(fabric.id, -10)])

        real_lookup = ledger.find_by_idempotency_key
        calls = []

        def stale_lookup(key):
            calls.append(key)
            if len(calls) <= 2:
                return None
            return real_lookup(key)

        monkeypatch.setattr(ledger, "find_by_idempotency_key", stale_lookup)
        loser = ledger.apply("production_deduction", "job-race", None, [(fabric.id, -25)])

        assert loser.status is ApplyStatus.ALREADY_APPLIED
        assert loser.transaction_id == winner.transaction_id
        assert len(calls) == 3
        assert inventory.get_balance(fabric.id) == Decimal("40")
        assert len(inventory.list_movements(reference="job-race")) == 1
        assert any(r["message"] == "ledger_idempotency_race_resolved" for r in captured_logs())

    def test_find_existing(self, ledger, create_material):
        fabric = create_material(qty=5)
        result = ledger.apply("production_deduction", "job-3", None, [(fabric.id, -1)])
        assert ledger.find_existing("production_deduction", "job-3").id == result.transaction_id
        assert ledger.find_existing("production_deduction", "job-4") is None


class TestInsufficientStock:
    def test_whole_batch_rejected(self, ledger, inventory, create_material):
        plenty = create_material("Plenty", qty=100)
        scarce = create_material("Red Fabric", qty=5)
        before = len(inventory.list_transactions())

        with pytest.raises(InsufficientStockError) as exc_info:
            ledger.apply(
                "production_deduction",
                "job-short",
                None,
                [(plenty.id, -10), (scarce.id, -20)],
            )

        err = exc_info.value
        assert err.material_name == "Red Fabric"
        assert err.on_hand == Decimal("5")
        assert err.delta == Decimal("-20")
        assert err.shortfall == Decimal("15")
        assert inventory.get_balance(plenty.id) == Decimal("100")
        assert inventory.get_balance(scarce.id) == Decimal("5")
        assert len(inventory.list_transactions()) == before
        assert inventory.list_movements(reference="job-short") == []
        assert ledger.find_existing("production_deduction", "job-short") is None

    def test_exact_balance_may_reach_zero(self, ledger, inventory, create_material):
        fabric = create_material(qty="2.5")
        ledger.apply("production_deduction", "job-exact", None, [(fabric.id, "-2.5")])
        assert inventory.get_balance(fabric.id) == Decimal("0")

    def test_rejected_batch_can_be_retried_after_restock(self, ledger, inventory, create_material):
        fabric = create_material(qty=5)
        with pytest.raises(InsufficientStockError):
            ledger.apply("production_deduction", "job-late", None, [(fabric.id, -20)])

        ledger.apply("purchase_order", "PO-late", None, [(fabric.id, 20)])
        result = ledger.apply("production_deduction", "job-late", None, [(fabric.id, -20)])

        assert result.is_new
        assert inventory.get_balance(fabric.id) == Decimal("5")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidation:
    def test_empty_batch(self, ledger):
        with pytest.raises(EmptyLineItemsError):
            ledger.apply("purchase_order", "PO-empty", None, [])

    def test_duplicate_material(self, ledger, create_material):
        fabric = create_material(qty=5)
        with pytest.raises(DuplicateLineItemError):
            ledger.apply("purchase_order", "PO-dup", None, [(fabric.id, 1), (fabric.id, 2)])

    def test_unknown_kind(self, ledger):
        with pytest.raises(InvalidTransactionKindError):
            ledger.apply("gift", "x", None, [(uuid4(), 1)])

    @pytest.mark.parametrize("reference", ["", "   ", None])
    def test_blank_reference(self, ledger, reference):
        with pytest.raises(ValidationError):
            ledger.apply("purchase_order", reference, None, [(uuid4(), 1)])

    def test_unknown_movement_type(self, ledger, create_material):
        fabric = create_material(qty=5)
        with pytest.raises(InvalidMovementTypeError):
            ledger.apply(
                "adjustment", "ADJ-1", None,
                [LineItemSpec(fabric.id, Decimal("1"), movement_type="stolen")],
            )

    def test_delta_below_storage_precision(self, ledger, inventory, create_material):
        fabric = create_material(qty=5)
        with pytest.raises(InvalidQuantityError):
            ledger.apply("adjustment", "ADJ-tiny", None, [LineItemSpec(fabric.id, Decimal("1E-10"))])
        assert inventory.list_movements(reference="ADJ-tiny") == []

    def test_delta_too_large_for_storage(self, ledger, inventory, create_material):
        fabric = create_material(qty=5)
        with pytest.raises(InvalidQuantityError):
            ledger.apply("purchase_order", "PO-huge", None, [(fabric.id, Decimal("1E+29"))])
        assert inventory.get_balance(fabric.id) == Decimal("5")

    def test_resulting_balance_too_large_for_storage(self, ledger, inventory, create_material):
        largest = Decimal("9" * 29)
        fabric = create_material(qty=largest)
        with pytest.raises(InvalidQuantityError):
            ledger.apply("purchase_order", "PO-overflow", None, [(fabric.id, largest)])
        assert inventory.get_balance(fabric.id) == largest
        assert inventory.list_movements(reference="PO-overflow") == []

    def test_twenty_digit_purchase_order(self, ledger, inventory, create_material):
        fabric = create_material(qty=0)
        ledger.apply("purchase_order", "PO-bulk", None, [(fabric.id, Decimal("100000000000000000000"))])
        assert inventory.get_balance(fabric.id) == Decimal("100000000000000000000")

    def test_unknown_material(self, ledger, inventory):
        with pytest.raises(MaterialNotFoundError):
            ledger.apply("purchase_order", "PO-ghost", None, [(uuid4(), 1)])
        assert inventory.list_transactions() == []


class TestMovementTypes:
    def test_adjustment_defaults_to_audit(self, ledger, inventory, create_material):
        fabric = create_material(qty=10)
        ledger.apply("adjustment", "count-2024-06", "Stock take", [(fabric.id, -3)])
        (movement,) = inventory.list_movements(reference="count-2024-06")
        assert movement.movement_type == "audit"
        assert movement.notes == "Stock take"

    def test_return_restocks(self, ledger, inventory, create_material):
        fabric = create_material(qty=0)
        ledger.apply("return", "RET-1", None, [(fabric.id, 4)])
        (movement,) = inventory.list_movements(reference="RET-1")
        assert movement.movement_type == "restocked"

    def test_override(self, ledger, inventory, create_material):
        fabric = create_material(qty=10)
        ledger.apply(
            "adjustment", "ADJ-2", None,
            [LineItemSpec(fabric.id, Decimal("-1"), movement_type="consumed", memo="offcut")],
        )
        (movement,) = inventory.list_movements(reference="ADJ-2")
        assert movement.movement_type == "consumed"
