"""
End-to-end ledger flows through the kernel services.

Covers:
- A deduction applies once and writes one transaction, line and movement
- Re-running the deduction for the same job changes nothing
- Insufficient stock rejects the deduction and persists nothing
- A sized request falls back to the generic recipe
- A stage transition closes the previous interval at the move time
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from stock_kernel.exceptions import InsufficientStockError
from stock_kernel.services.deduction_service import DeductionStatus


@pytest.fixture
def red_fabric_job(create_material, set_bom, create_job):
    def _build(on_hand):
        fabric = create_material("Red Fabric", qty=on_hand)
        set_bom("Banner", None, fabric.id, 2)
        job = create_job([{"product_type": "Banner", "quantity": 10}])
        return fabric, job

    return _build


class TestDeductionFlow:
    def test_deduction_writes_one_transaction_line_and_movement(self, deductions, inventory, red_fabric_job):
        fabric, job = red_fabric_job(50)

        result = deductions.resolve_and_deduct(job.id)

        assert result.status is DeductionStatus.DEDUCTED
        assert inventory.get_balance(fabric.id) == Decimal("30")
        (txn,) = inventory.list_transactions(kind="production_deduction")
        assert txn.id == result.transaction_id
        assert [line.delta_qty for line in txn.lines] == [Decimal("-20")]
        (movement,) = inventory.list_movements(reference=str(job.id))
        assert movement.delta_qty == Decimal("-20")
        assert movement.transaction_id == txn.id

    def test_repeated_deduction_changes_nothing(self, deductions, inventory, red_fabric_job):
        fabric, job = red_fabric_job(50)
        first = deductions.resolve_and_deduct(job.id)

        second = deductions.resolve_and_deduct(job.id)

        assert second.status is DeductionStatus.ALREADY_DEDUCTED
        assert second.transaction_id == first.transaction_id
        assert inventory.get_balance(fabric.id) == Decimal("30")
        assert len(inventory.list_transactions(kind="production_deduction")) == 1
        assert len(inventory.list_movements(reference=str(job.id))) == 1

    def test_insufficient_stock_persists_nothing(self, deductions, inventory, red_fabric_job):
        fabric, job = red_fabric_job(5)

        with pytest.raises(InsufficientStockError) as exc_info:
            deductions.resolve_and_deduct(job.id)

        assert exc_info.value.material_name == "Red Fabric"
        assert inventory.get_balance(fabric.id) == Decimal("5")
        assert inventory.list_transactions(kind="production_deduction") == []
        assert inventory.verify_balances() == []

    def test_sized_request_falls_back_to_generic_recipe(self, deductions, inventory, create_material, set_bom, create_job):
        navy = create_material("Navy Fabric", qty=100)
        set_bom("Jersey", None, navy.id, "1.5")
        job = create_job([{"product_type": "Jersey", "size": "XL", "quantity": 4}])

        result = deductions.resolve_and_deduct(job.id)

        assert [(i.material_id, i.delta_qty) for i in result.line_items] == [(navy.id, Decimal("-6"))]
        assert inventory.get_balance(navy.id) == Decimal("94")


class TestStageHistoryFlow:
    def test_stage_move_closes_previous_interval(self, tracker, stage_selector, create_job):
        t0 = datetime(2024, 5, 20, 8, 0, tzinfo=UTC)
        job = create_job()
        tracker.transition(job.id, "printing", at=t0)
        tracker.transition(job.id, "pressing", at=t0 + timedelta(hours=3))

        printing, pressing = stage_selector.history(job.id)
        assert printing.exited_at == t0 + timedelta(hours=3)
        assert (printing.exited_at - printing.entered_at).total_seconds() == 3 * 3600
        assert pressing.entered_at == t0 + timedelta(hours=3)
        assert pressing.is_open
