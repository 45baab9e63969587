"""
Integration tests for ProductionLedgerService.

Covers:
- Auto-deduction when a job enters the trigger stage
- Deduction failures reported without blocking the stage move
- Stage label normalization through the configured aliases
- Commit/rollback ownership and transient-conflict retries
- Caller-owned session mode
- Duration metrics over committed history
"""

from dataclasses import replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from stock_kernel.exceptions import (
    InsufficientStockError,
    LedgerConflictError,
    MissingBomError,
    StageConflictError,
)
from stock_kernel.services.deduction_service import DeductionStatus
from stock_kernel.services.ledger_service import StockLedgerService
from stock_services.production_ledger import ProductionLedgerService


FIXED_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def _locked(*args, **kwargs):
    raise OperationalError("UPDATE materials", {}, Exception("database is locked"))


@pytest.fixture
def kit(facade):
    """A jersey recipe and a job for 10 medium jerseys."""
    navy = facade.create_material("Navy Fabric", "meters", opening_qty=100, minimum_level=10, restock_threshold=20)
    thread = facade.create_material("Thread", "units", opening_qty=5, minimum_level=5, restock_threshold=10)
    facade.set_bom_entry("Jersey", "M", navy.id, "1.35")
    facade.set_bom_entry("Jersey", "M", thread.id, "0.06")
    job_id = facade.create_job("Harlequins", [{"product_type": "Jersey", "size": "M", "quantity": 10}])
    return navy, thread, job_id


# ---------------------------------------------------------------------------
# Auto-deduction
# ---------------------------------------------------------------------------


class TestAutoDeduction:
    def test_entering_printing_deducts(self, facade, kit):
        navy, thread, job_id = kit
        facade.transition_stage(job_id, "Orders")

        outcome = facade.transition_stage(job_id, "Printing")

        assert outcome.transition.stage == "printing"
        assert outcome.deduction_attempted
        assert outcome.deduction.status is DeductionStatus.DEDUCTED
        assert facade.get_balance(navy.id) == Decimal("86.5")
        assert facade.get_balance(thread.id) == Decimal("4.4")
        assert facade.verify_balances() == []

    def test_other_stages_do_not_deduct(self, facade, kit):
        navy, _, job_id = kit
        outcome = facade.transition_stage(job_id, "Pressing")
        assert not outcome.deduction_attempted
        assert facade.get_balance(navy.id) == Decimal("100")

    def test_reentering_printing_deducts_once(self, facade, kit, deterministic_clock):
        navy, _, job_id = kit
        facade.transition_stage(job_id, "printing")
        deterministic_clock.advance_hours(1)
        facade.transition_stage(job_id, "pressing")
        deterministic_clock.advance_hours(1)

        outcome = facade.transition_stage(job_id, "printing")

        assert outcome.deduction.status is DeductionStatus.ALREADY_DEDUCTED
        assert facade.get_balance(navy.id) == Decimal("86.5")

    def test_insufficient_stock_does_not_block_move(self, facade, captured_logs):
        fabric = facade.create_material("Red Fabric", "meters", opening_qty=5)
        facade.set_bom_entry("Banner", None, fabric.id, 2)
        job_id = facade.create_job("Club banners", [{"product_type": "Banner", "quantity": 10}])

        outcome = facade.transition_stage(job_id, "printing")

        assert isinstance(outcome.deduction_error, InsufficientStockError)
        assert outcome.deduction is None
        assert outcome.transition.changed
        assert [i.stage for i in facade.stage_history(job_id)] == ["printing"]
        assert facade.get_balance(fabric.id) == Decimal("5")
        logs = [r for r in captured_logs() if r["message"] == "auto_deduction_not_applied"]
        assert logs[0]["error_code"] == "INSUFFICIENT_STOCK"

    def test_strict_mode_reports_missing_bom(self, session_factory, ledger_config, deterministic_clock):
        strict = ProductionLedgerService(
            session_factory,
            config=replace(ledger_config, require_complete_bom=True),
            clock=deterministic_clock,
        )
        job_id = strict.create_job("Caps", [{"product_type": "Cap", "quantity": 3}])

        outcome = strict.transition_stage(job_id, "printing")

        assert isinstance(outcome.deduction_error, MissingBomError)
        assert strict.stage_history(job_id)[0].stage == "printing"

    def test_auto_deduct_disabled(self, session_factory, ledger_config, deterministic_clock):
        manual = ProductionLedgerService(
            session_factory,
            config=replace(ledger_config, auto_deduct_on_stage=False),
            clock=deterministic_clock,
        )
        fabric = manual.create_material("Fabric", "meters", opening_qty=10)
        manual.set_bom_entry("Banner", None, fabric.id, 1)
        job_id = manual.create_job("Banners", [{"product_type": "Banner", "quantity": 2}])

        assert not manual.transition_stage(job_id, "printing").deduction_attempted
        assert manual.get_balance(fabric.id) == Decimal("10")

        result = manual.resolve_and_deduct(job_id)
        assert result.status is DeductionStatus.DEDUCTED
        assert manual.get_balance(fabric.id) == Decimal("8")

    def test_custom_trigger_stage(self, session_factory, ledger_config, deterministic_clock):
        service = ProductionLedgerService(
            session_factory,
            config=replace(ledger_config, deduction_trigger_stage="cmt"),
            clock=deterministic_clock,
        )
        fabric = service.create_material("Fabric", "meters", opening_qty=10)
        service.set_bom_entry("Banner", None, fabric.id, 1)
        job_id = service.create_job("Banners", [{"product_type": "Banner", "quantity": 2}])

        assert not service.transition_stage(job_id, "printing").deduction_attempted
        assert service.transition_stage(job_id, "CMT", at=FIXED_NOW + timedelta(hours=1)).deduction_attempted


# ---------------------------------------------------------------------------
# Stage handling
# ---------------------------------------------------------------------------


class TestStages:
    def test_labels_are_normalized(self, facade, kit):
        _, _, job_id = kit
        facade.transition_stage(job_id, "Cleaning & Packing")
        facade.transition_stage(job_id, "Completed", at=FIXED_NOW + timedelta(hours=2))

        assert [i.stage for i in facade.stage_history(job_id)] == [
            "cleaning_packing",
            "delivered_collected",
        ]

    def test_expected_stage_is_normalized(self, facade, kit):
        _, _, job_id = kit
        facade.transition_stage(job_id, "Cleaning & Packing")
        outcome = facade.transition_stage(
            job_id, "CMT", at=FIXED_NOW + timedelta(hours=1), expected_stage="cleaning and packing"
        )
        assert outcome.transition.previous_stage == "cleaning_packing"

    def test_conflict_rolls_back(self, facade, kit):
        _, _, job_id = kit
        facade.transition_stage(job_id, "pressing")
        with pytest.raises(StageConflictError):
            facade.transition_stage(job_id, "cmt", expected_stage="printing")
        assert [i.stage for i in facade.stage_history(job_id)] == ["pressing"]


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------


class TestUnitOfWork:
    def test_failed_apply_rolls_back(self, facade, kit):
        navy, thread, _ = kit
        with pytest.raises(InsufficientStockError):
            facade.apply_transaction(
                "adjustment", "count-1", None, [(navy.id, -1), (thread.id, -50)]
            )
        assert facade.get_balance(navy.id) == Decimal("100")
        assert facade.list_movements(reference="count-1") == []

    def test_transient_conflicts_exhaust_retries(self, facade, kit, monkeypatch, captured_logs):
        navy, _, _ = kit
        monkeypatch.setattr(StockLedgerService, "apply", _locked)

        with pytest.raises(LedgerConflictError) as exc_info:
            facade.apply_transaction("purchase_order", "PO-1", None, [(navy.id, 5)])

        assert exc_info.value.attempts == facade.config.max_conflict_retries
        retries = [r for r in captured_logs() if r["message"] == "transient_conflict_retry"]
        assert [r["attempt"] for r in retries] == [1, 2, 3]

    def test_transient_conflict_then_success(self, facade, kit, monkeypatch):
        navy, _, _ = kit
        original = StockLedgerService.apply
        calls = {"n": 0}

        def flaky(self, *args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                _locked()
            return original(self, *args, **kwargs)

        monkeypatch.setattr(StockLedgerService, "apply", flaky)
        result = facade.apply_transaction("purchase_order", "PO-2", None, [(navy.id, 5)])

        assert result.is_new
        assert calls["n"] == 2
        assert facade.get_balance(navy.id) == Decimal("105")

    def test_non_transient_db_error_is_not_retried(self, facade, kit, monkeypatch):
        navy, _, _ = kit
        calls = {"n": 0}

        def broken(self, *args, **kwargs):
            calls["n"] += 1
            raise OperationalError("UPDATE materials", {}, Exception("disk I/O error"))

        monkeypatch.setattr(StockLedgerService, "apply", broken)
        with pytest.raises(OperationalError):
            facade.apply_transaction("purchase_order", "PO-3", None, [(navy.id, 5)])
        assert calls["n"] == 1

    def test_caller_owned_session_only_flushes(self, session, ledger_config, deterministic_clock):
        service = ProductionLedgerService(session=session, config=ledger_config, clock=deterministic_clock)
        assert not service.owns_transactions

        fabric = service.create_material("Fabric", "meters", opening_qty=3)
        assert service.get_balance(fabric.id) == Decimal("3")
        assert session.in_transaction()

        session.rollback()
        assert service.list_materials() == []

    def test_session_and_factory_are_exclusive(self, session, session_factory, ledger_config):
        with pytest.raises(ValueError):
            ProductionLedgerService(session_factory, session=session, config=ledger_config)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestReads:
    def test_alerts_and_preview(self, facade, kit):
        navy, thread, job_id = kit

        plan = facade.preview_deduction(job_id)
        assert {i.material_id: i.delta_qty for i in plan.line_items} == {
            navy.id: Decimal("-13.5"),
            thread.id: Decimal("-0.6"),
        }

        (alert,) = facade.get_alerts()
        assert alert.id == thread.id
        assert alert.status.value == "critical"

    def test_update_material_via_facade(self, facade, kit):
        navy, _, _ = kit
        updated = facade.update_material(navy.id, restock_threshold=150)
        assert updated.status.value == "low"
        assert facade.get_material(navy.id).restock_threshold == Decimal("150")

    def test_remove_bom_entry(self, facade, kit):
        navy, thread, job_id = kit
        assert facade.remove_bom_entry("Jersey", "M", thread.id)
        plan = facade.preview_deduction(job_id)
        assert [i.material_id for i in plan.line_items] == [navy.id]

    def test_duration_metrics(self, facade, deterministic_clock):
        delivered = facade.create_job("Delivered kit")
        in_progress = facade.create_job("In progress kit")
        facade.transition_stage(delivered, "orders", at=FIXED_NOW - timedelta(days=6))
        facade.transition_stage(delivered, "printing", at=FIXED_NOW - timedelta(days=4))
        facade.transition_stage(delivered, "completed", at=FIXED_NOW - timedelta(days=1))
        facade.transition_stage(in_progress, "printing", at=FIXED_NOW - timedelta(hours=2))

        metrics = facade.get_duration_metrics()

        assert metrics.as_of == deterministic_clock.now()
        assert metrics.fulfillment.average_seconds == 5 * 86400
        assert metrics.fulfillment.sample_count == 1
        phases = {p.stage: p.average_seconds for p in metrics.sub_phases}
        assert phases == {"design_to_print": 2 * 86400, "print_to_delivered": 3 * 86400}
        assert metrics.current_stage.open_counts["printing"] == 1
        completed = {s.stage: s.average_seconds for s in metrics.completed_stages}
        assert completed["orders_awaiting_confirmation"] == 2 * 86400
