"""
stock_services.production_ledger -- Facade over the stock kernel.

Responsibility:
    The entry point collaborators (job board, admin screens, scripts) use
    for every ledger operation.  Wires the kernel services to one session
    per unit of work, owns commit and rollback, normalizes stage labels,
    triggers the automatic deduction on the configured stage, and retries
    transient database conflicts.

Architecture position:
    Services -- orchestration over stock_kernel, stock_engines and
    stock_config.  Kernel services never commit; this module does.

Transaction boundaries:
    - Built with a session factory (the default), each public call runs in
      a fresh session that is committed on success and rolled back on any
      exception.  Transient conflicts (deadlock, serialization failure,
      busy SQLite file) are retried up to ``max_conflict_retries`` times,
      each attempt in a new session; when they are exhausted the caller
      gets LedgerConflictError.
    - Built with a caller-owned ``session``, calls only flush.  The caller
      commits, rolls back, and retries.

Invariants enforced:
    - A stage transition and the deduction it triggers commit together.
    - A deduction that cannot be applied (insufficient stock, or a missing
      recipe in strict mode) never blocks the stage move; the failure is
      reported on the outcome.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from stock_config import LedgerConfig, get_active_config
from stock_engines.durations import (
    DurationMetrics,
    MetricsWindow,
    SubPhase,
    compute_duration_metrics,
)
from stock_kernel.db.engine import (
    get_session_factory,
    init_engine_from_url,
    is_transient_db_error,
)
from stock_kernel.db.immutability import register_immutability_listeners
from stock_kernel.domain.bom import BomLine, DeductionPlan
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import (
    BalanceDiscrepancy,
    LineItemSpec,
    MaterialSnapshot,
    MovementRecord,
    StageInterval,
    TransactionRecord,
)
from stock_kernel.domain.stages import normalize_stage
from stock_kernel.exceptions import BomError, LedgerConflictError, LedgerError, StockKernelError
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.selectors.inventory_selector import InventorySelector
from stock_kernel.selectors.stage_selector import StageSelector
from stock_kernel.services.catalog_service import MaterialCatalogService
from stock_kernel.services.deduction_service import DeductionResult, DeductionService
from stock_kernel.services.ledger_service import LedgerResult, StockLedgerService
from stock_kernel.services.stage_tracker import StageHistoryTracker, StageTransitionResult

logger = get_logger("services.production_ledger")

T = TypeVar("T")


@dataclass(frozen=True)
class StageChangeOutcome:
    """
    Result of transition_stage().

    deduction is set when the move entered the trigger stage and the
    deduction ran; deduction_error is set when it was attempted and could
    not be applied.  The stage move itself committed in both cases.
    """

    transition: StageTransitionResult
    deduction: DeductionResult | None = None
    deduction_error: StockKernelError | None = None

    @property
    def deduction_attempted(self) -> bool:
        return self.deduction is not None or self.deduction_error is not None


class _Kernel:
    """Kernel services bound to one session."""

    def __init__(self, session: Session, clock: Clock, config: LedgerConfig):
        self.session = session
        self.ledger = StockLedgerService(session, clock)
        self.deductions = DeductionService(
            session,
            clock,
            ledger=self.ledger,
            require_complete_bom=config.require_complete_bom,
        )
        self.tracker = StageHistoryTracker(session, clock)
        self.catalog = MaterialCatalogService(session, clock, ledger=self.ledger)
        self.inventory = InventorySelector(session)
        self.stages = StageSelector(session)


class ProductionLedgerService:
    """Transactional facade for the production stock ledger."""

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        *,
        session: Session | None = None,
        config: LedgerConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        if session is not None and session_factory is not None:
            raise ValueError("pass either session_factory or session, not both")
        self._config = config or get_active_config()
        self._clock = clock or SystemClock()
        self._session = session
        if session is None and session_factory is None:
            init_engine_from_url(self._config.database_url)
            session_factory = get_session_factory()
        self._session_factory = session_factory
        register_immutability_listeners()

    @property
    def config(self) -> LedgerConfig:
        return self._config

    @property
    def owns_transactions(self) -> bool:
        return self._session is None

    # ------------------------------------------------------------------
    # Deductions
    # ------------------------------------------------------------------

    def resolve_and_deduct(self, job_id: UUID, actor_id: UUID | None = None) -> DeductionResult:
        """Deduct the job's BOM consumption once; repeat calls are no-ops."""
        return self._run(
            "resolve_and_deduct",
            lambda k: k.deductions.resolve_and_deduct(job_id, actor_id=actor_id),
        )

    def preview_deduction(self, job_id: UUID) -> DeductionPlan:
        """What resolve_and_deduct would consume right now; writes nothing."""
        return self._run("preview_deduction", lambda k: k.deductions.preview(job_id), write=False)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def transition_stage(
        self,
        job_id: UUID,
        new_stage: str,
        at: datetime | None = None,
        expected_stage: str | None = None,
        actor_id: UUID | None = None,
    ) -> StageChangeOutcome:
        """
        Move a job to a stage (label normalized first).

        Entering the configured trigger stage runs the deduction in the
        same unit of work when auto-deduction is enabled.
        """
        aliases = self._config.alias_map
        stage = normalize_stage(new_stage, aliases)
        expected = normalize_stage(expected_stage, aliases) if expected_stage is not None else None

        def work(k: _Kernel) -> StageChangeOutcome:
            transition = k.tracker.transition(job_id, stage, at=at, expected_stage=expected)
            if not (
                transition.changed
                and self._config.auto_deduct_on_stage
                and stage == self._config.deduction_trigger_stage
            ):
                return StageChangeOutcome(transition=transition)
            try:
                deduction = k.deductions.resolve_and_deduct(job_id, actor_id=actor_id)
            except (LedgerError, BomError) as exc:
                logger.warning(
                    "auto_deduction_not_applied",
                    extra={"stage": stage, "error_code": exc.code},
                )
                return StageChangeOutcome(transition=transition, deduction_error=exc)
            return StageChangeOutcome(transition=transition, deduction=deduction)

        with LogContext.bind(job_id=str(job_id)):
            return self._run("transition_stage", work)

    def stage_history(self, job_id: UUID) -> tuple[StageInterval, ...]:
        return self._run("stage_history", lambda k: k.stages.history(job_id), write=False)

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    def apply_transaction(
        self,
        kind: str,
        reference: str,
        notes: str | None,
        line_items: Sequence[LineItemSpec | tuple[UUID, Decimal]],
        actor_id: UUID | None = None,
    ) -> LedgerResult:
        """Purchase orders, adjustments, returns and opening balances."""
        return self._run(
            "apply_transaction",
            lambda k: k.ledger.apply(kind, reference, notes, line_items, actor_id=actor_id),
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_balance(self, material_id: UUID) -> Decimal:
        return self._run("get_balance", lambda k: k.inventory.get_balance(material_id), write=False)

    def get_material(self, material_id: UUID) -> MaterialSnapshot:
        return self._run("get_material", lambda k: k.inventory.get_material(material_id), write=False)

    def list_materials(self) -> list[MaterialSnapshot]:
        return self._run("list_materials", lambda k: k.inventory.list_materials(), write=False)

    def get_alerts(self) -> list[MaterialSnapshot]:
        """Critical and low materials, most severe first."""
        return self._run("get_alerts", lambda k: k.inventory.get_alerts(), write=False)

    def list_movements(
        self,
        material_id: UUID | None = None,
        reference: str | None = None,
        limit: int = 100,
    ) -> list[MovementRecord]:
        return self._run(
            "list_movements",
            lambda k: k.inventory.list_movements(material_id, reference, limit),
            write=False,
        )

    def get_transaction(self, transaction_id: UUID) -> TransactionRecord:
        return self._run(
            "get_transaction", lambda k: k.inventory.get_transaction(transaction_id), write=False
        )

    def verify_balances(self) -> list[BalanceDiscrepancy]:
        """Materials whose cached balance disagrees with the movement log."""
        discrepancies = self._run(
            "verify_balances", lambda k: k.inventory.verify_balances(), write=False
        )
        if discrepancies:
            logger.error(
                "balance_discrepancies_found",
                extra={"count": len(discrepancies)},
            )
        return discrepancies

    def get_duration_metrics(self, window: MetricsWindow | None = None) -> DurationMetrics:
        """Stage-duration metrics; the default window is the configured lookback."""
        now = self._clock.now()
        window = window or MetricsWindow.trailing(now, self._config.metrics_lookback_days)
        delivered_stage = self._config.delivered_stage

        def work(k: _Kernel) -> DurationMetrics:
            cohort = k.stages.jobs_entering(delivered_stage, window.start, window.end)
            return compute_duration_metrics(
                open_intervals=k.stages.open_intervals(),
                histories=k.stages.histories_for(cohort),
                completed_intervals=k.stages.intervals_entered_between(window.start, window.end),
                window=window,
                now=now,
                delivered_stage=delivered_stage,
                sub_phases=self._sub_phases(),
            )

        return self._run("get_duration_metrics", work, write=False)

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def create_material(self, name: str, unit: str, **fields: Any) -> MaterialSnapshot:
        return self._run("create_material", lambda k: k.catalog.create_material(name, unit, **fields))

    def update_material(self, material_id: UUID, **fields: Any) -> MaterialSnapshot:
        return self._run(
            "update_material", lambda k: k.catalog.update_material(material_id, **fields)
        )

    def set_bom_entry(
        self,
        product_type: str,
        size: str | None,
        material_id: UUID,
        qty_per_unit: Decimal | int | str,
        actor_id: UUID | None = None,
    ) -> BomLine:
        return self._run(
            "set_bom_entry",
            lambda k: BomLine.from_model(
                k.catalog.set_bom_entry(
                    product_type, size, material_id, qty_per_unit, actor_id=actor_id
                )
            ),
        )

    def remove_bom_entry(self, product_type: str, size: str | None, material_id: UUID) -> bool:
        return self._run(
            "remove_bom_entry",
            lambda k: k.catalog.remove_bom_entry(product_type, size, material_id),
        )

    def create_job(
        self,
        name: str,
        product_list: Iterable[Mapping[str, Any]] | None = None,
        actor_id: UUID | None = None,
    ) -> UUID:
        return self._run(
            "create_job",
            lambda k: k.catalog.create_job(name, product_list, actor_id=actor_id).id,
        )

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    def _sub_phases(self) -> tuple[SubPhase, ...]:
        return tuple(
            SubPhase(p.name, p.start_stage, p.end_stage) for p in self._config.sub_phases
        )

    def _run(self, operation: str, work: Callable[[_Kernel], T], write: bool = True) -> T:
        if self._session is not None:
            result = work(_Kernel(self._session, self._clock, self._config))
            if write:
                self._session.flush()
            return result

        max_attempts = self._config.max_conflict_retries
        for attempt in range(1, max_attempts + 1):
            session = self._session_factory()
            try:
                result = work(_Kernel(session, self._clock, self._config))
                if write:
                    session.commit()
                else:
                    session.rollback()
                return result
            except DBAPIError as exc:
                session.rollback()
                if not is_transient_db_error(exc):
                    logger.warning("transaction_rolled_back", extra={"operation": operation})
                    raise
                logger.warning(
                    "transient_conflict_retry",
                    extra={"operation": operation, "attempt": attempt},
                )
                if attempt == max_attempts:
                    raise LedgerConflictError(operation, attempt) from exc
            except Exception:
                session.rollback()
                logger.warning("transaction_rolled_back", extra={"operation": operation})
                raise
            finally:
                session.close()
        raise LedgerConflictError(operation, max_attempts)
