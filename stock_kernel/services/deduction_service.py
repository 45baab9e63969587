"""
Deduction service -- resolve a job's product list and deduct stock once.

Flow for resolve_and_deduct(job_id):

    lock job row (FOR UPDATE)
         |
         v
    existing production_deduction for the job? --yes--> ALREADY_DEDUCTED
         |
         no
         v
    parse product list -> fetch recipes -> plan_deduction()
         |
         +-- missing recipes: warnings (or MissingBomError when strict)
         |
         v
    plan empty? --yes--> NOTHING_TO_DEDUCT (nothing persisted)
         |
         no
         v
    StockLedgerService.apply(production_deduction, reference=str(job_id))

preview(job_id) runs the same planning path without the lock and without
the ledger, so the dry run can never diverge from the real deduction.
"""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.domain.bom import DeductionPlan, MissingBom, plan_deduction
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import LineItemSpec, TransactionRecord, parse_product_list
from stock_kernel.exceptions import JobNotFoundError, MissingBomError
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.job import Job
from stock_kernel.models.transaction import StockTransaction, TransactionKind
from stock_kernel.selectors.bom_selector import BomSelector
from stock_kernel.services.base import BaseService
from stock_kernel.services.ledger_service import ApplyStatus, StockLedgerService

logger = get_logger("services.deduction")

DEDUCTION_NOTES_PREFIX = "auto_deduct_for_job:"


class DeductionStatus(str, Enum):
    DEDUCTED = "deducted"
    ALREADY_DEDUCTED = "already_deducted"
    NOTHING_TO_DEDUCT = "nothing_to_deduct"


@dataclass(frozen=True)
class DeductionResult:
    """
    Outcome of resolve_and_deduct().

    transaction_id is None only for NOTHING_TO_DEDUCT.  missing_bom lists
    product lines that had no recipe and were left out.
    """

    job_id: UUID
    status: DeductionStatus
    transaction_id: UUID | None
    line_items: tuple[LineItemSpec, ...]
    missing_bom: tuple[MissingBom, ...] = ()

    @property
    def has_warnings(self) -> bool:
        return bool(self.missing_bom)

    @property
    def is_new(self) -> bool:
        return self.status is DeductionStatus.DEDUCTED


def _line_items_from_record(record: TransactionRecord) -> tuple[LineItemSpec, ...]:
    return tuple(
        LineItemSpec(material_id=line.material_id, delta_qty=line.delta_qty)
        for line in record.lines
    )


class DeductionService(BaseService[StockTransaction]):
    """Combines BOM resolution and the ledger for one job at a time."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        ledger: StockLedgerService | None = None,
        require_complete_bom: bool = False,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._ledger = ledger or StockLedgerService(session, self._clock)
        self._require_complete_bom = require_complete_bom
        self._boms = BomSelector(session)

    def preview(self, job_id: UUID) -> DeductionPlan:
        """Dry run: what a deduction would consume right now."""
        return self._plan(self._get_job(job_id, lock=False))

    def resolve_and_deduct(
        self,
        job_id: UUID,
        actor_id: UUID | None = None,
    ) -> DeductionResult:
        """
        Deduct the job's BOM consumption exactly once.

        Raises:
            JobNotFoundError: unknown job.
            InvalidProductLineError: malformed product list.
            MissingBomError: only when complete BOM coverage is required.
            InsufficientStockError: from the ledger; nothing is persisted.
        """
        reference = str(job_id)
        with LogContext.bind(job_id=reference):
            job = self._get_job(job_id, lock=True)

            existing = self._ledger.find_existing(TransactionKind.PRODUCTION_DEDUCTION, reference)
            if existing is not None:
                record = TransactionRecord.from_model(existing)
                logger.info(
                    "deduction_already_applied",
                    extra={"transaction_id": str(record.id)},
                )
                return DeductionResult(
                    job_id=job_id,
                    status=DeductionStatus.ALREADY_DEDUCTED,
                    transaction_id=record.id,
                    line_items=_line_items_from_record(record),
                )

            plan = self._plan(job)

            if plan.missing:
                logger.warning(
                    "deduction_missing_bom",
                    extra={"missing": [str(m) for m in plan.missing]},
                )
                if self._require_complete_bom:
                    raise MissingBomError([(m.product_type, m.size) for m in plan.missing])

            if plan.is_empty:
                logger.warning("deduction_nothing_to_deduct")
                return DeductionResult(
                    job_id=job_id,
                    status=DeductionStatus.NOTHING_TO_DEDUCT,
                    transaction_id=None,
                    line_items=(),
                    missing_bom=plan.missing,
                )

            result = self._ledger.apply(
                TransactionKind.PRODUCTION_DEDUCTION,
                reference,
                f"{DEDUCTION_NOTES_PREFIX}{job_id}",
                plan.line_items,
                actor_id=actor_id,
            )
            status = (
                DeductionStatus.DEDUCTED
                if result.status is ApplyStatus.APPLIED
                else DeductionStatus.ALREADY_DEDUCTED
            )
            logger.info(
                "deduction_completed",
                extra={
                    "transaction_id": str(result.transaction_id),
                    "status": status.value,
                    "line_count": len(result.record.lines),
                },
            )
            return DeductionResult(
                job_id=job_id,
                status=status,
                transaction_id=result.transaction_id,
                line_items=_line_items_from_record(result.record),
                missing_bom=plan.missing if result.is_new else (),
            )

    def _get_job(self, job_id: UUID, lock: bool) -> Job:
        stmt = select(Job).where(Job.id == job_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        job = self.session.execute(stmt).scalar_one_or_none()
        if job is None:
            raise JobNotFoundError(str(job_id))
        return job

    def _plan(self, job: Job) -> DeductionPlan:
        product_lines = parse_product_list(job.product_list)
        recipes = self._boms.recipes_for(line.product_type for line in product_lines)
        return plan_deduction(product_lines, recipes)
