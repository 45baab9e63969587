"""
Stage history tracker -- open/closed stage intervals per job.

Responsibility:
    Records a job's movement through production stages as intervals and
    keeps jobs.production_stage in step with the open interval.

Invariants enforced:
    - At most one open interval per job.  The job row is locked for the
      duration of a transition, so concurrent transitions for the same
      job serialize; the partial unique index uq_stage_history_one_open
      catches anything that bypasses the lock.
    - Closing the old interval and opening the new one happen in one
      savepoint; either both land or neither does.
    - A transition to the job's current stage is a no-op.
    - A transition timestamped before the open interval began is rejected.

Failure modes:
    - JobNotFoundError: unknown job.
    - InvalidStageError: blank stage label.
    - StageConflictError: expected_stage mismatch, out-of-order timestamp,
      or a concurrent writer won the single-open-interval race.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.exceptions import InvalidStageError, JobNotFoundError, StageConflictError
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.job import Job, StageHistoryEntry
from stock_kernel.services.base import BaseService

logger = get_logger("services.stage_tracker")


class TransitionStatus(str, Enum):
    TRANSITIONED = "transitioned"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class StageTransitionResult:
    job_id: UUID
    status: TransitionStatus
    previous_stage: str | None
    stage: str
    at: datetime
    closed_entry_id: UUID | None = None
    opened_entry_id: UUID | None = None

    @property
    def changed(self) -> bool:
        return self.status is TransitionStatus.TRANSITIONED


class StageHistoryTracker(BaseService[StageHistoryEntry]):
    """Applies stage transitions to jobs."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def transition(
        self,
        job_id: UUID,
        new_stage: str,
        at: datetime | None = None,
        expected_stage: str | None = None,
    ) -> StageTransitionResult:
        """
        Move a job to ``new_stage`` at time ``at`` (default: now).

        expected_stage, when given, must equal the job's current stage;
        callers that read the stage before deciding to move it pass it to
        detect a concurrent move.
        """
        if not isinstance(new_stage, str) or not new_stage.strip():
            raise InvalidStageError(new_stage)
        new_stage = new_stage.strip()
        at = self._normalize_time(at)

        with LogContext.bind(job_id=str(job_id)):
            job = self._lock_job(job_id)
            previous = job.production_stage

            if expected_stage is not None and previous != expected_stage:
                raise StageConflictError(
                    str(job_id),
                    f"expected stage {expected_stage!r} but job is in {previous!r}",
                )

            if previous == new_stage:
                logger.debug("stage_transition_noop", extra={"stage": new_stage})
                return StageTransitionResult(
                    job_id=job_id,
                    status=TransitionStatus.UNCHANGED,
                    previous_stage=previous,
                    stage=new_stage,
                    at=at,
                )

            open_entry = self._open_entry(job_id)
            if open_entry is not None and at < open_entry.entered_at:
                raise StageConflictError(
                    str(job_id),
                    f"transition at {at.isoformat()} precedes open "
                    f"{open_entry.stage!r} interval entered {open_entry.entered_at.isoformat()}",
                )

            try:
                with self.session.begin_nested():
                    if open_entry is not None:
                        open_entry.exited_at = at
                        self.session.flush()
                    entry = StageHistoryEntry(
                        id=uuid4(),
                        job_id=job_id,
                        stage=new_stage,
                        entered_at=at,
                    )
                    self.session.add(entry)
                    job.production_stage = new_stage
                    self.session.flush()
            except IntegrityError as exc:
                logger.warning("stage_transition_conflict", extra={"stage": new_stage})
                raise StageConflictError(
                    str(job_id), "another transition opened a stage interval concurrently"
                ) from exc

            logger.info(
                "stage_transition_recorded",
                extra={
                    "from_stage": previous,
                    "to_stage": new_stage,
                    "at": at,
                },
            )
            return StageTransitionResult(
                job_id=job_id,
                status=TransitionStatus.TRANSITIONED,
                previous_stage=previous,
                stage=new_stage,
                at=at,
                closed_entry_id=open_entry.id if open_entry is not None else None,
                opened_entry_id=entry.id,
            )

    def _normalize_time(self, at: datetime | None) -> datetime:
        if at is None:
            return self._clock.now()
        if at.tzinfo is None:
            return at.replace(tzinfo=UTC)
        return at.astimezone(UTC)

    def _lock_job(self, job_id: UUID) -> Job:
        job = self.session.execute(
            select(Job)
            .where(Job.id == job_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if job is None:
            raise JobNotFoundError(str(job_id))
        return job

    def _open_entry(self, job_id: UUID) -> StageHistoryEntry | None:
        return self.session.execute(
            select(StageHistoryEntry)
            .where(StageHistoryEntry.job_id == job_id)
            .where(StageHistoryEntry.exited_at.is_(None))
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
