"""
Stage selector -- read-only access to job stage history.

Returns StageInterval DTOs for the duration analytics engine.
"""

from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from stock_kernel.domain.dtos import StageInterval
from stock_kernel.exceptions import JobNotFoundError
from stock_kernel.models.job import Job, StageHistoryEntry
from stock_kernel.selectors.base import BaseSelector


class StageSelector(BaseSelector[StageHistoryEntry]):
    """Stage history queries."""

    def current_stage(self, job_id: UUID) -> str | None:
        job = self.session.get(Job, job_id)
        if job is None:
            raise JobNotFoundError(str(job_id))
        return job.production_stage

    def history(self, job_id: UUID) -> tuple[StageInterval, ...]:
        """A job's intervals ordered by entered_at."""
        if self.session.get(Job, job_id) is None:
            raise JobNotFoundError(str(job_id))
        rows = self.session.execute(
            select(StageHistoryEntry)
            .where(StageHistoryEntry.job_id == job_id)
            .order_by(StageHistoryEntry.entered_at)
        ).scalars()
        return tuple(StageInterval.from_model(r) for r in rows)

    def open_intervals(self) -> tuple[StageInterval, ...]:
        rows = self.session.execute(
            select(StageHistoryEntry)
            .where(StageHistoryEntry.exited_at.is_(None))
            .order_by(StageHistoryEntry.entered_at)
        ).scalars()
        return tuple(StageInterval.from_model(r) for r in rows)

    def open_interval_counts(self) -> dict[UUID, int]:
        """Open interval count per job; every value should be 1."""
        counts: dict[UUID, int] = defaultdict(int)
        for interval in self.open_intervals():
            counts[interval.job_id] += 1
        return dict(counts)

    def intervals_entered_between(
        self, start: datetime, end: datetime
    ) -> tuple[StageInterval, ...]:
        rows = self.session.execute(
            select(StageHistoryEntry)
            .where(StageHistoryEntry.entered_at >= start)
            .where(StageHistoryEntry.entered_at <= end)
            .order_by(StageHistoryEntry.entered_at)
        ).scalars()
        return tuple(StageInterval.from_model(r) for r in rows)

    def jobs_entering(self, stage: str, start: datetime, end: datetime) -> list[UUID]:
        """Jobs with an entry into ``stage`` inside [start, end]."""
        rows = self.session.execute(
            select(StageHistoryEntry.job_id)
            .where(StageHistoryEntry.stage == stage)
            .where(StageHistoryEntry.entered_at >= start)
            .where(StageHistoryEntry.entered_at <= end)
            .distinct()
        ).scalars()
        return sorted(rows, key=str)

    def histories_for(
        self, job_ids: Iterable[UUID]
    ) -> dict[UUID, tuple[StageInterval, ...]]:
        ids = list(job_ids)
        if not ids:
            return {}
        grouped: dict[UUID, list[StageInterval]] = defaultdict(list)
        rows = self.session.execute(
            select(StageHistoryEntry)
            .where(StageHistoryEntry.job_id.in_(ids))
            .order_by(StageHistoryEntry.job_id, StageHistoryEntry.entered_at)
        ).scalars()
        for row in rows:
            grouped[row.job_id].append(StageInterval.from_model(row))
        return {job_id: tuple(intervals) for job_id, intervals in grouped.items()}
