"""
Module: stock_kernel.models.job
Responsibility: ORM persistence for production jobs and their stage history.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - At most one open StageHistoryEntry (exited_at IS NULL) per job:
      partial UNIQUE index uq_stage_history_one_open, backed by the
      tracker's row lock on the job.
    - StageHistoryEntry rows are append-only except for the single
      NULL -> timestamp write of exited_at (db/immutability.py).

Jobs are owned by collaborators (order intake, the board sync).  The
ledger only reads product_list and writes production_stage through
stage transitions.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString


class Job(TrackedBase):
    """A production order with an ordered product list."""

    __tablename__ = "jobs"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Ordered list of {"product_type"|"product_name", "size", "quantity"}
    product_list: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    production_stage: Mapped[str | None] = mapped_column(String(100), nullable=True)

    stage_history: Mapped[list["StageHistoryEntry"]] = relationship(
        back_populates="job",
        lazy="select",
        order_by="StageHistoryEntry.entered_at",
    )

    def __repr__(self) -> str:
        return f"<Job {self.name} [{self.production_stage}]>"


class StageHistoryEntry(Base):
    """An interval a job spent in one stage; open while exited_at is None."""

    __tablename__ = "job_stage_history"

    __table_args__ = (
        Index(
            "uq_stage_history_one_open",
            "job_id",
            unique=True,
            sqlite_where=text("exited_at IS NULL"),
            postgresql_where=text("exited_at IS NULL"),
        ),
        Index("idx_stage_history_job_entered", "job_id", "entered_at"),
        Index("idx_stage_history_stage_entered", "stage", "entered_at"),
    )

    job_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("jobs.id"), nullable=False
    )
    stage: Mapped[str] = mapped_column(String(100), nullable=False)
    entered_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    exited_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    job: Mapped[Job] = relationship(back_populates="stage_history")

    @property
    def is_open(self) -> bool:
        return self.exited_at is None

    @property
    def duration_seconds(self) -> int | None:
        if self.exited_at is None:
            return None
        return int((self.exited_at - self.entered_at).total_seconds())

    def __repr__(self) -> str:
        state = "open" if self.is_open else f"closed {self.exited_at.isoformat()}"
        return f"<StageHistoryEntry {self.job_id} {self.stage} [{state}]>"
