"""
Module: stock_engines.durations
Responsibility:
    Stage-duration analytics over job stage history: time in the current
    stage, order-to-delivery fulfillment time, sub-phase milestones, and
    per-stage averages of completed intervals.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import stock_kernel/domain.

Invariants enforced:
    - Purity: no clock access.  ``now`` and the window are parameters.
    - All durations are whole seconds (half-up rounding).
    - A duration with a missing endpoint, or a negative one (out-of-order
      timestamps), is excluded from every average; it is never counted
      as zero.
    - Identical inputs produce identical outputs.

Failure modes:
    - ValueError from MetricsWindow / SubPhase on malformed definitions.

Usage:
    from stock_engines.durations import MetricsWindow, compute_duration_metrics

    window = MetricsWindow.trailing(now, days=30)
    metrics = compute_duration_metrics(
        open_intervals=open_intervals,
        histories=histories,
        completed_intervals=completed,
        window=window,
        now=now,
    )
    format_duration(metrics.fulfillment.average_seconds)   # "2d 3h"
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from stock_engines.tracer import traced_engine
from stock_kernel.domain.dtos import StageInterval
from stock_kernel.domain.stages import CANONICAL_STAGES
from stock_kernel.logging_config import get_logger

logger = get_logger("engines.durations")

# Milestone label for a job's earliest stage entry, whatever the stage.
FIRST_ENTRY = "__first__"

DEFAULT_DELIVERED_STAGE = "delivered_collected"

_SECONDS_PER_MINUTE = 60
_SECONDS_PER_HOUR = 3600
_SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class MetricsWindow:
    """Closed time range [start, end] for window-scoped metrics."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError("window end cannot precede window start")

    @classmethod
    def trailing(cls, end: datetime, days: int) -> MetricsWindow:
        """The ``days`` days ending at ``end``."""
        if days <= 0:
            raise ValueError("days must be positive")
        return cls(start=end - timedelta(days=days), end=end)

    def contains(self, moment: datetime | None) -> bool:
        return moment is not None and self.start <= moment <= self.end


@dataclass(frozen=True)
class SubPhase:
    """A named span between two stage milestones (or FIRST_ENTRY)."""

    name: str
    start_stage: str
    end_stage: str

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("sub-phase name is required")
        if not self.start_stage or not self.end_stage:
            raise ValueError(f"sub-phase {self.name!r} needs start and end stages")
        if self.end_stage == FIRST_ENTRY:
            raise ValueError(f"sub-phase {self.name!r} cannot end at the first entry")
        if self.start_stage == self.end_stage:
            raise ValueError(f"sub-phase {self.name!r} starts and ends at the same stage")


DEFAULT_SUB_PHASES: tuple[SubPhase, ...] = (
    SubPhase("design_to_print", FIRST_ENTRY, "printing"),
    SubPhase("print_to_delivered", "printing", DEFAULT_DELIVERED_STAGE),
)


@dataclass(frozen=True)
class StageAverage:
    """Average duration for one stage (or phase) and its sample size."""

    stage: str
    average_seconds: int | None
    sample_count: int


@dataclass(frozen=True)
class CurrentStageSummary:
    """
    Time jobs have spent so far in the stage they are in now.

    open_counts counts every open interval per stage, including those
    whose duration could not be measured.
    """

    average_seconds: int | None
    by_stage: tuple[StageAverage, ...]
    open_counts: Mapping[str, int]

    @property
    def open_total(self) -> int:
        return sum(self.open_counts.values())


@dataclass(frozen=True)
class DurationMetrics:
    window: MetricsWindow
    as_of: datetime
    current_stage: CurrentStageSummary
    fulfillment: StageAverage
    sub_phases: tuple[StageAverage, ...]
    completed_stages: tuple[StageAverage, ...]


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------


def seconds_between(start: datetime | None, end: datetime | None) -> int | None:
    """Whole seconds from start to end; None when missing or negative."""
    if start is None or end is None:
        return None
    seconds = Decimal(str((end - start).total_seconds())).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    if seconds < 0:
        return None
    return int(seconds)


def average_seconds(values: Iterable[int | None]) -> int | None:
    """Half-up rounded mean of the non-None values; None when there are none."""
    samples = [v for v in values if v is not None]
    if not samples:
        return None
    mean = Decimal(sum(samples)) / Decimal(len(samples))
    return int(mean.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _stage_sort_key(stage: str) -> tuple[int, str]:
    try:
        return (CANONICAL_STAGES.index(stage), stage)
    except ValueError:
        return (len(CANONICAL_STAGES), stage)


def _group_averages(samples: Mapping[str, list[int]]) -> tuple[StageAverage, ...]:
    return tuple(
        StageAverage(stage=stage, average_seconds=average_seconds(values), sample_count=len(values))
        for stage, values in sorted(samples.items(), key=lambda kv: _stage_sort_key(kv[0]))
    )


def milestone(history: Sequence[StageInterval], stage: str) -> datetime | None:
    """
    When a job reached ``stage``: the earliest entered_at among its entries
    for that stage (or among all entries for FIRST_ENTRY).
    """
    moments = [
        interval.entered_at
        for interval in history
        if interval.entered_at is not None and (stage == FIRST_ENTRY or interval.stage == stage)
    ]
    return min(moments) if moments else None


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


def time_in_current_stage(
    intervals: Iterable[StageInterval],
    now: datetime,
) -> CurrentStageSummary:
    """Open intervals measured up to ``now``, overall and per stage."""
    open_counts: dict[str, int] = defaultdict(int)
    per_stage: dict[str, list[int]] = defaultdict(list)
    overall: list[int] = []
    for interval in intervals:
        if not interval.is_open:
            continue
        open_counts[interval.stage] += 1
        seconds = seconds_between(interval.entered_at, now)
        if seconds is None:
            continue
        per_stage[interval.stage].append(seconds)
        overall.append(seconds)
    return CurrentStageSummary(
        average_seconds=average_seconds(overall),
        by_stage=_group_averages(per_stage),
        open_counts=dict(open_counts),
    )


def delivered_cohort(
    histories: Mapping[UUID, Sequence[StageInterval]],
    window: MetricsWindow,
    delivered_stage: str = DEFAULT_DELIVERED_STAGE,
) -> dict[UUID, datetime]:
    """Jobs delivered inside the window, with their earliest in-window delivery."""
    cohort: dict[UUID, datetime] = {}
    for job_id, history in histories.items():
        delivered = [
            interval.entered_at
            for interval in history
            if interval.stage == delivered_stage and window.contains(interval.entered_at)
        ]
        if delivered:
            cohort[job_id] = min(delivered)
    return cohort


def fulfillment_durations(
    histories: Mapping[UUID, Sequence[StageInterval]],
    window: MetricsWindow,
    delivered_stage: str = DEFAULT_DELIVERED_STAGE,
) -> dict[UUID, int]:
    """First stage entry to delivery, for jobs delivered inside the window."""
    durations: dict[UUID, int] = {}
    for job_id, delivered_at in delivered_cohort(histories, window, delivered_stage).items():
        seconds = seconds_between(milestone(histories[job_id], FIRST_ENTRY), delivered_at)
        if seconds is not None:
            durations[job_id] = seconds
    return durations


def milestone_durations(
    histories: Mapping[UUID, Sequence[StageInterval]],
    start_stage: str,
    end_stage: str,
) -> dict[UUID, int]:
    """Seconds between two milestones per job; jobs missing either are left out."""
    durations: dict[UUID, int] = {}
    for job_id, history in histories.items():
        seconds = seconds_between(milestone(history, start_stage), milestone(history, end_stage))
        if seconds is not None:
            durations[job_id] = seconds
    return durations


def completed_stage_durations(
    intervals: Iterable[StageInterval],
    window: MetricsWindow,
) -> tuple[StageAverage, ...]:
    """Per-stage average of closed intervals entered inside the window."""
    per_stage: dict[str, list[int]] = defaultdict(list)
    for interval in intervals:
        if interval.is_open or not window.contains(interval.entered_at):
            continue
        seconds = seconds_between(interval.entered_at, interval.exited_at)
        if seconds is not None:
            per_stage[interval.stage].append(seconds)
    return _group_averages(per_stage)


@traced_engine("durations", "1.0", fingerprint_fields=("window", "now", "delivered_stage"))
def compute_duration_metrics(
    *,
    open_intervals: Iterable[StageInterval],
    histories: Mapping[UUID, Sequence[StageInterval]],
    completed_intervals: Iterable[StageInterval],
    window: MetricsWindow,
    now: datetime,
    delivered_stage: str = DEFAULT_DELIVERED_STAGE,
    sub_phases: Sequence[SubPhase] = DEFAULT_SUB_PHASES,
) -> DurationMetrics:
    """
    Bundle every duration metric for one dashboard refresh.

    Sub-phases are measured over the same cohort as fulfillment: jobs
    with a delivery inside the window.
    """
    cohort_ids = delivered_cohort(histories, window, delivered_stage)
    cohort = {job_id: histories[job_id] for job_id in cohort_ids}

    fulfillment = fulfillment_durations(cohort, window, delivered_stage)
    phases = []
    for phase in sub_phases:
        durations = milestone_durations(cohort, phase.start_stage, phase.end_stage)
        phases.append(
            StageAverage(
                stage=phase.name,
                average_seconds=average_seconds(durations.values()),
                sample_count=len(durations),
            )
        )

    metrics = DurationMetrics(
        window=window,
        as_of=now,
        current_stage=time_in_current_stage(open_intervals, now),
        fulfillment=StageAverage(
            stage="fulfillment",
            average_seconds=average_seconds(fulfillment.values()),
            sample_count=len(fulfillment),
        ),
        sub_phases=tuple(phases),
        completed_stages=completed_stage_durations(completed_intervals, window),
    )
    logger.info(
        "duration_metrics_computed",
        extra={
            "cohort_size": len(cohort),
            "open_intervals": metrics.current_stage.open_total,
            "fulfillment_avg_seconds": metrics.fulfillment.average_seconds,
        },
    )
    return metrics


def format_duration(seconds: int | None) -> str:
    """Compact rendering: "2d 3h", "4h 10m", "7m"; "-" for nothing to show."""
    if seconds is None or seconds <= 0:
        return "-"
    days, rest = divmod(seconds, _SECONDS_PER_DAY)
    hours, rest = divmod(rest, _SECONDS_PER_HOUR)
    minutes = rest // _SECONDS_PER_MINUTE
    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
