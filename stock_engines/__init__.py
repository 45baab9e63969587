"""
Module: stock_engines
Responsibility:
    Package entrypoint that re-exports the pure calculation engines used
    by stock_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import stock_kernel/domain (and sibling engine modules).
    MUST NOT import stock_services.

Invariants enforced:
    - Purity: engines never read the clock; ``now`` is a parameter.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Engine invocations are traced via ``@traced_engine``
    (see ``stock_engines.tracer``), emitting STOCK_ENGINE_TRACE records.
"""

from stock_engines.durations import (
    DEFAULT_SUB_PHASES,
    FIRST_ENTRY,
    CurrentStageSummary,
    DurationMetrics,
    MetricsWindow,
    StageAverage,
    SubPhase,
    average_seconds,
    completed_stage_durations,
    compute_duration_metrics,
    delivered_cohort,
    format_duration,
    fulfillment_durations,
    milestone,
    milestone_durations,
    seconds_between,
    time_in_current_stage,
)
from stock_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "CurrentStageSummary",
    "DEFAULT_SUB_PHASES",
    "DurationMetrics",
    "FIRST_ENTRY",
    "MetricsWindow",
    "StageAverage",
    "SubPhase",
    "average_seconds",
    "completed_stage_durations",
    "compute_duration_metrics",
    "compute_input_fingerprint",
    "delivered_cohort",
    "format_duration",
    "fulfillment_durations",
    "milestone",
    "milestone_durations",
    "seconds_between",
    "time_in_current_stage",
    "traced_engine",
]
