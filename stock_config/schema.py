"""
Ledger configuration schema.

Frozen dataclasses the loader parses YAML into.  These are runtime
values: every field has already been validated by the loader, and the
checksum identifies the exact effective configuration.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class SubPhaseConfig:
    """A reported span between two stage milestones."""

    name: str
    start_stage: str  # "__first__" = the job's earliest stage entry
    end_stage: str


@dataclass(frozen=True)
class LedgerConfig:
    """Effective configuration for the production stock ledger."""

    database_url: str
    deduction_trigger_stage: str = "printing"
    delivered_stage: str = "delivered_collected"
    auto_deduct_on_stage: bool = True
    require_complete_bom: bool = False
    metrics_lookback_days: int = 30
    max_conflict_retries: int = 3
    stage_aliases: tuple[tuple[str, str], ...] = ()
    sub_phases: tuple[SubPhaseConfig, ...] = ()
    checksum: str = field(default="", compare=False)
    source: str = field(default="", compare=False)

    @property
    def alias_map(self) -> dict[str, str] | None:
        """Stage alias table, or None to use the built-in defaults."""
        return dict(self.stage_aliases) if self.stage_aliases else None

    def to_dict(self) -> dict[str, Any]:
        """Effective values, without checksum and source."""
        data = asdict(self)
        data.pop("checksum")
        data.pop("source")
        data["stage_aliases"] = dict(self.stage_aliases)
        data["sub_phases"] = [asdict(p) for p in self.sub_phases]
        return data
