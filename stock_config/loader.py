"""
Configuration loader (``stock_config.loader``).

Loads a YAML file and parses it into a frozen ``LedgerConfig``.  Callers
use ``stock_config.get_active_config()``; this module is its machinery.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` with a descriptive message; unknown
  keys are rejected rather than ignored.
* ``compute_checksum`` is a deterministic SHA-256 over canonical JSON.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from stock_config.schema import LedgerConfig, SubPhaseConfig

FIRST_ENTRY = "__first__"

_KNOWN_KEYS = frozenset(
    {
        "database_url",
        "deduction_trigger_stage",
        "delivered_stage",
        "auto_deduct_on_stage",
        "require_complete_bom",
        "metrics_lookback_days",
        "max_conflict_retries",
        "stage_aliases",
        "sub_phases",
    }
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _text(data: dict[str, Any], key: str, default: str | None = None) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{key} must be a non-empty string, got {value!r}")
    return value.strip()


def _flag(data: dict[str, Any], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be true or false, got {value!r}")
    return value


def _count(data: dict[str, Any], key: str, default: int, minimum: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ValueError(f"{key} must be an integer >= {minimum}, got {value!r}")
    return value


def parse_stage_aliases(raw: Any) -> tuple[tuple[str, str], ...]:
    if raw is None:
        return ()
    if not isinstance(raw, dict):
        raise ValueError("stage_aliases must be a mapping of alias -> stage")
    aliases = []
    for alias, stage in sorted(raw.items(), key=lambda kv: str(kv[0])):
        if not isinstance(alias, str) or not isinstance(stage, str) or not alias or not stage:
            raise ValueError(f"stage alias {alias!r} -> {stage!r} must map text to text")
        aliases.append((alias, stage))
    return tuple(aliases)


def parse_sub_phase(raw: Any) -> SubPhaseConfig:
    if not isinstance(raw, dict):
        raise ValueError(f"sub_phases entries must be mappings, got {raw!r}")
    phase = SubPhaseConfig(
        name=_text(raw, "name"),
        start_stage=_text(raw, "start_stage"),
        end_stage=_text(raw, "end_stage"),
    )
    if phase.end_stage == FIRST_ENTRY:
        raise ValueError(f"sub-phase {phase.name!r} cannot end at {FIRST_ENTRY}")
    if phase.start_stage == phase.end_stage:
        raise ValueError(f"sub-phase {phase.name!r} starts and ends at the same stage")
    return phase


def parse_config(data: dict[str, Any], source: str = "") -> LedgerConfig:
    """
    Build a LedgerConfig from a parsed YAML mapping.

    Raises:
        ValueError: unknown keys, wrong types, or out-of-range values.
    """
    unknown = sorted(set(data) - _KNOWN_KEYS)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")

    raw_phases = data.get("sub_phases") or []
    if not isinstance(raw_phases, list):
        raise ValueError("sub_phases must be a list")
    phases = tuple(parse_sub_phase(p) for p in raw_phases)
    names = [p.name for p in phases]
    if len(names) != len(set(names)):
        raise ValueError("sub_phases names must be unique")

    config = LedgerConfig(
        database_url=_text(data, "database_url"),
        deduction_trigger_stage=_text(data, "deduction_trigger_stage", "printing"),
        delivered_stage=_text(data, "delivered_stage", "delivered_collected"),
        auto_deduct_on_stage=_flag(data, "auto_deduct_on_stage", True),
        require_complete_bom=_flag(data, "require_complete_bom", False),
        metrics_lookback_days=_count(data, "metrics_lookback_days", 30, minimum=1),
        max_conflict_retries=_count(data, "max_conflict_retries", 3, minimum=1),
        stage_aliases=parse_stage_aliases(data.get("stage_aliases")),
        sub_phases=phases,
    )
    return replace(config, checksum=compute_checksum(config.to_dict()), source=source)
