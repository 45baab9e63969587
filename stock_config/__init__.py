"""
stock_config -- single public entrypoint for ledger configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration
    files or environment variables directly.

Architecture position:
    Configuration -- sits above ``stock_kernel`` and below
    ``stock_services``.  The kernel MUST NEVER import from
    ``stock_config``; the facade passes plain values down.

Lookup order:
    1. the explicit ``path`` argument
    2. the ``STOCK_LEDGER_CONFIG`` environment variable
    3. the packaged ``defaults.yaml``
    ``DATABASE_URL``, when set, replaces ``database_url`` from any source.

Failure modes:
    - ``FileNotFoundError`` -- the selected file does not exist.
    - ``ValueError`` -- schema validation failures.
    - ``yaml.YAMLError`` -- malformed YAML.

Audit relevance:
    Every successful call emits ``stock_config_loaded`` carrying the
    checksum of the effective configuration, so any run can be tied back
    to the exact settings that governed it.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from stock_config.loader import compute_checksum, load_yaml_file, parse_config
from stock_config.schema import LedgerConfig, SubPhaseConfig

_logger = logging.getLogger("stock_kernel.config")

CONFIG_ENV_VAR = "STOCK_LEDGER_CONFIG"
DATABASE_URL_ENV_VAR = "DATABASE_URL"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def resolve_config_path(path: Path | str | None = None) -> Path:
    if path is not None:
        return Path(path)
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def get_active_config(path: Path | str | None = None) -> LedgerConfig:
    """The ONLY public configuration entrypoint.

    Not cached: callers hold the returned config for as long as they need
    a stable view.

    Raises:
        FileNotFoundError: If the selected file does not exist.
        ValueError: If configuration validation fails.
    """
    config_path = resolve_config_path(path)
    data = load_yaml_file(config_path)

    env_url = os.environ.get(DATABASE_URL_ENV_VAR)
    if env_url:
        data["database_url"] = env_url

    config = parse_config(data, source=str(config_path))

    _logger.info(
        "stock_config_loaded",
        extra={
            "config_source": config.source,
            "checksum": config.checksum,
            "database_url_from_env": bool(env_url),
            "deduction_trigger_stage": config.deduction_trigger_stage,
            "auto_deduct_on_stage": config.auto_deduct_on_stage,
        },
    )
    return config


__all__ = [
    "CONFIG_ENV_VAR",
    "DATABASE_URL_ENV_VAR",
    "DEFAULT_CONFIG_PATH",
    "LedgerConfig",
    "SubPhaseConfig",
    "compute_checksum",
    "get_active_config",
    "resolve_config_path",
]
