"""
stock_engines.tracer -- Engine invocation tracer emitting STOCK_ENGINE_TRACE.

Responsibility:
    ``@traced_engine`` wraps pure engine invocations with one structured
    log record carrying engine_name, engine_version, input_fingerprint
    (SHA-256 prefix of selected keyword inputs) and duration_ms.

Architecture position:
    Engines -- support for the pure calculation layer.  Emits a log record
    only; no I/O, no mutation of inputs.  Uses its own logger name under
    the ``stock_kernel`` namespace so it does not import the kernel.

Failure modes:
    - fingerprint_fields naming kwargs that were not passed are recorded
      as "null".
    - _canonicalize falls back to ``str(value)`` for unknown types.
"""

from __future__ import annotations

import functools
import hashlib
import logging
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any

_logger = logging.getLogger("stock_kernel.engines.tracer")


def _canonicalize(value: Any) -> str:
    """Stable string form of a value for fingerprinting."""
    if value is None:
        return "null"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: dict[str, Any],
) -> str:
    """16-char SHA-256 prefix over the named keyword inputs."""
    parts = [f"{field}={_canonicalize(kwargs.get(field))}" for field in fingerprint_fields]
    canonical = "|".join(parts)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorator that emits STOCK_ENGINE_TRACE for pure engine invocations.

    Args:
        engine_name: Engine identifier (e.g., "durations").
        engine_version: Engine version (e.g., "1.0").
        fingerprint_fields: Keyword argument names to include in
            the input fingerprint hash.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fp = ""
            if fingerprint_fields:
                fp = compute_input_fingerprint(fingerprint_fields, kwargs)

            t0 = time.monotonic()
            result = func(*args, **kwargs)
            duration_ms = round((time.monotonic() - t0) * 1000, 2)

            _logger.info(
                "STOCK_ENGINE_TRACE",
                extra={
                    "trace_type": "STOCK_ENGINE_TRACE",
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fp,
                    "duration_ms": duration_ms,
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper

    return decorator
