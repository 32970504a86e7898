"""
repair_engines.tracer -- REPAIR_ENGINE_TRACE records for engine calls.

Responsibility:
    ``@traced_engine`` wraps a pure engine function and, after each call,
    emits one DEBUG record describing it: which engine ran, against which
    catalog version, a fingerprint of the inputs that decide its answer,
    a short summary of that answer, and how long it took.  Two traces with
    the same fingerprint and catalog version must carry the same summary.

Architecture position:
    Engines -- support for the pure calculation layer.  Writing a log
    record is the only effect; arguments and results pass through untouched.

Usage:
    @traced_engine(
        "transition_validator", "1.0",
        fingerprint_fields=("target", "payload"),
        summarize=lambda r: {"allowed": r.ok},
    )
    def validate_transition(*, job, target, catalog, payload=None): ...
"""

from __future__ import annotations

import functools
import hashlib
import json
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

# Same namespace as repair_kernel.logging_config.get_logger, without the import.
_logger = logging.getLogger("repair_kernel.engines.tracer")


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: Mapping[str, Any],
) -> str:
    """First 16 hex chars of SHA-256 over the named kwargs (absent ones are null)."""
    selected = {name: kwargs.get(name) for name in fingerprint_fields}
    canonical = json.dumps(selected, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
    summarize: Callable[[Any], dict[str, Any]] | None = None,
) -> Callable:
    """Decorate a keyword-only engine function with REPAIR_ENGINE_TRACE logging."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.monotonic()
            trace: dict[str, Any] = {
                "trace_type": "REPAIR_ENGINE_TRACE",
                "engine_name": engine_name,
                "engine_version": engine_version,
                "function": func.__qualname__,
            }
            catalog = kwargs.get("catalog")
            if catalog is not None:
                trace["catalog_version"] = catalog.version
            if fingerprint_fields:
                trace["input_fingerprint"] = compute_input_fingerprint(
                    fingerprint_fields, kwargs
                )

            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                trace["engine_outcome"] = "raised"
                trace["error_type"] = type(exc).__name__
                raise
            else:
                trace["engine_outcome"] = "returned"
                if summarize is not None:
                    trace.update(summarize(result))
                return result
            finally:
                trace["duration_ms"] = round((time.monotonic() - started) * 1000, 2)
                _logger.debug("REPAIR_ENGINE_TRACE", extra=trace)

        return wrapper

    return decorator
