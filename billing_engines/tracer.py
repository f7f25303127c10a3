"""
billing_engines.tracer -- Engine invocation tracer emitting BILLING_ENGINE_TRACE.

Responsibility:
    ``@traced_engine`` wraps a pure calculator with one structured trace
    record per call: engine name and version, a deterministic fingerprint
    of selected arguments, and the wall-clock duration.

Architecture position:
    Engines -- infrastructure support for the pure calculation layer.
    Emits a log record only; engines stay free of I/O.

Invariants enforced:
    - The fingerprint is deterministic: mappings are sorted by key,
      sequences keep their order, Decimals render via ``str``.
    - Positional and keyword arguments fingerprint identically, since
      arguments are bound to the wrapped function's signature first.

Failure modes:
    - Fingerprint fields absent from the call are recorded as "null".
    - Exceptions from the wrapped engine propagate unchanged after a trace
      record with ``outcome="error"`` and the exception type is emitted.
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import time
from collections.abc import Callable
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any

from billing_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")


def _canonicalize(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, str):
        return value
    if is_dataclass(value) and not isinstance(value, type):
        return _canonicalize(asdict(value))
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple, frozenset, set)):
        seq = sorted(value, key=str) if isinstance(value, (set, frozenset)) else value
        return "[" + ",".join(_canonicalize(v) for v in seq) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: dict[str, Any],
) -> str:
    """SHA-256 prefix (16 hex chars) over the named arguments."""
    parts = [
        f"{field}={_canonicalize(arguments.get(field))}"
        for field in fingerprint_fields
    ]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorator that emits BILLING_ENGINE_TRACE for pure engine invocations."""

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fp = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                fp = compute_input_fingerprint(fingerprint_fields, dict(bound.arguments))

            def trace(t0: float, **fields: Any) -> None:
                _logger.debug(
                    "BILLING_ENGINE_TRACE",
                    extra={
                        "trace_type": "BILLING_ENGINE_TRACE",
                        "engine_name": engine_name,
                        "engine_version": engine_version,
                        "input_fingerprint": fp,
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                        "function": func.__qualname__,
                        **fields,
                    },
                )

            t0 = time.monotonic()
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                trace(t0, outcome="error", error_type=type(exc).__name__)
                raise
            trace(t0, outcome="ok")
            return result

        return wrapper

    return decorator
