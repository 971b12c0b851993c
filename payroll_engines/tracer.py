"""
payroll_engines.tracer -- PAYROLL_ENGINE_TRACE records for engine calls.

``@traced_engine`` wraps a pure engine method and emits one structured
record per invocation: the engine's name and version, a short fingerprint
of the selected arguments, the elapsed time, and whether the call raised.

The fingerprint is taken over the *bound* arguments, so an engine can be
called positionally or by keyword and still produce the same value.
Engines stay free of I/O; the only side effect here is the log record.

Usage:
    @traced_engine("bonus_smoothing", "1.0", fingerprint_fields=("context",))
    def calculate(self, *, context, ...):
        ...
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import time
from collections.abc import Callable, Mapping
from typing import Any

from payroll_kernel.exceptions import PayrollEngineError
from payroll_kernel.logging_config import get_logger
from payroll_kernel.utils.hashing import canonicalize_json

_logger = get_logger("engines.tracer")

TRACE_TYPE = "PAYROLL_ENGINE_TRACE"


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: Mapping[str, Any],
) -> str:
    """First 16 hex chars of the SHA-256 over the selected arguments.

    A field missing from ``arguments`` hashes as null.
    """
    selected = {name: arguments.get(name) for name in fingerprint_fields}
    digest = hashlib.sha256(canonicalize_json(selected).encode("utf-8"))
    return digest.hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                fingerprint = compute_input_fingerprint(
                    fingerprint_fields, bound.arguments,
                )

            record: dict[str, Any] = {
                "trace_type": TRACE_TYPE,
                "engine_name": engine_name,
                "engine_version": engine_version,
                "input_fingerprint": fingerprint,
                "function": func.__qualname__,
            }
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except PayrollEngineError as exc:
                record["outcome"] = "rejected"
                record["error_code"] = exc.code
                raise
            except Exception:
                record["outcome"] = "error"
                raise
            else:
                record["outcome"] = "ok"
                return result
            finally:
                record["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
                _logger.info(TRACE_TYPE, extra=record)

        return wrapper

    return decorator
