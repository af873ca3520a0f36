"""
payroll_engines.tracer -- ``@traced_engine`` emits PAYROLL_ENGINE_TRACE.

Each traced call logs the engine name and version, a short fingerprint of
the keyword inputs named in ``fingerprint_fields``, and the wall time.  Two
calls with equal inputs log the same fingerprint, which is how a replayed
calculation is matched to the original in the logs.

Inputs that already carry a ``fingerprint`` (rule sets, reference
snapshots) contribute that value instead of being serialized again.
"""

from __future__ import annotations

import functools
import time
from collections.abc import Callable
from typing import Any

from payroll_kernel.logging_config import get_logger
from payroll_kernel.utils.hashing import hash_payload

logger = get_logger("engines.tracer")

FINGERPRINT_LENGTH = 16


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: dict[str, Any],
) -> str:
    """Hex prefix of the SHA-256 over the named kwargs; missing ones count as None."""
    payload = {}
    for name in fingerprint_fields:
        value = kwargs.get(name)
        payload[name] = getattr(value, "fingerprint", value)
    return hash_payload(payload)[:FINGERPRINT_LENGTH]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = (
                compute_input_fingerprint(fingerprint_fields, kwargs)
                if fingerprint_fields
                else ""
            )
            started = time.monotonic()
            result = func(*args, **kwargs)
            logger.info(
                "PAYROLL_ENGINE_TRACE",
                extra={
                    "trace_type": "PAYROLL_ENGINE_TRACE",
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fingerprint,
                    "duration_ms": round((time.monotonic() - started) * 1000, 2),
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper

    return decorator
