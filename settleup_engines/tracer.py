"""
settleup_engines.tracer -- SETTLEUP_ENGINE_TRACE records for engine calls.

``@traced_engine`` wraps a pure engine entry point and, after a successful
call, logs one structured record carrying the engine name and version, a
fingerprint of the chosen arguments and the call duration. A failing call
logs nothing here; the exception reaches the caller untouched.

The fingerprint is a truncated SHA-256 over a canonical text form of the
selected arguments. Arguments are bound against the wrapped signature, so
positional and keyword calls of the same inputs fingerprint the same way.
Mapping keys are sorted before hashing; an argument that was not passed and
has no default hashes as ``null``.

Usage:
    from settleup_engines.tracer import traced_engine

    @traced_engine("settlement", "1.0", fingerprint_fields=("balance",))
    def minimize(self, balance):
        ...
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import time
from collections.abc import Callable, Mapping
from decimal import Decimal
from typing import Any

from settleup_kernel.logging_config import get_logger

logger = get_logger("engines.tracer")

TRACE_MESSAGE = "SETTLEUP_ENGINE_TRACE"
FINGERPRINT_LENGTH = 16


def _canonicalize(value: Any) -> str:
    match value:
        case None:
            return "null"
        case str():
            return value
        case bool() | int() | float() | Decimal():
            return str(value)
        case Mapping():
            pairs = sorted((str(k), _canonicalize(v)) for k, v in value.items())
            return "{" + ",".join(f"{k}:{v}" for k, v in pairs) + "}"
        case list() | tuple():
            return "[" + ",".join(_canonicalize(v) for v in value) + "]"
        case _:
            return repr(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: Mapping[str, Any],
) -> str:
    """Hash the named arguments into a short, order-independent fingerprint."""
    canonical = "|".join(
        f"{name}={_canonicalize(arguments.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorate an engine entry point so each successful call is traced."""

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                bound.apply_defaults()
                fingerprint = compute_input_fingerprint(fingerprint_fields, bound.arguments)

            started = time.perf_counter()
            result = func(*args, **kwargs)
            elapsed_ms = (time.perf_counter() - started) * 1000

            logger.info(
                TRACE_MESSAGE,
                extra={
                    "trace_type": TRACE_MESSAGE,
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fingerprint,
                    "duration_ms": round(elapsed_ms, 3),
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper

    return decorator
