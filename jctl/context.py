"""Utilities for tracing the stages of a workflow."""

import contextvars
from contextlib import contextmanager
import logging
from time import perf_counter
from typing import Generator


_LOGGER = logging.getLogger(__name__)

# No public API
__all__: list[str] = []


trace: contextvars.ContextVar[list[str]] = contextvars.ContextVar("trace")

_timings: contextvars.ContextVar[dict[str, float] | None] = contextvars.ContextVar(
    "_timings", default=None
)


@contextmanager
def timings_context() -> Generator[dict[str, float], None, None]:
    """Collect the duration of every stage traced within the context."""
    timings: dict[str, float] = {}
    token = _timings.set(timings)
    try:
        yield timings
    finally:
        _timings.reset(token)


@contextmanager
def trace_context(name: str) -> Generator[None, None, None]:
    """Trace a named stage, nested under any enclosing stage."""
    stack = trace.get([])
    token = trace.set(stack + [name])
    label = " > ".join(stack + [name])
    t1 = perf_counter()
    _LOGGER.debug("[Trace] > %s", label)
    try:
        yield
    finally:
        elapsed = perf_counter() - t1
        trace.reset(token)
        if (timings := _timings.get()) is not None:
            timings[label] = timings.get(label, 0.0) + elapsed
        _LOGGER.debug("[Trace] < %s (%0.2fs)", label, elapsed)
