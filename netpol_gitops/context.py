"""Utilities for tracing nested workflow steps in logs."""

import contextvars
from contextlib import contextmanager
import logging
from time import perf_counter
from typing import Generator

_LOGGER = logging.getLogger(__name__)

# No public API
__all__: list[str] = []


trace: contextvars.ContextVar[tuple[str, ...]] = contextvars.ContextVar(
    "trace", default=()
)


@contextmanager
def trace_context(*names: str) -> Generator[None, None, None]:
    """Log entry, exit and duration of a step, nested under the enclosing steps."""
    stack = trace.get() + (" ".join(names),)
    token = trace.set(stack)
    label = " > ".join(stack)
    start = perf_counter()
    _LOGGER.debug("[Trace] > %s", label)
    try:
        yield
    finally:
        trace.reset(token)
        _LOGGER.debug("[Trace] < %s (%0.2fs)", label, perf_counter() - start)
