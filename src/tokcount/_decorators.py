"""Reusable decorators for vocabulary and session utilities."""

import time
import functools
import logging
from typing import Callable

log = logging.getLogger(__name__)


def measure_time(label: str, level: int = logging.DEBUG) -> Callable[[Callable], Callable]:
    """Log execution time of the wrapped callable under ``label`` at ``level``."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            """Call ``func`` and always log elapsed time."""
            start = time.perf_counter()
            try:
                return func(*args, **kwargs)
            # log execution time even if the decorated function throws error
            finally:
                elapsed = time.perf_counter() - start
                log.log(level, f"{label} took {elapsed * 1000:.1f} ms")

        return wrapper

    return decorator
