"""Parallel processing mode helpers for batch encoding and counting."""

import os
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Literal

from .errors import StrategyError

ParallelStrategy = Literal["auto", "batch", "off"]

# below this many texts a thread pool costs more than it saves
AUTO_MIN_TEXTS = 8


class ParallelMode(str, Enum):
    """Named parallelization modes for batch calls."""

    AUTO = "auto"
    BATCH = "batch"
    OFF = "off"

    @classmethod
    def get(cls, name: "str | ParallelMode") -> "ParallelMode":
        """Get parallel mode by name (case-insensitive)."""
        if isinstance(name, ParallelMode):
            return name
        try:
            return cls[name.upper()]
        except KeyError:
            raise StrategyError(
                "unknown mode",
                invalid_name=name,
                available_strats=[mode.value for mode in cls],
            )


def list_parallel_modes() -> list[str]:
    """Return available parallel mode names."""
    return [mode.value for mode in ParallelMode]


def map_texts[T, R](
    fn: Callable[[T], R],
    texts: Sequence[T],
    num_workers: int | None = None,
    parallel_mode: "ParallelStrategy | ParallelMode" = "auto",
) -> list[R]:
    """
    Apply ``fn`` to every text, optionally across a thread pool.

    ``off`` runs serially. ``batch`` spreads texts over ``num_workers`` threads
    (default: CPU count). ``auto`` uses ``batch`` only for larger batches.
    Results are returned in input order.
    """
    mode = ParallelMode.get(parallel_mode)

    if num_workers is None:
        workers = os.cpu_count() or 1
    else:
        workers = max(1, num_workers)  # "0" interpreted as 1 worker

    def process_batch() -> list[R]:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(fn, texts))

    match mode:
        case ParallelMode.OFF:
            return [fn(text) for text in texts]
        case ParallelMode.BATCH:
            return process_batch()
        case ParallelMode.AUTO:
            if workers == 1 or len(texts) < AUTO_MIN_TEXTS:
                return [fn(text) for text in texts]
            return process_batch()


__all__ = [
    "ParallelStrategy",
    "ParallelMode",
    "list_parallel_modes",
    "map_texts",
]
