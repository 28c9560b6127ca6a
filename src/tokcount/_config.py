"""Environment-driven settings, read at call time so tests can monkeypatch them."""

import logging
import os
from pathlib import Path
from typing import Final

log = logging.getLogger(__name__)

VOCAB_PATH_ENV: Final[str] = "TOKCOUNT_VOCAB_PATH"
CACHE_SIZE_ENV: Final[str] = "TOKCOUNT_CACHE_SIZE"
DEFAULT_CACHE_SIZE: Final[int] = 4096


def vocab_dirs() -> list[Path]:
    """Return extra vocabulary directories from ``TOKCOUNT_VOCAB_PATH`` in search order."""
    raw = os.environ.get(VOCAB_PATH_ENV, "")
    return [Path(p) for p in raw.split(os.pathsep) if p.strip()]


def cache_size() -> int:
    """
    Return the chunk cache size from ``TOKCOUNT_CACHE_SIZE``.

    ``0`` disables caching. Unparseable or negative values fall back to the default.
    """
    raw = os.environ.get(CACHE_SIZE_ENV, "").strip()
    if not raw:
        return DEFAULT_CACHE_SIZE
    try:
        size = int(raw)
        if size < 0:
            raise ValueError()
    except ValueError:
        log.warning(
            f"ignoring invalid {CACHE_SIZE_ENV}={raw!r}, using {DEFAULT_CACHE_SIZE}"
        )
        return DEFAULT_CACHE_SIZE
    return size
