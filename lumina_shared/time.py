"""
Time utilities for timestamps and performance measurement.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager


def now() -> float:
    """Get current timestamp in seconds (float)."""
    return time.time()

def ms() -> int:
    """Get current timestamp in milliseconds (int)."""
    return int(time.time() * 1000)

@contextmanager
def timer(label: str, logger: logging.Logger) -> Iterator[None]:
    """
    Context manager for timing operations.

    Usage:
        with timer("snapshot persist", logger):
            write_snapshot(...)
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        logger.debug("%s took %.3fs", label, elapsed)
