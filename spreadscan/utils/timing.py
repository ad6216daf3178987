"""Timing utilities for cycle statistics.

`timer` measures a block on the monotonic clock and `format_duration` turns
seconds into the short strings used in cycle log lines.
"""

import time
from contextlib import contextmanager
from typing import Iterator, List


class Stopwatch:
    """Elapsed time of a single block, filled in when the block exits."""

    def __init__(self) -> None:
        self.started = time.monotonic()
        self.elapsed = 0.0

    def stop(self) -> float:
        self.elapsed = time.monotonic() - self.started
        return self.elapsed


@contextmanager
def timer() -> Iterator[Stopwatch]:
    """Context manager for timing code blocks.

    Example:
        with timer() as t:
            await collector.collect_data()
        logger.info("cycle took %s", format_duration(t.elapsed))
    """
    watch = Stopwatch()
    try:
        yield watch
    finally:
        watch.stop()


def format_duration(seconds: float) -> str:
    """Format seconds into human-readable string.

    Args:
        seconds: Time in seconds

    Returns:
        Formatted string (e.g., "1.23s", "123ms", "5m 32s")
    """
    if seconds < 0.001:
        return f"{seconds * 1000000:.0f}μs"
    elif seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    elif seconds < 60:
        return f"{seconds:.2f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = seconds % 60
        return f"{minutes}m {secs:.1f}s"
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    return f"{hours}h {minutes}m"


def chunked(items: List, size: int) -> List[List]:
    """Split a list into consecutive groups of at most `size` items."""
    if size < 1:
        raise ValueError("size must be at least 1")
    return [items[i:i + size] for i in range(0, len(items), size)]
