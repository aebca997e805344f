"""Time helpers."""

from __future__ import annotations

import time


def now_ms() -> int:
    """Wall-clock timestamp in milliseconds, as stored on records and memories."""
    return int(time.time() * 1000)


def elapsed_ms(started: float) -> int:
    """Milliseconds since a `time.perf_counter()` reading."""
    return int((time.perf_counter() - started) * 1000)


__all__ = ["now_ms", "elapsed_ms"]
