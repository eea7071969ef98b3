"""Clock helpers shared by the cache, queue and session."""
from __future__ import annotations

import time


def monotonic_ms() -> float:
    """Monotonic clock in milliseconds, for ages and expiry."""
    return time.monotonic() * 1000


def epoch_ms() -> int:
    """Wall clock in epoch milliseconds, for record timestamps."""
    return int(time.time() * 1000)
