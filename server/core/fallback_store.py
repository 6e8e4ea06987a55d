"""In-process counter store used by the rate limiter when Redis is unavailable.

State is process-local and never reconciled with Redis. Each store serves a
single window length; the rate limiter keeps one store per budget class.
"""

import time
from typing import Callable, Dict, Tuple

from core.windows import WindowCount, sweep_expired, window_start

_Slot = Tuple[str, int]  # (logical key, window start)


class MemoryCounterStore:
    """Fixed-window hit counters kept in process memory.

    Expired windows are swept on every increment, which keeps memory bounded
    without a background task. Increments never await, so concurrent requests
    on the same event loop cannot lose updates.
    """

    def __init__(self, window_seconds: int, clock: Callable[[], float] = time.time):
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[_Slot, int] = {}
        self._reset_times: Dict[_Slot, float] = {}

    def _slot(self, key: str) -> _Slot:
        return key, window_start(self._clock(), self.window_seconds)

    async def increment(self, key: str) -> WindowCount:
        """Count one hit for ``key`` in the current window."""
        slot = self._slot(key)
        count = self._hits.get(slot, 0) + 1
        reset_at = float(slot[1] + self.window_seconds)
        self._hits[slot] = count
        self._reset_times[slot] = reset_at
        self.sweep()
        return WindowCount(count=count, reset_at=reset_at)

    async def decrement(self, key: str) -> None:
        """Undo one hit for ``key`` in the current window, never below zero."""
        slot = self._slot(key)
        current = self._hits.get(slot, 0)
        if current > 0:
            self._hits[slot] = current - 1

    async def reset(self, key: str) -> None:
        """Forget every window recorded for ``key``."""
        for slot in [s for s in self._hits if s[0] == key]:
            self._hits.pop(slot, None)
            self._reset_times.pop(slot, None)

    def sweep(self) -> int:
        """Discard windows that have fully elapsed."""
        expired = sweep_expired(self._reset_times, self._clock())
        for slot in expired:
            self._hits.pop(slot, None)
        return len(expired)

    def clear(self) -> None:
        self._hits.clear()
        self._reset_times.clear()

    def __len__(self) -> int:
        return len(self._hits)
