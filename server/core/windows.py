"""Fixed-window accounting shared by the rate limiter and the fallback store.

Windows are time-aligned: a window of length ``W`` seconds starts at
``floor(now / W) * W``. Counter keys embed the window start, so a new window
always begins a fresh counter.
"""

import math
from dataclasses import dataclass
from typing import Dict, Hashable, List


@dataclass(frozen=True)
class WindowCount:
    """Hit count for one key in one window."""

    count: int
    reset_at: float  # Unix timestamp of the window end

    def seconds_until_reset(self, now: float) -> int:
        return seconds_until(self.reset_at, now)


def window_start(now: float, window_seconds: int) -> int:
    """Start (epoch seconds) of the window containing ``now``."""
    return int(now // window_seconds) * window_seconds


def window_end(now: float, window_seconds: int) -> int:
    return window_start(now, window_seconds) + window_seconds


def window_key(key: str, start: int) -> str:
    """Storage key for ``key`` within the window starting at ``start``."""
    return f"{key}:{start}"


def seconds_until(reset_at: float, now: float) -> int:
    """Whole seconds until ``reset_at``, never less than 1."""
    return max(1, math.ceil(reset_at - now))


def sweep_expired(reset_times: Dict[Hashable, float], now: float) -> List[Hashable]:
    """Drop entries whose window has fully elapsed and return their keys."""
    expired = [key for key, reset_at in reset_times.items() if now >= reset_at]
    for key in expired:
        del reset_times[key]
    return expired
