"""Fixed-window rate limiting over Redis with an in-process fallback.

Each budget class (api, upload, auth, sensitive) owns a ``RateLimiter`` with
its own keyspace, window and maximum. Counters live in Redis while it is
available and in a ``MemoryCounterStore`` otherwise. Any error while counting
allows the request: availability wins over strict enforcement when the
infrastructure is failing.
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Literal, Optional, Protocol

from constants import (
    API_BUDGET, AUTH_BUDGET, BUDGET_MESSAGES, SENSITIVE_BUDGET, UPLOAD_BUDGET,
)
from core.backend import BackendState, RedisBackend
from core.config import Settings
from core.exceptions import ConfigurationError
from core.fallback_store import MemoryCounterStore
from core.logging import get_logger, log_rate_limit
from core.windows import WindowCount, window_key, window_start

logger = get_logger(__name__)

FallbackMode = Literal["memory", "allow"]


@dataclass(frozen=True)
class RateLimitBudget:
    """A named (window, max) rate-limit configuration."""

    name: str
    window_seconds: int
    max_requests: int
    message: str = "Rate limit exceeded. Please try again later."

    def __post_init__(self):
        if not self.name:
            raise ConfigurationError("Rate limit budget needs a name")
        if not isinstance(self.window_seconds, int) or self.window_seconds <= 0:
            raise ConfigurationError(
                f"Budget '{self.name}': window must be a positive number of seconds, "
                f"got {self.window_seconds!r}")
        if not isinstance(self.max_requests, int) or self.max_requests <= 0:
            raise ConfigurationError(
                f"Budget '{self.name}': max requests must be positive, got {self.max_requests!r}")


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one rate-limit check."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: Optional[int] = None  # set on rejections only
    degraded: bool = False  # decided without a working counter store

    def headers(self, now: float) -> Dict[str, str]:
        """Standard rate-limit headers for this decision."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(max(0, int(round(self.reset_at - now)))),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class CounterStore(Protocol):
    """Capability set shared by the Redis and in-process counter stores."""

    async def increment(self, key: str) -> WindowCount: ...

    async def decrement(self, key: str) -> None: ...

    async def reset(self, key: str) -> None: ...


class RedisCounterStore:
    """Fixed-window counters in Redis, one key per (client, window)."""

    def __init__(self, backend: RedisBackend, window_seconds: int,
                 clock: Callable[[], float] = time.time):
        self.backend = backend
        self.window_seconds = window_seconds
        self._clock = clock

    def _current_key(self, key: str) -> tuple:
        start = window_start(self._clock(), self.window_seconds)
        return window_key(key, start), start

    async def increment(self, key: str) -> WindowCount:
        stored_key, start = self._current_key(key)
        count = await self.backend.increment(stored_key)
        if count == 1:
            await self.backend.expire(stored_key, self.window_seconds)
        elif await self.backend.ttl(stored_key) == -1:
            # The EXPIRE after the first INCR was lost; without it the key never expires
            await self.backend.expire(stored_key, self.window_seconds)
        return WindowCount(count=count, reset_at=float(start + self.window_seconds))

    async def decrement(self, key: str) -> None:
        stored_key, _ = self._current_key(key)
        current = await self.backend.get(stored_key)
        if current and int(current) > 0:
            await self.backend.decrement(stored_key)

    async def reset(self, key: str) -> None:
        keys = await self.backend.list_keys(f"{key}:*")
        await self.backend.delete_many(keys)


class RateLimiter:
    """Rate limiter for a single budget class."""

    def __init__(self, budget: RateLimitBudget, backend: RedisBackend,
                 fallback: FallbackMode = "memory",
                 clock: Callable[[], float] = time.time):
        self.budget = budget
        self.backend = backend
        self.fallback = fallback
        self._clock = clock
        self.redis_store = RedisCounterStore(backend, budget.window_seconds, clock)
        self.fallback_store = MemoryCounterStore(budget.window_seconds, clock)

    def counter_key(self, client_key: str) -> str:
        """Keyspace of ``client_key`` within this budget."""
        return f"{client_key}:{self.budget.name}"

    def _select_store(self) -> Optional[CounterStore]:
        if self.backend.is_available():
            return self.redis_store
        if self.fallback == "memory":
            return self.fallback_store
        return None

    def _fail_open(self, now: float) -> RateLimitDecision:
        return RateLimitDecision(
            allowed=True,
            limit=self.budget.max_requests,
            remaining=self.budget.max_requests - 1,
            reset_at=float(window_start(now, self.budget.window_seconds) + self.budget.window_seconds),
            degraded=True,
        )

    async def check(self, client_key: str) -> RateLimitDecision:
        """Count one request for ``client_key`` and decide allow or reject."""
        now = self._clock()
        store = self._select_store()
        if store is None:
            log_rate_limit(logger, self.budget.name, client_key, True, degraded=True,
                           reason="backend unavailable")
            return self._fail_open(now)

        try:
            counted = await store.increment(self.counter_key(client_key))
        except Exception as e:
            logger.error("Rate limiter increment failed, allowing request",
                         budget=self.budget.name, client_key=client_key, error=str(e))
            return self._fail_open(now)

        limit = self.budget.max_requests
        allowed = counted.count <= limit
        decision = RateLimitDecision(
            allowed=allowed,
            limit=limit,
            remaining=max(0, limit - counted.count),
            reset_at=counted.reset_at,
            retry_after=None if allowed else counted.seconds_until_reset(now),
        )
        log_rate_limit(logger, self.budget.name, client_key, allowed,
                       count=counted.count, limit=limit, retry_after=decision.retry_after)
        return decision

    async def refund(self, client_key: str) -> None:
        """Give back one request in the current window."""
        store = self._select_store()
        if store is None:
            return
        try:
            await store.decrement(self.counter_key(client_key))
        except Exception as e:
            logger.error("Rate limiter decrement failed",
                         budget=self.budget.name, client_key=client_key, error=str(e))

    async def reset(self, client_key: str) -> None:
        """Administrative reset of every window held for ``client_key``."""
        key = self.counter_key(client_key)
        await self.fallback_store.reset(key)
        if not self.backend.is_available():
            return
        try:
            await self.redis_store.reset(key)
        except Exception as e:
            logger.error("Rate limiter reset failed",
                         budget=self.budget.name, client_key=client_key, error=str(e))

    def discard_fallback_state(self) -> None:
        self.fallback_store.clear()


def build_budgets(settings: Settings) -> Dict[str, RateLimitBudget]:
    """Budget classes from settings. Raises ConfigurationError on bad values."""
    windows = {
        API_BUDGET: (settings.rate_limit_api_window, settings.rate_limit_api_max),
        UPLOAD_BUDGET: (settings.rate_limit_upload_window, settings.rate_limit_upload_max),
        AUTH_BUDGET: (settings.rate_limit_auth_window, settings.rate_limit_auth_max),
        SENSITIVE_BUDGET: (settings.rate_limit_sensitive_window, settings.rate_limit_sensitive_max),
    }
    return {
        name: RateLimitBudget(name=name, window_seconds=window, max_requests=max_requests,
                              message=BUDGET_MESSAGES[name])
        for name, (window, max_requests) in windows.items()
    }


class RateLimiterRegistry:
    """One ``RateLimiter`` per budget class, sharing the Redis backend.

    When Redis comes back the fallback counters are discarded rather than
    merged: Redis is authoritative again from the first request onward.
    """

    def __init__(self, settings: Settings, backend: RedisBackend,
                 clock: Callable[[], float] = time.time):
        self.settings = settings
        self.backend = backend
        self._limiters = {
            name: RateLimiter(budget, backend, settings.rate_limit_fallback, clock)
            for name, budget in build_budgets(settings).items()
        }
        backend.on_state_change(self._on_backend_state)

    def _on_backend_state(self, previous: BackendState, current: BackendState) -> None:
        if current is BackendState.CONNECTED:
            for limiter in self._limiters.values():
                limiter.discard_fallback_state()
            logger.info("Fallback rate-limit counters discarded", previous=previous.value)

    def get(self, name: str) -> RateLimiter:
        try:
            return self._limiters[name]
        except KeyError:
            raise ConfigurationError(f"Unknown rate limit budget '{name}'") from None

    def __getitem__(self, name: str) -> RateLimiter:
        return self.get(name)

    def __iter__(self) -> Iterator[RateLimiter]:
        return iter(self._limiters.values())

    async def reset(self, client_key: str) -> List[str]:
        """Reset ``client_key`` in every budget; returns the budget names."""
        for limiter in self._limiters.values():
            await limiter.reset(client_key)
        logger.info("Rate limit counters reset", client_key=client_key)
        return list(self._limiters)
