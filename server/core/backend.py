"""Redis key-value backend shared by the response cache and the rate limiter.

The backend is an explicit, owned handle: it is created once by the container,
connected during application startup and closed at shutdown. Ordinary
operations never crash the caller on connection loss; they raise typed
``BackendError`` subclasses that both consumers degrade on.
"""

import asyncio
import time
from contextlib import suppress
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from core.config import Settings
from core.exceptions import BackendError, BackendTimeout, BackendUnavailable
from core.logging import get_logger

logger = get_logger(__name__)


class BackendState(str, Enum):
    """Connectivity states, published to listeners for logging and health."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"  # gave up reconnecting
    CLOSED = "closed"


StateListener = Callable[[BackendState, BackendState], Any]


class RedisBackend:
    """Async Redis adapter with bounded reconnects.

    Operations:
        get, set_with_expiry, increment, decrement, expire, ttl, delete,
        delete_many, list_keys

    Each raises ``BackendUnavailable`` when not connected, ``BackendTimeout``
    when the call exceeds ``redis_operation_timeout`` and ``BackendError`` for
    any other Redis failure. A connection error during an operation marks the
    backend disconnected and schedules one bounded background reconnect.
    """

    def __init__(self, settings: Settings, client: Optional[redis.Redis] = None):
        self.settings = settings
        self._client = client
        self._owns_client = client is None
        self._state = BackendState.IDLE
        self._listeners: List[StateListener] = []
        self._reconnect_task: Optional[asyncio.Task] = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def state(self) -> BackendState:
        return self._state

    def is_available(self) -> bool:
        """Report connectivity without touching the network."""
        return self._state is BackendState.CONNECTED and self._client is not None

    def on_state_change(self, listener: StateListener) -> None:
        """Register ``listener(previous, current)`` for state transitions."""
        self._listeners.append(listener)

    def retry_delay(self, attempt: int) -> float:
        """Backoff before retry ``attempt`` (1-based), in seconds."""
        delay_ms = min(attempt * self.settings.redis_retry_backoff_ms,
                       self.settings.redis_retry_backoff_max_ms)
        return delay_ms / 1000

    async def connect(self) -> None:
        """Connect with bounded retries.

        Raises:
            BackendUnavailable: retries exhausted. The backend then stays in
                ``FAILED`` and later connect calls fail immediately.
        """
        if not self.settings.redis_enabled:
            logger.info("Redis disabled, cache and rate limiter use fallbacks")
            return
        if self.is_available():
            return
        if self._state is BackendState.FAILED:
            raise BackendUnavailable("connect", "reconnect attempts exhausted")

        self._set_state(BackendState.CONNECTING)
        if self._client is None:
            self._client = self._create_client()

        max_attempts = self.settings.redis_connect_attempts
        max_seconds = self.settings.redis_retry_max_seconds
        started = time.monotonic()
        attempt = 0
        last_error: Optional[BaseException] = None

        while attempt < max_attempts:
            attempt += 1
            try:
                await asyncio.wait_for(self._client.ping(),
                                       timeout=self.settings.redis_socket_timeout)
                self._set_state(BackendState.CONNECTED, attempt=attempt)
                return
            except (asyncio.TimeoutError, RedisError, OSError) as e:
                last_error = e
                delay = self.retry_delay(attempt)
                if attempt >= max_attempts or time.monotonic() - started + delay > max_seconds:
                    break
                logger.warning("Redis connection attempt failed",
                               attempt=attempt, retry_in_seconds=delay, error=str(e))
                await asyncio.sleep(delay)

        self._set_state(BackendState.FAILED, attempts=attempt, error=str(last_error))
        raise BackendUnavailable("connect", f"gave up after {attempt} attempts: {last_error}")

    async def disconnect(self) -> None:
        """Release the connection. Safe to call repeatedly."""
        if self._reconnect_task and not self._reconnect_task.done():
            self._reconnect_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._reconnect_task
        self._reconnect_task = None

        if self._client is not None and self._owns_client:
            with suppress(RedisError, OSError):
                await self._client.aclose()
            self._client = None

        if self._state is not BackendState.IDLE:
            self._set_state(BackendState.CLOSED)

    def _create_client(self) -> redis.Redis:
        return redis.from_url(
            self.settings.resolved_redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=self.settings.redis_socket_timeout,
            socket_connect_timeout=self.settings.redis_socket_timeout,
        )

    def _set_state(self, state: BackendState, **context) -> None:
        previous = self._state
        if previous is state:
            return
        self._state = state

        if state is BackendState.FAILED:
            logger.error("Redis backend gave up", previous=previous.value, **context)
        elif state is BackendState.DISCONNECTED:
            logger.warning("Redis backend disconnected", previous=previous.value, **context)
        else:
            logger.info("Redis backend state changed",
                        previous=previous.value, state=state.value, **context)

        for listener in list(self._listeners):
            try:
                listener(previous, state)
            except Exception as e:
                logger.error("Backend state listener failed", error=str(e))

    def _mark_disconnected(self, operation: str, error: BaseException) -> None:
        self._set_state(BackendState.DISCONNECTED, operation=operation, error=str(error))
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if not self.settings.redis_auto_reconnect:
            return
        if self._state in (BackendState.FAILED, BackendState.CLOSED):
            return
        if self._reconnect_task and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _reconnect(self) -> None:
        try:
            await self.connect()
        except BackendUnavailable as e:
            logger.error("Redis reconnect abandoned", error=str(e))

    # =========================================================================
    # Operations
    # =========================================================================

    async def _execute(self, operation: str,
                       call: Callable[[redis.Redis], Awaitable[Any]]) -> Any:
        if not self.is_available():
            raise BackendUnavailable(operation, "backend not connected")

        timeout = self.settings.redis_operation_timeout
        try:
            return await asyncio.wait_for(call(self._client), timeout=timeout)
        except (asyncio.TimeoutError, RedisTimeoutError) as e:
            raise BackendTimeout(operation, timeout) from e
        except (RedisConnectionError, OSError) as e:
            self._mark_disconnected(operation, e)
            raise BackendUnavailable(operation, str(e)) from e
        except RedisError as e:
            raise BackendError(operation, str(e)) from e

    async def ping(self) -> bool:
        return bool(await self._execute("ping", lambda c: c.ping()))

    async def get(self, key: str) -> Optional[str]:
        return await self._execute("get", lambda c: c.get(key))

    async def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> bool:
        return bool(await self._execute("set", lambda c: c.set(key, value, ex=ttl_seconds)))

    async def increment(self, key: str) -> int:
        """Atomic INCR; concurrent callers are linearized by Redis."""
        return int(await self._execute("incr", lambda c: c.incr(key)))

    async def decrement(self, key: str) -> int:
        return int(await self._execute("decr", lambda c: c.decr(key)))

    async def expire(self, key: str, seconds: int) -> bool:
        return bool(await self._execute("expire", lambda c: c.expire(key, seconds)))

    async def ttl(self, key: str) -> int:
        """Remaining TTL in seconds; -1 without expiry, -2 when missing."""
        return int(await self._execute("ttl", lambda c: c.ttl(key)))

    async def delete(self, key: str) -> int:
        return int(await self._execute("delete", lambda c: c.delete(key)))

    async def delete_many(self, keys: List[str]) -> int:
        if not keys:
            if not self.is_available():
                raise BackendUnavailable("delete", "backend not connected")
            return 0
        return int(await self._execute("delete", lambda c: c.delete(*keys)))

    async def list_keys(self, pattern: str) -> List[str]:
        """Keys matching a glob pattern, collected with SCAN."""
        async def scan(client: redis.Redis) -> List[str]:
            return [key async for key in client.scan_iter(match=pattern, count=500)]

        return await self._execute("scan", scan)
