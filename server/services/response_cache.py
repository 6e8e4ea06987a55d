"""Cache-aside response cache backed by Redis.

The caller asks ``intercept`` first. On ``MISS`` it produces the response and
hands it to ``store``; on ``HIT`` it returns the stored response unchanged.
There is no process-local fallback: while Redis is unavailable caching is
disabled. No failure in here ever fails the request.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import orjson
from fastapi.responses import Response

from constants import CACHE_KEY_PREFIX, CACHE_STATUS_HEADER
from core.backend import RedisBackend
from core.config import Settings
from core.exceptions import SerializationError
from core.logging import get_logger, log_cache_operation

logger = get_logger(__name__)

CACHEABLE_METHODS = frozenset(["GET"])


class CacheStatus(str, Enum):
    """Value of the X-Cache-Status diagnostics header."""

    HIT = "HIT"
    MISS = "MISS"
    DISABLED = "DISABLED"
    ERROR = "ERROR"


@dataclass(frozen=True)
class CachedResponse:
    """A response as stored in the cache."""

    status_code: int
    body: str
    media_type: Optional[str] = "application/json"

    def dumps(self) -> str:
        return orjson.dumps({
            "status_code": self.status_code,
            "media_type": self.media_type,
            "body": self.body,
        }).decode("utf-8")

    @classmethod
    def loads(cls, key: str, raw: str) -> "CachedResponse":
        try:
            data = orjson.loads(raw)
            return cls(
                status_code=int(data["status_code"]),
                body=data["body"],
                media_type=data.get("media_type"),
            )
        except (orjson.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise SerializationError(key, str(e)) from e

    @classmethod
    def capture(cls, status_code: int, body: bytes,
                media_type: Optional[str]) -> "CachedResponse":
        return cls(status_code=status_code, body=body.decode("utf-8"), media_type=media_type)

    def to_response(self) -> Response:
        response = Response(content=self.body, status_code=self.status_code,
                            media_type=self.media_type)
        response.headers[CACHE_STATUS_HEADER] = CacheStatus.HIT.value
        return response


@dataclass(frozen=True)
class CacheLookup:
    """Result of ``ResponseCache.intercept``."""

    status: CacheStatus
    key: Optional[str] = None
    response: Optional[CachedResponse] = None

    @property
    def is_hit(self) -> bool:
        return self.status is CacheStatus.HIT

    @property
    def is_miss(self) -> bool:
        return self.status is CacheStatus.MISS


def cache_key(path: str, query: str = "") -> str:
    """Key for a request URL, query string kept exactly as received."""
    return f"{CACHE_KEY_PREFIX}{path}?{query}" if query else f"{CACHE_KEY_PREFIX}{path}"


class ResponseCache:
    """Response cache over the shared Redis backend."""

    def __init__(self, settings: Settings, backend: RedisBackend):
        self.settings = settings
        self.backend = backend
        self.default_ttl = settings.cache_ttl

    def is_enabled(self) -> bool:
        return self.settings.cache_enabled and self.backend.is_available()

    async def intercept(self, method: str, path: str, query: str = "") -> CacheLookup:
        """Probe the cache for a request.

        Returns HIT with the stored response, MISS with the key to store under,
        DISABLED when the request is not cacheable or Redis is down, or ERROR
        when the probe itself failed.
        """
        if method.upper() not in CACHEABLE_METHODS or not self.is_enabled():
            return CacheLookup(CacheStatus.DISABLED)

        key = cache_key(path, query)
        try:
            raw = await self.backend.get(key)
        except Exception as e:
            logger.error("Cache lookup failed", key=key, error=str(e))
            return CacheLookup(CacheStatus.ERROR, key=key)

        if raw is None:
            log_cache_operation(logger, "get", key, hit=False)
            return CacheLookup(CacheStatus.MISS, key=key)

        try:
            cached = CachedResponse.loads(key, raw)
        except SerializationError as e:
            logger.warning("Discarding unreadable cache entry", key=key, error=str(e))
            await self._discard(key)
            return CacheLookup(CacheStatus.MISS, key=key)

        log_cache_operation(logger, "get", key, hit=True)
        return CacheLookup(CacheStatus.HIT, key=key, response=cached)

    async def store(self, key: str, response: CachedResponse,
                    ttl: Optional[int] = None) -> bool:
        """Best-effort write. Errors are logged, never raised."""
        ttl = ttl or self.default_ttl
        try:
            await self.backend.set_with_expiry(key, response.dumps(), ttl)
            log_cache_operation(logger, "set", key, ttl=ttl)
            return True
        except Exception as e:
            logger.error("Cache store failed", key=key, error=str(e))
            return False

    async def invalidate(self, pattern: str) -> int:
        """Delete every key matching a glob pattern in one batch.

        A no-op returning 0 when Redis is unavailable or nothing matches.
        """
        if not self.backend.is_available():
            logger.info("Redis not connected, skipping cache invalidation", pattern=pattern)
            return 0
        try:
            keys = await self.backend.list_keys(pattern)
            if not keys:
                return 0
            deleted = await self.backend.delete_many(keys)
            logger.info("Invalidated cache entries", pattern=pattern, deleted=deleted)
            return deleted
        except Exception as e:
            logger.error("Cache invalidation failed", pattern=pattern, error=str(e))
            return 0

    async def _discard(self, key: str) -> None:
        try:
            await self.backend.delete(key)
        except Exception as e:
            logger.error("Cache delete failed", key=key, error=str(e))
