"""Health check utilities.

Provides uptime tracking and the status document served by /health.
"""
import time
from datetime import datetime, timezone
from typing import Dict, Any, TYPE_CHECKING

if TYPE_CHECKING:
    from core.backend import RedisBackend
    from core.config import Settings
    from core.database import Database

# Module-level startup time tracking
_startup_time: float = 0.0


def set_startup_time() -> None:
    """Record the application startup time. Call once during lifespan startup."""
    global _startup_time
    _startup_time = time.time()


def get_uptime() -> float:
    """Get uptime in seconds since startup."""
    return time.time() - _startup_time if _startup_time else 0.0


async def check_redis(backend: "RedisBackend") -> bool:
    """Round-trip a ping when the backend believes it is connected."""
    if not backend.is_available():
        return False
    try:
        return await backend.ping()
    except Exception:
        return False


async def get_health_status(
    database: "Database",
    backend: "RedisBackend",
    settings: "Settings"
) -> Dict[str, Any]:
    """Get health status for the /health endpoint.

    Redis being down only degrades the service: caching is disabled and rate
    limiting falls back, but requests are still served.
    """
    db_healthy = await database.ping()
    redis_healthy = await check_redis(backend)

    if not db_healthy:
        overall_status = "unhealthy"
    elif settings.redis_enabled and not redis_healthy:
        overall_status = "degraded"
    else:
        overall_status = "OK"

    return {
        "status": overall_status,
        "environment": "development" if settings.is_development else "production",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime_seconds": round(get_uptime(), 1),
        "checks": {
            "database": db_healthy,
            "redis": redis_healthy,
            "redis_state": backend.state.value,
        },
        "features": {
            "redis": settings.redis_enabled,
            "cache": settings.cache_enabled,
            "rate_limit": settings.rate_limit_enabled,
            "rate_limit_fallback": settings.rate_limit_fallback,
        },
    }
